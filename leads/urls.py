from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import EnquiryViewSet, LeadViewSet, NoteViewSet, PoolViewSet

router = DefaultRouter()
router.register(r'enquiries', EnquiryViewSet, basename='enquiry')
router.register(r'leads', LeadViewSet, basename='lead')
router.register(r'notes', NoteViewSet, basename='note')
router.register(r'pools', PoolViewSet, basename='pool')

urlpatterns = [
    path('', include(router.urls)),
]
