from django_filters import rest_framework as filters
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework_simplejwt.views import TokenObtainPairView

from core.logger_service import get_logger
from .models import CustomUser, Notification
from .permissions import IsAuthenticatedAndActive
from .serializers import CustomTokenObtainPairSerializer, NotificationSerializer, UserSerializer

logger = get_logger()


class LoginView(TokenObtainPairView):
    permission_classes = [AllowAny]
    serializer_class = CustomTokenObtainPairSerializer

    def post(self, request, *args, **kwargs):
        logger.info(f"Login attempt for: {request.data.get('username')}")
        response = super().post(request, *args, **kwargs)
        if response.status_code != status.HTTP_200_OK:
            logger.warning(f"Authentication failed: {response.data}")
        return response


class UserFilter(filters.FilterSet):
    role = filters.CharFilter(lookup_expr='iexact')
    roles = filters.CharFilter(method='filter_multiple_roles')
    office = filters.CharFilter(lookup_expr='iexact')

    class Meta:
        model = CustomUser
        fields = ['role', 'roles', 'office', 'is_active']

    def filter_multiple_roles(self, queryset, name, value):
        roles = [role.strip().upper() for role in value.split(',') if role.strip()]
        return queryset.filter(role__in=roles)


class UserViewSet(viewsets.ReadOnlyModelViewSet):
    """Agent directory, used to pick assignees."""
    queryset = CustomUser.objects.all()
    serializer_class = UserSerializer
    permission_classes = [IsAuthenticatedAndActive]
    filter_backends = [filters.DjangoFilterBackend, SearchFilter, OrderingFilter]
    filterset_class = UserFilter
    search_fields = ['username', 'email', 'first_name', 'last_name']
    ordering = ['username']

    @action(detail=False, methods=['get'])
    def me(self, request):
        return Response(UserSerializer(request.user).data)


class NotificationViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    serializer_class = NotificationSerializer
    permission_classes = [IsAuthenticatedAndActive]
    filter_backends = [filters.DjangoFilterBackend]
    filterset_fields = ['is_read', 'type']

    def get_queryset(self):
        return Notification.objects.filter(user=self.request.user)

    @action(detail=True, methods=['post'])
    def mark_read(self, request, pk=None):
        updated = self.get_queryset().filter(pk=pk).update(is_read=True)
        if not updated:
            return Response({'error': 'Notification not found'}, status=status.HTTP_404_NOT_FOUND)
        return Response({'status': 'read'})

    @action(detail=False, methods=['post'])
    def mark_all_read(self, request):
        updated = self.get_queryset().filter(is_read=False).update(is_read=True)
        return Response({'updated': updated})

    @action(detail=False, methods=['get'])
    def unread_count(self, request):
        return Response({'count': self.get_queryset().filter(is_read=False).count()})
