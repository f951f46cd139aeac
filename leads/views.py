import json
from dataclasses import asdict

from django_filters import rest_framework as django_filters
from rest_framework import filters as drf_filters, mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response

from core.permissions import IsAuthenticatedAndActive
from .models import Enquiry, Lead, Note
from .ownership import parse_pool
from .serializers import (
    AssignSerializer,
    BulkAssignSerializer,
    BulkImportSerializer,
    ClientSerializer,
    ContactLogSerializer,
    ConvertSerializer,
    EnquiryCreateSerializer,
    EnquiryDetailSerializer,
    EnquiryFieldsSerializer,
    EnquirySerializer,
    LeadCreateSerializer,
    LeadDetailSerializer,
    LeadFieldsSerializer,
    LeadSerializer,
    NoteSerializer,
    PoolItemSerializer,
    PoolSerializer,
    StageSerializer,
    StatusSerializer,
)
from .services import PipelineService


class StandardResultsSetPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = 'page_size'
    max_page_size = 100


class OwnedRecordFilter(django_filters.FilterSet):
    pool = django_filters.CharFilter(method='filter_pool')
    tag = django_filters.CharFilter(method='filter_tag')
    unowned = django_filters.BooleanFilter(method='filter_unowned')

    def filter_pool(self, queryset, name, value):
        return queryset.filter(pool=parse_pool(value))

    def filter_tag(self, queryset, name, value):
        # tags are stored as JSON text with non-ASCII characters escaped
        return queryset.filter(tags__icontains=json.dumps(value))

    def filter_unowned(self, queryset, name, value):
        owner_field = self.Meta.model.OWNER_FIELD
        unowned = {f'{owner_field}__isnull': True, 'pool__isnull': True}
        if value:
            return queryset.filter(**unowned)
        return queryset.exclude(**unowned)


class EnquiryFilter(OwnedRecordFilter):
    status = django_filters.CharFilter(lookup_expr='iexact')
    source = django_filters.CharFilter(lookup_expr='iexact')
    agent = django_filters.NumberFilter(field_name='assigned_agent')

    class Meta:
        model = Enquiry
        fields = ['status', 'source', 'agent', 'segment', 'priority']


class LeadFilter(OwnedRecordFilter):
    stage = django_filters.CharFilter(lookup_expr='iexact')
    source = django_filters.CharFilter(lookup_expr='iexact')
    owner = django_filters.NumberFilter(field_name='owner')
    client = django_filters.NumberFilter(field_name='client')

    class Meta:
        model = Lead
        fields = ['stage', 'source', 'owner', 'client']


class EnquiryViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = EnquirySerializer
    permission_classes = [IsAuthenticatedAndActive]
    pagination_class = StandardResultsSetPagination
    filter_backends = [django_filters.DjangoFilterBackend, drf_filters.SearchFilter, drf_filters.OrderingFilter]
    filterset_class = EnquiryFilter
    search_fields = ['first_name', 'last_name', 'email', 'phone', 'message', 'country']
    ordering_fields = ['created_at', 'updated_at', 'status', 'priority', 'next_call_date']
    ordering = ['-created_at']

    def get_queryset(self):
        PipelineService.authorize(self.request.user, 'enquiry.view')
        return PipelineService.visible_enquiries(self.request.user)

    def get_serializer_class(self):
        if self.action == 'retrieve':
            return EnquiryDetailSerializer
        return EnquirySerializer

    def _respond(self, enquiry, status_code=status.HTTP_200_OK):
        return Response(EnquirySerializer(enquiry).data, status=status_code)

    def create(self, request, *args, **kwargs):
        serializer = EnquiryCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        enquiry = PipelineService.create_enquiry(request.user, serializer.validated_data)
        return self._respond(enquiry, status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        serializer = EnquiryFieldsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._respond(PipelineService.update_enquiry_fields(request.user, pk, serializer.validated_data))

    @action(detail=True, methods=['post'])
    def status(self, request, pk=None):
        serializer = StatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        enquiry = PipelineService.update_status(request.user, pk, serializer.validated_data['status'])
        return self._respond(enquiry)

    @action(detail=True, methods=['post'])
    def spam(self, request, pk=None):
        return self._respond(PipelineService.mark_as_spam(request.user, pk))

    @action(detail=True, methods=['post'])
    def assign(self, request, pk=None):
        serializer = AssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        enquiry = PipelineService.assign_to_agent(request.user, 'enquiry', pk, serializer.validated_data['agent_id'])
        return self._respond(enquiry)

    @action(detail=True, methods=['post'])
    def pool(self, request, pk=None):
        serializer = PoolSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        enquiry = PipelineService.assign_to_pool(request.user, 'enquiry', pk, serializer.validated_data['pool'])
        return self._respond(enquiry)

    @action(detail=True, methods=['post'])
    def remove_pool(self, request, pk=None):
        return self._respond(PipelineService.remove_from_pool(request.user, 'enquiry', pk))

    @action(detail=True, methods=['post'])
    def convert(self, request, pk=None):
        serializer = ConvertSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        lead_fields = dict(serializer.validated_data)
        client_fields = lead_fields.pop('client', None) or {}
        result = PipelineService.convert_enquiry(request.user, pk, client_fields, lead_fields)
        return Response({
            'enquiry': EnquirySerializer(result.enquiry).data,
            'client': ClientSerializer(result.client).data,
            'lead': LeadSerializer(result.lead).data,
        }, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def contact_log(self, request, pk=None):
        serializer = ContactLogSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        note = PipelineService.add_contact_log(request.user, 'enquiry', pk, **serializer.validated_data)
        return Response(NoteSerializer(note).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['post'])
    def bulk_assign(self, request):
        serializer = BulkAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        updated = PipelineService.bulk_assign_enquiries(
            request.user,
            serializer.validated_data['enquiry_ids'],
            serializer.validated_data.get('agent_id'),
        )
        return Response({'updated': updated})

    @action(detail=False, methods=['post'])
    def bulk_import(self, request):
        serializer = BulkImportSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        imported = PipelineService.bulk_import_enquiries(request.user, serializer.validated_data['rows'])
        return Response({'imported': imported}, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['post'])
    def sync(self, request):
        result = PipelineService.sync_website_submissions(request.user)
        code = status.HTTP_200_OK if result.success else status.HTTP_502_BAD_GATEWAY
        return Response(asdict(result), status=code)


class LeadViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = LeadSerializer
    permission_classes = [IsAuthenticatedAndActive]
    pagination_class = StandardResultsSetPagination
    filter_backends = [django_filters.DjangoFilterBackend, drf_filters.SearchFilter, drf_filters.OrderingFilter]
    filterset_class = LeadFilter
    search_fields = ['lead_number', 'title', 'client__first_name', 'client__last_name', 'client__email']
    ordering_fields = ['created_at', 'updated_at', 'stage', 'estimated_value']
    ordering = ['-created_at']

    def get_queryset(self):
        PipelineService.authorize(self.request.user, 'lead.view')
        return PipelineService.visible_leads(self.request.user)

    def get_serializer_class(self):
        if self.action == 'retrieve':
            return LeadDetailSerializer
        return LeadSerializer

    def _respond(self, lead, status_code=status.HTTP_200_OK):
        return Response(LeadSerializer(lead).data, status=status_code)

    def create(self, request, *args, **kwargs):
        serializer = LeadCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        client_id = data.pop('client_id')
        lead = PipelineService.create_lead(request.user, client_id, data)
        return self._respond(lead, status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        serializer = LeadFieldsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._respond(PipelineService.update_lead_fields(request.user, pk, serializer.validated_data))

    @action(detail=True, methods=['post'])
    def stage(self, request, pk=None):
        serializer = StageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        lead = PipelineService.update_lead_stage(
            request.user,
            pk,
            serializer.validated_data['stage'],
            serializer.validated_data.get('lost_reason'),
        )
        return self._respond(lead)

    @action(detail=True, methods=['post'])
    def assign(self, request, pk=None):
        serializer = AssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        lead = PipelineService.assign_to_agent(request.user, 'lead', pk, serializer.validated_data['agent_id'])
        return self._respond(lead)

    @action(detail=True, methods=['post'])
    def pool(self, request, pk=None):
        serializer = PoolSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        lead = PipelineService.assign_to_pool(request.user, 'lead', pk, serializer.validated_data['pool'])
        return self._respond(lead)

    @action(detail=True, methods=['post'])
    def remove_pool(self, request, pk=None):
        return self._respond(PipelineService.remove_from_pool(request.user, 'lead', pk))

    @action(detail=True, methods=['post'])
    def contact_log(self, request, pk=None):
        serializer = ContactLogSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        note = PipelineService.add_contact_log(request.user, 'lead', pk, **serializer.validated_data)
        return Response(NoteSerializer(note).data, status=status.HTTP_201_CREATED)


class NoteViewSet(mixins.DestroyModelMixin, viewsets.GenericViewSet):
    queryset = Note.objects.all()
    serializer_class = NoteSerializer
    permission_classes = [IsAuthenticatedAndActive]

    def destroy(self, request, *args, **kwargs):
        PipelineService.delete_note(request.user, kwargs['pk'])
        return Response(status=status.HTTP_204_NO_CONTENT)


class PoolViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticatedAndActive]

    def list(self, request):
        snapshot = PipelineService.pool_snapshot(request.user)
        return Response({
            tag: PoolItemSerializer([asdict(item) for item in items], many=True).data
            for tag, items in snapshot.items()
        })
