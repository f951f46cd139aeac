from rest_framework import serializers

from core.serializers import UserSerializer
from .models import Activity, Client, Enquiry, Lead, Note


class NoteSerializer(serializers.ModelSerializer):
    author_details = UserSerializer(source='author', read_only=True)

    class Meta:
        model = Note
        fields = ['id', 'enquiry', 'lead', 'author', 'author_details', 'contact_type', 'content', 'created_at']
        read_only_fields = fields


class ActivitySerializer(serializers.ModelSerializer):
    class Meta:
        model = Activity
        fields = ['id', 'type', 'title', 'description', 'lead', 'enquiry', 'client', 'user', 'created_at']
        read_only_fields = fields


class ClientSerializer(serializers.ModelSerializer):
    class Meta:
        model = Client
        fields = [
            'id', 'first_name', 'last_name', 'email', 'phone', 'nationality', 'country',
            'budget_min', 'budget_max', 'source', 'investment_purpose', 'assigned_agent',
            'notes', 'created_at', 'updated_at'
        ]
        read_only_fields = ['created_at', 'updated_at']


class EnquirySerializer(serializers.ModelSerializer):
    assigned_agent_details = UserSerializer(source='assigned_agent', read_only=True)
    pool_tag = serializers.CharField(read_only=True)
    full_name = serializers.CharField(read_only=True)

    class Meta:
        model = Enquiry
        fields = [
            'id', 'first_name', 'last_name', 'full_name', 'email', 'phone', 'message',
            'source', 'source_url', 'status', 'segment', 'lead_status', 'priority',
            'next_call_date', 'snooze', 'budget', 'country', 'called', 'spoken', 'tags',
            'assigned_agent', 'assigned_agent_details', 'pool', 'pool_tag',
            'converted_client', 'created_at', 'updated_at', 'version'
        ]
        read_only_fields = [
            'status', 'called', 'spoken', 'assigned_agent', 'pool', 'converted_client',
            'created_at', 'updated_at', 'version'
        ]


class EnquiryDetailSerializer(EnquirySerializer):
    notes = NoteSerializer(many=True, read_only=True)

    class Meta(EnquirySerializer.Meta):
        fields = EnquirySerializer.Meta.fields + ['notes']


class EnquiryCreateSerializer(serializers.Serializer):
    first_name = serializers.CharField(max_length=100)
    last_name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=30, required=False, allow_blank=True)
    message = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    source = serializers.ChoiceField(choices=Enquiry.Source.choices, required=False)
    source_url = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)
    segment = serializers.CharField(required=False)
    priority = serializers.CharField(required=False)
    budget = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    country = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    tags = serializers.ListField(child=serializers.CharField(), required=False)
    assigned_agent_id = serializers.IntegerField(required=False, allow_null=True)


class LeadSerializer(serializers.ModelSerializer):
    client_details = ClientSerializer(source='client', read_only=True)
    owner_details = UserSerializer(source='owner', read_only=True)
    pool_tag = serializers.CharField(read_only=True)

    class Meta:
        model = Lead
        fields = [
            'id', 'lead_number', 'title', 'description', 'stage', 'estimated_value', 'currency',
            'budget_range', 'property_type', 'preferred_location', 'source', 'source_detail',
            'lost_reason', 'called', 'spoken', 'tags', 'client', 'client_details', 'enquiry',
            'owner', 'owner_details', 'pool', 'pool_tag', 'created_at', 'updated_at', 'version'
        ]
        read_only_fields = fields


class LeadDetailSerializer(LeadSerializer):
    notes = NoteSerializer(many=True, read_only=True)
    activities = ActivitySerializer(many=True, read_only=True)

    class Meta(LeadSerializer.Meta):
        fields = LeadSerializer.Meta.fields + ['notes', 'activities']
        read_only_fields = fields


class LeadCreateSerializer(serializers.Serializer):
    client_id = serializers.IntegerField()
    title = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    stage = serializers.CharField(required=False)
    lost_reason = serializers.CharField(required=False, allow_blank=True)
    estimated_value = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, allow_null=True)
    currency = serializers.CharField(required=False)
    budget_range = serializers.CharField(required=False, allow_null=True)
    property_type = serializers.CharField(required=False, allow_null=True)
    preferred_location = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    source = serializers.CharField(required=False)
    source_detail = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    tags = serializers.ListField(child=serializers.CharField(), required=False)
    owner_id = serializers.IntegerField(required=False, allow_null=True)
    pool = serializers.CharField(required=False, allow_null=True)


class FieldUpdateSerializer(serializers.Serializer):
    """Partial edit payload; keys outside the declared fields are rejected, not dropped."""

    def validate(self, attrs):
        unknown = sorted(set(self.initial_data) - set(self.fields))
        if unknown:
            raise serializers.ValidationError(f"Fields cannot be edited: {', '.join(unknown)}.")
        return attrs


class EnquiryFieldsSerializer(FieldUpdateSerializer):
    called = serializers.BooleanField(required=False)
    spoken = serializers.BooleanField(required=False)
    segment = serializers.CharField(required=False)
    lead_status = serializers.CharField(required=False, allow_blank=True)
    priority = serializers.CharField(required=False)
    next_call_date = serializers.DateTimeField(required=False, allow_null=True)
    snooze = serializers.CharField(required=False)
    budget = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    country = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    tags = serializers.ListField(child=serializers.CharField(), required=False)


class LeadFieldsSerializer(FieldUpdateSerializer):
    called = serializers.BooleanField(required=False)
    spoken = serializers.BooleanField(required=False)
    title = serializers.CharField(required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    preferred_location = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    estimated_value = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, allow_null=True)
    currency = serializers.CharField(required=False)
    budget_range = serializers.CharField(required=False, allow_null=True)
    property_type = serializers.CharField(required=False, allow_null=True)
    tags = serializers.ListField(child=serializers.CharField(), required=False)


class StatusSerializer(serializers.Serializer):
    status = serializers.CharField()


class StageSerializer(serializers.Serializer):
    stage = serializers.CharField()
    lost_reason = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class AssignSerializer(serializers.Serializer):
    agent_id = serializers.IntegerField()


class PoolSerializer(serializers.Serializer):
    pool = serializers.CharField()


class ContactLogSerializer(serializers.Serializer):
    contact_type = serializers.CharField()
    content = serializers.CharField(allow_blank=True, trim_whitespace=False)


class ConvertSerializer(serializers.Serializer):
    lead_title = serializers.CharField(allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    estimated_value = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    currency = serializers.CharField(required=False, allow_blank=True)
    budget_range = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    property_type = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    preferred_location = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    client = serializers.DictField(required=False)


class BulkAssignSerializer(serializers.Serializer):
    enquiry_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=True)
    agent_id = serializers.IntegerField(required=False, allow_null=True)


class BulkImportSerializer(serializers.Serializer):
    rows = serializers.ListField(child=serializers.DictField(), allow_empty=True)


class PoolItemSerializer(serializers.Serializer):
    type = serializers.CharField()
    id = serializers.IntegerField()
    name = serializers.CharField()
    email = serializers.CharField()
    phone = serializers.CharField(allow_blank=True)
    status = serializers.CharField()
    pool = serializers.CharField()
    created_at = serializers.DateTimeField()
    tags = serializers.ListField(child=serializers.CharField())
