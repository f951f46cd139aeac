from django.contrib import admin

from .models import Activity, Client, Enquiry, Lead, Note


@admin.register(Enquiry)
class EnquiryAdmin(admin.ModelAdmin):
    list_display = ('full_name', 'email', 'phone', 'source', 'status', 'assigned_agent', 'pool', 'created_at')
    list_filter = ('status', 'source', 'pool', 'segment', 'priority', 'created_at')
    search_fields = ('first_name', 'last_name', 'email', 'phone', 'message')
    ordering = ('-created_at',)
    readonly_fields = ('status', 'converted_client', 'version', 'created_at', 'updated_at')


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ('first_name', 'last_name', 'email', 'country', 'investment_purpose', 'assigned_agent', 'created_at')
    list_filter = ('investment_purpose', 'country')
    search_fields = ('first_name', 'last_name', 'email', 'phone')
    ordering = ('-created_at',)


@admin.register(Lead)
class LeadAdmin(admin.ModelAdmin):
    list_display = ('lead_number', 'title', 'client', 'stage', 'owner', 'pool', 'estimated_value', 'created_at')
    list_filter = ('stage', 'source', 'pool', 'created_at')
    search_fields = ('lead_number', 'title', 'client__first_name', 'client__last_name', 'client__email')
    ordering = ('-created_at',)
    readonly_fields = ('lead_number', 'stage', 'lost_reason', 'version', 'created_at', 'updated_at')


@admin.register(Note)
class NoteAdmin(admin.ModelAdmin):
    list_display = ('contact_type', 'enquiry', 'lead', 'author', 'created_at')
    list_filter = ('contact_type',)
    search_fields = ('content',)


@admin.register(Activity)
class ActivityAdmin(admin.ModelAdmin):
    list_display = ('type', 'title', 'lead', 'enquiry', 'user', 'created_at')
    list_filter = ('type',)
    search_fields = ('title', 'description')
