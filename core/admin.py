# core/admin.py
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import AuditLog, CustomUser, Notification


def mark_notifications_read(modeladmin, request, queryset):
    queryset.update(is_read=True)

mark_notifications_read.short_description = "Mark selected notifications as read"


@admin.register(CustomUser)
class CustomUserAdmin(UserAdmin):
    fieldsets = UserAdmin.fieldsets + (
        (None, {'fields': ('role', 'office', 'phone_number')}),
    )
    list_display = ['username', 'email', 'role', 'office', 'is_active', 'is_staff']
    search_fields = ['username', 'email', 'role']
    list_filter = ['role', 'office', 'is_active', 'is_staff']


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'type', 'title', 'is_read', 'created_at']
    list_filter = ['type', 'is_read']
    search_fields = ['title', 'message', 'user__username']
    actions = [mark_notifications_read]
    readonly_fields = ['created_at', 'updated_at', 'version']


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['id', 'action', 'entity_type', 'entity_id', 'user', 'created_at']
    list_filter = ['action', 'entity_type']
    search_fields = ['entity_type', 'entity_id', 'user__username']
    readonly_fields = ['action', 'entity_type', 'entity_id', 'changes', 'user', 'created_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
