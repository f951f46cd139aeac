from rest_framework import permissions

from .models import CustomUser

Role = CustomUser.Role

WRITE_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.SALES_MANAGER, Role.SALES_AGENT})
MANAGER_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.SALES_MANAGER})
ADMIN_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN})
ALL_ROLES = frozenset(Role.values)

# operation -> roles allowed to invoke it. SUPER_ADMIN is always allowed.
POLICY = {
    'enquiry.view': ALL_ROLES,
    'enquiry.create': WRITE_ROLES,
    'enquiry.import': WRITE_ROLES,
    'enquiry.update_status': WRITE_ROLES,
    'enquiry.mark_spam': WRITE_ROLES,
    'enquiry.assign': WRITE_ROLES,
    'enquiry.pool': WRITE_ROLES,
    'enquiry.convert': WRITE_ROLES,
    'enquiry.contact_log': WRITE_ROLES,
    'enquiry.update_fields': WRITE_ROLES,
    'enquiry.bulk_assign': frozenset({Role.SUPER_ADMIN}),
    'enquiry.sync_website': MANAGER_ROLES,
    'lead.view': ALL_ROLES,
    'lead.create': WRITE_ROLES,
    'lead.update_stage': WRITE_ROLES,
    'lead.assign': WRITE_ROLES,
    'lead.pool': WRITE_ROLES,
    'lead.contact_log': WRITE_ROLES,
    'lead.update_fields': WRITE_ROLES,
    'note.delete_any': ADMIN_ROLES,
    'pool.view': ALL_ROLES,
}

# Operations where a SALES_AGENT is limited to records they own.
OWNER_SCOPED = frozenset({
    'enquiry.update_status',
    'enquiry.mark_spam',
    'enquiry.assign',
    'enquiry.pool',
    'enquiry.convert',
    'enquiry.contact_log',
    'enquiry.update_fields',
    'lead.update_stage',
    'lead.assign',
    'lead.pool',
    'lead.contact_log',
    'lead.update_fields',
})


def is_allowed(user, operation):
    if user is None or not user.is_authenticated or not user.is_active:
        return False
    if user.role == Role.SUPER_ADMIN:
        return True
    try:
        allowed = POLICY[operation]
    except KeyError:
        raise KeyError(f"No policy entry for operation '{operation}'")
    return user.role in allowed


def owns_record(user, owner_id, allow_unowned):
    """Ownership rule applied to SALES_AGENT callers on owner-scoped operations."""
    if owner_id is None:
        return allow_unowned
    return owner_id == user.pk


class IsAuthenticatedAndActive(permissions.BasePermission):
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_active)
