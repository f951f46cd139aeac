# core/services.py
from django.db import transaction

from core.logger_service import get_logger
from .models import AuditLog, CustomUser, Notification

logger = get_logger('side_effects')


class NotificationService:
    """Best-effort notification writes. Failures are logged, never raised."""

    @staticmethod
    def notify(user, notification_type, title, message, link=None):
        if user is None:
            return None
        user_id = getattr(user, 'pk', user)
        try:
            with transaction.atomic():
                return Notification.objects.create(
                    user_id=user_id,
                    type=notification_type,
                    title=title,
                    message=message,
                    link=link,
                )
        except Exception as e:
            logger.error(f"Failed to create notification for user {user_id}: {str(e)}", exc_info=True)
            return None

    @staticmethod
    def super_admin_ids():
        return list(
            CustomUser.objects.filter(role=CustomUser.Role.SUPER_ADMIN, is_active=True)
            .values_list('id', flat=True)
        )

    @classmethod
    def notify_super_admins(cls, notification_type, title, message, link=None):
        try:
            with transaction.atomic():
                recipients = cls.super_admin_ids()
                Notification.objects.bulk_create([
                    Notification(user_id=uid, type=notification_type, title=title, message=message, link=link)
                    for uid in recipients
                ])
                return len(recipients)
        except Exception as e:
            logger.error(f"Failed to notify super admins: {str(e)}", exc_info=True)
            return 0

    @classmethod
    def notify_user_and_admins(cls, user, notification_type, title, message, link=None):
        """Notify one user plus every super admin, without duplicating a super admin recipient."""
        user_id = getattr(user, 'pk', user)
        try:
            with transaction.atomic():
                recipients = set(cls.super_admin_ids())
                if user_id is not None:
                    recipients.add(user_id)
                Notification.objects.bulk_create([
                    Notification(user_id=uid, type=notification_type, title=title, message=message, link=link)
                    for uid in sorted(recipients)
                ])
                return len(recipients)
        except Exception as e:
            logger.error(f"Failed to notify user {user_id} and admins: {str(e)}", exc_info=True)
            return 0


class AuditService:
    @staticmethod
    def log(actor, action, entity_type, entity_id, changes=None):
        """Append an audit entry. Never breaks the calling operation."""
        try:
            with transaction.atomic():
                return AuditLog.objects.create(
                    user_id=getattr(actor, 'pk', actor),
                    action=action,
                    entity_type=entity_type,
                    entity_id=str(entity_id),
                    changes=changes,
                )
        except Exception as e:
            logger.error(f"[AUDIT] Failed to write audit log for {entity_type} {entity_id}: {str(e)}", exc_info=True)
            return None
