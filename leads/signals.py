# leads/signals.py
from django.dispatch import Signal, receiver

from core.logger_service import get_logger
from core.models import AuditLog, Notification
from core.services import AuditService, NotificationService
from .models import Enquiry, Lead
from .ownership import AgentOwner

logger = get_logger('pipeline')

# Fired by leads.services after the primary write has been committed.
enquiry_created = Signal()
lead_created = Signal()
enquiry_status_changed = Signal()
lead_stage_changed = Signal()
fields_updated = Signal()
ownership_changed = Signal()
enquiry_converted = Signal()


def emit(signal, sender, **kwargs):
    """Dispatch a side-effect signal; receiver failures are logged and swallowed."""
    for receiver_fn, response in signal.send_robust(sender=sender, **kwargs):
        if isinstance(response, Exception):
            logger.error(
                f"Receiver {getattr(receiver_fn, '__name__', receiver_fn)} failed for {sender.__name__}: {response}",
                exc_info=(type(response), response, response.__traceback__),
            )


def _entity_link(instance):
    if isinstance(instance, Lead):
        return f'/leads/{instance.pk}'
    return f'/clients/enquiries/{instance.pk}'


@receiver(enquiry_created, sender=Enquiry)
def announce_new_enquiry(sender, instance, actor, **kwargs):
    AuditService.log(actor, AuditLog.Action.CREATE, 'Enquiry', instance.pk, {
        'subject': instance.full_name,
        'email': instance.email,
    })
    NotificationService.notify_super_admins(
        Notification.Type.SYSTEM_ALERT,
        'New Enquiry Received',
        f'{instance.full_name} ({instance.email}) submitted an enquiry',
        '/clients/enquiries',
    )
    if instance.assigned_agent_id and instance.assigned_agent_id != actor.pk:
        NotificationService.notify(
            instance.assigned_agent_id,
            Notification.Type.LEAD_ASSIGNED,
            'Enquiry Assigned to You',
            f'New enquiry from {instance.full_name}',
            _entity_link(instance),
        )


@receiver(lead_created, sender=Lead)
def announce_new_lead(sender, instance, actor, **kwargs):
    AuditService.log(actor, AuditLog.Action.CREATE, 'Lead', instance.pk, {
        'client_id': instance.client_id,
        'source': instance.source,
    })
    if instance.owner_id and instance.owner_id != actor.pk:
        NotificationService.notify(
            instance.owner_id,
            Notification.Type.LEAD_ASSIGNED,
            'New Lead Assigned',
            f'You have been assigned lead: {instance.title}',
            _entity_link(instance),
        )


@receiver(enquiry_status_changed, sender=Enquiry)
def audit_enquiry_status(sender, instance, actor, previous, **kwargs):
    AuditService.log(actor, AuditLog.Action.STAGE_CHANGE, 'Enquiry', instance.pk, {
        'from': previous,
        'status': instance.status,
    })


@receiver(lead_stage_changed, sender=Lead)
def announce_stage_change(sender, instance, actor, previous, **kwargs):
    AuditService.log(actor, AuditLog.Action.STAGE_CHANGE, 'Lead', instance.pk, {
        'from': previous,
        'stage': instance.stage,
        'lost_reason': instance.lost_reason or None,
    })
    if instance.owner_id and instance.owner_id != actor.pk:
        NotificationService.notify(
            instance.owner_id,
            Notification.Type.DEAL_STAGE_CHANGED,
            'Lead Stage Changed',
            f'{instance.lead_number} moved from {previous} to {instance.stage}',
            _entity_link(instance),
        )


@receiver(ownership_changed)
def announce_ownership_change(sender, instance, actor, previous, **kwargs):
    current = instance.ownership
    AuditService.log(actor, AuditLog.Action.ASSIGN, sender.__name__, instance.pk, {
        'from': repr(previous),
        'to': repr(current),
    })
    if isinstance(current, AgentOwner) and current != previous and current.agent_id != actor.pk:
        label = 'Lead' if sender is Lead else 'Enquiry'
        NotificationService.notify(
            current.agent_id,
            Notification.Type.LEAD_ASSIGNED,
            f'{label} Assigned to You',
            f'{label} {instance} has been assigned to you',
            _entity_link(instance),
        )


@receiver(enquiry_converted, sender=Enquiry)
def announce_conversion(sender, instance, actor, client, lead, **kwargs):
    AuditService.log(actor, AuditLog.Action.CONVERT, 'Enquiry', instance.pk, {
        'client_id': client.pk,
        'lead_id': lead.pk,
        'lead_number': lead.lead_number,
    })
    NotificationService.notify_super_admins(
        Notification.Type.DEAL_STAGE_CHANGED,
        'Enquiry Converted to Client & Lead',
        f'{instance.full_name} has been converted to a client and lead',
        _entity_link(lead),
    )


@receiver(fields_updated)
def audit_field_update(sender, instance, actor, changes, **kwargs):
    AuditService.log(actor, AuditLog.Action.UPDATE, sender.__name__, instance.pk, changes)
