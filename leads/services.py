# leads/services.py
"""
Pipeline state tracker.

Every mutation of an Enquiry or Lead goes through `PipelineService`. Each
operation checks the policy table once, performs its primary write (inside a
transaction where more than one row changes) and then emits a signal from
`leads.signals` whose receivers do the notification and audit fan-out.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Case, F, Value, When
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from core.logger_service import get_logger
from core.models import CustomUser, Notification
from core.permissions import OWNER_SCOPED, is_allowed, owns_record
from core.services import NotificationService
from .exceptions import (
    AlreadyConvertedError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .models import Activity, Client, Enquiry, Lead, Note
from .ownership import POOL_NUMBERS, parse_pool
from .routing import auto_assign_enquiry
from .sync import WebsiteSubmissionSync
from .signals import (
    emit,
    enquiry_converted,
    enquiry_created,
    enquiry_status_changed,
    fields_updated,
    lead_created,
    lead_stage_changed,
    ownership_changed,
)

logger = get_logger('pipeline')

ENTITY_MODELS = {
    'enquiry': Enquiry,
    'lead': Lead,
}

# Enquiry source -> Lead source used on conversion.
LEAD_SOURCE_MAP = {
    Enquiry.Source.WEBSITE_FORM: Lead.Source.WEBSITE,
    Enquiry.Source.PHONE_CALL: Lead.Source.OTHER,
    Enquiry.Source.EMAIL: Lead.Source.OTHER,
    Enquiry.Source.WHATSAPP: Lead.Source.SOCIAL_MEDIA,
    Enquiry.Source.LIVE_CHAT: Lead.Source.WEBSITE,
    Enquiry.Source.PARTNER_REFERRAL: Lead.Source.PARTNER,
}

CONTACT_ACTIVITY_TYPES = {
    Note.ContactType.CALL: Activity.Type.CALL,
    Note.ContactType.SPOKEN: Activity.Type.CALL,
    Note.ContactType.EMAIL: Activity.Type.EMAIL,
    Note.ContactType.NOTE: Activity.Type.NOTE,
}

POOL_SNAPSHOT_LIMIT = 50
LEAD_NUMBER_ATTEMPTS = 5


@dataclass
class ConversionResult:
    enquiry: Enquiry
    client: Client
    lead: Lead


@dataclass
class PoolItem:
    type: str
    id: int
    name: str
    email: str
    phone: str
    status: str
    pool: str
    created_at: object
    tags: list = field(default_factory=list)


def _bump():
    return {'updated_at': timezone.now(), 'version': F('version') + 1}


def _choice(value, choices, label, default=None):
    if value in (None, ''):
        return default
    if value not in choices.values:
        raise ValidationError(f"Invalid {label} '{value}'.")
    return value


def _decimal(value, label, default=None):
    if value in (None, ''):
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {label} '{value}'.")


def _tags(value):
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        raise ValidationError('Tags must be a list of strings.')
    return [t.strip() for t in value if t.strip()]


def _optional_text(value):
    return (value or '').strip() or None


def _datetime(value):
    if value in (None, ''):
        return None
    parsed = value if isinstance(value, datetime) else parse_datetime(str(value))
    if parsed is None:
        raise ValidationError(f"Invalid date '{value}'.")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _one_of(options, label):
    def clean(value):
        if value not in options:
            raise ValidationError(f"Invalid {label} '{value}'.")
        return value
    return clean


def _title(value):
    title = (value or '').strip()
    if not title:
        raise ValidationError('A lead title is required.')
    return title


# Editable field -> cleaner. Ownership, status and stage have their own operations.
ENQUIRY_FIELD_CLEANERS = {
    'called': bool,
    'spoken': bool,
    'segment': _one_of(Enquiry.SEGMENTS, 'segment'),
    'lead_status': lambda value: (value or '').strip() or 'New',
    'priority': _one_of(Enquiry.PRIORITIES, 'priority'),
    'next_call_date': _datetime,
    'snooze': _one_of(Enquiry.SNOOZE_OPTIONS, 'snooze'),
    'budget': _optional_text,
    'country': _optional_text,
    'tags': _tags,
}

LEAD_FIELD_CLEANERS = {
    'called': bool,
    'spoken': bool,
    'title': _title,
    'description': _optional_text,
    'preferred_location': _optional_text,
    'estimated_value': lambda value: _decimal(value, 'estimated value'),
    'currency': lambda value: _choice(value, Lead.Currency, 'currency', Lead.Currency.USD),
    'budget_range': lambda value: _choice(value, Lead.BudgetRange, 'budget range'),
    'property_type': lambda value: _choice(value, Lead.PropertyType, 'property type'),
    'tags': _tags,
}


class PipelineService:

    @staticmethod
    def authorize(actor, operation, owner_id=None, allow_unowned=True):
        if not is_allowed(actor, operation):
            logger.warning(f"Denied {operation} for user {getattr(actor, 'pk', None)}")
            raise PermissionDeniedError()
        if operation in OWNER_SCOPED and actor.is_sales_agent():
            if not owns_record(actor, owner_id, allow_unowned):
                logger.warning(f"Denied {operation} on a record owned by {owner_id} for user {actor.pk}")
                raise PermissionDeniedError('You can only modify records assigned to you.')

    @staticmethod
    def entity_model(entity):
        try:
            return ENTITY_MODELS[entity]
        except KeyError:
            raise ValidationError(f"Unknown entity '{entity}'. Expected 'enquiry' or 'lead'.")

    @staticmethod
    def get_record(model, pk):
        record = model.objects.filter(pk=pk).first()
        if record is None:
            raise NotFoundError(f'{model.__name__} {pk} not found.')
        return record

    @staticmethod
    def get_active_agent(agent_id):
        agent = CustomUser.objects.filter(pk=agent_id, is_active=True).first()
        if agent is None:
            raise NotFoundError(f'Agent {agent_id} not found.')
        return agent

    @staticmethod
    def visible_enquiries(actor):
        queryset = Enquiry.objects.select_related('assigned_agent', 'converted_client')
        if actor.is_manager():
            return queryset
        return queryset.filter(assigned_agent=actor)

    @staticmethod
    def visible_leads(actor):
        queryset = Lead.objects.select_related('client', 'owner', 'enquiry')
        if actor.is_manager():
            return queryset
        return queryset.filter(owner=actor)

    @classmethod
    def pool_snapshot(cls, actor):
        """Up to fifty of the most recent enquiries and leads sitting in each pool."""
        cls.authorize(actor, 'pool.view')
        snapshot = {}
        for number in POOL_NUMBERS:
            enquiries = Enquiry.objects.filter(pool=number).order_by('-created_at')[:POOL_SNAPSHOT_LIMIT]
            leads = Lead.objects.filter(pool=number).select_related('client').order_by('-created_at')[:POOL_SNAPSHOT_LIMIT]
            items = [
                PoolItem(
                    type='enquiry',
                    id=e.pk,
                    name=e.full_name,
                    email=e.email,
                    phone=e.phone,
                    status=e.status,
                    pool=e.pool_tag,
                    created_at=e.created_at,
                    tags=list(e.tags or []),
                )
                for e in enquiries
            ]
            items += [
                PoolItem(
                    type='lead',
                    id=lead.pk,
                    name=str(lead.client),
                    email=lead.client.email,
                    phone=lead.client.phone,
                    status=lead.stage,
                    pool=lead.pool_tag,
                    created_at=lead.created_at,
                    tags=list(lead.tags or []),
                )
                for lead in leads
            ]
            snapshot[f'POOL_{number}'] = items
        return snapshot

    @classmethod
    def update_status(cls, actor, enquiry_id, new_status, operation='enquiry.update_status'):
        if new_status not in Enquiry.Status.values:
            raise ValidationError(f"Invalid status '{new_status}'.")
        if new_status == Enquiry.Status.CONVERTED_TO_CLIENT:
            raise ValidationError('Use the conversion endpoint to convert an enquiry.')

        enquiry = cls.get_record(Enquiry, enquiry_id)
        cls.authorize(actor, operation, enquiry.assigned_agent_id, allow_unowned=True)
        if enquiry.is_converted():
            raise AlreadyConvertedError()
        if enquiry.status == new_status:
            return enquiry

        previous = enquiry.status
        rows = (
            Enquiry.objects.filter(pk=enquiry.pk)
            .exclude(status=Enquiry.Status.CONVERTED_TO_CLIENT)
            .update(status=new_status, **_bump())
        )
        if rows == 0:
            raise AlreadyConvertedError()
        enquiry.refresh_from_db()
        logger.info(f"Enquiry {enquiry.pk} status {previous} -> {new_status} by {actor.pk}")
        emit(enquiry_status_changed, Enquiry, instance=enquiry, actor=actor, previous=previous)
        return enquiry

    @classmethod
    def mark_as_spam(cls, actor, enquiry_id):
        return cls.update_status(actor, enquiry_id, Enquiry.Status.SPAM, operation='enquiry.mark_spam')

    @classmethod
    def update_lead_stage(cls, actor, lead_id, new_stage, lost_reason=None):
        if new_stage not in Lead.Stage.values:
            raise ValidationError(f"Invalid stage '{new_stage}'.")
        reason = (lost_reason or '').strip()
        if new_stage == Lead.Stage.LOST and not reason:
            raise ValidationError('A lost reason is required when marking a lead as lost.')

        lead = cls.get_record(Lead, lead_id)
        cls.authorize(actor, 'lead.update_stage', lead.owner_id, allow_unowned=False)

        previous = lead.stage
        if previous == new_stage:
            if new_stage == Lead.Stage.LOST and reason != lead.lost_reason:
                lead.lost_reason = reason
                lead.save(update_fields=['lost_reason', 'updated_at', 'version'])
            return lead

        with transaction.atomic():
            lead.stage = new_stage
            lead.lost_reason = reason if new_stage == Lead.Stage.LOST else ''
            lead.save(update_fields=['stage', 'lost_reason', 'updated_at', 'version'])

            description = f'Lead stage changed from {previous} to {new_stage}'
            if reason and new_stage == Lead.Stage.LOST:
                description += f'. Reason: {reason}'
            Activity.objects.create(
                type=Activity.Type.STAGE_CHANGE,
                title='Stage Changed',
                description=description,
                lead=lead,
                client_id=lead.client_id,
                user=actor,
            )

        logger.info(f"Lead {lead.lead_number} stage {previous} -> {new_stage} by {actor.pk}")
        emit(lead_stage_changed, Lead, instance=lead, actor=actor, previous=previous)
        return lead

    @classmethod
    def _record_assignment(cls, model, record, actor, title):
        Activity.objects.create(
            type=Activity.Type.ASSIGNMENT,
            title=title,
            lead=record if model is Lead else None,
            enquiry=record if model is Enquiry else None,
            client_id=record.client_id if model is Lead else None,
            user=actor,
        )

    @classmethod
    def assign_to_agent(cls, actor, entity, entity_id, agent_id):
        model = cls.entity_model(entity)
        record = cls.get_record(model, entity_id)
        cls.authorize(actor, f'{entity}.assign', record.owner_id_value, allow_unowned=model is Enquiry)
        agent = cls.get_active_agent(agent_id)
        previous = record.ownership

        values = {f'{model.OWNER_FIELD}_id': agent.pk, 'pool': None, **_bump()}
        if model is Enquiry:
            values['status'] = Case(
                When(status=Enquiry.Status.NEW, then=Value(Enquiry.Status.ASSIGNED)),
                default=F('status'),
            )
        with transaction.atomic():
            rows = model.objects.filter(pk=record.pk).update(**values)
            if rows == 0:
                raise NotFoundError(f'{model.__name__} {entity_id} not found.')
            cls._record_assignment(model, record, actor, f'Assigned to {agent.get_full_name() or agent.username}')

        record.refresh_from_db()
        logger.info(f"{model.__name__} {record.pk} assigned to agent {agent.pk} by {actor.pk}")
        emit(ownership_changed, model, instance=record, actor=actor, previous=previous)
        return record

    @classmethod
    def assign_to_pool(cls, actor, entity, entity_id, pool):
        model = cls.entity_model(entity)
        number = parse_pool(pool)
        record = cls.get_record(model, entity_id)
        cls.authorize(actor, f'{entity}.pool', record.owner_id_value, allow_unowned=model is Enquiry)
        previous = record.ownership

        with transaction.atomic():
            rows = model.objects.filter(pk=record.pk).update(
                **{f'{model.OWNER_FIELD}_id': None, 'pool': number, **_bump()}
            )
            if rows == 0:
                raise NotFoundError(f'{model.__name__} {entity_id} not found.')
            cls._record_assignment(model, record, actor, f'Moved to Pool {number}')

        record.refresh_from_db()
        logger.info(f"{model.__name__} {record.pk} moved to pool {number} by {actor.pk}")
        emit(ownership_changed, model, instance=record, actor=actor, previous=previous)
        return record

    @classmethod
    def remove_from_pool(cls, actor, entity, entity_id):
        """Take a record out of its pool without handing it to an agent."""
        model = cls.entity_model(entity)
        record = cls.get_record(model, entity_id)
        cls.authorize(actor, f'{entity}.pool', record.owner_id_value, allow_unowned=model is Enquiry)
        previous = record.ownership
        if record.pool is None:
            return record

        with transaction.atomic():
            model.objects.filter(pk=record.pk).update(pool=None, **_bump())
            cls._record_assignment(model, record, actor, f'Removed from Pool {record.pool}')

        record.refresh_from_db()
        logger.info(f"{model.__name__} {record.pk} removed from pool by {actor.pk}")
        emit(ownership_changed, model, instance=record, actor=actor, previous=previous)
        return record

    @classmethod
    def _update_fields(cls, actor, entity, entity_id, data, cleaners):
        model = cls.entity_model(entity)
        if not data:
            raise ValidationError('No fields to update.')
        locked = sorted(set(data) - set(cleaners))
        if locked:
            raise ValidationError(f"Fields cannot be edited: {', '.join(locked)}.")

        record = cls.get_record(model, entity_id)
        cls.authorize(actor, f'{entity}.update_fields', record.owner_id_value, allow_unowned=model is Enquiry)
        values = {name: cleaners[name](value) for name, value in data.items()}
        changes = {name: value for name, value in values.items() if getattr(record, name) != value}
        if not changes:
            return record

        with transaction.atomic():
            model.objects.filter(pk=record.pk).update(**changes, **_bump())
            if 'next_call_date' in changes:
                next_call = changes['next_call_date']
                Activity.objects.create(
                    type=Activity.Type.FOLLOW_UP,
                    title='Next Call Date Updated',
                    description=f'Next call date set to {next_call:%d %b %Y}' if next_call else 'Next call date cleared',
                    enquiry=record,
                    user=actor,
                )

        record.refresh_from_db()
        logger.info(f"{model.__name__} {record.pk} fields {', '.join(sorted(changes))} updated by {actor.pk}")
        emit(fields_updated, model, instance=record, actor=actor, changes=changes)
        return record

    @classmethod
    def update_enquiry_fields(cls, actor, enquiry_id, data):
        """Edit the working fields of an enquiry (segment, follow-up date, tags and so on)."""
        return cls._update_fields(actor, 'enquiry', enquiry_id, data, ENQUIRY_FIELD_CLEANERS)

    @classmethod
    def update_lead_fields(cls, actor, lead_id, data):
        return cls._update_fields(actor, 'lead', lead_id, data, LEAD_FIELD_CLEANERS)

    @staticmethod
    def generate_lead_number(after=None):
        prefix = getattr(settings, 'LEAD_NUMBER_PREFIX', 'PQT-L')
        day_prefix = f'{prefix}-{timezone.localdate():%Y%m%d}'
        sequence = Lead.objects.filter(lead_number__startswith=f'{day_prefix}-').count() + 1
        if after and after.startswith(f'{day_prefix}-'):
            sequence = max(sequence, int(after.rsplit('-', 1)[1]) + 1)
        candidate = f'{day_prefix}-{sequence:04d}'
        while Lead.objects.filter(lead_number=candidate).exists():
            sequence += 1
            candidate = f'{day_prefix}-{sequence:04d}'
        return candidate

    @classmethod
    def _create_numbered_lead(cls, **fields):
        """Create a lead, moving to the next number when a concurrent writer took ours."""
        lead_number = None
        for _ in range(LEAD_NUMBER_ATTEMPTS):
            lead_number = cls.generate_lead_number(after=lead_number)
            try:
                with transaction.atomic():
                    return Lead.objects.create(lead_number=lead_number, **fields)
            except IntegrityError:
                if not Lead.objects.filter(lead_number=lead_number).exists():
                    raise
                logger.warning(f"Lead number {lead_number} already taken, retrying")
        raise ConflictError('Could not allocate a unique lead number.')

    @classmethod
    def convert_enquiry(cls, actor, enquiry_id, client_fields=None, lead_fields=None):
        client_fields = client_fields or {}
        lead_fields = lead_fields or {}

        title = (lead_fields.get('lead_title') or lead_fields.get('title') or '').strip()
        if not title:
            raise ValidationError('A lead title is required to convert an enquiry.')
        budget_range = _choice(lead_fields.get('budget_range'), Lead.BudgetRange, 'budget range')
        property_type = _choice(lead_fields.get('property_type'), Lead.PropertyType, 'property type')
        currency = _choice(lead_fields.get('currency'), Lead.Currency, 'currency', Lead.Currency.USD)
        estimated_value = _decimal(lead_fields.get('estimated_value'), 'estimated value')
        purpose = _choice(
            client_fields.get('investment_purpose'),
            Client.InvestmentPurpose,
            'investment purpose',
            Client.InvestmentPurpose.RESIDENTIAL,
        )
        budget_min = _decimal(client_fields.get('budget_min'), 'budget minimum', Client.DEFAULT_BUDGET_MIN)
        budget_max = _decimal(client_fields.get('budget_max'), 'budget maximum', Client.DEFAULT_BUDGET_MAX)

        with transaction.atomic():
            enquiry = Enquiry.objects.select_for_update().filter(pk=enquiry_id).first()
            if enquiry is None:
                raise NotFoundError(f'Enquiry {enquiry_id} not found.')
            cls.authorize(actor, 'enquiry.convert', enquiry.assigned_agent_id)
            if enquiry.is_converted() or enquiry.converted_client_id:
                raise AlreadyConvertedError()

            lead_source = LEAD_SOURCE_MAP.get(enquiry.source, Lead.Source.OTHER)
            country = client_fields.get('country') or enquiry.country or 'Not specified'
            client = Client.objects.create(
                first_name=enquiry.first_name,
                last_name=enquiry.last_name,
                email=enquiry.email,
                phone=enquiry.phone,
                nationality=client_fields.get('nationality') or enquiry.country or 'Not specified',
                country=country,
                budget_min=budget_min,
                budget_max=budget_max,
                investment_purpose=purpose,
                source=lead_source,
                assigned_agent_id=enquiry.assigned_agent_id or actor.pk,
                notes=client_fields.get('notes') or enquiry.message,
            )
            lead = cls._create_numbered_lead(
                title=title,
                description=lead_fields.get('description') or enquiry.message,
                stage=Lead.Stage.NEW_ENQUIRY,
                estimated_value=estimated_value,
                currency=currency,
                budget_range=budget_range,
                property_type=property_type,
                preferred_location=lead_fields.get('preferred_location'),
                source=lead_source,
                source_detail=enquiry.source_url,
                client=client,
                enquiry=enquiry,
                owner_id=enquiry.assigned_agent_id,
                pool=None if enquiry.assigned_agent_id else enquiry.pool,
            )
            Activity.objects.create(
                type=Activity.Type.NOTE,
                title='Lead Created from Enquiry',
                description=f'Converted from enquiry by {enquiry.full_name} ({enquiry.email})',
                lead=lead,
                enquiry=enquiry,
                client=client,
                user=actor,
            )

            rows = (
                Enquiry.objects.filter(pk=enquiry.pk, converted_client__isnull=True)
                .exclude(status=Enquiry.Status.CONVERTED_TO_CLIENT)
                .update(status=Enquiry.Status.CONVERTED_TO_CLIENT, converted_client=client, **_bump())
            )
            if rows != 1:
                raise ConflictError('Enquiry was converted by another request.')

        enquiry.refresh_from_db()
        logger.info(f"Enquiry {enquiry.pk} converted to client {client.pk} and lead {lead.lead_number} by {actor.pk}")
        emit(enquiry_converted, Enquiry, instance=enquiry, actor=actor, client=client, lead=lead)
        return ConversionResult(enquiry=enquiry, client=client, lead=lead)

    @classmethod
    def add_contact_log(cls, actor, entity, entity_id, contact_type, content):
        model = cls.entity_model(entity)
        if contact_type not in Note.ContactType.values:
            raise ValidationError(f"Invalid contact type '{contact_type}'.")
        content = (content or '').strip()
        if not content:
            raise ValidationError('Contact log content cannot be empty.')

        record = cls.get_record(model, entity_id)
        cls.authorize(actor, f'{entity}.contact_log', record.owner_id_value, allow_unowned=model is Enquiry)

        flags = {}
        if contact_type == Note.ContactType.CALL:
            flags['called'] = True
        elif contact_type == Note.ContactType.SPOKEN:
            flags['spoken'] = True

        with transaction.atomic():
            note = Note.objects.create(
                author=actor,
                contact_type=contact_type,
                content=content,
                **{entity: record},
            )
            if flags:
                model.objects.filter(pk=record.pk).update(**flags, **_bump())
            if model is Lead:
                Activity.objects.create(
                    type=CONTACT_ACTIVITY_TYPES[contact_type],
                    title=f'{Note.ContactType(contact_type).label} logged',
                    description=content,
                    lead=record,
                    client_id=record.client_id,
                    user=actor,
                )
        logger.info(f"{contact_type} logged on {model.__name__} {record.pk} by {actor.pk}")
        return note

    @classmethod
    def delete_note(cls, actor, note_id):
        note = cls.get_record(Note, note_id)
        if note.author_id != actor.pk and not is_allowed(actor, 'note.delete_any'):
            raise PermissionDeniedError('Only the author or an administrator can delete this note.')
        note.delete()
        logger.info(f"Note {note_id} deleted by {actor.pk}")

    @classmethod
    def create_enquiry(cls, actor, data, auto_route=True):
        cls.authorize(actor, 'enquiry.create')
        first_name = (data.get('first_name') or '').strip()
        email = (data.get('email') or '').strip()
        if not first_name or not email:
            raise ValidationError('First name and email are required.')

        agent_id = data.get('assigned_agent_id') or data.get('assigned_agent')
        agent = cls.get_active_agent(agent_id) if agent_id else None
        tags = _tags(data.get('tags') or [])

        enquiry = Enquiry.objects.create(
            first_name=first_name,
            last_name=(data.get('last_name') or '').strip(),
            email=email,
            phone=(data.get('phone') or '').strip(),
            message=data.get('message'),
            source=_choice(data.get('source'), Enquiry.Source, 'source', Enquiry.Source.WEBSITE_FORM),
            source_url=data.get('source_url'),
            segment=data.get('segment') if data.get('segment') in Enquiry.SEGMENTS else 'Buyer',
            priority=data.get('priority') if data.get('priority') in Enquiry.PRIORITIES else 'Medium',
            budget=data.get('budget'),
            country=data.get('country'),
            tags=tags,
            assigned_agent=agent,
            status=Enquiry.Status.ASSIGNED if agent else Enquiry.Status.NEW,
        )
        if agent is None and auto_route:
            if auto_assign_enquiry(enquiry):
                enquiry.refresh_from_db()

        logger.info(f"Enquiry {enquiry.pk} created by {actor.pk}")
        emit(enquiry_created, Enquiry, instance=enquiry, actor=actor)
        return enquiry

    @staticmethod
    def _import_row(row, index, actor):
        first_name = (row.get('first_name') or row.get('firstName') or '').strip()
        email = (row.get('email') or '').strip()
        if not first_name or not email:
            raise ValidationError(f'Row {index + 1}: first name and email are required.')

        source = (row.get('source') or '').strip().upper()
        segment = (row.get('segment') or '').strip()
        priority = (row.get('priority') or '').strip()
        snooze = (row.get('snooze') or '').strip()
        tags = row.get('tags') or []
        if isinstance(tags, str):
            tags = [t.strip() for t in tags.split(';') if t.strip()]

        return Enquiry(
            first_name=first_name,
            last_name=(row.get('last_name') or row.get('lastName') or '').strip(),
            email=email,
            phone=(row.get('phone') or '').strip(),
            message=row.get('message') or None,
            source=source if source in Enquiry.Source.values else Enquiry.Source.WEBSITE_FORM,
            segment=segment if segment in Enquiry.SEGMENTS else 'Buyer',
            priority=priority if priority in Enquiry.PRIORITIES else 'Medium',
            snooze=snooze if snooze in Enquiry.SNOOZE_OPTIONS else 'Active',
            lead_status=(row.get('lead_status') or row.get('leadStatus') or 'New').strip(),
            budget=row.get('budget') or None,
            country=row.get('country') or None,
            tags=tags,
            assigned_agent=actor,
            status=Enquiry.Status.ASSIGNED,
        )

    @classmethod
    def bulk_import_enquiries(cls, actor, rows):
        cls.authorize(actor, 'enquiry.import')
        if not rows:
            raise ValidationError('No rows to import.')
        enquiries = [cls._import_row(row, index, actor) for index, row in enumerate(rows)]
        created = Enquiry.objects.bulk_create(enquiries)
        logger.info(f"Imported {len(created)} enquiries for {actor.pk}")
        return len(created)

    @classmethod
    def bulk_assign_enquiries(cls, actor, enquiry_ids, agent_id=None):
        """Hand a batch of enquiries to one agent, or back to the unassigned queue."""
        cls.authorize(actor, 'enquiry.bulk_assign')
        if not enquiry_ids:
            raise ValidationError('No enquiries selected.')
        agent = cls.get_active_agent(agent_id) if agent_id else None

        queryset = Enquiry.objects.filter(pk__in=enquiry_ids).exclude(status=Enquiry.Status.CONVERTED_TO_CLIENT)
        rows = queryset.update(
            assigned_agent=agent,
            pool=None,
            status=Enquiry.Status.ASSIGNED if agent else Enquiry.Status.NEW,
            **_bump(),
        )
        logger.info(f"Bulk assigned {rows} enquiries to {agent.pk if agent else 'nobody'} by {actor.pk}")
        if agent and rows and agent.pk != actor.pk:
            NotificationService.notify(
                agent,
                Notification.Type.LEAD_ASSIGNED,
                'Enquiries Assigned to You',
                f'{rows} enquiries have been assigned to you',
                '/clients/enquiries',
            )
        return rows

    @classmethod
    def sync_website_submissions(cls, actor, syncer=None):
        cls.authorize(actor, 'enquiry.sync_website')
        return (syncer or WebsiteSubmissionSync()).run(actor)

    @classmethod
    def create_lead(cls, actor, client_id, data):
        cls.authorize(actor, 'lead.create')
        client = cls.get_record(Client, client_id)
        title = (data.get('title') or '').strip()
        if not title:
            raise ValidationError('A lead title is required.')

        stage = _choice(data.get('stage'), Lead.Stage, 'stage', Lead.Stage.NEW_ENQUIRY)
        lost_reason = (data.get('lost_reason') or '').strip()
        if stage == Lead.Stage.LOST and not lost_reason:
            raise ValidationError('A lost reason is required when marking a lead as lost.')

        pool: Optional[int] = None
        owner = None
        if data.get('pool') not in (None, ''):
            pool = parse_pool(data['pool'])
        elif data.get('owner_id'):
            owner = cls.get_active_agent(data['owner_id'])
        else:
            owner = actor

        with transaction.atomic():
            lead = cls._create_numbered_lead(
                title=title,
                description=data.get('description'),
                stage=stage,
                lost_reason=lost_reason if stage == Lead.Stage.LOST else '',
                estimated_value=_decimal(data.get('estimated_value'), 'estimated value'),
                currency=_choice(data.get('currency'), Lead.Currency, 'currency', Lead.Currency.USD),
                budget_range=_choice(data.get('budget_range'), Lead.BudgetRange, 'budget range'),
                property_type=_choice(data.get('property_type'), Lead.PropertyType, 'property type'),
                preferred_location=data.get('preferred_location'),
                source=_choice(data.get('source'), Lead.Source, 'source', Lead.Source.OTHER),
                source_detail=data.get('source_detail'),
                tags=data.get('tags') or [],
                client=client,
                owner=owner,
                pool=pool,
            )
            Activity.objects.create(
                type=Activity.Type.NOTE,
                title='Lead Created',
                description=f'Lead {lead.lead_number} created',
                lead=lead,
                client=client,
                user=actor,
            )

        logger.info(f"Lead {lead.lead_number} created by {actor.pk}")
        emit(lead_created, Lead, instance=lead, actor=actor)
        return lead
