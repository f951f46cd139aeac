import re
from decimal import Decimal
from unittest import mock

import requests
from django.db import DatabaseError
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from core.models import AuditLog, CustomUser, Notification
from leads.exceptions import (
    AlreadyConvertedError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from leads.models import Activity, Client, Enquiry, Lead, Note
from leads.ownership import AgentOwner, PoolOwner, Unowned, parse_pool
from leads.routing import CAPACITY, ROUND_ROBIN, TERRITORY, auto_assign_enquiry, next_agent
from leads.services import PipelineService
from leads.sync import WebsiteSubmissionSync, extract_contact

Role = CustomUser.Role


def make_user(username, role=Role.SALES_AGENT, **extra):
    return CustomUser.objects.create_user(
        username=username,
        email=f'{username}@example.com',
        password='s3cret-pass',
        role=role,
        **extra,
    )


def make_enquiry(**fields):
    defaults = {
        'first_name': 'Ayla',
        'last_name': 'Demir',
        'email': 'ayla@example.com',
        'phone': '+90 555 000 0000',
        'country': 'Turkey',
    }
    defaults.update(fields)
    return Enquiry.objects.create(**defaults)


def make_lead(client=None, **fields):
    client = client or Client.objects.create(first_name='Omar', last_name='Haddad', email='omar@example.com')
    defaults = {
        'lead_number': PipelineService.generate_lead_number(),
        'title': 'Sea view apartment',
        'client': client,
    }
    defaults.update(fields)
    return Lead.objects.create(**defaults)


class PipelineTestCase(TestCase):
    def setUp(self):
        self.super_admin = make_user('boss', Role.SUPER_ADMIN)
        self.admin = make_user('admin', Role.ADMIN)
        self.manager = make_user('manager', Role.SALES_MANAGER, office=CustomUser.Office.UAE)
        self.agent = make_user('agent', Role.SALES_AGENT, office=CustomUser.Office.TURKEY)
        self.other_agent = make_user('other', Role.SALES_AGENT, office=CustomUser.Office.UK)
        self.viewer = make_user('viewer', Role.VIEWER)


class OwnershipValueTests(TestCase):
    def test_parse_pool_accepts_tags_numbers_and_digits(self):
        self.assertEqual(parse_pool('POOL_2'), 2)
        self.assertEqual(parse_pool('pool_3'), 3)
        self.assertEqual(parse_pool(1), 1)
        self.assertEqual(parse_pool('2'), 2)

    def test_parse_pool_rejects_everything_else(self):
        for value in ('POOL_4', 0, 4, 'POOL_', '', None, True, 'Investor'):
            with self.assertRaises(ValidationError):
                parse_pool(value)

    def test_ownership_is_derived_from_columns(self):
        agent = make_user('owner')
        self.assertEqual(make_enquiry(assigned_agent=agent).ownership, AgentOwner(agent.pk))
        pooled = make_enquiry(pool=2)
        self.assertEqual(pooled.ownership, PoolOwner(2))
        self.assertEqual(pooled.pool_tag, 'POOL_2')
        self.assertEqual(make_enquiry().ownership, Unowned())


class EnquiryStatusTests(PipelineTestCase):
    def test_update_status_persists_and_audits(self):
        enquiry = make_enquiry(assigned_agent=self.agent, status=Enquiry.Status.ASSIGNED)
        result = PipelineService.update_status(self.agent, enquiry.pk, Enquiry.Status.CONTACTED)

        self.assertEqual(result.status, Enquiry.Status.CONTACTED)
        self.assertEqual(result.version, 2)
        log = AuditLog.objects.get(entity_type='Enquiry', entity_id=str(enquiry.pk))
        self.assertEqual(log.action, AuditLog.Action.STAGE_CHANGE)
        self.assertEqual(log.changes['from'], Enquiry.Status.ASSIGNED)

    def test_same_status_is_a_no_op(self):
        enquiry = make_enquiry(status=Enquiry.Status.CONTACTED)
        PipelineService.update_status(self.manager, enquiry.pk, Enquiry.Status.CONTACTED)
        self.assertFalse(AuditLog.objects.exists())

    def test_direct_conversion_status_is_rejected(self):
        enquiry = make_enquiry()
        with self.assertRaises(ValidationError):
            PipelineService.update_status(self.manager, enquiry.pk, Enquiry.Status.CONVERTED_TO_CLIENT)

    def test_unknown_status_and_missing_enquiry(self):
        enquiry = make_enquiry()
        with self.assertRaises(ValidationError):
            PipelineService.update_status(self.manager, enquiry.pk, 'ARCHIVED')
        with self.assertRaises(NotFoundError):
            PipelineService.update_status(self.manager, 999999, Enquiry.Status.CLOSED)

    def test_converted_enquiry_status_is_frozen(self):
        enquiry = make_enquiry()
        PipelineService.convert_enquiry(self.manager, enquiry.pk, lead_fields={'lead_title': 'Villa'})
        with self.assertRaises(AlreadyConvertedError):
            PipelineService.update_status(self.manager, enquiry.pk, Enquiry.Status.CLOSED)

    def test_mark_as_spam(self):
        enquiry = make_enquiry()
        self.assertEqual(PipelineService.mark_as_spam(self.manager, enquiry.pk).status, Enquiry.Status.SPAM)

    def test_viewer_cannot_change_status(self):
        enquiry = make_enquiry()
        with self.assertRaises(PermissionDeniedError):
            PipelineService.update_status(self.viewer, enquiry.pk, Enquiry.Status.CLOSED)

    def test_agent_limited_to_own_or_unassigned_enquiries(self):
        theirs = make_enquiry(assigned_agent=self.other_agent, status=Enquiry.Status.ASSIGNED)
        with self.assertRaises(PermissionDeniedError):
            PipelineService.update_status(self.agent, theirs.pk, Enquiry.Status.CONTACTED)

        unassigned = make_enquiry()
        result = PipelineService.update_status(self.agent, unassigned.pk, Enquiry.Status.CONTACTED)
        self.assertEqual(result.status, Enquiry.Status.CONTACTED)


class LeadStageTests(PipelineTestCase):
    def setUp(self):
        super().setUp()
        self.lead = make_lead(owner=self.agent)

    def test_lost_requires_reason(self):
        for reason in (None, '', '   '):
            with self.assertRaises(ValidationError):
                PipelineService.update_lead_stage(self.agent, self.lead.pk, Lead.Stage.LOST, reason)
        self.lead.refresh_from_db()
        self.assertEqual(self.lead.stage, Lead.Stage.NEW_ENQUIRY)

    def test_lost_with_reason_then_reopen_clears_reason(self):
        lead = PipelineService.update_lead_stage(self.agent, self.lead.pk, Lead.Stage.LOST, ' Budget too low ')
        self.assertEqual(lead.stage, Lead.Stage.LOST)
        self.assertEqual(lead.lost_reason, 'Budget too low')

        lead = PipelineService.update_lead_stage(self.agent, self.lead.pk, Lead.Stage.CONTACTED)
        self.assertEqual(lead.lost_reason, '')

    def test_stage_change_is_idempotent(self):
        PipelineService.update_lead_stage(self.agent, self.lead.pk, Lead.Stage.QUALIFIED)
        activities = Activity.objects.filter(lead=self.lead).count()
        audits = AuditLog.objects.count()

        lead = PipelineService.update_lead_stage(self.agent, self.lead.pk, Lead.Stage.QUALIFIED)

        self.assertEqual(lead.stage, Lead.Stage.QUALIFIED)
        self.assertEqual(Activity.objects.filter(lead=self.lead).count(), activities)
        self.assertEqual(AuditLog.objects.count(), audits)

    def test_repeat_lost_updates_reason_only(self):
        PipelineService.update_lead_stage(self.agent, self.lead.pk, Lead.Stage.LOST, 'Bought elsewhere')
        activities = Activity.objects.filter(lead=self.lead).count()

        lead = PipelineService.update_lead_stage(self.agent, self.lead.pk, Lead.Stage.LOST, 'Went silent')

        self.assertEqual(lead.lost_reason, 'Went silent')
        self.assertEqual(Activity.objects.filter(lead=self.lead).count(), activities)

    def test_any_stage_may_follow_any_other(self):
        PipelineService.update_lead_stage(self.agent, self.lead.pk, Lead.Stage.WON)
        lead = PipelineService.update_lead_stage(self.agent, self.lead.pk, Lead.Stage.NEW_ENQUIRY)
        self.assertEqual(lead.stage, Lead.Stage.NEW_ENQUIRY)

    def test_stage_change_writes_activity_and_notifies_owner(self):
        PipelineService.update_lead_stage(self.manager, self.lead.pk, Lead.Stage.VIEWING_ARRANGED)

        activity = Activity.objects.get(lead=self.lead, type=Activity.Type.STAGE_CHANGE)
        self.assertIn('NEW_ENQUIRY to VIEWING_ARRANGED', activity.description)
        notification = Notification.objects.get(user=self.agent)
        self.assertEqual(notification.type, Notification.Type.DEAL_STAGE_CHANGED)

    def test_owner_changing_own_lead_is_not_notified(self):
        PipelineService.update_lead_stage(self.agent, self.lead.pk, Lead.Stage.CONTACTED)
        self.assertFalse(Notification.objects.filter(user=self.agent).exists())

    def test_agent_cannot_move_someone_elses_or_unowned_lead(self):
        with self.assertRaises(PermissionDeniedError):
            PipelineService.update_lead_stage(self.other_agent, self.lead.pk, Lead.Stage.CONTACTED)
        pooled = make_lead(pool=1)
        with self.assertRaises(PermissionDeniedError):
            PipelineService.update_lead_stage(self.agent, pooled.pk, Lead.Stage.CONTACTED)

    def test_unknown_stage(self):
        with self.assertRaises(ValidationError):
            PipelineService.update_lead_stage(self.agent, self.lead.pk, 'SIGNED')


class OwnershipOperationTests(PipelineTestCase):
    def test_assign_to_pool_clears_owner(self):
        enquiry = make_enquiry(assigned_agent=self.agent, status=Enquiry.Status.ASSIGNED)
        enquiry = PipelineService.assign_to_pool(self.manager, 'enquiry', enquiry.pk, 'POOL_2')

        self.assertIsNone(enquiry.assigned_agent_id)
        self.assertEqual(enquiry.pool, 2)
        self.assertEqual(enquiry.ownership, PoolOwner(2))

    def test_assign_to_agent_after_pool_clears_pool(self):
        enquiry = make_enquiry(pool=1)
        enquiry = PipelineService.assign_to_agent(self.manager, 'enquiry', enquiry.pk, self.agent.pk)

        self.assertIsNone(enquiry.pool)
        self.assertEqual(enquiry.assigned_agent_id, self.agent.pk)
        self.assertEqual(enquiry.status, Enquiry.Status.ASSIGNED)

    def test_assigning_contacted_enquiry_keeps_status(self):
        enquiry = make_enquiry(status=Enquiry.Status.CONTACTED)
        enquiry = PipelineService.assign_to_agent(self.manager, 'enquiry', enquiry.pk, self.agent.pk)
        self.assertEqual(enquiry.status, Enquiry.Status.CONTACTED)

    def test_assignment_notifies_new_owner_and_audits(self):
        lead = make_lead(owner=self.other_agent)
        PipelineService.assign_to_agent(self.manager, 'lead', lead.pk, self.agent.pk)

        notification = Notification.objects.get(user=self.agent)
        self.assertEqual(notification.type, Notification.Type.LEAD_ASSIGNED)
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.Action.ASSIGN, entity_id=str(lead.pk)).exists())
        self.assertTrue(Activity.objects.filter(lead=lead, type=Activity.Type.ASSIGNMENT).exists())

    def test_remove_from_pool_keeps_tags_and_leaves_record_unowned(self):
        enquiry = make_enquiry(tags=['Investor'])
        PipelineService.assign_to_pool(self.manager, 'enquiry', enquiry.pk, 1)
        enquiry = PipelineService.remove_from_pool(self.manager, 'enquiry', enquiry.pk)

        self.assertEqual(enquiry.tags, ['Investor'])
        self.assertIsNone(enquiry.pool)
        self.assertIsNone(enquiry.assigned_agent_id)
        self.assertEqual(enquiry.ownership, Unowned())

    def test_pool_tag_like_labels_do_not_affect_pool(self):
        enquiry = make_enquiry(tags=['POOL_3', 'VIP'])
        self.assertIsNone(enquiry.pool)
        self.assertEqual(enquiry.ownership, Unowned())

    def test_invalid_pool_and_missing_or_inactive_agent(self):
        enquiry = make_enquiry()
        with self.assertRaises(ValidationError):
            PipelineService.assign_to_pool(self.manager, 'enquiry', enquiry.pk, 'POOL_4')
        with self.assertRaises(NotFoundError):
            PipelineService.assign_to_agent(self.manager, 'enquiry', enquiry.pk, 999999)

        self.other_agent.is_active = False
        self.other_agent.save()
        with self.assertRaises(NotFoundError):
            PipelineService.assign_to_agent(self.manager, 'enquiry', enquiry.pk, self.other_agent.pk)

    def test_unknown_entity(self):
        with self.assertRaises(ValidationError):
            PipelineService.assign_to_pool(self.manager, 'booking', 1, 1)

    def test_viewer_cannot_reassign(self):
        lead = make_lead(owner=self.agent)
        with self.assertRaises(PermissionDeniedError):
            PipelineService.assign_to_pool(self.viewer, 'lead', lead.pk, 1)

    def test_agent_cannot_take_or_pool_a_colleagues_records(self):
        lead = make_lead(owner=self.other_agent)
        enquiry = make_enquiry(assigned_agent=self.other_agent, status=Enquiry.Status.ASSIGNED)

        with self.assertRaises(PermissionDeniedError):
            PipelineService.assign_to_agent(self.agent, 'lead', lead.pk, self.agent.pk)
        with self.assertRaises(PermissionDeniedError):
            PipelineService.assign_to_pool(self.agent, 'lead', lead.pk, 'POOL_1')
        with self.assertRaises(PermissionDeniedError):
            PipelineService.assign_to_agent(self.agent, 'enquiry', enquiry.pk, self.agent.pk)
        with self.assertRaises(PermissionDeniedError):
            PipelineService.assign_to_pool(self.agent, 'enquiry', enquiry.pk, 2)

        lead.refresh_from_db()
        enquiry.refresh_from_db()
        self.assertEqual(lead.ownership, AgentOwner(self.other_agent.pk))
        self.assertEqual(enquiry.ownership, AgentOwner(self.other_agent.pk))

    def test_pooled_leads_are_reallocated_by_managers_only(self):
        pooled = make_lead(pool=2)
        with self.assertRaises(PermissionDeniedError):
            PipelineService.assign_to_agent(self.agent, 'lead', pooled.pk, self.agent.pk)
        with self.assertRaises(PermissionDeniedError):
            PipelineService.remove_from_pool(self.agent, 'lead', pooled.pk)

        lead = PipelineService.assign_to_agent(self.manager, 'lead', pooled.pk, self.agent.pk)
        self.assertEqual(lead.ownership, AgentOwner(self.agent.pk))

    def test_agent_may_claim_unassigned_enquiry_and_pool_own_lead(self):
        enquiry = PipelineService.assign_to_agent(self.agent, 'enquiry', make_enquiry().pk, self.agent.pk)
        self.assertEqual(enquiry.assigned_agent_id, self.agent.pk)

        lead = PipelineService.assign_to_pool(self.agent, 'lead', make_lead(owner=self.agent).pk, 'POOL_3')
        self.assertEqual(lead.ownership, PoolOwner(3))


class ConversionTests(PipelineTestCase):
    def test_conversion_links_client_and_creates_lead(self):
        enquiry = make_enquiry(assigned_agent=self.agent, status=Enquiry.Status.ASSIGNED, source=Enquiry.Source.WHATSAPP)
        other = make_enquiry(email='someone@example.com')

        result = PipelineService.convert_enquiry(
            self.agent,
            enquiry.pk,
            client_fields={'investment_purpose': 'INVESTMENT'},
            lead_fields={'lead_title': '2+1 in Alanya', 'budget_range': 'FROM_250K_TO_500K'},
        )

        self.assertEqual(result.enquiry.status, Enquiry.Status.CONVERTED_TO_CLIENT)
        self.assertEqual(result.enquiry.converted_client_id, result.client.pk)
        self.assertEqual(result.lead.owner_id, self.agent.pk)
        self.assertIsNone(result.lead.pool)
        self.assertEqual(result.lead.source, Lead.Source.SOCIAL_MEDIA)
        self.assertEqual(result.client.investment_purpose, Client.InvestmentPurpose.INVESTMENT)
        self.assertTrue(Activity.objects.filter(lead=result.lead, title='Lead Created from Enquiry').exists())
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.Action.CONVERT).exists())
        self.assertTrue(Notification.objects.filter(user=self.super_admin).exists())

        other.refresh_from_db()
        for row in Enquiry.objects.all():
            self.assertEqual(row.is_converted(), row.converted_client_id is not None)

    def test_second_conversion_fails_without_new_records(self):
        enquiry = make_enquiry()
        PipelineService.convert_enquiry(self.manager, enquiry.pk, lead_fields={'lead_title': 'Villa'})

        with self.assertRaises(AlreadyConvertedError):
            PipelineService.convert_enquiry(self.manager, enquiry.pk, lead_fields={'lead_title': 'Villa again'})

        self.assertEqual(Client.objects.count(), 1)
        self.assertEqual(Lead.objects.count(), 1)

    def test_blank_title_is_rejected(self):
        enquiry = make_enquiry()
        with self.assertRaises(ValidationError):
            PipelineService.convert_enquiry(self.manager, enquiry.pk, lead_fields={'lead_title': '  '})
        self.assertFalse(Client.objects.exists())

    def test_pooled_enquiry_converts_into_pooled_lead_with_defaults(self):
        enquiry = make_enquiry(pool=3, country=None)
        result = PipelineService.convert_enquiry(self.manager, enquiry.pk, lead_fields={'lead_title': 'Penthouse'})

        self.assertEqual(result.lead.stage, Lead.Stage.NEW_ENQUIRY)
        self.assertIsNone(result.lead.owner_id)
        self.assertEqual(result.lead.pool, 3)
        self.assertEqual(result.client.nationality, 'Not specified')
        self.assertEqual(result.client.country, 'Not specified')
        self.assertEqual(result.client.budget_min, Decimal('200000'))
        self.assertEqual(result.client.budget_max, Decimal('500000'))
        self.assertEqual(result.client.investment_purpose, Client.InvestmentPurpose.RESIDENTIAL)

    def test_unowned_enquiry_converts_into_unowned_lead(self):
        enquiry = make_enquiry()
        result = PipelineService.convert_enquiry(self.manager, enquiry.pk, lead_fields={'lead_title': 'Villa'})
        self.assertEqual(result.lead.ownership, Unowned())
        self.assertEqual(result.client.assigned_agent_id, self.manager.pk)

    def test_losing_the_race_rolls_everything_back(self):
        enquiry = make_enquiry()

        def convert_concurrently(after=None):
            winner = Client.objects.create(first_name='Winner', email='winner@example.com')
            Enquiry.objects.filter(pk=enquiry.pk).update(
                status=Enquiry.Status.CONVERTED_TO_CLIENT,
                converted_client=winner,
            )
            return 'PQT-L-20260101-0001'

        with mock.patch.object(PipelineService, 'generate_lead_number', side_effect=convert_concurrently):
            with self.assertRaises(ConflictError):
                PipelineService.convert_enquiry(self.manager, enquiry.pk, lead_fields={'lead_title': 'Villa'})

        enquiry.refresh_from_db()
        self.assertEqual(enquiry.status, Enquiry.Status.NEW)
        self.assertFalse(Client.objects.exists())
        self.assertFalse(Lead.objects.exists())

    def test_agent_cannot_convert_a_colleagues_enquiry(self):
        enquiry = make_enquiry(assigned_agent=self.other_agent, status=Enquiry.Status.ASSIGNED)
        with self.assertRaises(PermissionDeniedError):
            PipelineService.convert_enquiry(self.agent, enquiry.pk, lead_fields={'lead_title': 'Villa'})

        enquiry.refresh_from_db()
        self.assertEqual(enquiry.status, Enquiry.Status.ASSIGNED)
        self.assertFalse(Client.objects.exists())

    def test_taken_lead_number_moves_to_the_next_one(self):
        taken = make_lead().lead_number
        free = f"{taken.rsplit('-', 1)[0]}-0099"
        client = Client.objects.create(first_name='Omar', email='omar@example.com')

        with mock.patch.object(PipelineService, 'generate_lead_number', side_effect=[taken, free]) as numbers:
            lead = PipelineService.create_lead(self.manager, client.pk, {'title': 'Duplex'})

        self.assertEqual(lead.lead_number, free)
        self.assertEqual(numbers.call_args_list[1].kwargs, {'after': taken})
        self.assertEqual(Lead.objects.count(), 2)

    def test_next_number_after_a_taken_one(self):
        first = PipelineService.generate_lead_number()
        self.assertRegex(first, r'-0001$')
        self.assertRegex(PipelineService.generate_lead_number(after=first), r'-0002$')

    def test_lead_numbers_follow_daily_sequence(self):
        first = PipelineService.convert_enquiry(
            self.manager, make_enquiry().pk, lead_fields={'lead_title': 'One'}
        ).lead.lead_number
        second = PipelineService.convert_enquiry(
            self.manager, make_enquiry(email='b@example.com').pk, lead_fields={'lead_title': 'Two'}
        ).lead.lead_number

        self.assertRegex(first, r'^PQT-L-\d{8}-0001$')
        self.assertRegex(second, r'^PQT-L-\d{8}-0002$')


class SideChannelFailureTests(PipelineTestCase):
    def test_audit_failure_does_not_roll_back_stage_change(self):
        lead = make_lead(owner=self.agent)
        with mock.patch('core.services.AuditLog.objects.create', side_effect=DatabaseError('audit table locked')):
            PipelineService.update_lead_stage(self.manager, lead.pk, Lead.Stage.QUALIFIED)

        lead.refresh_from_db()
        self.assertEqual(lead.stage, Lead.Stage.QUALIFIED)
        self.assertTrue(Notification.objects.filter(user=self.agent).exists())

    def test_receiver_crash_does_not_break_conversion(self):
        enquiry = make_enquiry()
        with mock.patch('leads.signals.AuditService.log', side_effect=RuntimeError('boom')):
            result = PipelineService.convert_enquiry(self.manager, enquiry.pk, lead_fields={'lead_title': 'Villa'})

        self.assertEqual(result.enquiry.status, Enquiry.Status.CONVERTED_TO_CLIENT)
        self.assertEqual(Lead.objects.count(), 1)


class ContactLogTests(PipelineTestCase):
    def test_call_on_enquiry_sets_called(self):
        enquiry = make_enquiry(assigned_agent=self.agent, status=Enquiry.Status.ASSIGNED)
        note = PipelineService.add_contact_log(self.agent, 'enquiry', enquiry.pk, 'CALL', 'No answer')

        enquiry.refresh_from_db()
        self.assertTrue(enquiry.called)
        self.assertFalse(enquiry.spoken)
        self.assertEqual(note.contact_type, Note.ContactType.CALL)
        self.assertEqual(note.author, self.agent)

    def test_spoken_on_lead_sets_flag_and_logs_call_activity(self):
        lead = make_lead(owner=self.agent)
        PipelineService.add_contact_log(self.agent, 'lead', lead.pk, 'SPOKEN', 'Wants a viewing next week')

        lead.refresh_from_db()
        self.assertTrue(lead.spoken)
        activity = Activity.objects.get(lead=lead)
        self.assertEqual(activity.type, Activity.Type.CALL)
        self.assertEqual(activity.description, 'Wants a viewing next week')

    def test_blank_content_and_unknown_type_are_rejected(self):
        enquiry = make_enquiry()
        with self.assertRaises(ValidationError):
            PipelineService.add_contact_log(self.manager, 'enquiry', enquiry.pk, 'NOTE', '   ')
        with self.assertRaises(ValidationError):
            PipelineService.add_contact_log(self.manager, 'enquiry', enquiry.pk, 'FAX', 'Sent brochure')
        self.assertFalse(Note.objects.exists())

    def test_note_deletion_rights(self):
        enquiry = make_enquiry()
        note = PipelineService.add_contact_log(self.agent, 'enquiry', enquiry.pk, 'NOTE', 'Prefers WhatsApp')

        with self.assertRaises(PermissionDeniedError):
            PipelineService.delete_note(self.other_agent, note.pk)
        with self.assertRaises(PermissionDeniedError):
            PipelineService.delete_note(self.manager, note.pk)

        PipelineService.delete_note(self.admin, note.pk)
        self.assertFalse(Note.objects.exists())

        own = PipelineService.add_contact_log(self.agent, 'enquiry', enquiry.pk, 'NOTE', 'Second note')
        PipelineService.delete_note(self.agent, own.pk)
        self.assertFalse(Note.objects.exists())
        with self.assertRaises(NotFoundError):
            PipelineService.delete_note(self.agent, own.pk)


class FieldUpdateTests(PipelineTestCase):
    def test_enquiry_fields_are_saved_and_audited(self):
        enquiry = make_enquiry(assigned_agent=self.agent, status=Enquiry.Status.ASSIGNED)
        updated = PipelineService.update_enquiry_fields(
            self.agent,
            enquiry.pk,
            {'segment': 'Investor', 'priority': 'High', 'budget': ' 300k ', 'lead_status': 'Warm', 'spoken': True},
        )

        self.assertEqual(updated.segment, 'Investor')
        self.assertEqual(updated.priority, 'High')
        self.assertEqual(updated.budget, '300k')
        self.assertEqual(updated.lead_status, 'Warm')
        self.assertTrue(updated.spoken)
        self.assertEqual(updated.status, Enquiry.Status.ASSIGNED)
        self.assertEqual(updated.version, 2)
        log = AuditLog.objects.get(action=AuditLog.Action.UPDATE, entity_type='Enquiry')
        self.assertEqual(log.changes['segment'], 'Investor')
        self.assertFalse(Activity.objects.filter(enquiry=enquiry).exists())

    def test_next_call_date_records_follow_up(self):
        enquiry = make_enquiry()
        updated = PipelineService.update_enquiry_fields(
            self.manager, enquiry.pk, {'next_call_date': '2026-03-05T10:00:00Z'}
        )
        self.assertEqual(updated.next_call_date.year, 2026)
        follow_up = Activity.objects.get(enquiry=enquiry)
        self.assertEqual(follow_up.type, Activity.Type.FOLLOW_UP)
        self.assertEqual(follow_up.description, 'Next call date set to 05 Mar 2026')

        PipelineService.update_enquiry_fields(self.manager, enquiry.pk, {'next_call_date': None})
        self.assertEqual(Activity.objects.filter(enquiry=enquiry).first().description, 'Next call date cleared')

    def test_tag_edits_never_move_pools(self):
        enquiry = make_enquiry(pool=2, tags=['Investor'])
        enquiry = PipelineService.update_enquiry_fields(self.manager, enquiry.pk, {'tags': ['POOL_1', ' VIP ']})
        self.assertEqual(enquiry.tags, ['POOL_1', 'VIP'])
        self.assertEqual(enquiry.ownership, PoolOwner(2))

        lead = make_lead(owner=self.agent)
        lead = PipelineService.update_lead_fields(self.agent, lead.pk, {'tags': ['POOL_3']})
        self.assertEqual(lead.tags, ['POOL_3'])
        self.assertEqual(lead.ownership, AgentOwner(self.agent.pk))

    def test_unchanged_values_are_a_no_op(self):
        enquiry = make_enquiry(segment='Buyer')
        result = PipelineService.update_enquiry_fields(self.manager, enquiry.pk, {'segment': 'Buyer'})
        self.assertEqual(result.version, 1)
        self.assertFalse(AuditLog.objects.filter(action=AuditLog.Action.UPDATE).exists())

    def test_locked_and_invalid_values_are_rejected(self):
        enquiry = make_enquiry()
        rejected = (
            {},
            {'status': 'CLOSED'},
            {'assigned_agent_id': self.agent.pk},
            {'pool': 1},
            {'priority': 'Urgent'},
            {'next_call_date': 'tomorrow'},
            {'tags': 'VIP'},
        )
        for data in rejected:
            with self.subTest(data=data), self.assertRaises(ValidationError):
                PipelineService.update_enquiry_fields(self.manager, enquiry.pk, data)

        lead = make_lead(owner=self.agent)
        with self.assertRaises(ValidationError):
            PipelineService.update_lead_fields(self.agent, lead.pk, {'title': '  '})
        with self.assertRaises(ValidationError):
            PipelineService.update_lead_fields(self.agent, lead.pk, {'stage': Lead.Stage.WON})

    def test_field_edits_are_owner_scoped(self):
        lead = make_lead(owner=self.other_agent)
        pooled = make_lead(pool=1)
        theirs = make_enquiry(assigned_agent=self.other_agent, status=Enquiry.Status.ASSIGNED)

        with self.assertRaises(PermissionDeniedError):
            PipelineService.update_lead_fields(self.agent, lead.pk, {'description': 'Mine now'})
        with self.assertRaises(PermissionDeniedError):
            PipelineService.update_lead_fields(self.agent, pooled.pk, {'description': 'Mine now'})
        with self.assertRaises(PermissionDeniedError):
            PipelineService.update_enquiry_fields(self.agent, theirs.pk, {'priority': 'Low'})
        with self.assertRaises(PermissionDeniedError):
            PipelineService.update_lead_fields(self.viewer, lead.pk, {'description': 'Read only'})

        updated = PipelineService.update_lead_fields(
            self.other_agent,
            lead.pk,
            {'description': 'Wants a sea view', 'preferred_location': 'Alanya', 'estimated_value': '450000'},
        )
        self.assertEqual(updated.preferred_location, 'Alanya')
        self.assertEqual(updated.estimated_value, Decimal('450000'))

        unassigned = PipelineService.update_enquiry_fields(self.agent, make_enquiry().pk, {'country': 'Germany'})
        self.assertEqual(unassigned.country, 'Germany')


class IntakeTests(PipelineTestCase):
    def test_create_enquiry_routes_to_least_loaded_agent(self):
        make_enquiry(assigned_agent=self.agent, status=Enquiry.Status.ASSIGNED)
        make_enquiry(assigned_agent=self.manager, status=Enquiry.Status.ASSIGNED)

        enquiry = PipelineService.create_enquiry(self.admin, {'first_name': 'Lena', 'email': 'lena@example.com'})

        self.assertEqual(enquiry.assigned_agent_id, self.other_agent.pk)
        self.assertEqual(enquiry.status, Enquiry.Status.ASSIGNED)
        self.assertEqual(enquiry.source, Enquiry.Source.WEBSITE_FORM)
        self.assertTrue(Notification.objects.filter(user=self.super_admin, title='New Enquiry Received').exists())
        self.assertTrue(Notification.objects.filter(user=self.other_agent).exists())

    def test_create_enquiry_with_explicit_agent(self):
        enquiry = PipelineService.create_enquiry(
            self.manager,
            {'first_name': 'Lena', 'email': 'lena@example.com', 'assigned_agent_id': self.agent.pk, 'segment': 'Investor'},
        )
        self.assertEqual(enquiry.assigned_agent_id, self.agent.pk)
        self.assertEqual(enquiry.segment, 'Investor')

    def test_create_enquiry_requires_name_and_email(self):
        with self.assertRaises(ValidationError):
            PipelineService.create_enquiry(self.manager, {'first_name': 'Lena'})
        with self.assertRaises(PermissionDeniedError):
            PipelineService.create_enquiry(self.viewer, {'first_name': 'Lena', 'email': 'lena@example.com'})

    def test_bulk_import_normalises_rows(self):
        count = PipelineService.bulk_import_enquiries(self.agent, [
            {'first_name': 'Ali', 'email': 'ali@example.com', 'source': 'fax', 'tags': 'Investor; Cash buyer'},
            {'firstName': 'Sara', 'email': 'sara@example.com', 'segment': 'Renter', 'snooze': 'Forever'},
        ])

        self.assertEqual(count, 2)
        ali = Enquiry.objects.get(email='ali@example.com')
        self.assertEqual(ali.source, Enquiry.Source.WEBSITE_FORM)
        self.assertEqual(ali.tags, ['Investor', 'Cash buyer'])
        self.assertEqual(ali.assigned_agent, self.agent)
        self.assertEqual(ali.status, Enquiry.Status.ASSIGNED)
        sara = Enquiry.objects.get(email='sara@example.com')
        self.assertEqual(sara.segment, 'Renter')
        self.assertEqual(sara.snooze, 'Active')

    def test_bulk_import_rejects_empty_input(self):
        with self.assertRaises(ValidationError):
            PipelineService.bulk_import_enquiries(self.agent, [])

    def test_bulk_assign_is_super_admin_only_and_skips_converted(self):
        pooled = make_enquiry(pool=2)
        converted = make_enquiry(email='done@example.com')
        PipelineService.convert_enquiry(self.manager, converted.pk, lead_fields={'lead_title': 'Villa'})

        with self.assertRaises(PermissionDeniedError):
            PipelineService.bulk_assign_enquiries(self.admin, [pooled.pk], self.agent.pk)

        updated = PipelineService.bulk_assign_enquiries(self.super_admin, [pooled.pk, converted.pk], self.agent.pk)

        self.assertEqual(updated, 1)
        pooled.refresh_from_db()
        self.assertEqual(pooled.assigned_agent, self.agent)
        self.assertIsNone(pooled.pool)
        self.assertEqual(pooled.status, Enquiry.Status.ASSIGNED)

        PipelineService.bulk_assign_enquiries(self.super_admin, [pooled.pk], None)
        pooled.refresh_from_db()
        self.assertIsNone(pooled.assigned_agent)
        self.assertEqual(pooled.status, Enquiry.Status.NEW)

    def test_create_lead_defaults_owner_to_actor(self):
        client = Client.objects.create(first_name='Omar', email='omar@example.com')
        lead = PipelineService.create_lead(self.agent, client.pk, {'title': 'Duplex'})

        self.assertEqual(lead.owner, self.agent)
        self.assertTrue(re.match(r'^PQT-L-\d{8}-\d{4}$', lead.lead_number))
        self.assertTrue(Activity.objects.filter(lead=lead, title='Lead Created').exists())

    def test_create_lead_into_pool(self):
        client = Client.objects.create(first_name='Omar', email='omar@example.com')
        lead = PipelineService.create_lead(self.manager, client.pk, {'title': 'Duplex', 'pool': 'POOL_1'})
        self.assertIsNone(lead.owner_id)
        self.assertEqual(lead.pool, 1)

    def test_pool_snapshot(self):
        make_enquiry(pool=1)
        make_lead(pool=1)
        make_enquiry(email='two@example.com', pool=2)

        snapshot = PipelineService.pool_snapshot(self.viewer)

        self.assertEqual(set(snapshot), {'POOL_1', 'POOL_2', 'POOL_3'})
        self.assertEqual(sorted(item.type for item in snapshot['POOL_1']), ['enquiry', 'lead'])
        self.assertEqual(len(snapshot['POOL_2']), 1)
        self.assertEqual(snapshot['POOL_3'], [])


class RoutingTests(TestCase):
    def setUp(self):
        self.turkey = make_user('turkey', Role.SALES_AGENT, office=CustomUser.Office.TURKEY)
        self.uk = make_user('uk', Role.SALES_AGENT, office=CustomUser.Office.UK)
        make_user('boss', Role.SUPER_ADMIN)

    def test_capacity_picks_fewest_open_records(self):
        make_enquiry(assigned_agent=self.turkey, status=Enquiry.Status.ASSIGNED)
        make_lead(owner=self.turkey)
        make_lead(owner=self.uk, stage=Lead.Stage.WON)
        self.assertEqual(next_agent(CAPACITY), self.uk.pk)

    def test_territory_matches_office(self):
        self.assertEqual(next_agent(TERRITORY, 'Turkey'), self.turkey.pk)
        self.assertEqual(next_agent(TERRITORY, 'uk'), self.uk.pk)

    def test_round_robin_follows_last_assignment(self):
        make_enquiry(assigned_agent=self.turkey, status=Enquiry.Status.ASSIGNED)
        self.assertEqual(next_agent(ROUND_ROBIN), self.uk.pk)

    def test_no_eligible_agents(self):
        CustomUser.objects.filter(role=Role.SALES_AGENT).update(is_active=False)
        self.assertIsNone(next_agent(CAPACITY))
        self.assertIsNone(auto_assign_enquiry(make_enquiry()))

    def test_auto_assign_only_touches_new_unowned_enquiries(self):
        pooled = make_enquiry(pool=1)
        self.assertIsNone(auto_assign_enquiry(pooled))
        pooled.refresh_from_db()
        self.assertEqual(pooled.pool, 1)

        fresh = make_enquiry(email='fresh@example.com')
        self.assertIsNotNone(auto_assign_enquiry(fresh))
        fresh.refresh_from_db()
        self.assertEqual(fresh.status, Enquiry.Status.ASSIGNED)

    def test_routing_errors_are_swallowed(self):
        with mock.patch('leads.routing.next_agent', side_effect=DatabaseError('gone')):
            self.assertIsNone(auto_assign_enquiry(make_enquiry()))


class WebsiteSyncTests(PipelineTestCase):
    SUBMISSIONS = {
        'docs': [
            {
                'id': 11,
                'form': {'id': 1, 'title': 'Contact'},
                'submissionData': [
                    {'field': 'full-name', 'value': 'Mehmet Ali Kaya'},
                    {'field': 'email', 'value': ' MEHMET@EXAMPLE.COM '},
                    {'field': 'phone', 'value': '+90 500'},
                    {'field': 'message', 'value': 'Looking for a flat'},
                ],
                'createdAt': '2026-01-10T09:00:00.000Z',
            },
            {
                'id': 12,
                'form': 2,
                'submissionData': [
                    {'field': 'firstname', 'value': 'Jane'},
                    {'field': 'surname', 'value': 'Doe'},
                    {'field': 'email', 'value': 'jane@example.com'},
                    {'field': 'pageURL', 'value': 'https://example.com/villa-7'},
                ],
                'createdAt': '2026-01-10T09:05:00.000Z',
            },
            {
                'id': 13,
                'form': 3,
                'submissionData': [{'field': 'name', 'value': 'Nameless'}],
                'createdAt': '2026-01-10T09:10:00.000Z',
            },
        ]
    }

    def _session(self, payload=None, ok=True):
        session = mock.Mock()
        session.get.return_value = mock.Mock(ok=ok, status_code=200 if ok else 401)
        session.get.return_value.json.return_value = payload or self.SUBMISSIONS
        return session

    def _sync(self, session):
        return WebsiteSubmissionSync(base_url='https://cms.example.com', api_key='key', timeout=5, session=session)

    def test_extract_contact_per_form(self):
        contact = extract_contact(self.SUBMISSIONS['docs'][0])
        self.assertEqual(contact['first_name'], 'Mehmet')
        self.assertEqual(contact['last_name'], 'Ali Kaya')
        self.assertEqual(contact['email'], 'mehmet@example.com')

    def test_sync_creates_new_enquiries_and_skips_duplicates(self):
        session = self._session()
        result = PipelineService.sync_website_submissions(self.manager, self._sync(session))

        self.assertTrue(result.success)
        self.assertEqual((result.created, result.skipped, result.errors), (2, 1, 0))
        jane = Enquiry.objects.get(email='jane@example.com')
        self.assertEqual(jane.source_url, 'https://example.com/villa-7 | submission:12')
        self.assertIsNotNone(jane.assigned_agent_id)
        self.assertTrue(Notification.objects.filter(user=self.super_admin, title='Synced 2 Website Enquiries').exists())

        headers = session.get.call_args.kwargs['headers']
        self.assertEqual(headers['Authorization'], 'users API-Key key')

        again = PipelineService.sync_website_submissions(self.manager, self._sync(session))
        self.assertEqual((again.created, again.skipped), (0, 3))

    def test_submission_ids_sharing_a_prefix_are_distinct(self):
        payload = {
            'docs': [
                {
                    'id': 10,
                    'form': 2,
                    'submissionData': [
                        {'field': 'firstname', 'value': 'Deniz'},
                        {'field': 'email', 'value': 'deniz@example.com'},
                    ],
                    'createdAt': '2026-01-10T09:00:00.000Z',
                },
                {
                    'id': 1,
                    'form': 2,
                    'submissionData': [
                        {'field': 'firstname', 'value': 'Emre'},
                        {'field': 'email', 'value': 'emre@example.com'},
                    ],
                    'createdAt': '2026-01-09T09:00:00.000Z',
                },
            ]
        }
        result = PipelineService.sync_website_submissions(self.manager, self._sync(self._session(payload)))

        self.assertEqual((result.created, result.skipped), (2, 0))
        self.assertEqual(Enquiry.objects.get(email='emre@example.com').source_url, 'submission:1')
        self.assertTrue(WebsiteSubmissionSync.is_duplicate(1, 'nobody@example.com', None))
        self.assertFalse(WebsiteSubmissionSync.is_duplicate(100, 'nobody@example.com', None))

    def test_network_failure_returns_unsuccessful_result(self):
        session = mock.Mock()
        session.get.side_effect = requests.ConnectionError('unreachable')

        result = PipelineService.sync_website_submissions(self.manager, self._sync(session))

        self.assertFalse(result.success)
        self.assertFalse(Enquiry.objects.exists())

    def test_falls_back_to_anonymous_request(self):
        session = mock.Mock()
        denied = mock.Mock(ok=False, status_code=401)
        allowed = mock.Mock(ok=True, status_code=200)
        allowed.json.return_value = {'docs': []}
        session.get.side_effect = [denied, allowed]

        result = PipelineService.sync_website_submissions(self.manager, self._sync(session))

        self.assertTrue(result.success)
        self.assertEqual(session.get.call_count, 2)

    def test_agents_cannot_sync(self):
        with self.assertRaises(PermissionDeniedError):
            PipelineService.sync_website_submissions(self.agent, self._sync(self._session()))


class PipelineApiTests(APITestCase):
    def setUp(self):
        self.manager = make_user('manager', Role.SALES_MANAGER)
        self.agent = make_user('agent', Role.SALES_AGENT)
        self.other_agent = make_user('other', Role.SALES_AGENT)

    def test_agent_only_lists_own_enquiries(self):
        make_enquiry(assigned_agent=self.agent, status=Enquiry.Status.ASSIGNED)
        make_enquiry(email='theirs@example.com', assigned_agent=self.other_agent, status=Enquiry.Status.ASSIGNED)

        self.client.force_authenticate(self.agent)
        response = self.client.get('/api/enquiries/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)

    def test_filter_enquiries_by_pool_and_tag(self):
        make_enquiry(pool=2, tags=['Investor'])
        make_enquiry(email='b@example.com', pool=1)

        self.client.force_authenticate(self.manager)
        by_pool = self.client.get('/api/enquiries/', {'pool': 'POOL_2'})
        by_tag = self.client.get('/api/enquiries/', {'tag': 'Investor'})
        bad_pool = self.client.get('/api/enquiries/', {'pool': 'POOL_9'})

        self.assertEqual(by_pool.data['count'], 1)
        self.assertEqual(by_pool.data['results'][0]['pool_tag'], 'POOL_2')
        self.assertEqual(by_tag.data['count'], 1)
        self.assertEqual(bad_pool.status_code, status.HTTP_400_BAD_REQUEST)

    def test_tag_filter_matches_non_ascii_tags(self):
        make_enquiry(tags=['Türkiye'])
        make_enquiry(email='b@example.com', tags=['Investor'])

        self.client.force_authenticate(self.manager)
        response = self.client.get('/api/enquiries/', {'tag': 'Türkiye'})

        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['tags'], ['Türkiye'])

    def test_patch_edits_working_fields(self):
        enquiry = make_enquiry(assigned_agent=self.agent, status=Enquiry.Status.ASSIGNED)
        lead = make_lead(owner=self.other_agent)
        self.client.force_authenticate(self.agent)

        edited = self.client.patch(f'/api/enquiries/{enquiry.pk}/', {'priority': 'High', 'tags': ['VIP']}, format='json')
        locked = self.client.patch(f'/api/enquiries/{enquiry.pk}/', {'status': 'CLOSED'}, format='json')
        denied = self.client.patch(f'/api/leads/{lead.pk}/', {'description': 'Mine now'}, format='json')

        self.assertEqual(edited.status_code, status.HTTP_200_OK)
        self.assertEqual(edited.data['priority'], 'High')
        self.assertEqual(edited.data['tags'], ['VIP'])
        self.assertEqual(locked.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(denied.status_code, status.HTTP_403_FORBIDDEN)

    def test_convert_endpoint(self):
        enquiry = make_enquiry(assigned_agent=self.agent, status=Enquiry.Status.ASSIGNED)
        self.client.force_authenticate(self.agent)

        response = self.client.post(
            f'/api/enquiries/{enquiry.pk}/convert/',
            {'lead_title': 'Garden villa', 'client': {'nationality': 'German'}},
            format='json',
        )
        again = self.client.post(f'/api/enquiries/{enquiry.pk}/convert/', {'lead_title': 'x'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['client']['nationality'], 'German')
        self.assertEqual(response.data['lead']['owner'], self.agent.pk)
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)

    def test_lost_stage_without_reason_is_400(self):
        lead = make_lead(owner=self.agent)
        self.client.force_authenticate(self.agent)

        response = self.client.post(f'/api/leads/{lead.pk}/stage/', {'stage': 'LOST'}, format='json')
        ok = self.client.post(
            f'/api/leads/{lead.pk}/stage/', {'stage': 'LOST', 'lost_reason': 'No budget'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(ok.status_code, status.HTTP_200_OK)
        self.assertEqual(ok.data['lost_reason'], 'No budget')

    def test_pool_endpoints(self):
        lead = make_lead(owner=self.agent)
        self.client.force_authenticate(self.manager)

        pooled = self.client.post(f'/api/leads/{lead.pk}/pool/', {'pool': 'POOL_3'}, format='json')
        invalid = self.client.post(f'/api/leads/{lead.pk}/pool/', {'pool': 'POOL_0'}, format='json')
        snapshot = self.client.get('/api/pools/')
        removed = self.client.post(f'/api/leads/{lead.pk}/remove_pool/')

        self.assertEqual(pooled.data['pool_tag'], 'POOL_3')
        self.assertIsNone(pooled.data['owner'])
        self.assertEqual(invalid.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(snapshot.data['POOL_3'][0]['id'], lead.pk)
        self.assertIsNone(removed.data['pool_tag'])

    def test_note_delete_endpoint(self):
        enquiry = make_enquiry()
        self.client.force_authenticate(self.agent)
        created = self.client.post(
            f'/api/enquiries/{enquiry.pk}/contact_log/',
            {'contact_type': 'NOTE', 'content': 'Call back Friday'},
            format='json',
        )

        self.client.force_authenticate(self.other_agent)
        denied = self.client.delete(f"/api/notes/{created.data['id']}/")
        self.client.force_authenticate(self.agent)
        deleted = self.client.delete(f"/api/notes/{created.data['id']}/")

        self.assertEqual(created.status_code, status.HTTP_201_CREATED)
        self.assertEqual(denied.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(deleted.status_code, status.HTTP_204_NO_CONTENT)

    def test_create_enquiry_and_lead_endpoints(self):
        self.client.force_authenticate(self.manager)
        enquiry = self.client.post(
            '/api/enquiries/',
            {'first_name': 'Zeynep', 'email': 'zeynep@example.com', 'assigned_agent_id': self.agent.pk},
            format='json',
        )
        client = Client.objects.create(first_name='Omar', email='omar@example.com')
        lead = self.client.post('/api/leads/', {'client_id': client.pk, 'title': 'Loft'}, format='json')

        self.assertEqual(enquiry.status_code, status.HTTP_201_CREATED)
        self.assertEqual(enquiry.data['status'], Enquiry.Status.ASSIGNED)
        self.assertEqual(lead.status_code, status.HTTP_201_CREATED)
        self.assertEqual(lead.data['owner'], self.manager.pk)

    def test_unauthenticated_requests_are_rejected(self):
        response = self.client.get('/api/enquiries/')
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))
