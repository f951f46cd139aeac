from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from core.models import AuditLog, CustomUser, Notification
from core.permissions import POLICY, is_allowed, owns_record
from core.services import AuditService, NotificationService

Role = CustomUser.Role


class PolicyTableTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.users = {
            role: User.objects.create_user(username=role.lower(), email=f'{role.lower()}@example.com', role=role)
            for role in Role.values
        }

    def test_super_admin_is_allowed_everything(self):
        for operation in POLICY:
            self.assertTrue(is_allowed(self.users[Role.SUPER_ADMIN], operation), operation)

    def test_viewer_is_read_only(self):
        viewer = self.users[Role.VIEWER]
        for operation in POLICY:
            expected = operation in ('enquiry.view', 'lead.view', 'pool.view')
            self.assertEqual(is_allowed(viewer, operation), expected, operation)

    def test_bulk_assign_and_sync_gates(self):
        self.assertFalse(is_allowed(self.users[Role.ADMIN], 'enquiry.bulk_assign'))
        self.assertTrue(is_allowed(self.users[Role.SALES_MANAGER], 'enquiry.sync_website'))
        self.assertFalse(is_allowed(self.users[Role.SALES_AGENT], 'enquiry.sync_website'))

    def test_inactive_users_are_denied(self):
        admin = self.users[Role.SUPER_ADMIN]
        admin.is_active = False
        self.assertFalse(is_allowed(admin, 'enquiry.view'))

    def test_unknown_operation_raises(self):
        with self.assertRaises(KeyError):
            is_allowed(self.users[Role.ADMIN], 'enquiry.teleport')

    def test_owns_record(self):
        agent = self.users[Role.SALES_AGENT]
        self.assertTrue(owns_record(agent, agent.pk, allow_unowned=False))
        self.assertFalse(owns_record(agent, agent.pk + 100, allow_unowned=True))
        self.assertTrue(owns_record(agent, None, allow_unowned=True))
        self.assertFalse(owns_record(agent, None, allow_unowned=False))


class SideEffectServiceTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.boss = User.objects.create_user(username='boss', email='boss@example.com', role=Role.SUPER_ADMIN)
        self.second_boss = User.objects.create_user(username='boss2', email='boss2@example.com', role=Role.SUPER_ADMIN)
        User.objects.create_user(username='retired', email='retired@example.com', role=Role.SUPER_ADMIN, is_active=False)
        self.agent = User.objects.create_user(username='agent', email='agent@example.com', role=Role.SALES_AGENT)

    def test_notify_super_admins_skips_inactive(self):
        count = NotificationService.notify_super_admins(Notification.Type.SYSTEM_ALERT, 'Heads up', 'Body')
        self.assertEqual(count, 2)
        self.assertEqual(Notification.objects.count(), 2)

    def test_notify_user_and_admins_does_not_duplicate(self):
        NotificationService.notify_user_and_admins(self.boss, Notification.Type.SYSTEM_ALERT, 'Hi', 'Body')
        self.assertEqual(Notification.objects.filter(user=self.boss).count(), 1)
        self.assertEqual(Notification.objects.count(), 2)

    def test_notify_without_user_is_ignored(self):
        self.assertIsNone(NotificationService.notify(None, Notification.Type.SYSTEM_ALERT, 'x', 'y'))

    def test_notification_failure_is_logged_not_raised(self):
        with mock.patch('core.services.Notification.objects.create', side_effect=DatabaseError('disk full')):
            with self.assertLogs('crm.side_effects', level='ERROR'):
                result = NotificationService.notify(self.agent, Notification.Type.LEAD_ASSIGNED, 'x', 'y')
        self.assertIsNone(result)
        # The surrounding transaction is still usable.
        self.assertEqual(CustomUser.objects.count(), 4)

    def test_audit_log_records_actor_and_changes(self):
        entry = AuditService.log(self.agent, AuditLog.Action.UPDATE, 'Enquiry', 42, {'status': 'CONTACTED'})
        self.assertEqual(entry.user, self.agent)
        self.assertEqual(entry.entity_id, '42')
        self.assertEqual(entry.changes, {'status': 'CONTACTED'})

    def test_audit_failure_is_swallowed(self):
        with mock.patch('core.services.AuditLog.objects.create', side_effect=DatabaseError('locked')):
            self.assertIsNone(AuditService.log(self.agent, AuditLog.Action.DELETE, 'Note', 1))
        self.assertFalse(AuditLog.objects.exists())


class VersioningTests(TestCase):
    def test_save_bumps_version(self):
        user = get_user_model().objects.create_user(username='agent', email='agent@example.com')
        notification = Notification.objects.create(user=user, type=Notification.Type.SYSTEM_ALERT, title='t', message='m')
        self.assertEqual(notification.version, 1)

        notification.is_read = True
        with self.assertLogs('crm', level='INFO') as logs:
            notification.save()

        self.assertEqual(notification.version, 2)
        self.assertTrue(any('is_read changed from False to True' in line for line in logs.output))


class AccountApiTests(APITestCase):
    def setUp(self):
        User = get_user_model()
        self.agent = User.objects.create_user(
            username='agent', email='agent@example.com', password='s3cret-pass', role=Role.SALES_AGENT
        )
        self.manager = User.objects.create_user(
            username='manager', email='manager@example.com', password='s3cret-pass', role=Role.SALES_MANAGER
        )

    def test_login_returns_tokens_and_role(self):
        response = self.client.post(
            '/api/auth/login/', {'username': 'agent', 'password': 's3cret-pass'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertEqual(response.data['role'], Role.SALES_AGENT)

    def test_login_with_wrong_password(self):
        response = self.client.post('/api/auth/login/', {'username': 'agent', 'password': 'nope'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_user_directory_filters_by_role(self):
        self.client.force_authenticate(self.agent)
        response = self.client.get('/api/users/', {'roles': 'sales_manager'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([u['username'] for u in response.data], ['manager'])

    def test_notifications_are_private_and_can_be_marked_read(self):
        mine = Notification.objects.create(user=self.agent, type=Notification.Type.SYSTEM_ALERT, title='a', message='a')
        Notification.objects.create(user=self.agent, type=Notification.Type.SYSTEM_ALERT, title='b', message='b')
        theirs = Notification.objects.create(user=self.manager, type=Notification.Type.SYSTEM_ALERT, title='c', message='c')

        self.client.force_authenticate(self.agent)
        listed = self.client.get('/api/notifications/')
        read_one = self.client.post(f'/api/notifications/{mine.pk}/mark_read/')
        foreign = self.client.post(f'/api/notifications/{theirs.pk}/mark_read/')
        read_all = self.client.post('/api/notifications/mark_all_read/')

        self.assertEqual(len(listed.data), 2)
        self.assertEqual(read_one.status_code, status.HTTP_200_OK)
        self.assertEqual(foreign.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(read_all.data['updated'], 1)
        theirs.refresh_from_db()
        self.assertFalse(theirs.is_read)
