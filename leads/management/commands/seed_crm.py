from django.core.management.base import BaseCommand
from django.db import transaction

from core.models import CustomUser
from leads.models import Enquiry
from leads.ownership import POOL_NUMBERS

DEMO_USERS = [
    ('superadmin', 'superadmin@example.com', CustomUser.Role.SUPER_ADMIN, CustomUser.Office.HEAD_OFFICE),
    ('admin', 'admin@example.com', CustomUser.Role.ADMIN, CustomUser.Office.HEAD_OFFICE),
    ('manager', 'manager@example.com', CustomUser.Role.SALES_MANAGER, CustomUser.Office.UAE),
    ('agent', 'agent@example.com', CustomUser.Role.SALES_AGENT, CustomUser.Office.TURKEY),
    ('viewer', 'viewer@example.com', CustomUser.Role.VIEWER, CustomUser.Office.UK),
]


class Command(BaseCommand):
    help = 'Create demo agents for every role and one enquiry in each pool. Safe to run repeatedly.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--password',
            default='changeme123',
            help='Password given to newly created demo users.',
        )

    def handle(self, *args, **options):
        created_users = 0
        created_enquiries = 0

        with transaction.atomic():
            for username, email, role, office in DEMO_USERS:
                user, created = CustomUser.objects.get_or_create(
                    username=username,
                    defaults={'email': email, 'role': role, 'office': office, 'first_name': username.title()},
                )
                if created:
                    user.set_password(options['password'])
                    user.save(update_fields=['password'])
                    created_users += 1

            for number in POOL_NUMBERS:
                email = f'pool{number}.prospect@example.com'
                _, created = Enquiry.objects.get_or_create(
                    email=email,
                    defaults={
                        'first_name': 'Pool',
                        'last_name': f'Prospect {number}',
                        'source': Enquiry.Source.PHONE_CALL,
                        'pool': number,
                        'tags': ['Investor'] if number == 1 else [],
                        'message': f'Demo enquiry waiting in pool {number}',
                    },
                )
                created_enquiries += int(created)

        self.stdout.write(self.style.SUCCESS(
            f'Seed complete: {created_users} users and {created_enquiries} enquiries created.'
        ))
