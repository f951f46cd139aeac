from django.core.management.base import BaseCommand, CommandError

from core.models import CustomUser
from leads.services import PipelineService


class Command(BaseCommand):
    help = 'Import recent website form submissions as enquiries.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--as',
            dest='as_user',
            required=True,
            help='Email of the user the sync runs as (must be a super admin, admin or sales manager).',
        )

    def handle(self, *args, **options):
        actor = CustomUser.objects.filter(email__iexact=options['as_user'], is_active=True).first()
        if actor is None:
            raise CommandError(f"No active user with email {options['as_user']}")

        result = PipelineService.sync_website_submissions(actor)
        if not result.success:
            raise CommandError(result.message)

        self.stdout.write(self.style.SUCCESS(result.message))
        self.stdout.write(f"created={result.created} skipped={result.skipped} errors={result.errors}")
