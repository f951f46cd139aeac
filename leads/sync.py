# leads/sync.py
"""Import of website form submissions stored in the Payload CMS."""
from dataclasses import dataclass
from datetime import timedelta, timezone as dt_timezone

import requests
from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from core.logger_service import get_logger
from core.models import Notification
from core.services import NotificationService
from .models import Enquiry
from .routing import auto_assign_enquiry

logger = get_logger('website_sync')

SUBMISSIONS_PATH = '/api/form-submissions'
SUBMISSIONS_PARAMS = {'limit': 50, 'sort': '-createdAt', 'depth': 1}
DUPLICATE_WINDOW = timedelta(seconds=60)


@dataclass
class SyncResult:
    success: bool
    created: int = 0
    skipped: int = 0
    errors: int = 0
    message: str = ''


def _value(fields, *names):
    lookup = {str(f.get('field', '')).lower(): f.get('value') for f in fields}
    for name in names:
        value = lookup.get(name.lower())
        if value:
            return str(value)
    return ''


def _split_name(full_name):
    parts = full_name.split()
    if not parts:
        return '', ''
    return parts[0], ' '.join(parts[1:])


def extract_contact(submission):
    """Map one submission onto enquiry fields; each website form names its fields differently."""
    form = submission.get('form')
    form_id = form.get('id') if isinstance(form, dict) else form
    fields = submission.get('submissionData') or []
    message = ''
    source_url = ''

    if form_id == 1:
        first_name, last_name = _split_name(_value(fields, 'full-name', 'fullname', 'name'))
        message = _value(fields, 'message')
    elif form_id == 2:
        first_name = _value(fields, 'firstname', 'first-name', 'name')
        last_name = _value(fields, 'surname', 'last-name', 'lastname')
        message = _value(fields, 'message')
        source_url = _value(fields, 'pageURL', 'page-url')
    elif form_id == 3:
        first_name = _value(fields, 'name', 'firstname', 'first-name')
        last_name = _value(fields, 'surname', 'last-name', 'lastname')
    else:
        first_name = _value(fields, 'firstname', 'first-name', 'name', 'full-name')
        last_name = _value(fields, 'surname', 'last-name', 'lastname')
        message = _value(fields, 'message')
        source_url = _value(fields, 'pageURL')
        if not last_name and ' ' in first_name.strip():
            first_name, last_name = _split_name(first_name)

    return {
        'first_name': first_name.strip(),
        'last_name': last_name.strip(),
        'email': _value(fields, 'email').strip().lower(),
        'phone': _value(fields, 'phone').strip(),
        'message': message.strip() or None,
        'source_url': source_url,
    }


class WebsiteSubmissionSync:
    def __init__(self, base_url=None, api_key=None, timeout=None, session=None):
        self.base_url = (base_url or settings.PAYLOAD_CMS_URL).rstrip('/')
        self.api_key = api_key if api_key is not None else settings.PAYLOAD_CMS_API_KEY
        self.timeout = timeout or settings.WEBSITE_SYNC_TIMEOUT
        self.session = session or requests

    def fetch_submissions(self):
        url = f'{self.base_url}{SUBMISSIONS_PATH}'
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f'users API-Key {self.api_key}'

        response = self.session.get(url, params=SUBMISSIONS_PARAMS, headers=headers, timeout=self.timeout)
        if not response.ok:
            logger.warning(f"Authenticated fetch returned {response.status_code}, retrying without credentials")
            response = self.session.get(url, params=SUBMISSIONS_PARAMS, timeout=self.timeout)
            response.raise_for_status()
        return response.json().get('docs', [])

    @staticmethod
    def reference(submission_id):
        return f'submission:{submission_id}'

    @classmethod
    def is_duplicate(cls, submission_id, email, submitted_at):
        # the reference is always the last token of source_url
        reference = cls.reference(submission_id)
        if Enquiry.objects.filter(Q(source_url=reference) | Q(source_url__endswith=f' | {reference}')).exists():
            return True
        if submitted_at is None:
            return False
        return Enquiry.objects.filter(
            email=email,
            source=Enquiry.Source.WEBSITE_FORM,
            created_at__gte=submitted_at - DUPLICATE_WINDOW,
            created_at__lte=submitted_at + DUPLICATE_WINDOW,
        ).exists()

    def import_submission(self, submission):
        """Create an enquiry for one submission. Returns the enquiry, or None when skipped."""
        contact = extract_contact(submission)
        if not contact['first_name'] or not contact['email']:
            return None

        submission_id = submission.get('id')
        submitted_at = parse_datetime(submission.get('createdAt') or '')
        if submitted_at is not None and timezone.is_naive(submitted_at):
            submitted_at = timezone.make_aware(submitted_at, dt_timezone.utc)
        if self.is_duplicate(submission_id, contact['email'], submitted_at):
            return None

        reference = self.reference(submission_id)
        source_url = f"{contact['source_url']} | {reference}" if contact['source_url'] else reference
        with transaction.atomic():
            enquiry = Enquiry.objects.create(
                first_name=contact['first_name'],
                last_name=contact['last_name'] or '-',
                email=contact['email'],
                phone=contact['phone'] or '-',
                message=contact['message'],
                source=Enquiry.Source.WEBSITE_FORM,
                source_url=source_url,
                status=Enquiry.Status.NEW,
                segment='Buyer',
                priority='Medium',
            )
        auto_assign_enquiry(enquiry)
        return enquiry

    def run(self, actor):
        try:
            submissions = self.fetch_submissions()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to fetch website submissions: {str(e)}")
            return SyncResult(success=False, message=f'Failed to connect to website CMS: {e}')

        result = SyncResult(success=True)
        for submission in submissions:
            try:
                enquiry = self.import_submission(submission)
            except Exception as e:
                logger.error(f"Failed to import submission {submission.get('id')}: {str(e)}", exc_info=True)
                result.errors += 1
                continue
            if enquiry is None:
                result.skipped += 1
            else:
                result.created += 1

        if result.created:
            NotificationService.notify_super_admins(
                Notification.Type.SYSTEM_ALERT,
                f'Synced {result.created} Website Enquiries',
                f'{result.created} new enquiries imported from the website by {actor.first_name or actor.username}.',
                '/clients/enquiries',
            )
            result.message = f'Successfully synced {result.created} new enquiries'
        else:
            result.message = f'No new enquiries found ({result.skipped} already synced)'
        logger.info(f"Website sync: {result.created} created, {result.skipped} skipped, {result.errors} errors")
        return result
