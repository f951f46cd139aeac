# core/signals.py
from django.contrib.auth.signals import user_logged_in, user_login_failed
from django.dispatch import receiver

from core.logger_service import get_logger

logger = get_logger()


@receiver(user_logged_in)
def log_user_login(sender, request, user, **kwargs):
    logger.info(f"User {user.pk} ({user.role}) logged in")


@receiver(user_login_failed)
def log_failed_login(sender, credentials, request=None, **kwargs):
    logger.warning(f"Failed login attempt for {credentials.get('username') or credentials.get('email')}")
