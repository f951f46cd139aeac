from django.apps import AppConfig


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'core'
    verbose_name = 'Accounts, notifications and audit'

    def ready(self):
        from core.logger_service import get_logger
        import core.signals  # noqa: F401
        get_logger('startup').debug("Login receivers registered.")
