from django.apps import AppConfig


class LeadsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'leads'
    verbose_name = 'Sales pipeline'

    def ready(self):
        from core.logger_service import get_logger
        import leads.signals  # noqa: F401
        get_logger('startup').debug("Pipeline signal receivers registered.")
