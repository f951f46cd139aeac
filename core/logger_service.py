import logging

from django.conf import settings


def get_logger(name=None):
    """Return the project logger, or a child of it when a name is given."""
    base = getattr(settings, 'CRM_LOGGER_NAME', 'crm')
    if name:
        return logging.getLogger(f'{base}.{name}')
    return logging.getLogger(base)
