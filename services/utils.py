import logging

from django.conf import settings

logger = logging.getLogger(__name__)

CODE_DIGITS = 3


def configured_services():
    """Return the configured service codes in display order."""
    return list(settings.QUEUE_SERVICES)


def resolve_service(value, services=None):
    """Map a requested service code onto a configured one.

    Unknown or missing values fall back to the first configured service
    instead of being rejected.
    """
    services = list(services) if services is not None else configured_services()
    if not services:
        raise ValueError('No services configured')
    if value in services:
        return value
    if isinstance(value, str) and value.upper() in services:
        return value.upper()
    if value not in (None, ''):
        logger.warning('Unknown service %r, falling back to %s', value, services[0])
    return services[0]


def format_ticket_code(service, number):
    """Build the display code, e.g. ``S1-005``."""
    return f'{service}-{number:0{CODE_DIGITS}d}'


def parse_ticket_code(code):
    """Split a display code back into ``(service, number)``.

    Raises ValueError when the code does not follow the ``<service>-<digits>``
    format.
    """
    service, sep, digits = (code or '').strip().rpartition('-')
    if not sep or not service or not digits.isdigit() or len(digits) < CODE_DIGITS:
        raise ValueError(f'Invalid ticket code: {code!r}')
    return service, int(digits)
