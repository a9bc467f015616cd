"""
Store contract shared by the in-memory and database-backed implementations.

Both stores expose the same operations, publish the same events and compute
waiting-time estimates with the helpers below.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from django.conf import settings

from notifications import events
from notifications.hub import hub as default_hub
from services.utils import parse_ticket_code

from .exceptions import TicketNotFoundError
from .serializers import ticket_to_dict, window_to_dict

logger = logging.getLogger(__name__)

DEMO_TICKETS_PER_SERVICE = 5


@dataclass
class Transition:
    """Outcome of a window operation: the touched records plus fresh display rows."""

    ticket: Any
    display: list = field(default_factory=list)
    window: Any = None
    source: Any = None
    target: Any = None


def average_service_seconds(durations):
    """Rolling average of service durations, floored; default when there is no history."""
    samples = [d for d in durations if d is not None and d >= 0]
    if not samples:
        return float(settings.QUEUE_DEFAULT_SERVICE_SECONDS)
    avg = sum(samples) / len(samples)
    return max(avg, float(settings.QUEUE_MIN_SERVICE_SECONDS))


def estimate_wait_seconds(position: int, avg_seconds: float) -> int:
    return int(round(position * avg_seconds))


def ticket_lookup_key(code):
    """Normalise a ticket code to ``(SERVICE, number)`` before looking it up.

    Anything that is not ``<service>-<digits>`` cannot name a ticket, so it is
    reported as not found without touching the store.
    """
    try:
        service, number = parse_ticket_code(code)
    except ValueError:
        raise TicketNotFoundError(code)
    return service.upper(), number


def ticket_status_payload(ticket, position, avg_seconds):
    """Body of ``GET /api/tickets/<code>``."""
    estimate = None
    if position is not None and avg_seconds is not None:
        estimate = estimate_wait_seconds(position, avg_seconds)
    return {
        'ticket': ticket_to_dict(ticket),
        'positionInQueue': position,
        'estimatedWaitSeconds': estimate,
    }


class BaseQueueStore:
    """Operations every store provides.

    Window operations raise QueueError subclasses when a precondition fails;
    ``call_next`` returns None when the service queue is empty.
    """

    backend = 'base'

    def __init__(self, hub=None):
        self.hub = hub if hub is not None else default_hub

    # -------------------- operations --------------------

    def create_ticket(self, service, notes=None, owner_name=None, woreda=None):
        raise NotImplementedError

    def list_windows(self):
        raise NotImplementedError

    def call_next(self, window_id, service=None):
        raise NotImplementedError

    def recall(self, window_id, reason=None):
        raise NotImplementedError

    def complete(self, window_id):
        raise NotImplementedError

    def skip(self, window_id, reason=None):
        raise NotImplementedError

    def transfer(self, window_id, target_window_id):
        raise NotImplementedError

    def display_rows(self):
        raise NotImplementedError

    def ticket_status(self, code):
        raise NotImplementedError

    def snapshot(self):
        raise NotImplementedError

    def seed_demo(self):
        """Create a handful of waiting tickets for every service."""
        created = 0
        for service in self.services:
            for _ in range(DEMO_TICKETS_PER_SERVICE):
                self.create_ticket(service)
                created += 1
        logger.info("Seeded %d demo tickets", created)
        return created

    @property
    def services(self):
        raise NotImplementedError

    # -------------------- event helpers --------------------

    def _publish_ticket(self, event_type, ticket):
        self.hub.publish(event_type, ticket_to_dict(ticket))

    def _publish_windows(self, *windows):
        for window in windows:
            self.hub.publish(events.WINDOW_UPDATED, window_to_dict(window))

    def _publish_display(self):
        rows = self.display_rows()
        self.hub.publish(events.DISPLAY_UPDATED, rows)
        return rows
