"""
InMemoryQueueStore: process-local ticket/window state.

All collections live on the store instance and are only touched while
holding ``self._lock``; events are published inside the lock so subscribers
see them in the same order the state changed.
"""

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Optional

from django.conf import settings
from django.utils import timezone

from notifications import events
from services.utils import configured_services, format_ticket_code, resolve_service

from .base import (
    BaseQueueStore,
    Transition,
    average_service_seconds,
    ticket_lookup_key,
    ticket_status_payload,
)
from .exceptions import (
    InvalidTransferError,
    NoActiveTicketError,
    TicketNotFoundError,
    TransferTargetNotFoundError,
    WindowNotFoundError,
)
from .models import ACTIVE_STATUSES, DONE, SERVING, SKIPPED, TRANSFERRED, WAITING
from .serializers import display_row, ticket_to_dict, window_to_dict

logger = logging.getLogger(__name__)


@dataclass
class TicketRecord:
    id: str
    service: str
    number: int
    code: str
    status: str = WAITING
    window_id: Optional[int] = None
    created_at: datetime = field(default_factory=timezone.now)
    notes: Optional[str] = None
    owner_name: Optional[str] = None
    woreda: Optional[str] = None
    service_start_time: Optional[datetime] = None
    service_end_time: Optional[datetime] = None
    skip_reason: Optional[str] = None

    @property
    def sort_key(self):
        return (self.created_at, self.number)


@dataclass
class WindowRecord:
    id: int
    name: str
    current_ticket_id: Optional[str] = None
    busy: bool = False
    updated_at: datetime = field(default_factory=timezone.now)

    def assign(self, ticket):
        self.current_ticket_id = ticket.id
        self.busy = True
        self.updated_at = timezone.now()

    def clear(self):
        self.current_ticket_id = None
        self.busy = False
        self.updated_at = timezone.now()


@dataclass
class ServiceQueue:
    next_number: int = 1
    waiting_ids: Deque[str] = field(default_factory=deque)


class InMemoryQueueStore(BaseQueueStore):
    backend = 'memory'

    def __init__(self, hub=None, services=None, window_count=None):
        super().__init__(hub)
        self._lock = threading.RLock()
        self._services = list(services or configured_services())
        count = window_count or settings.QUEUE_WINDOW_COUNT
        self._windows = {
            i: WindowRecord(id=i, name=f"Window {i}") for i in range(1, count + 1)
        }
        self._tickets = {}
        self._codes = {}
        self._queues = {s: ServiceQueue() for s in self._services}

    @property
    def services(self):
        return list(self._services)

    # -------------------- tickets --------------------

    def create_ticket(self, service, notes=None, owner_name=None, woreda=None):
        with self._lock:
            svc = resolve_service(service, self._services)
            q = self._queues[svc]
            number = q.next_number
            q.next_number += 1
            ticket = TicketRecord(
                id=str(uuid.uuid4()),
                service=svc,
                number=number,
                code=format_ticket_code(svc, number),
                notes=notes,
                owner_name=owner_name,
                woreda=woreda,
            )
            self._tickets[ticket.id] = ticket
            self._codes[ticket.code.upper()] = ticket.id
            q.waiting_ids.append(ticket.id)
            logger.info("Created ticket %s", ticket.code)

            self._publish_ticket(events.TICKET_CREATED, ticket)
            self._publish_display()
            return ticket

    def get_ticket(self, ticket_id):
        with self._lock:
            return self._tickets.get(ticket_id)

    def waiting_codes(self, service):
        with self._lock:
            return [self._tickets[tid].code for tid in self._queues[service].waiting_ids]

    # -------------------- windows --------------------

    def list_windows(self):
        with self._lock:
            return [self._windows[i] for i in sorted(self._windows)]

    def get_window(self, window_id):
        window = self._windows.get(window_id)
        if window is None:
            raise WindowNotFoundError(window_id)
        return window

    def _active_ticket(self, window, message=None):
        ticket = self._tickets.get(window.current_ticket_id) if window.current_ticket_id else None
        if ticket is None or ticket.status not in ACTIVE_STATUSES:
            logger.warning("Window %s has no active ticket", window.id)
            raise NoActiveTicketError(window.id, message)
        return ticket

    def call_next(self, window_id, service=None):
        with self._lock:
            window = self.get_window(window_id)
            svc = resolve_service(service, self._services)
            waiting = self._queues[svc].waiting_ids
            if not waiting:
                return None

            finished = None
            if window.current_ticket_id:
                # The window moves on; whatever it was serving is done
                finished = self._tickets[window.current_ticket_id]
                self._finish(finished, DONE)

            ticket = self._tickets[waiting.popleft()]
            ticket.status = SERVING
            ticket.window_id = window.id
            ticket.service_start_time = timezone.now()
            window.assign(ticket)
            logger.info("Window %s called %s", window.id, ticket.code)

            self._publish_windows(window)
            if finished is not None:
                self._publish_ticket(events.TICKET_UPDATED, finished)
            self._publish_ticket(events.TICKET_UPDATED, ticket)
            rows = self._publish_display()
            return Transition(ticket=ticket, window=window, display=rows)

    def recall(self, window_id, reason=None):
        with self._lock:
            window = self.get_window(window_id)
            ticket = self._active_ticket(window)
            logger.info("Window %s recalled %s (reason: %s)", window.id, ticket.code, reason or '-')
            rows = self._publish_display()
            return Transition(ticket=ticket, window=window, display=rows)

    def complete(self, window_id):
        return self._close_active(window_id, DONE)

    def skip(self, window_id, reason=None):
        return self._close_active(window_id, SKIPPED, reason=reason)

    def _finish(self, ticket, status, reason=None):
        ticket.status = status
        ticket.service_end_time = timezone.now()
        if reason:
            ticket.skip_reason = reason

    def _close_active(self, window_id, status, reason=None):
        with self._lock:
            window = self.get_window(window_id)
            ticket = self._active_ticket(window)
            self._finish(ticket, status, reason)
            window.clear()
            logger.info("Window %s marked %s as %s", window.id, ticket.code, status)

            self._publish_windows(window)
            self._publish_ticket(events.TICKET_UPDATED, ticket)
            rows = self._publish_display()
            return Transition(ticket=ticket, window=window, display=rows)

    def transfer(self, window_id, target_window_id):
        with self._lock:
            source = self._windows.get(window_id)
            target = self._windows.get(target_window_id)
            if source is None or target is None:
                raise TransferTargetNotFoundError(target_window_id if source else window_id)
            if source.id == target.id:
                raise InvalidTransferError(source.id, target.id, 'Cannot transfer to the same window')
            ticket = self._active_ticket(source, 'No active ticket to transfer')
            if target.current_ticket_id:
                raise InvalidTransferError(source.id, target.id, 'Target window is busy')

            source.clear()
            target.assign(ticket)
            ticket.status = TRANSFERRED
            ticket.window_id = target.id
            logger.info("Transferred %s from window %s to window %s", ticket.code, source.id, target.id)

            self._publish_windows(source, target)
            self._publish_ticket(events.TICKET_UPDATED, ticket)
            rows = self._publish_display()
            return Transition(ticket=ticket, source=source, target=target, display=rows)

    # -------------------- read models --------------------

    def display_rows(self):
        with self._lock:
            rows = []
            for svc in self._services:
                serving = [
                    (w, self._tickets[w.current_ticket_id])
                    for w in self._windows.values()
                    if w.current_ticket_id and self._tickets[w.current_ticket_id].service == svc
                ]
                serving.sort(key=lambda pair: pair[0].updated_at, reverse=True)
                waiting = self._queues[svc].waiting_ids
                next_code = self._tickets[waiting[0]].code if waiting else None
                if serving:
                    window, ticket = serving[0]
                    rows.append(display_row(svc, ticket.code, window.id, next_code))
                else:
                    rows.append(display_row(svc, next_code=next_code))
            return rows

    def ticket_status(self, code):
        with self._lock:
            ticket_id = self._codes.get(format_ticket_code(*ticket_lookup_key(code)))
            if ticket_id is None:
                raise TicketNotFoundError(code)
            ticket = self._tickets[ticket_id]
            if ticket.status != WAITING:
                return ticket_status_payload(ticket, None, None)
            ahead = sum(
                1
                for tid in self._queues[ticket.service].waiting_ids
                if self._tickets[tid].sort_key < ticket.sort_key
            )
            avg = average_service_seconds(self._recent_durations(ticket.service))
            return ticket_status_payload(ticket, ahead + 1, avg)

    def _recent_durations(self, service):
        finished = [
            t for t in self._tickets.values()
            if t.service == service and t.status == DONE
            and t.service_start_time and t.service_end_time
        ]
        finished.sort(key=lambda t: t.service_end_time, reverse=True)
        return [
            (t.service_end_time - t.service_start_time).total_seconds()
            for t in finished[:settings.QUEUE_ETA_SAMPLE_SIZE]
        ]

    def snapshot(self):
        with self._lock:
            return {
                'windows': [window_to_dict(w) for w in self.list_windows()],
                'services': {
                    svc: {'nextNumber': q.next_number, 'waitingIds': list(q.waiting_ids)}
                    for svc, q in self._queues.items()
                },
                'tickets': {
                    t.id: ticket_to_dict(t)
                    for t in self._tickets.values()
                    if t.status == WAITING or t.status in ACTIVE_STATUSES
                },
            }
