"""
DatabaseQueueStore: ticket/window state kept in the relational database.

Every transition runs inside ``transaction.atomic()`` with row locks:
- ticket numbers come from the locked ``Service`` counter row
- call-next picks the oldest waiting ticket with ``SKIP LOCKED`` and claims
  it with a conditional update, so two windows never bind the same ticket
- complete/skip/transfer lock the window row(s) and re-read the assignment

Events are published only after the transaction has committed.
"""
import logging

from django.conf import settings
from django.db import transaction
from django.db.models import Max, Q
from django.utils import timezone

from notifications import events
from services.models import Service
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
from .models import ACTIVE_STATUSES, DONE, SERVING, SKIPPED, TRANSFERRED, WAITING, Ticket, Window
from .serializers import display_row, ticket_to_dict, window_to_dict

logger = logging.getLogger(__name__)


def ensure_layout(window_count=None, services=None):
    """Create the configured window and service counter rows if missing."""
    count = window_count or settings.QUEUE_WINDOW_COUNT
    for i in range(1, count + 1):
        Window.objects.get_or_create(pk=i, defaults={'name': f'Window {i}'})
    for code in services or configured_services():
        Service.objects.get_or_create(code=code, defaults={'name': code})


class DatabaseQueueStore(BaseQueueStore):
    backend = 'database'

    @property
    def services(self):
        return configured_services()

    # -------------------- tickets --------------------

    def issue_token(self, service):
        """Allocate the next number for a service under a row lock.

        Must run inside a transaction. Uses the larger of the stored counter
        and the highest existing number, so numbers are never reused even if
        the counter row was reset.
        """
        svc, _ = Service.objects.select_for_update().get_or_create(
            code=service, defaults={'name': service}
        )
        agg = Ticket.objects.filter(service=service).aggregate(max_number=Max('number'))
        base = max(svc.last_token_number or 0, agg.get('max_number') or 0)
        svc.last_token_number = base + 1
        svc.save(update_fields=['last_token_number'])
        return svc.last_token_number

    def create_ticket(self, service, notes=None, owner_name=None, woreda=None):
        svc = resolve_service(service, self.services)
        with transaction.atomic():
            number = self.issue_token(svc)
            ticket = Ticket.objects.create(
                service=svc,
                number=number,
                code=format_ticket_code(svc, number),
                status=WAITING,
                notes=notes,
                owner_name=owner_name,
                woreda=woreda,
            )
        logger.info("Created ticket %s", ticket.code)

        self._publish_ticket(events.TICKET_CREATED, ticket)
        self._publish_display()
        return ticket

    # -------------------- windows --------------------

    def list_windows(self):
        return list(Window.objects.order_by('id'))

    def get_window(self, window_id):
        try:
            return Window.objects.get(pk=window_id)
        except Window.DoesNotExist:
            raise WindowNotFoundError(window_id)

    def _lock_window(self, window_id):
        try:
            return Window.objects.select_for_update().get(pk=window_id)
        except Window.DoesNotExist:
            raise WindowNotFoundError(window_id)

    def _claim_next(self, service, window, now):
        """Bind the oldest waiting ticket of ``service`` to ``window``; None if there is none."""
        waiting = (
            Ticket.objects.select_for_update(skip_locked=True)
            .filter(service=service, status=WAITING)
            .order_by('created_at', 'number')
        )
        lost = []
        while True:
            candidate = waiting.exclude(pk__in=lost).first()
            if candidate is None:
                return None
            claimed = Ticket.objects.filter(pk=candidate.pk, status=WAITING).update(
                status=SERVING, window=window, service_start_time=now
            )
            if claimed:
                candidate.refresh_from_db()
                return candidate
            # Claimed by another window between the read and the update
            logger.info("Ticket %s was taken by another window, trying the next one", candidate.code)
            lost.append(candidate.pk)

    def call_next(self, window_id, service=None):
        svc = resolve_service(service, self.services)
        finished = None
        with transaction.atomic():
            window = self._lock_window(window_id)
            now = timezone.now()
            ticket = self._claim_next(svc, window, now)
            if ticket is None:
                return None
            if window.current_ticket_id:
                # The window moves on; whatever it was serving is done
                finished = self._finish(window.current_ticket_id, window, DONE, now)
            window.current_ticket = ticket
            window.busy = True
            window.updated_at = now
            window.save(update_fields=['current_ticket', 'busy', 'updated_at'])
        logger.info("Window %s called %s", window.id, ticket.code)

        self._publish_windows(window)
        if finished is not None:
            self._publish_ticket(events.TICKET_UPDATED, finished)
        self._publish_ticket(events.TICKET_UPDATED, ticket)
        rows = self._publish_display()
        return Transition(ticket=ticket, window=window, display=rows)

    def recall(self, window_id, reason=None):
        window = self.get_window(window_id)
        ticket = window.current_ticket
        if ticket is None or ticket.status not in ACTIVE_STATUSES:
            logger.warning("Window %s has no active ticket", window.id)
            raise NoActiveTicketError(window.id)
        logger.info("Window %s recalled %s (reason: %s)", window.id, ticket.code, reason or '-')
        rows = self._publish_display()
        return Transition(ticket=ticket, window=window, display=rows)

    def _finish(self, ticket_id, window, status, now, reason=None):
        """Conditionally close the ticket assigned to ``window``; None if it was not active."""
        fields = {'status': status, 'service_end_time': now}
        if reason:
            fields['skip_reason'] = reason
        updated = Ticket.objects.filter(
            pk=ticket_id, window=window, status__in=ACTIVE_STATUSES
        ).update(**fields)
        if not updated:
            return None
        return Ticket.objects.get(pk=ticket_id)

    def _close_active(self, window_id, status, reason=None):
        with transaction.atomic():
            window = self._lock_window(window_id)
            ticket = None
            if window.current_ticket_id:
                ticket = self._finish(window.current_ticket_id, window, status, timezone.now(), reason)
            if ticket is None:
                logger.warning("Window %s has no active ticket", window.id)
                raise NoActiveTicketError(window.id)
            window.current_ticket = None
            window.busy = False
            window.updated_at = timezone.now()
            window.save(update_fields=['current_ticket', 'busy', 'updated_at'])
        logger.info("Window %s marked %s as %s", window.id, ticket.code, status)

        self._publish_windows(window)
        self._publish_ticket(events.TICKET_UPDATED, ticket)
        rows = self._publish_display()
        return Transition(ticket=ticket, window=window, display=rows)

    def complete(self, window_id):
        return self._close_active(window_id, DONE)

    def skip(self, window_id, reason=None):
        return self._close_active(window_id, SKIPPED, reason=reason)

    def transfer(self, window_id, target_window_id):
        with transaction.atomic():
            # Lock both rows in id order so opposite transfers cannot deadlock
            locked = {
                w.pk: w
                for w in Window.objects.select_for_update()
                .filter(pk__in=[window_id, target_window_id])
                .order_by('pk')
            }
            source = locked.get(window_id)
            target = locked.get(target_window_id)
            if source is None or target is None:
                raise TransferTargetNotFoundError(target_window_id if source else window_id)
            if source.pk == target.pk:
                raise InvalidTransferError(source.pk, target.pk, 'Cannot transfer to the same window')
            ticket_id = source.current_ticket_id
            if ticket_id is None:
                raise NoActiveTicketError(source.pk, 'No active ticket to transfer')
            if target.current_ticket_id:
                raise InvalidTransferError(source.pk, target.pk, 'Target window is busy')

            updated = Ticket.objects.filter(
                pk=ticket_id, window=source, status__in=ACTIVE_STATUSES
            ).update(status=TRANSFERRED, window=target)
            if not updated:
                raise NoActiveTicketError(source.pk, 'No active ticket to transfer')

            now = timezone.now()
            # Clear the source first: a ticket may be assigned to one window only
            source.current_ticket = None
            source.busy = False
            source.updated_at = now
            source.save(update_fields=['current_ticket', 'busy', 'updated_at'])
            target.current_ticket_id = ticket_id
            target.busy = True
            target.updated_at = now
            target.save(update_fields=['current_ticket', 'busy', 'updated_at'])
            ticket = Ticket.objects.get(pk=ticket_id)
        logger.info("Transferred %s from window %s to window %s", ticket.code, source.pk, target.pk)

        self._publish_windows(source, target)
        self._publish_ticket(events.TICKET_UPDATED, ticket)
        rows = self._publish_display()
        return Transition(ticket=ticket, source=source, target=target, display=rows)

    # -------------------- read models --------------------

    def display_rows(self):
        rows = []
        for svc in self.services:
            serving = (
                Window.objects.select_related('current_ticket')
                .filter(current_ticket__service=svc, current_ticket__status__in=ACTIVE_STATUSES)
                .order_by('-updated_at', 'id')
                .first()
            )
            next_code = (
                Ticket.objects.filter(service=svc, status=WAITING)
                .order_by('created_at', 'number')
                .values_list('code', flat=True)
                .first()
            )
            if serving:
                rows.append(display_row(svc, serving.current_ticket.code, serving.id, next_code))
            else:
                rows.append(display_row(svc, next_code=next_code))
        return rows

    def ticket_status(self, code):
        service, number = ticket_lookup_key(code)
        ticket = Ticket.objects.filter(service__iexact=service, number=number).first()
        if ticket is None:
            raise TicketNotFoundError(code)
        if ticket.status != WAITING:
            return ticket_status_payload(ticket, None, None)
        ahead = (
            Ticket.objects.filter(service=ticket.service, status=WAITING)
            .filter(
                Q(created_at__lt=ticket.created_at)
                | Q(created_at=ticket.created_at, number__lt=ticket.number)
            )
            .count()
        )
        avg = average_service_seconds(self._recent_durations(ticket.service))
        return ticket_status_payload(ticket, ahead + 1, avg)

    def _recent_durations(self, service):
        finished = (
            Ticket.objects.filter(
                service=service,
                status=DONE,
                service_start_time__isnull=False,
                service_end_time__isnull=False,
            )
            .order_by('-service_end_time')
            .values_list('service_start_time', 'service_end_time')[:settings.QUEUE_ETA_SAMPLE_SIZE]
        )
        return [(end - start).total_seconds() for start, end in finished]

    def snapshot(self):
        services = {}
        counters = {s.code: s for s in Service.objects.filter(code__in=self.services)}
        for svc in self.services:
            counter = counters.get(svc)
            waiting_ids = (
                Ticket.objects.filter(service=svc, status=WAITING)
                .order_by('created_at', 'number')
                .values_list('id', flat=True)
            )
            services[svc] = {
                'nextNumber': counter.next_number if counter else 1,
                'waitingIds': [str(pk) for pk in waiting_ids],
            }
        active = Ticket.objects.filter(status__in=(WAITING,) + ACTIVE_STATUSES)
        return {
            'windows': [window_to_dict(w) for w in self.list_windows()],
            'services': services,
            'tickets': {str(t.id): ticket_to_dict(t) for t in active},
        }
