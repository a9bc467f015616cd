import threading
from datetime import timedelta
from unittest import mock

import pytest
from django.db import DatabaseError, connection, connections
from django.db.models.query import QuerySet
from django.test import TestCase, TransactionTestCase, override_settings
from django.utils import timezone

from notifications.hub import EventHub
from queue_system.db_store import DatabaseQueueStore, ensure_layout
from queue_system.exceptions import (
    InvalidTransferError,
    NoActiveTicketError,
    TicketNotFoundError,
    TransferTargetNotFoundError,
    WindowNotFoundError,
)
from queue_system.models import SERVING, Ticket, Window
from services.models import Service

from .conftest import drain

QUEUE_SETTINGS = dict(
    QUEUE_SERVICES=['S1', 'S2', 'S3'],
    QUEUE_WINDOW_COUNT=6,
    QUEUE_DEFAULT_SERVICE_SECONDS=300,
    QUEUE_MIN_SERVICE_SECONDS=60,
)


@override_settings(**QUEUE_SETTINGS)
class DatabaseQueueStoreTests(TestCase):

    def setUp(self):
        ensure_layout()
        self.hub = EventHub()
        self.events = self.hub.subscribe()
        self.store = DatabaseQueueStore(hub=self.hub)

    def test_layout_has_windows_and_counters(self):
        self.assertEqual(list(Window.objects.values_list('id', flat=True)), [1, 2, 3, 4, 5, 6])
        self.assertEqual(Window.objects.get(pk=3).name, 'Window 3')
        self.assertTrue(Service.objects.filter(code='S2').exists())

    def test_codes_increase_per_service(self):
        codes = [self.store.create_ticket('S1').code for _ in range(3)]
        self.assertEqual(codes, ['S1-001', 'S1-002', 'S1-003'])
        self.assertEqual(self.store.create_ticket('S2').code, 'S2-001')
        self.assertEqual(Service.objects.get(pk='S1').last_token_number, 3)

    def test_numbers_are_never_reused_after_counter_reset(self):
        self.store.create_ticket('S1')
        self.store.create_ticket('S1')
        Service.objects.filter(pk='S1').update(last_token_number=0)
        self.assertEqual(self.store.create_ticket('S1').code, 'S1-003')

    def test_create_ticket_persists_fields_and_publishes(self):
        t = self.store.create_ticket('nope', notes='n', owner_name='Sara', woreda='12')
        t.refresh_from_db()
        self.assertEqual(t.service, 'S1')
        self.assertEqual(t.status, 'waiting')
        self.assertEqual((t.notes, t.owner_name, t.woreda), ('n', 'Sara', '12'))
        self.assertEqual([e.type for e in drain(self.events)], ['ticket.created', 'display.updated'])

    def test_call_next_on_empty_queue_is_a_noop(self):
        self.assertIsNone(self.store.call_next(1, 'S1'))
        window = Window.objects.get(pk=1)
        self.assertIsNone(window.current_ticket_id)
        self.assertFalse(window.busy)
        self.assertEqual(drain(self.events), [])

    def test_call_next_binds_oldest_waiting_ticket(self):
        first = self.store.create_ticket('S1')
        self.store.create_ticket('S1')
        drain(self.events)

        result = self.store.call_next(2, 'S1')

        first.refresh_from_db()
        self.assertEqual(result.ticket.pk, first.pk)
        self.assertEqual(first.status, 'serving')
        self.assertEqual(first.window_id, 2)
        self.assertIsNotNone(first.service_start_time)
        window = Window.objects.get(pk=2)
        self.assertEqual(window.current_ticket_id, first.pk)
        self.assertTrue(window.busy)
        waiting = list(Ticket.objects.filter(status='waiting').values_list('code', flat=True))
        self.assertEqual(waiting, ['S1-002'])
        self.assertEqual(
            [e.type for e in drain(self.events)],
            ['window.updated', 'ticket.updated', 'display.updated'],
        )

    def test_call_next_unknown_window(self):
        self.store.create_ticket('S1')
        with self.assertRaises(WindowNotFoundError):
            self.store.call_next(99, 'S1')
        self.assertEqual(Ticket.objects.get().status, 'waiting')

    def test_call_next_completes_previous_ticket(self):
        first = self.store.create_ticket('S1')
        second = self.store.create_ticket('S1')
        self.store.call_next(1, 'S1')
        self.store.call_next(1, 'S1')
        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.status, 'done')
        self.assertIsNotNone(first.service_end_time)
        self.assertEqual(second.status, 'serving')
        self.assertEqual(Window.objects.get(pk=1).current_ticket_id, second.pk)

    def test_one_waiting_ticket_two_windows(self):
        self.store.create_ticket('S1')
        first = self.store.call_next(1, 'S1')
        second = self.store.call_next(2, 'S1')
        self.assertIsNotNone(first)
        self.assertIsNone(second)
        self.assertFalse(Window.objects.get(pk=2).busy)

    def test_ticket_claimed_between_select_and_update_is_not_bound_twice(self):
        ticket = self.store.create_ticket('S1')
        original_first = QuerySet.first

        def first_then_steal(qs):
            found = original_first(qs)
            if found is not None and qs.model is Ticket:
                # Another window wins the race for this row
                Ticket.objects.filter(pk=found.pk).update(status=SERVING, window_id=2)
            return found

        with mock.patch.object(QuerySet, 'first', first_then_steal):
            result = self.store.call_next(1, 'S1')

        self.assertIsNone(result)
        self.assertFalse(Window.objects.get(pk=1).busy)
        ticket.refresh_from_db()
        self.assertEqual(ticket.window_id, 2)

    def test_failed_create_rolls_back_counter_and_publishes_nothing(self):
        with mock.patch.object(Ticket.objects, 'create', side_effect=DatabaseError('insert failed')):
            with self.assertRaises(DatabaseError):
                self.store.create_ticket('S1')
        self.assertEqual(Service.objects.get(pk='S1').last_token_number, 0)
        self.assertEqual(drain(self.events), [])
        self.assertEqual(self.store.create_ticket('S1').code, 'S1-001')

    def test_lost_claim_moves_on_to_the_next_waiting_ticket(self):
        first = self.store.create_ticket('S1')
        second = self.store.create_ticket('S1')
        original_first = QuerySet.first
        stolen = []

        def steal_once(qs):
            found = original_first(qs)
            if found is not None and qs.model is Ticket and not stolen:
                stolen.append(found.pk)
                Ticket.objects.filter(pk=found.pk).update(status=SERVING, window_id=2)
            return found

        with mock.patch.object(QuerySet, 'first', steal_once):
            result = self.store.call_next(1, 'S1')

        self.assertEqual(stolen, [first.pk])
        self.assertEqual(result.ticket.pk, second.pk)
        self.assertEqual(Window.objects.get(pk=1).current_ticket_id, second.pk)

    def test_recall(self):
        with self.assertRaises(NoActiveTicketError):
            self.store.recall(1)
        with self.assertRaises(WindowNotFoundError):
            self.store.recall(77)
        t = self.store.create_ticket('S1')
        self.store.call_next(1, 'S1')
        drain(self.events)
        result = self.store.recall(1, reason='again')
        self.assertEqual(result.ticket.pk, t.pk)
        self.assertEqual([e.type for e in drain(self.events)], ['display.updated'])

    def test_complete(self):
        t = self.store.create_ticket('S1')
        self.store.call_next(1, 'S1')
        result = self.store.complete(1)
        t.refresh_from_db()
        self.assertEqual(t.status, 'done')
        self.assertIsNotNone(t.service_end_time)
        self.assertFalse(result.window.busy)
        self.assertIsNone(Window.objects.get(pk=1).current_ticket_id)

    def test_skip_stores_reason(self):
        t = self.store.create_ticket('S1')
        self.store.call_next(1, 'S1')
        self.store.skip(1, reason='left the building')
        t.refresh_from_db()
        self.assertEqual(t.status, 'skipped')
        self.assertEqual(t.skip_reason, 'left the building')
        self.assertFalse(Window.objects.get(pk=1).busy)

    def test_complete_and_skip_without_active_ticket(self):
        t = self.store.create_ticket('S1')
        drain(self.events)
        for operation in (self.store.complete, self.store.skip):
            with self.assertRaises(NoActiveTicketError):
                operation(1)
        t.refresh_from_db()
        self.assertEqual(t.status, 'waiting')
        self.assertFalse(Window.objects.get(pk=1).busy)
        self.assertEqual(drain(self.events), [])

    def test_transfer(self):
        t = self.store.create_ticket('S2')
        self.store.call_next(1, 'S2')
        drain(self.events)

        result = self.store.transfer(1, 5)

        t.refresh_from_db()
        self.assertEqual(t.status, 'transferred')
        self.assertEqual(t.window_id, 5)
        source = Window.objects.get(pk=1)
        target = Window.objects.get(pk=5)
        self.assertIsNone(source.current_ticket_id)
        self.assertFalse(source.busy)
        self.assertEqual(target.current_ticket_id, t.pk)
        self.assertTrue(target.busy)
        self.assertEqual(result.target.pk, 5)
        self.assertEqual(
            [e.type for e in drain(self.events)],
            ['window.updated', 'window.updated', 'ticket.updated', 'display.updated'],
        )

        self.store.complete(5)
        t.refresh_from_db()
        self.assertEqual(t.status, 'done')

    def test_transfer_preconditions(self):
        with self.assertRaises(TransferTargetNotFoundError):
            self.store.transfer(1, 42)
        with self.assertRaises(NoActiveTicketError):
            self.store.transfer(1, 2)
        self.store.create_ticket('S1')
        self.store.create_ticket('S1')
        self.store.call_next(1, 'S1')
        with self.assertRaises(InvalidTransferError):
            self.store.transfer(1, 1)
        self.store.call_next(2, 'S1')
        with self.assertRaises(InvalidTransferError):
            self.store.transfer(1, 2)

    def test_display_rows(self):
        self.store.create_ticket('S1')
        self.store.create_ticket('S1')
        self.store.create_ticket('S3')
        self.store.call_next(4, 'S1')
        self.assertEqual(self.store.display_rows(), [
            {'service': 'S1', 'nowServing': {'code': 'S1-001', 'windowId': 4}, 'next': 'S1-002'},
            {'service': 'S2', 'nowServing': {'code': None, 'windowId': None}, 'next': None},
            {'service': 'S3', 'nowServing': {'code': None, 'windowId': None}, 'next': 'S3-001'},
        ])

    def test_ticket_status_position_and_estimate(self):
        for _ in range(2):
            self.store.create_ticket('S1')
            self.store.call_next(1, 'S1')
            done = self.store.complete(1).ticket
            Ticket.objects.filter(pk=done.pk).update(
                service_start_time=done.service_end_time - timedelta(seconds=120)
            )
        waiting = [self.store.create_ticket('S1') for _ in range(3)]

        status = self.store.ticket_status(waiting[2].code.lower())

        self.assertEqual(status['ticket']['code'], 'S1-005')
        self.assertEqual(status['positionInQueue'], 3)
        self.assertEqual(status['estimatedWaitSeconds'], 360)

    def test_ticket_status_default_average_and_not_found(self):
        t = self.store.create_ticket('S2')
        status = self.store.ticket_status(t.code)
        self.assertEqual(status['positionInQueue'], 1)
        self.assertEqual(status['estimatedWaitSeconds'], 300)
        with self.assertRaises(TicketNotFoundError):
            self.store.ticket_status('S2-404')

    @override_settings(QUEUE_ETA_SAMPLE_SIZE=2)
    def test_estimate_ignores_services_older_than_the_sample(self):
        start = timezone.now() - timedelta(hours=1)
        for i, seconds in enumerate([900, 120, 120]):
            self.store.create_ticket('S1')
            self.store.call_next(1, 'S1')
            done = self.store.complete(1).ticket
            end = start + timedelta(minutes=10 * i)
            Ticket.objects.filter(pk=done.pk).update(
                service_start_time=end - timedelta(seconds=seconds), service_end_time=end
            )
        t = self.store.create_ticket('S1')
        self.assertEqual(self.store.ticket_status(t.code)['estimatedWaitSeconds'], 120)

    def test_ticket_status_normalises_code(self):
        t = self.store.create_ticket('S1')
        self.assertEqual(self.store.ticket_status(' s1-0001 ')['ticket']['id'], str(t.pk))
        for code in ('S1', 'S1-1', 'nonsense', ''):
            with self.assertRaises(TicketNotFoundError):
                self.store.ticket_status(code)

    def test_snapshot(self):
        a = self.store.create_ticket('S1')
        b = self.store.create_ticket('S1')
        self.store.call_next(1, 'S1')
        snap = self.store.snapshot()
        self.assertEqual(snap['services']['S1'], {'nextNumber': 3, 'waitingIds': [str(b.pk)]})
        self.assertEqual(snap['services']['S2'], {'nextNumber': 1, 'waitingIds': []})
        self.assertEqual(snap['tickets'][str(a.pk)]['status'], 'serving')
        self.assertEqual(snap['windows'][0]['currentTicketId'], str(a.pk))

    def test_seed_demo(self):
        self.assertEqual(self.store.seed_demo(), 15)
        self.assertEqual(Ticket.objects.filter(status='waiting').count(), 15)


@pytest.mark.skipif(connection.vendor != 'postgresql', reason='needs row locking (PostgreSQL)')
@override_settings(**QUEUE_SETTINGS)
class ConcurrentCallNextTests(TransactionTestCase):

    def test_two_windows_race_for_one_ticket(self):
        ensure_layout()
        store = DatabaseQueueStore(hub=EventHub())
        store.create_ticket('S1')
        barrier = threading.Barrier(2)
        results = {}

        def operator(window_id):
            try:
                barrier.wait()
                results[window_id] = store.call_next(window_id, 'S1')
            finally:
                connections.close_all()

        threads = [threading.Thread(target=operator, args=(wid,)) for wid in (1, 2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        winners = [r for r in results.values() if r is not None]
        self.assertEqual(len(results), 2)
        self.assertEqual(len(winners), 1)
        ticket = Ticket.objects.get()
        self.assertEqual(ticket.window_id, winners[0].window.pk)
        self.assertEqual(Window.objects.filter(busy=True).count(), 1)
