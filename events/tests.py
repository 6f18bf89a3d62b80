"""
Tests for Event Models

Tests cover:
- Event ordering
- Event idempotency
- Event stream reads
"""

from django.test import TestCase

from events.models import Event
from ledger.services import BalanceService


class EventModelTests(TestCase):
    """Test event models."""

    def test_event_sequence_numbers_are_monotonic(self):
        """Test that event sequence numbers are monotonically increasing."""
        events = [
            Event.create_event(
                event_id=f'event_{n}',
                event_type=Event.PURCHASE_INITIATED,
                aggregate_id=f'order_{n}',
                aggregate_type='Purchase',
                event_data={},
            )
            for n in range(3)
        ]
        self.assertLess(events[0].sequence_number, events[1].sequence_number)
        self.assertLess(events[1].sequence_number, events[2].sequence_number)

    def test_event_idempotency(self):
        """Test that duplicate event_ids return existing event."""
        first = Event.create_event(
            event_id='refund_17',
            event_type=Event.REFUND_APPLIED,
            aggregate_id='user-1',
            aggregate_type='Account',
            event_data={'refund_amount': 7},
        )
        second = Event.create_event(
            event_id='refund_17',
            event_type=Event.REFUND_APPLIED,
            aggregate_id='user-1',
            aggregate_type='Account',
            event_data={'refund_amount': 99},
        )

        self.assertEqual(first.sequence_number, second.sequence_number)
        self.assertEqual(second.event_data, {'refund_amount': 7})
        self.assertEqual(Event.objects.filter(event_id='refund_17').count(), 1)

    def test_event_immutability(self):
        """Test that events cannot be updated or deleted."""
        event = Event.create_event(
            event_id='immutable_event_001',
            event_type=Event.PURCHASE_FAILED,
            aggregate_id='order_1',
            aggregate_type='Purchase',
            event_data={},
        )

        with self.assertRaises(ValueError):
            event.event_data = {'changed': True}
            event.save()

        with self.assertRaises(ValueError):
            event.delete()

    def test_stream_for_account(self):
        BalanceService.credit('user-1', 10)
        BalanceService.credit('user-2', 5)
        BalanceService.debit('user-1', 2)

        stream = Event.stream(aggregate_type='Account', aggregate_id='user-1')
        self.assertEqual([e.event_data['amount'] for e in stream], [10, -2])

        after = Event.stream(after_sequence=stream[0].sequence_number, aggregate_id='user-1')
        self.assertEqual(len(after), 1)
