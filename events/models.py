"""
Event Stream Models

Implements an ordered, idempotent audit stream of credits state changes.
Events are written in the same database transaction as the change they
describe, so the stream never records a change that was rolled back.
"""

from django.db import models, transaction
from django.db.models import Q, CheckConstraint


class Event(models.Model):
    """
    Represents an immutable event in the system.
    Events are append-only; ``sequence_number`` orders them globally.
    """
    LEDGER_ENTRY_APPENDED = 'LEDGER_ENTRY_APPENDED'
    PURCHASE_INITIATED = 'PURCHASE_INITIATED'
    PURCHASE_CONFIRMED = 'PURCHASE_CONFIRMED'
    PURCHASE_FAILED = 'PURCHASE_FAILED'
    PURCHASE_EXPIRED = 'PURCHASE_EXPIRED'
    REFUND_APPLIED = 'REFUND_APPLIED'
    ACCOUNT_BALANCE_REBUILT = 'ACCOUNT_BALANCE_REBUILT'

    EVENT_TYPES = [
        (LEDGER_ENTRY_APPENDED, 'Ledger Entry Appended'),
        (PURCHASE_INITIATED, 'Purchase Initiated'),
        (PURCHASE_CONFIRMED, 'Purchase Confirmed'),
        (PURCHASE_FAILED, 'Purchase Failed'),
        (PURCHASE_EXPIRED, 'Purchase Expired'),
        (REFUND_APPLIED, 'Refund Applied'),
        (ACCOUNT_BALANCE_REBUILT, 'Account Balance Rebuilt'),
    ]

    # Database-assigned, monotonically increasing across concurrent writers
    sequence_number = models.BigAutoField(primary_key=True)
    event_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Unique identifier for idempotency"
    )
    event_type = models.CharField(max_length=100, choices=EVENT_TYPES, db_index=True)
    aggregate_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="ID of the aggregate root (e.g., account_id, order_ref)"
    )
    aggregate_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Type of aggregate (e.g., Account, Purchase)"
    )
    event_data = models.JSONField()
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = 'credit_events'
        indexes = [
            models.Index(fields=['event_type', 'created_at']),
            models.Index(fields=['aggregate_type', 'aggregate_id', 'created_at']),
        ]
        constraints = [
            # Ensure event_id is always present
            CheckConstraint(
                condition=~Q(event_id=''),
                name='credit_event_id_not_empty'
            ),
        ]
        ordering = ['sequence_number']

    def __str__(self):
        return f"{self.event_type} - {self.aggregate_id} (#{self.sequence_number})"

    def save(self, *args, **kwargs):
        """Override save to prevent updates to existing events."""
        if not self._state.adding:
            raise ValueError("Events are immutable and cannot be updated")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        """Override delete to prevent deletion of events."""
        raise ValueError("Events are immutable and cannot be deleted")

    @classmethod
    def create_event(cls, event_id, event_type, aggregate_id, aggregate_type, event_data, metadata=None):
        """
        Create an event, or return the existing one for a repeated ``event_id``.
        """
        with transaction.atomic():
            event, _ = cls.objects.get_or_create(
                event_id=event_id,
                defaults={
                    'event_type': event_type,
                    'aggregate_id': aggregate_id,
                    'aggregate_type': aggregate_type,
                    'event_data': event_data,
                    'metadata': metadata or {},
                },
            )
            return event

    @classmethod
    def stream(cls, after_sequence=0, aggregate_type=None, aggregate_id=None, limit=100):
        """Events after ``after_sequence`` in order, optionally for one aggregate."""
        events = cls.objects.filter(sequence_number__gt=after_sequence)
        if aggregate_type:
            events = events.filter(aggregate_type=aggregate_type)
        if aggregate_id:
            events = events.filter(aggregate_id=aggregate_id)
        return list(events.order_by('sequence_number')[:limit])
