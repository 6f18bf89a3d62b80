"""
Purchase Models with Exactly-Once Crediting

A pending purchase reserves a credit order until the payment gateway
confirms it. Confirmation credits the ledger exactly once; terminal
states are final and rows are kept for audit.
"""

from django.db import models
from django.db.models import Q, CheckConstraint
from django.utils import timezone
import uuid


class PendingPurchase(models.Model):
    """
    A credit purchase awaiting external payment confirmation.

    Lifecycle: pending -> confirmed | failed | expired.
    """
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    FAILED = 'failed'
    EXPIRED = 'expired'

    STATUS_CHOICES = [
        (PENDING, 'Pending'),
        (CONFIRMED, 'Confirmed'),
        (FAILED, 'Failed'),
        (EXPIRED, 'Expired'),
    ]
    TERMINAL_STATUSES = frozenset({CONFIRMED, FAILED, EXPIRED})

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_ref = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="External order reference shared with the payment gateway"
    )
    account = models.ForeignKey(
        'ledger.Account',
        on_delete=models.PROTECT,
        related_name='purchases',
        db_index=True
    )
    credits_requested = models.PositiveIntegerField()
    amount_charged = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='INR')
    package_id = models.PositiveIntegerField(null=True, blank=True)
    package_name = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING, db_index=True)

    # Payment tracking
    payment_id = models.CharField(max_length=255, blank=True, db_index=True)
    ledger_entry = models.OneToOneField(
        'ledger.LedgerEntry',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='purchase'
    )

    # Error tracking
    error_message = models.TextField(blank=True)

    # Timestamps
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    expires_at = models.DateTimeField(db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    finalized_at = models.DateTimeField(null=True, blank=True)

    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = 'credit_purchases'
        indexes = [
            models.Index(fields=['status', 'expires_at']),
            models.Index(fields=['account', 'created_at']),
        ]
        constraints = [
            CheckConstraint(
                condition=~Q(order_ref=''),
                name='purchase_order_ref_not_empty'
            ),
            CheckConstraint(
                condition=Q(credits_requested__gt=0),
                name='purchase_credits_positive'
            ),
            CheckConstraint(
                condition=Q(amount_charged__gt=0),
                name='purchase_amount_positive'
            ),
        ]

    def __str__(self):
        return f"Purchase {self.order_ref} - {self.status}"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def is_past_expiry(self, now=None):
        return (now or timezone.now()) > self.expires_at

    def _finalize(self, status, **fields):
        if self.is_terminal:
            raise ValueError(f"Cannot move purchase from terminal status: {self.status}")
        self.status = status
        self.finalized_at = timezone.now()
        for name, value in fields.items():
            setattr(self, name, value)
        self.save(update_fields=['status', 'finalized_at', 'updated_at', *fields])

    def mark_confirmed(self, payment_id, ledger_entry):
        """Mark purchase as confirmed against the crediting ledger entry."""
        self._finalize(self.CONFIRMED, payment_id=payment_id, ledger_entry=ledger_entry)

    def mark_failed(self, error_message):
        """Mark purchase as failed."""
        self._finalize(self.FAILED, error_message=error_message)

    def mark_expired(self):
        """Mark purchase as expired."""
        self._finalize(self.EXPIRED)


class PurchaseEvent(models.Model):
    """
    Tracks events related to purchase processing for audit and replay purposes.
    """
    INITIATED = 'INITIATED'
    CONFIRMED = 'CONFIRMED'
    CONFIRM_REPLAYED = 'CONFIRM_REPLAYED'
    SIGNATURE_REJECTED = 'SIGNATURE_REJECTED'
    FAILED = 'FAILED'
    EXPIRED = 'EXPIRED'

    EVENT_TYPES = [
        (INITIATED, 'Initiated'),
        (CONFIRMED, 'Confirmed'),
        (CONFIRM_REPLAYED, 'Confirmation Replayed'),
        (SIGNATURE_REJECTED, 'Signature Rejected'),
        (FAILED, 'Failed'),
        (EXPIRED, 'Expired'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    purchase = models.ForeignKey(
        PendingPurchase,
        on_delete=models.CASCADE,
        related_name='events',
        db_index=True
    )
    event_type = models.CharField(max_length=50, choices=EVENT_TYPES, db_index=True)
    event_data = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = 'credit_purchase_events'
        indexes = [
            models.Index(fields=['purchase', 'created_at']),
            models.Index(fields=['event_type', 'created_at']),
        ]
        ordering = ['created_at']

    def __str__(self):
        return f"{self.purchase.order_ref} - {self.event_type}"
