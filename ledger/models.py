"""
Credits Ledger Models

Implements an append-only credits ledger where:
- Every balance change is exactly one immutable ledger entry
- Each entry snapshots the running balance after it was applied
- Entries are numbered per account so a lost update cannot go unnoticed
- Database-level constraints back up the application invariants
"""

from django.db import models
from django.db.models import Q, CheckConstraint, UniqueConstraint
import uuid


class Account(models.Model):
    """
    A credits account, keyed by the identity supplied by the auth layer.

    The row doubles as the per-account lock: every balance mutation selects
    it FOR UPDATE before reading the current balance.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    account_id = models.CharField(max_length=100, unique=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'credit_accounts'
        constraints = [
            CheckConstraint(
                condition=~Q(account_id=''),
                name='credit_account_id_not_empty'
            ),
        ]

    def __str__(self):
        return f"Account {self.account_id}"


class LedgerEntry(models.Model):
    """
    A single immutable credits ledger entry.

    ``amount`` is a signed delta (positive = credit, negative = debit) and
    ``balance_after`` equals the previous entry's ``balance_after`` plus
    ``amount``.
    """
    PURCHASE = 'purchase'
    DEDUCTION = 'deduction'
    REFUND = 'refund'
    ADMIN_ADD = 'admin_add'
    ADMIN_DEDUCT = 'admin_deduct'
    EXPIRY = 'expiry'
    SIGNUP_BONUS = 'signup_bonus'

    ENTRY_TYPES = [
        (PURCHASE, 'Purchase'),
        (DEDUCTION, 'Deduction'),
        (REFUND, 'Refund'),
        (ADMIN_ADD, 'Admin Add'),
        (ADMIN_DEDUCT, 'Admin Deduct'),
        (EXPIRY, 'Expiry'),
        (SIGNUP_BONUS, 'Signup Bonus'),
    ]

    CREDIT_TYPES = frozenset({PURCHASE, REFUND, ADMIN_ADD, SIGNUP_BONUS})
    DEBIT_TYPES = frozenset({DEDUCTION, ADMIN_DEDUCT, EXPIRY})

    # What the opaque ``reference`` points at. Lookup keys only.
    REF_PAYMENT = 'payment'
    REF_APPLICATION = 'application'
    REF_ADMIN = 'admin'
    REF_SYSTEM = 'system'
    REF_SIGNUP = 'signup'
    REF_PURCHASE_ENTRY = 'purchase_entry'

    REFERENCE_TYPES = [
        (REF_PAYMENT, 'Payment'),
        (REF_APPLICATION, 'Application'),
        (REF_ADMIN, 'Admin'),
        (REF_SYSTEM, 'System'),
        (REF_SIGNUP, 'Signup'),
        (REF_PURCHASE_ENTRY, 'Purchase Entry'),
    ]

    entry_id = models.BigAutoField(primary_key=True)
    account = models.ForeignKey(
        Account,
        on_delete=models.PROTECT,  # Prevent deletion of accounts with entries
        related_name='entries',
        db_index=True
    )
    sequence = models.PositiveBigIntegerField(
        help_text="Per-account position of this entry, starting at 1"
    )
    entry_type = models.CharField(max_length=20, choices=ENTRY_TYPES, db_index=True)
    amount = models.IntegerField()
    balance_after = models.IntegerField()
    reference_type = models.CharField(max_length=30, choices=REFERENCE_TYPES, blank=True)
    reference = models.CharField(max_length=255, blank=True, db_index=True)
    description = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(db_index=True)

    class Meta:
        db_table = 'credit_ledger_entries'
        indexes = [
            models.Index(fields=['account', 'created_at']),
            models.Index(fields=['account', 'entry_type', 'created_at']),
            models.Index(fields=['reference_type', 'reference']),
        ]
        constraints = [
            UniqueConstraint(
                fields=['account', 'sequence'],
                name='ledger_entry_account_sequence_unique'
            ),
            CheckConstraint(
                condition=~Q(amount=0),
                name='ledger_entry_amount_non_zero'
            ),
            CheckConstraint(
                condition=Q(balance_after__gte=0),
                name='ledger_entry_balance_after_non_negative'
            ),
        ]

    def __str__(self):
        return f"{self.entry_type} {self.amount:+d} -> {self.balance_after} ({self.account.account_id})"

    @property
    def is_credit(self):
        return self.amount > 0

    def save(self, *args, **kwargs):
        """Override save to prevent updates to existing entries."""
        if not self._state.adding:
            raise ValueError("Ledger entries are immutable and cannot be updated")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        """Override delete to prevent deletion of ledger entries."""
        raise ValueError("Ledger entries are immutable and cannot be deleted")


def default_description(entry_type, amount, reference='', metadata=None):
    """Human-readable description used when the caller supplies none."""
    metadata = metadata or {}
    credits = abs(amount)
    if entry_type == LedgerEntry.PURCHASE:
        package_name = metadata.get('package_name')
        if package_name:
            return f"Purchased {package_name} package (+{credits} credits)"
        return f"Purchased {credits} credits"
    if entry_type == LedgerEntry.DEDUCTION:
        if reference:
            return f"Applied to project #{reference} (-{credits} credits)"
        return f"Spent {credits} credits"
    if entry_type == LedgerEntry.REFUND:
        return f"Refund of {credits} credits"
    if entry_type == LedgerEntry.ADMIN_ADD:
        return f"Admin credit adjustment (+{credits} credits)"
    if entry_type == LedgerEntry.ADMIN_DEDUCT:
        return f"Admin credit adjustment (-{credits} credits)"
    if entry_type == LedgerEntry.EXPIRY:
        return f"Credits expired (-{credits} credits)"
    if entry_type == LedgerEntry.SIGNUP_BONUS:
        return f"Welcome bonus: {credits} free credits"
    return f"Credit transaction ({amount:+d})"
