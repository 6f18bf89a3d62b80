"""
Read Models

Denormalized read models derived from the credits ledger.
These models are rebuildable from scratch and optimized for queries.
"""

from django.db import models
from django.db.models import Q, CheckConstraint
import uuid


def apply_entry(totals, entry_type, amount, balance_after, sequence):
    """
    Fold one ledger entry into a projection ``totals`` dict.

    Shared by incremental updates and full rebuilds so both paths agree.
    """
    from ledger.models import LedgerEntry

    totals['balance'] = balance_after
    totals['last_entry_sequence'] = sequence
    if entry_type in (LedgerEntry.PURCHASE, LedgerEntry.ADMIN_ADD):
        totals['total_purchased'] += amount
    elif entry_type in (LedgerEntry.DEDUCTION, LedgerEntry.ADMIN_DEDUCT):
        totals['total_used'] += -amount
    elif entry_type == LedgerEntry.REFUND:
        # Refunded credits give usage back
        totals['total_used'] = max(0, totals['total_used'] - amount)
    return totals


class AccountBalance(models.Model):
    """
    Read model representing the current credits position of an account.
    This is derived from ledger entries and can be rebuilt from scratch.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    account = models.OneToOneField(
        'ledger.Account',
        on_delete=models.CASCADE,
        related_name='balance',
        db_index=True
    )
    balance = models.IntegerField(default=0)
    total_purchased = models.IntegerField(default=0)
    total_used = models.IntegerField(default=0)
    last_entry_sequence = models.BigIntegerField(
        default=0,
        help_text="Sequence number of the last ledger entry folded in"
    )
    last_updated_at = models.DateTimeField(auto_now=True, db_index=True)

    class Meta:
        db_table = 'credit_account_balances'
        indexes = [
            models.Index(fields=['last_updated_at']),
        ]
        constraints = [
            CheckConstraint(
                condition=Q(balance__gte=0),
                name='account_balance_non_negative'
            ),
        ]

    def __str__(self):
        return f"{self.account.account_id}: {self.balance}"

    def totals(self):
        return {
            'balance': self.balance,
            'total_purchased': self.total_purchased,
            'total_used': self.total_used,
            'last_entry_sequence': self.last_entry_sequence,
        }

    def apply(self, entry):
        """Fold a freshly appended entry into this projection and persist it."""
        totals = apply_entry(
            self.totals(), entry.entry_type, entry.amount, entry.balance_after, entry.sequence
        )
        for field, value in totals.items():
            setattr(self, field, value)
        self.save(update_fields=[
            'balance', 'total_purchased', 'total_used', 'last_entry_sequence', 'last_updated_at',
        ])
        return self

    @classmethod
    def replay(cls, account, up_to_sequence=None):
        """Compute projection totals for an account from its entry log, optionally stopping at a sequence."""
        from ledger.models import LedgerEntry

        totals = {'balance': 0, 'total_purchased': 0, 'total_used': 0, 'last_entry_sequence': 0}
        entries = LedgerEntry.objects.filter(account=account)
        if up_to_sequence is not None:
            entries = entries.filter(sequence__lte=up_to_sequence)
        entries = entries.order_by('sequence').values_list(
            'entry_type', 'amount', 'balance_after', 'sequence'
        )
        for entry_type, amount, balance_after, sequence in entries:
            apply_entry(totals, entry_type, amount, balance_after, sequence)
        return totals

    @classmethod
    def as_of(cls, entry):
        """
        Unsaved snapshot of the projection immediately after ``entry``.

        Used to hand back a previously recorded result without reading the
        live projection.
        """
        snapshot = cls(account=entry.account, **cls.replay(entry.account, up_to_sequence=entry.sequence))
        snapshot.last_updated_at = entry.created_at
        return snapshot

    @classmethod
    def rebuild_for_account(cls, account):
        """
        Rebuild account balance from all ledger entries.
        This method can be called to reconstruct the projection from source data.
        """
        account_balance, _ = cls.objects.update_or_create(
            account=account,
            defaults=cls.replay(account),
        )
        return account_balance
