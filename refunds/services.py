"""
Refund Services

Applies refunds decided by ``refunds.policy``. The decision is taken
under the account lock so the unused-credit attribution cannot change
between checking and crediting.
"""

import logging

from django.db import transaction
from django.utils import timezone

from events.models import Event
from ledger.exceptions import AccountNotFound, RefundIneligible
from ledger.models import LedgerEntry
from ledger.retry import retry_on_contention
from ledger.services import BalanceService, LedgerService
from refunds.policy import (
    RefundReason,
    compute_refund_eligibility,
    parse_reason,
    unused_credits_by_entry,
)

logger = logging.getLogger(__name__)


class RefundService:
    """Service for refund operations."""

    @staticmethod
    def _decide(account, entry_id, reason, now):
        try:
            entry = LedgerEntry.objects.get(entry_id=entry_id, account=account)
        except LedgerEntry.DoesNotExist:
            raise RefundIneligible("purchase entry not found", entry_id=entry_id)

        unused = unused_credits_by_entry(
            LedgerEntry.objects.filter(account=account)
            .order_by('sequence')
            .values_list('entry_id', 'amount')
        )
        already_refunded = LedgerEntry.objects.filter(
            account=account,
            entry_type=LedgerEntry.REFUND,
            reference_type=LedgerEntry.REF_PURCHASE_ENTRY,
            reference=str(entry.entry_id),
        ).exists()
        decision = compute_refund_eligibility(
            entry,
            now or timezone.now(),
            unused.get(entry.entry_id, 0),
            reason=reason,
            already_refunded=already_refunded,
        )
        return entry, decision

    @staticmethod
    def check_eligibility(account_id, entry_id, reason=RefundReason.WITHDRAWAL, now=None):
        """
        Evaluate a refund without applying it.

        Returns:
            RefundDecision
        """
        account = LedgerService.get_balance(account_id).account
        _, decision = RefundService._decide(account, entry_id, reason, now)
        return decision

    @staticmethod
    @retry_on_contention
    def apply_refund(account_id, entry_id, reason=RefundReason.WITHDRAWAL, now=None, description=''):
        """
        Credit the refundable portion of a purchase back as a ``refund`` entry.

        The original purchase entry is never modified; the refund entry
        references it by ``entry_id``.

        Returns:
            (AccountBalance, RefundDecision) tuple

        Raises:
            RefundIneligible: with the policy's reason
        """
        reason = parse_reason(reason)
        with transaction.atomic():
            account, _ = LedgerService.lock_account(account_id)
            if account is None:
                raise AccountNotFound(f"Credits account {account_id} not found", account_id=account_id)

            entry, decision = RefundService._decide(account, entry_id, reason, now)
            if not decision.eligible:
                logger.info(
                    "Refund of entry %s for %s rejected: %s", entry_id, account_id, decision.reason
                )
                raise RefundIneligible(
                    decision.reason,
                    entry_id=entry.entry_id,
                    unused_credits=decision.unused_credits,
                )

            projection = BalanceService.credit(
                account.account_id,
                decision.refund_amount,
                entry_type=LedgerEntry.REFUND,
                reference_type=LedgerEntry.REF_PURCHASE_ENTRY,
                reference=str(entry.entry_id),
                description=description,
                metadata={
                    'original_entry_id': entry.entry_id,
                    'refund_reason': reason.value,
                    'refund_percent': decision.percent,
                    'refund_window': decision.window,
                    'order_ref': entry.reference,
                },
            )
            Event.create_event(
                event_id=f"refund_{entry.entry_id}",
                event_type=Event.REFUND_APPLIED,
                aggregate_id=account.account_id,
                aggregate_type='Account',
                event_data={
                    'original_entry_id': entry.entry_id,
                    'refund_amount': decision.refund_amount,
                    'percent': decision.percent,
                    'reason': reason.value,
                },
            )

        logger.info(
            "Refunded %d credits (%d%%) of entry %s to %s, reason %s",
            decision.refund_amount, decision.percent, entry.entry_id, account.account_id, reason.value,
        )
        return projection, decision
