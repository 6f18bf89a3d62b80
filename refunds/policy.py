"""
Refund Policy

Pure eligibility rules for refunding a purchase entry. Nothing here
touches the database: callers supply the entry, the current time and
the credits still unused from that purchase.

Windows for a customer withdrawal, measured from the purchase entry:

    elapsed <= FULL_REFUND_MINUTES    100% of the unused portion
    elapsed <= PARTIAL_REFUND_HOURS   PARTIAL_REFUND_PERCENT% of the purchase,
                                      capped at the unused portion
    later                             not eligible ("window expired")

Refunds for other reasons (technical error, admin, duplicate charge)
are not time-limited and return the full unused portion.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.db import models

from ledger.conf import credit_config
from ledger.exceptions import InvalidCreditOperation
from ledger.models import LedgerEntry


class RefundReason(models.TextChoices):
    WITHDRAWAL = 'withdrawal', 'Withdrawal'
    TECHNICAL_ERROR = 'technical_error', 'Technical Error'
    ADMIN_REFUND = 'admin_refund', 'Admin Refund'
    DUPLICATE = 'duplicate', 'Duplicate Charge'


FULL_WINDOW = 'full'
PARTIAL_WINDOW = 'partial'

REASON_NOT_PURCHASE = 'not a purchase'
REASON_ALREADY_REFUNDED = 'already refunded'
REASON_WINDOW_EXPIRED = 'window expired'
REASON_NOTHING_UNUSED = 'no unused credits'


def parse_reason(reason):
    try:
        return RefundReason(reason)
    except ValueError:
        raise InvalidCreditOperation(f"Unknown refund reason: {reason}", field='reason')


@dataclass(frozen=True)
class RefundDecision:
    eligible: bool
    refund_amount: int
    percent: int
    unused_credits: int
    elapsed: timedelta
    window: Optional[str] = None
    reason: Optional[str] = None

    def as_dict(self):
        return {
            'eligible': self.eligible,
            'refund_amount': self.refund_amount,
            'percent': self.percent,
            'unused_credits': self.unused_credits,
            'elapsed_seconds': int(self.elapsed.total_seconds()),
            'window': self.window,
            'reason': self.reason,
        }


def unused_credits_by_entry(entries):
    """
    Attribute current usage to credit entries, oldest first.

    ``entries`` is an iterable of ``(entry_id, amount)`` in sequence order.
    Every credit opens a lot; every debit drains the oldest open lots.
    Returns ``{entry_id: unused}`` for each credit entry.
    """
    lots = []
    remaining = {}
    for entry_id, amount in entries:
        if amount > 0:
            lots.append(entry_id)
            remaining[entry_id] = amount
            continue
        to_drain = -amount
        while to_drain and lots:
            head = lots[0]
            taken = min(remaining[head], to_drain)
            remaining[head] -= taken
            to_drain -= taken
            if remaining[head] == 0:
                lots.pop(0)
    return remaining


def _ineligible(reason, unused, elapsed, window=None):
    return RefundDecision(
        eligible=False,
        refund_amount=0,
        percent=0,
        unused_credits=unused,
        elapsed=elapsed,
        window=window,
        reason=reason,
    )


def compute_refund_eligibility(purchase_entry, now, unused_credits, reason=RefundReason.WITHDRAWAL,
                               already_refunded=False, config=None):
    """
    Decide whether, and how much of, a purchase entry can be refunded.

    Args:
        purchase_entry: object with ``entry_type``, ``amount`` and ``created_at``
        now: the time of the request
        unused_credits: credits from this purchase not yet spent
        reason: a ``RefundReason`` value
        already_refunded: whether a refund already references this entry
        config: credits config dict (defaults to settings)

    Returns:
        RefundDecision
    """
    config = config or credit_config()
    reason = parse_reason(reason)
    unused = max(0, unused_credits)
    elapsed = max(now - purchase_entry.created_at, timedelta(0))

    if purchase_entry.entry_type != LedgerEntry.PURCHASE:
        return _ineligible(REASON_NOT_PURCHASE, unused, elapsed)
    if already_refunded:
        return _ineligible(REASON_ALREADY_REFUNDED, unused, elapsed)

    if reason != RefundReason.WITHDRAWAL:
        window, percent = FULL_WINDOW, 100
    elif elapsed <= timedelta(minutes=config['FULL_REFUND_MINUTES']):
        window, percent = FULL_WINDOW, 100
    elif elapsed <= timedelta(hours=config['PARTIAL_REFUND_HOURS']):
        window, percent = PARTIAL_WINDOW, config['PARTIAL_REFUND_PERCENT']
    else:
        return _ineligible(REASON_WINDOW_EXPIRED, unused, elapsed)

    refund_amount = min(purchase_entry.amount * percent // 100, unused)
    if refund_amount <= 0:
        return _ineligible(REASON_NOTHING_UNUSED, unused, elapsed, window)

    return RefundDecision(
        eligible=True,
        refund_amount=refund_amount,
        percent=percent,
        unused_credits=unused,
        elapsed=elapsed,
        window=window,
    )
