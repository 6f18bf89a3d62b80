"""
Ledger Services

Business logic for credits ledger operations with transactional guarantees.

``LedgerService`` is the ledger store: it appends entries and keeps the
``AccountBalance`` projection in step inside one transaction.
``BalanceService`` is the only entry point that mutates balances; it
validates every request before the store is touched.
"""

import logging
import math
from datetime import timedelta
from decimal import Decimal

from django.db import connection, transaction
from django.db.models import Count, Sum
from django.db.models.functions import TruncDate
from django.utils import timezone

from events.models import Event
from ledger.conf import credit_config
from ledger.exceptions import (
    AccountNotFound,
    BalanceCeilingExceeded,
    InsufficientCredits,
    InvalidCreditOperation,
    InvariantViolation,
)
from ledger.models import Account, LedgerEntry, default_description
from ledger.retry import retry_on_contention
from read_models.models import AccountBalance

logger = logging.getLogger(__name__)

VALID_ENTRY_TYPES = frozenset(choice for choice, _ in LedgerEntry.ENTRY_TYPES)
ENTRY_SORT_FIELDS = ('created_at', 'amount', 'balance_after', 'sequence', 'entry_type')

EXPORT_ROW_LIMIT = 10000
EXPORT_HEADER = [
    'Entry ID', 'Account ID', 'Sequence', 'Type', 'Amount', 'Balance After',
    'Reference Type', 'Reference', 'Date',
]


def _invariant(detail, **context):
    """Log an invariant failure loudly and return the exception to raise."""
    logger.critical("Ledger invariant violated: %s %s", detail, context)
    return InvariantViolation(detail, **context)


def _require_positive_int(value, field):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidCreditOperation(f"{field} must be a positive integer", field=field)
    return value


def set_lock_timeout():
    """Bound row-lock waits for the rest of the current transaction (PostgreSQL only)."""
    if connection.vendor == 'postgresql':
        with connection.cursor() as cursor:
            cursor.execute(f"SET LOCAL lock_timeout = {int(credit_config()['LOCK_TIMEOUT_MS'])}")


def _require_account_id(account_id):
    if account_id is None or not str(account_id).strip():
        raise InvalidCreditOperation("account_id is required", field='account_id')
    return str(account_id).strip()


class LedgerService:
    """Append-only store for credits ledger entries."""

    @staticmethod
    def open_account(account_id):
        """Create the account and its empty projection if they don't exist."""
        account_id = _require_account_id(account_id)
        with transaction.atomic():
            account, created = Account.objects.get_or_create(account_id=account_id)
            AccountBalance.objects.get_or_create(account=account)
        if created:
            logger.info("Opened credits account %s", account_id)
        return account

    @staticmethod
    def lock_account(account_id, create=False):
        """
        Lock an account row for the rest of the current transaction.

        Must be called inside ``transaction.atomic()``. Returns
        ``(account, projection)``, or ``(None, None)`` when the account does
        not exist and ``create`` is False.
        """
        account_id = _require_account_id(account_id)
        set_lock_timeout()
        if create:
            Account.objects.get_or_create(account_id=account_id)
        try:
            account = Account.objects.select_for_update().get(account_id=account_id)
        except Account.DoesNotExist:
            return None, None
        projection, _ = AccountBalance.objects.get_or_create(account=account)
        return account, projection

    @staticmethod
    @transaction.atomic
    def append(account_id, entry_type, amount, reference_type='', reference='',
               description='', metadata=None, now=None):
        """
        Append one entry to an account's ledger atomically.

        This method ensures:
        1. The account row is locked for the whole read-compute-write sequence
        2. ``balance_after`` is the previous ``balance_after`` plus ``amount``
        3. The resulting balance stays within ``[0, MAX_BALANCE]``
        4. The projection is updated and an event emitted in the same transaction

        Returns:
            LedgerEntry instance
        """
        if entry_type not in VALID_ENTRY_TYPES:
            raise InvalidCreditOperation(f"Unknown entry type: {entry_type}", field='entry_type')
        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise _invariant("Entry amount must be a non-zero integer", amount=amount)
        if entry_type in LedgerEntry.CREDIT_TYPES and amount < 0:
            raise _invariant("Credit entry with negative amount", entry_type=entry_type, amount=amount)
        if entry_type in LedgerEntry.DEBIT_TYPES and amount > 0:
            raise _invariant("Debit entry with positive amount", entry_type=entry_type, amount=amount)

        account, projection = LedgerService.lock_account(account_id, create=True)

        last = LedgerEntry.objects.filter(account=account).order_by('-sequence').first()
        previous_balance = last.balance_after if last else 0
        previous_sequence = last.sequence if last else 0
        if projection.balance != previous_balance or projection.last_entry_sequence != previous_sequence:
            raise _invariant(
                "Balance projection out of step with ledger",
                account_id=account.account_id,
                projection_balance=projection.balance,
                ledger_balance=previous_balance,
            )

        new_balance = previous_balance + amount
        max_balance = credit_config()['MAX_BALANCE']
        if new_balance < 0 or new_balance > max_balance:
            raise _invariant(
                "Entry would move balance out of bounds",
                account_id=account.account_id,
                balance=previous_balance,
                amount=amount,
                max_balance=max_balance,
            )

        created_at = now or timezone.now()
        if last and created_at < last.created_at:
            created_at = last.created_at

        metadata = metadata or {}
        entry = LedgerEntry.objects.create(
            account=account,
            sequence=previous_sequence + 1,
            entry_type=entry_type,
            amount=amount,
            balance_after=new_balance,
            reference_type=reference_type or '',
            reference=str(reference) if reference not in (None, '') else '',
            description=description or default_description(entry_type, amount, reference, metadata),
            metadata=metadata,
            created_at=created_at,
        )
        projection.apply(entry)

        Event.create_event(
            event_id=f"ledger_entry_{entry.entry_id}",
            event_type=Event.LEDGER_ENTRY_APPENDED,
            aggregate_id=account.account_id,
            aggregate_type='Account',
            event_data={
                'entry_id': entry.entry_id,
                'sequence': entry.sequence,
                'entry_type': entry_type,
                'amount': amount,
                'balance_after': new_balance,
                'reference_type': entry.reference_type,
                'reference': entry.reference,
            },
        )

        logger.info(
            "Appended %s %+d to %s (balance %d -> %d, seq %d)",
            entry_type, amount, account.account_id, previous_balance, new_balance, entry.sequence,
        )
        return entry

    @staticmethod
    def get_balance(account_id):
        """Current projection for an account."""
        account_id = _require_account_id(account_id)
        try:
            return AccountBalance.objects.select_related('account').get(account__account_id=account_id)
        except AccountBalance.DoesNotExist:
            raise AccountNotFound(f"Credits account {account_id} not found", account_id=account_id)

    @staticmethod
    def _entries_queryset(account_id=None, entry_type=None, date_from=None, date_to=None):
        if entry_type and entry_type not in VALID_ENTRY_TYPES:
            raise InvalidCreditOperation(f"Unknown entry type: {entry_type}", field='type')
        entries = LedgerEntry.objects.select_related('account')
        if account_id:
            entries = entries.filter(account__account_id=str(account_id).strip())
        if entry_type:
            entries = entries.filter(entry_type=entry_type)
        if date_from:
            entries = entries.filter(created_at__gte=date_from)
        if date_to:
            entries = entries.filter(created_at__lte=date_to)
        return entries

    @staticmethod
    def _history_queryset(account_id, entry_type=None, date_from=None, date_to=None):
        account_id = _require_account_id(account_id)
        return LedgerService._entries_queryset(account_id, entry_type, date_from, date_to)

    @staticmethod
    def history(account_id, limit=20, offset=0, entry_type=None, date_from=None, date_to=None):
        """Entries for an account, most recent first, restartable via ``offset``."""
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= 100:
            raise InvalidCreditOperation("limit must be between 1 and 100", field='limit')
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise InvalidCreditOperation("offset must be a non-negative integer", field='offset')
        entries = LedgerService._history_queryset(account_id, entry_type, date_from, date_to)
        return list(entries.order_by('-sequence')[offset:offset + limit])

    @staticmethod
    def history_count(account_id, entry_type=None, date_from=None, date_to=None):
        return LedgerService._history_queryset(account_id, entry_type, date_from, date_to).count()

    @staticmethod
    def list_entries(page=1, limit=50, account_id=None, entry_type=None, date_from=None,
                     date_to=None, sort_by='created_at', sort_order='desc'):
        """
        Cross-account entry listing for administrators.

        ``limit`` is capped at 100. Returns a dict with the page of entries
        and its pagination totals.
        """
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise InvalidCreditOperation("page must be a positive integer", field='page')
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidCreditOperation("limit must be a positive integer", field='limit')
        if sort_by not in ENTRY_SORT_FIELDS:
            raise InvalidCreditOperation(f"Cannot sort by {sort_by}", field='sort_by')
        if sort_order not in ('asc', 'desc'):
            raise InvalidCreditOperation("sort_order must be asc or desc", field='sort_order')
        limit = min(limit, 100)

        entries = LedgerService._entries_queryset(account_id, entry_type, date_from, date_to)
        total = entries.count()
        prefix = '-' if sort_order == 'desc' else ''
        offset = (page - 1) * limit
        page_entries = list(
            entries.order_by(f'{prefix}{sort_by}', f'{prefix}entry_id')[offset:offset + limit]
        )
        return {
            'entries': page_entries,
            'total': total,
            'page': page,
            'limit': limit,
            'total_pages': math.ceil(total / limit),
        }

    @staticmethod
    def analytics(date_from=None, date_to=None, now=None):
        """
        Ledger-wide figures: credits in circulation, confirmed purchase
        revenue, per-type counts and sums over the period (default: the last
        30 days), daily entry counts for the last week and the top purchasers.
        """
        from purchases.models import PendingPurchase

        now = now or timezone.now()
        date_to = date_to or now
        date_from = date_from or date_to - timedelta(days=30)
        if date_from > date_to:
            raise InvalidCreditOperation("from must not be after to", field='from')

        circulation = AccountBalance.objects.aggregate(total=Sum('balance'))['total'] or 0
        revenue = PendingPurchase.objects.filter(status=PendingPurchase.CONFIRMED).aggregate(
            total=Sum('amount_charged')
        )['total'] or Decimal('0')

        by_type = list(
            LedgerEntry.objects.filter(created_at__gte=date_from, created_at__lte=date_to)
            .values('entry_type')
            .annotate(count=Count('entry_id'), total_amount=Sum('amount'))
            .order_by('entry_type')
        )
        daily = list(
            LedgerEntry.objects.filter(created_at__gte=now - timedelta(days=7))
            .annotate(date=TruncDate('created_at'))
            .values('date')
            .annotate(entries=Count('entry_id'))
            .order_by('-date')
        )
        top_purchasers = [
            {'account_id': account_id, 'total_purchased': purchased, 'balance': balance}
            for account_id, purchased, balance in AccountBalance.objects.filter(total_purchased__gt=0)
            .order_by('-total_purchased', 'account__account_id')
            .values_list('account__account_id', 'total_purchased', 'balance')[:10]
        ]

        return {
            'overview': {
                'credits_in_circulation': circulation,
                'total_revenue': revenue,
                'currency': credit_config()['CURRENCY'],
                'price_per_credit': credit_config()['PRICE_PER_CREDIT'],
            },
            'entries_by_type': by_type,
            'daily_stats': daily,
            'top_purchasers': top_purchasers,
            'period': {'from': date_from, 'to': date_to},
        }

    @staticmethod
    def export_rows(account_id=None, entry_type=None, date_from=None, date_to=None):
        """
        Yield a header row then one row per entry, most recent first.

        At most ``EXPORT_ROW_LIMIT`` entries are exported.
        """
        entries = LedgerService._entries_queryset(account_id, entry_type, date_from, date_to)
        yield EXPORT_HEADER
        for entry in entries.order_by('-created_at', '-entry_id')[:EXPORT_ROW_LIMIT]:
            yield [
                entry.entry_id,
                entry.account.account_id,
                entry.sequence,
                entry.entry_type,
                entry.amount,
                entry.balance_after,
                entry.reference_type,
                entry.reference,
                entry.created_at.isoformat(),
            ]

    @staticmethod
    def verify_account(account_id):
        """
        Compare the stored projection with a replay of the ledger.

        Raises InvariantViolation on any drift, including a broken
        ``balance_after`` chain.
        """
        projection = LedgerService.get_balance(account_id)
        running = 0
        for sequence, amount, balance_after in LedgerEntry.objects.filter(
            account=projection.account
        ).order_by('sequence').values_list('sequence', 'amount', 'balance_after'):
            running += amount
            if running != balance_after:
                raise _invariant(
                    "balance_after chain broken",
                    account_id=projection.account.account_id,
                    sequence=sequence,
                )
        replayed = AccountBalance.replay(projection.account)
        if replayed != projection.totals():
            raise _invariant(
                "Stored projection differs from ledger replay",
                account_id=projection.account.account_id,
                stored=projection.totals(),
                replayed=replayed,
            )
        return projection

    @staticmethod
    @transaction.atomic
    def rebuild_account(account_id):
        """Recompute an account's projection from its ledger, under the account lock."""
        account, projection = LedgerService.lock_account(account_id)
        if account is None:
            raise AccountNotFound(f"Credits account {account_id} not found", account_id=account_id)
        before = projection.totals()
        rebuilt = AccountBalance.rebuild_for_account(account)
        after = rebuilt.totals()
        if before != after:
            logger.warning("Rebuilt drifted projection for %s: %s -> %s", account.account_id, before, after)
        Event.create_event(
            event_id=f"balance_rebuilt_{account.account_id}_{after['last_entry_sequence']}",
            event_type=Event.ACCOUNT_BALANCE_REBUILT,
            aggregate_id=account.account_id,
            aggregate_type='Account',
            event_data={'before': before, 'after': after},
        )
        return rebuilt


class BalanceService:
    """Validated, atomic credit/debit operations. The only writer of balances."""

    @staticmethod
    def _refreshed(account):
        return AccountBalance.objects.select_related('account').get(account=account)

    @staticmethod
    @retry_on_contention
    def credit(account_id, amount, entry_type=LedgerEntry.PURCHASE, reference_type='',
               reference='', description='', metadata=None):
        """
        Add credits to an account.

        Raises:
            InvalidCreditOperation: amount not a positive integer, or not a credit type
            BalanceCeilingExceeded: balance + amount would exceed MAX_BALANCE
        """
        account_id = _require_account_id(account_id)
        _require_positive_int(amount, 'amount')
        if entry_type not in LedgerEntry.CREDIT_TYPES:
            raise InvalidCreditOperation(f"{entry_type} is not a credit type", field='entry_type')

        with transaction.atomic():
            account, projection = LedgerService.lock_account(account_id, create=True)
            max_balance = credit_config()['MAX_BALANCE']
            if projection.balance + amount > max_balance:
                logger.warning(
                    "Rejected %s of %d for %s: balance %d would exceed %d",
                    entry_type, amount, account_id, projection.balance, max_balance,
                )
                raise BalanceCeilingExceeded(projection.balance, amount, max_balance)
            LedgerService.append(
                account_id, entry_type, amount,
                reference_type=reference_type, reference=reference,
                description=description, metadata=metadata,
            )
            return BalanceService._refreshed(account)

    @staticmethod
    @retry_on_contention
    def debit(account_id, amount, entry_type=LedgerEntry.DEDUCTION, reference_type='',
              reference='', description='', metadata=None):
        """
        Spend credits from an account.

        Raises:
            InvalidCreditOperation: amount not a positive integer, or not a debit type
            InsufficientCredits: balance < amount (balance left unchanged)
        """
        account_id = _require_account_id(account_id)
        _require_positive_int(amount, 'amount')
        if entry_type not in LedgerEntry.DEBIT_TYPES:
            raise InvalidCreditOperation(f"{entry_type} is not a debit type", field='entry_type')

        with transaction.atomic():
            account, projection = LedgerService.lock_account(account_id)
            available = projection.balance if projection else 0
            if account is None or available < amount:
                logger.warning(
                    "Rejected %s of %d for %s: only %d available",
                    entry_type, amount, account_id, available,
                )
                raise InsufficientCredits(required=amount, available=available)
            LedgerService.append(
                account_id, entry_type, -amount,
                reference_type=reference_type, reference=reference,
                description=description, metadata=metadata,
            )
            return BalanceService._refreshed(account)

    @staticmethod
    @retry_on_contention
    def admin_adjust(account_id, delta, reason, admin_id):
        """
        Signed administrative adjustment.

        Skips the per-operation purchase limits but still respects the zero
        floor and the balance ceiling. The admin identity is recorded as the
        entry reference.
        """
        account_id = _require_account_id(account_id)
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise InvalidCreditOperation("delta must be a non-zero integer", field='delta')
        min_length = credit_config()['ADMIN_REASON_MIN_LENGTH']
        reason = (reason or '').strip()
        if len(reason) < min_length:
            raise InvalidCreditOperation(
                f"reason must be at least {min_length} characters", field='reason'
            )
        if admin_id is None or not str(admin_id).strip():
            raise InvalidCreditOperation("admin_id is required", field='admin_id')
        admin_id = str(admin_id).strip()

        entry_type = LedgerEntry.ADMIN_ADD if delta > 0 else LedgerEntry.ADMIN_DEDUCT
        with transaction.atomic():
            account, projection = LedgerService.lock_account(account_id, create=delta > 0)
            balance = projection.balance if projection else 0
            if account is None or balance + delta < 0:
                raise InsufficientCredits(
                    required=-delta,
                    available=balance,
                    message='Adjustment would result in negative balance',
                )
            max_balance = credit_config()['MAX_BALANCE']
            if balance + delta > max_balance:
                raise BalanceCeilingExceeded(balance, delta, max_balance)
            LedgerService.append(
                account_id, entry_type, delta,
                reference_type=LedgerEntry.REF_ADMIN,
                reference=admin_id,
                metadata={'admin_id': admin_id, 'admin_reason': reason},
            )
            logger.info("Admin %s adjusted %s by %+d: %s", admin_id, account_id, delta, reason)
            return BalanceService._refreshed(account)

    @staticmethod
    @retry_on_contention
    def grant_signup_bonus(account_id):
        """
        Credit the one-time welcome bonus.

        Returns:
            (AccountBalance, granted) tuple; ``granted`` is False when the
            bonus had already been given.
        """
        account_id = _require_account_id(account_id)
        bonus = credit_config()['SIGNUP_BONUS_CREDITS']
        with transaction.atomic():
            account, projection = LedgerService.lock_account(account_id, create=True)
            if LedgerEntry.objects.filter(account=account, entry_type=LedgerEntry.SIGNUP_BONUS).exists():
                logger.info("Signup bonus already granted to %s", account_id)
                return projection, False
            max_balance = credit_config()['MAX_BALANCE']
            if projection.balance + bonus > max_balance:
                raise BalanceCeilingExceeded(projection.balance, bonus, max_balance)
            LedgerService.append(
                account_id, LedgerEntry.SIGNUP_BONUS, bonus,
                reference_type=LedgerEntry.REF_SIGNUP,
            )
            return BalanceService._refreshed(account), True
