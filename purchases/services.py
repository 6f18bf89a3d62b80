"""
Purchase Services

Business logic for credit purchases with exactly-once crediting.

A purchase is initiated as ``pending`` and moves to exactly one terminal
state. Confirmation verifies the gateway signature and credits the
ledger in the same transaction as the state change, so a confirmed
purchase always has exactly one ``purchase`` ledger entry.
"""

import logging
import uuid
from datetime import timedelta

from django.db import transaction
from django.utils import timezone

from events.models import Event
from ledger.conf import credit_config
from ledger.exceptions import (
    AccountNotFound,
    AlreadyConfirmed,
    BalanceCeilingExceeded,
    PurchaseExpired,
    PurchaseNotFound,
    SignatureMismatch,
)
from ledger.models import LedgerEntry
from ledger.retry import retry_on_contention
from ledger.services import BalanceService, LedgerService, set_lock_timeout
from purchases.models import PendingPurchase, PurchaseEvent
from purchases.packages import quote
from purchases.signatures import verify_signature
from read_models.models import AccountBalance

logger = logging.getLogger(__name__)


def _record(purchase, event_type, event_data=None, stream_type=None):
    """Write the purchase audit row and, for state changes, the global event."""
    event_data = event_data or {}
    PurchaseEvent.objects.create(purchase=purchase, event_type=event_type, event_data=event_data)
    if stream_type:
        Event.create_event(
            event_id=f"purchase_{event_type.lower()}_{purchase.order_ref}",
            event_type=stream_type,
            aggregate_id=purchase.order_ref,
            aggregate_type='Purchase',
            event_data={
                'order_ref': purchase.order_ref,
                'account_id': purchase.account.account_id,
                'credits': purchase.credits_requested,
                'status': purchase.status,
                **event_data,
            },
        )


def _current_balance(account_id):
    try:
        return LedgerService.get_balance(account_id).balance
    except AccountNotFound:
        return 0


class PurchaseService:
    """Service for purchase operations."""

    @staticmethod
    def get(order_ref):
        try:
            return PendingPurchase.objects.select_related('account').get(order_ref=order_ref)
        except PendingPurchase.DoesNotExist:
            raise PurchaseNotFound(f"Purchase {order_ref} not found", order_ref=order_ref)

    @staticmethod
    def _lock(order_ref):
        """Lock a purchase row for the rest of the current transaction."""
        set_lock_timeout()
        try:
            return PendingPurchase.objects.select_for_update().select_related('account').get(
                order_ref=order_ref
            )
        except PendingPurchase.DoesNotExist:
            raise PurchaseNotFound(f"Purchase {order_ref} not found", order_ref=order_ref)

    @staticmethod
    @retry_on_contention
    def initiate(account_id, credits_amount=None, package_id=None, now=None):
        """
        Reserve a pending purchase for a package or a custom credit amount.

        Nothing is written when the request is invalid or the resulting
        balance would exceed MAX_BALANCE.

        Returns:
            PendingPurchase instance
        """
        purchase_quote = quote(credits_amount=credits_amount, package_id=package_id)
        config = credit_config()

        balance = _current_balance(account_id)
        if balance + purchase_quote.credits > config['MAX_BALANCE']:
            logger.warning(
                "Rejected purchase of %d credits for %s: balance %d would exceed %d",
                purchase_quote.credits, account_id, balance, config['MAX_BALANCE'],
            )
            raise BalanceCeilingExceeded(balance, purchase_quote.credits, config['MAX_BALANCE'])

        now = now or timezone.now()
        with transaction.atomic():
            account = LedgerService.open_account(account_id)
            purchase = PendingPurchase.objects.create(
                order_ref=f"order_{uuid.uuid4().hex}",
                account=account,
                credits_requested=purchase_quote.credits,
                amount_charged=purchase_quote.price,
                currency=purchase_quote.currency,
                package_id=purchase_quote.package_id,
                package_name=purchase_quote.package_name,
                created_at=now,
                expires_at=now + timedelta(minutes=config['PURCHASE_EXPIRY_MINUTES']),
            )
            _record(
                purchase,
                PurchaseEvent.INITIATED,
                {'amount_charged': str(purchase.amount_charged), 'package_id': purchase.package_id},
                stream_type=Event.PURCHASE_INITIATED,
            )

        logger.info(
            "Initiated purchase %s: %d credits for %s %s (account %s)",
            purchase.order_ref, purchase.credits_requested, purchase.amount_charged,
            purchase.currency, account.account_id,
        )
        return purchase

    @staticmethod
    @retry_on_contention
    def confirm(order_ref, payment_id, signature, now=None):
        """
        Confirm a purchase against the gateway's payment signature.

        Idempotent: confirming an already-confirmed purchase again with the
        same payment returns the projection as recorded by the original
        confirmation, without a second credit.
        An expired purchase is recorded as ``expired`` before
        ``PurchaseExpired`` is raised.

        Returns:
            AccountBalance instance
        """
        signature_ok = verify_signature(order_ref, payment_id, signature)
        rejection = None

        with transaction.atomic():
            purchase = PurchaseService._lock(order_ref)

            if purchase.status == PendingPurchase.CONFIRMED:
                if signature_ok and purchase.payment_id == payment_id:
                    _record(purchase, PurchaseEvent.CONFIRM_REPLAYED, {'payment_id': payment_id})
                    logger.info("Purchase %s already confirmed; returning recorded result", order_ref)
                    return AccountBalance.as_of(purchase.ledger_entry)
                raise AlreadyConfirmed(order_ref=order_ref, status=purchase.status)
            if purchase.status == PendingPurchase.EXPIRED:
                raise PurchaseExpired(order_ref=order_ref)
            if purchase.status != PendingPurchase.PENDING:
                raise AlreadyConfirmed(order_ref=order_ref, status=purchase.status)

            if purchase.is_past_expiry(now):
                purchase.mark_expired()
                _record(purchase, PurchaseEvent.EXPIRED, stream_type=Event.PURCHASE_EXPIRED)
                logger.info("Purchase %s expired before confirmation", order_ref)
                rejection = PurchaseExpired(order_ref=order_ref)
            elif not signature_ok:
                _record(purchase, PurchaseEvent.SIGNATURE_REJECTED, {'payment_id': payment_id or ''})
                logger.warning("Signature mismatch confirming purchase %s", order_ref)
                rejection = SignatureMismatch(order_ref=order_ref)
            else:
                account_id = purchase.account.account_id
                projection = BalanceService.credit(
                    account_id,
                    purchase.credits_requested,
                    entry_type=LedgerEntry.PURCHASE,
                    reference_type=LedgerEntry.REF_PAYMENT,
                    reference=order_ref,
                    metadata={
                        'order_ref': order_ref,
                        'payment_id': payment_id,
                        'package_id': purchase.package_id,
                        'package_name': purchase.package_name,
                        'amount_charged': str(purchase.amount_charged),
                        'currency': purchase.currency,
                    },
                )
                entry = LedgerEntry.objects.filter(
                    account=purchase.account,
                    entry_type=LedgerEntry.PURCHASE,
                    reference=order_ref,
                ).latest('sequence')
                purchase.mark_confirmed(payment_id, entry)
                _record(
                    purchase,
                    PurchaseEvent.CONFIRMED,
                    {'payment_id': payment_id, 'entry_id': entry.entry_id},
                    stream_type=Event.PURCHASE_CONFIRMED,
                )
                logger.info(
                    "Confirmed purchase %s: +%d credits for %s",
                    order_ref, purchase.credits_requested, account_id,
                )

        # Raised after commit so the expiry and rejection records persist
        if rejection is not None:
            raise rejection
        return projection

    @staticmethod
    @retry_on_contention
    @transaction.atomic
    def fail(order_ref, reason):
        """Move a pending purchase to ``failed`` (e.g. gateway reported failure)."""
        purchase = PurchaseService._lock(order_ref)
        if purchase.status != PendingPurchase.PENDING:
            raise AlreadyConfirmed(order_ref=order_ref, status=purchase.status)
        purchase.mark_failed(reason or 'Payment failed')
        _record(purchase, PurchaseEvent.FAILED, {'reason': purchase.error_message}, stream_type=Event.PURCHASE_FAILED)
        logger.info("Purchase %s failed: %s", order_ref, purchase.error_message)
        return purchase

    @staticmethod
    def expire_stale(now=None):
        """
        Expire every pending purchase whose ``expires_at`` has passed.

        Each purchase is expired in its own transaction; a purchase
        confirmed concurrently is left alone. Returns the number expired.
        """
        now = now or timezone.now()
        stale = PendingPurchase.objects.filter(
            status=PendingPurchase.PENDING, expires_at__lt=now
        ).values_list('order_ref', flat=True)

        expired = 0
        for order_ref in list(stale):
            with transaction.atomic():
                purchase = PurchaseService._lock(order_ref)
                if purchase.status != PendingPurchase.PENDING or not purchase.is_past_expiry(now):
                    continue
                purchase.mark_expired()
                _record(purchase, PurchaseEvent.EXPIRED, stream_type=Event.PURCHASE_EXPIRED)
                expired += 1

        if expired:
            logger.info("Expired %d stale purchases", expired)
        return expired
