"""
Tests for Purchase Models and Services

Tests cover:
- Package catalogue and quotes
- Exactly-once crediting on confirmation
- Signature verification
- Expiry and failure transitions
- Periodic expiry task
"""

from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import OperationalError
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from events.models import Event
from ledger.exceptions import (
    AlreadyConfirmed,
    BalanceCeilingExceeded,
    InvalidCreditOperation,
    PurchaseExpired,
    PurchaseNotFound,
    SignatureMismatch,
)
from ledger.models import LedgerEntry
from ledger.services import BalanceService, LedgerService
from purchases.models import PendingPurchase, PurchaseEvent
from purchases.packages import calculate_price, get_packages, quote, recommended_package
from purchases.services import PurchaseService
from purchases.signatures import compute_signature, verify_signature
from purchases.tasks import expire_stale_purchases, fail_purchase


class PackageCatalogueTests(TestCase):
    """Test package resolution and pricing."""

    def test_get_packages(self):
        catalogue = get_packages()
        self.assertEqual(len(catalogue['packages']), 4)
        self.assertEqual(catalogue['price_per_credit'], 50)
        self.assertEqual(catalogue['limits']['max_purchase'], 100)

    def test_custom_quote(self):
        q = quote(credits_amount=10)
        self.assertEqual(q.credits, 10)
        self.assertEqual(q.price, Decimal('500'))
        self.assertFalse(q.is_package)
        self.assertEqual(calculate_price(3), Decimal('150'))

    def test_package_quote(self):
        q = quote(package_id=3)
        self.assertEqual(q.credits, 25)
        self.assertEqual(q.price, Decimal('1000'))
        self.assertEqual(q.package_name, 'Pro')
        self.assertTrue(q.is_package)

    def test_invalid_requests(self):
        for kwargs in ({}, {'credits_amount': 5, 'package_id': 1}, {'package_id': 99},
                       {'credits_amount': 0}, {'credits_amount': 101}):
            with self.assertRaises(InvalidCreditOperation):
                quote(**kwargs)

    def test_recommended_package(self):
        self.assertEqual(recommended_package(3)['name'], 'Starter')
        self.assertEqual(recommended_package(10)['name'], 'Basic')
        self.assertEqual(recommended_package(11)['name'], 'Pro')
        self.assertEqual(recommended_package(80)['name'], 'Business')


@override_settings(PAYMENT_GATEWAY_SECRET='test-secret')
class SignatureTests(TestCase):

    def test_round_trip(self):
        signature = compute_signature('order_1', 'pay_1')
        self.assertTrue(verify_signature('order_1', 'pay_1', signature))
        self.assertFalse(verify_signature('order_1', 'pay_2', signature))
        self.assertFalse(verify_signature('order_1', 'pay_1', ''))

    @override_settings(PAYMENT_GATEWAY_SECRET='')
    def test_missing_secret(self):
        with self.assertRaises(ImproperlyConfigured):
            compute_signature('order_1', 'pay_1')


@override_settings(PAYMENT_GATEWAY_SECRET='test-secret')
class PurchaseFlowTests(TestCase):
    """Test the purchase lifecycle."""

    def confirm(self, purchase, payment_id='pay_1', **kwargs):
        signature = compute_signature(purchase.order_ref, payment_id)
        return PurchaseService.confirm(purchase.order_ref, payment_id, signature, **kwargs)

    def test_initiate_custom_amount(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=10)

        self.assertEqual(purchase.status, PendingPurchase.PENDING)
        self.assertEqual(purchase.amount_charged, Decimal('500'))
        self.assertTrue(purchase.order_ref.startswith('order_'))
        self.assertEqual(purchase.expires_at - purchase.created_at, timedelta(minutes=30))
        self.assertEqual(purchase.events.get().event_type, PurchaseEvent.INITIATED)
        self.assertFalse(LedgerEntry.objects.exists())

    def test_initiate_package(self):
        purchase = PurchaseService.initiate('user-1', package_id=2)
        self.assertEqual(purchase.credits_requested, 10)
        self.assertEqual(purchase.amount_charged, Decimal('450'))
        self.assertEqual(purchase.package_name, 'Basic')

    def test_initiate_rejects_ceiling_before_writing(self):
        BalanceService.credit('user-1', settings.CREDIT_CONFIG['MAX_BALANCE'] - 5)

        with self.assertRaises(BalanceCeilingExceeded):
            PurchaseService.initiate('user-1', credits_amount=6)
        self.assertFalse(PendingPurchase.objects.exists())

    def test_initiate_rejects_out_of_range(self):
        with self.assertRaises(InvalidCreditOperation):
            PurchaseService.initiate('user-1', credits_amount=101)
        self.assertFalse(PendingPurchase.objects.exists())

    def test_initiate_retries_contention(self):
        account = LedgerService.open_account('user-1')
        with mock.patch('ledger.retry.transaction') as retry_transaction, \
                mock.patch('ledger.retry.time.sleep'), \
                mock.patch('purchases.services.LedgerService.open_account',
                           side_effect=[OperationalError('lock timeout'), account]) as open_account:
            retry_transaction.get_connection.return_value.in_atomic_block = False
            purchase = PurchaseService.initiate('user-1', credits_amount=10)

        self.assertEqual(open_account.call_count, 2)
        self.assertEqual(PendingPurchase.objects.get().order_ref, purchase.order_ref)

    def test_confirm_credits_once(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=10)

        projection = self.confirm(purchase)
        self.assertEqual(projection.balance, 10)

        # Replaying the same confirmation does not credit again
        projection = self.confirm(purchase)
        self.assertEqual(projection.balance, 10)

        entries = LedgerEntry.objects.filter(entry_type=LedgerEntry.PURCHASE)
        self.assertEqual(entries.count(), 1)
        entry = entries.get()
        self.assertEqual(entry.reference_type, LedgerEntry.REF_PAYMENT)
        self.assertEqual(entry.reference, purchase.order_ref)
        self.assertEqual(entry.metadata['payment_id'], 'pay_1')

        purchase.refresh_from_db()
        self.assertEqual(purchase.status, PendingPurchase.CONFIRMED)
        self.assertEqual(purchase.ledger_entry, entry)
        self.assertCountEqual(
            list(purchase.events.values_list('event_type', flat=True)),
            [PurchaseEvent.INITIATED, PurchaseEvent.CONFIRMED, PurchaseEvent.CONFIRM_REPLAYED],
        )
        self.assertTrue(Event.objects.filter(
            event_type=Event.PURCHASE_CONFIRMED, aggregate_id=purchase.order_ref
        ).exists())

    def test_replayed_confirm_returns_recorded_result(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=10)
        first = self.confirm(purchase)
        BalanceService.debit('user-1', 4)

        replay = self.confirm(purchase)

        self.assertEqual(first.balance, 10)
        self.assertEqual(replay.balance, 10)
        self.assertEqual(replay.total_purchased, 10)
        self.assertEqual(replay.total_used, 0)
        self.assertEqual(replay.account.account_id, 'user-1')
        self.assertEqual(LedgerService.get_balance('user-1').balance, 6)

    def test_replayed_confirm_over_api_returns_recorded_balance(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=10)
        self.confirm(purchase)
        BalanceService.debit('user-1', 4)

        response = APIClient().post(
            f'/api/purchases/{purchase.order_ref}/confirm/',
            {'payment_id': 'pay_1', 'signature': compute_signature(purchase.order_ref, 'pay_1')},
            format='json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['balance'], 10)

    def test_row_locks_are_bounded(self):
        confirmed = PurchaseService.initiate('user-1', credits_amount=10)
        failed = PurchaseService.initiate('user-2', credits_amount=5)
        PurchaseService.initiate('user-3', credits_amount=5, now=timezone.now() - timedelta(hours=1))

        with mock.patch('purchases.services.set_lock_timeout') as set_lock_timeout:
            self.confirm(confirmed)
            PurchaseService.fail(failed.order_ref, 'Card declined')
            self.assertEqual(PurchaseService.expire_stale(), 1)
        self.assertEqual(set_lock_timeout.call_count, 3)

    def test_confirm_with_different_payment_rejected(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=10)
        self.confirm(purchase)

        with self.assertRaises(AlreadyConfirmed):
            self.confirm(purchase, payment_id='pay_2')
        self.assertEqual(LedgerService.get_balance('user-1').balance, 10)

    def test_signature_mismatch_keeps_pending(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=10)

        with self.assertRaises(SignatureMismatch):
            PurchaseService.confirm(purchase.order_ref, 'pay_1', 'forged')

        purchase.refresh_from_db()
        self.assertEqual(purchase.status, PendingPurchase.PENDING)
        self.assertFalse(LedgerEntry.objects.exists())
        self.assertTrue(purchase.events.filter(event_type=PurchaseEvent.SIGNATURE_REJECTED).exists())

        # A valid confirmation still succeeds afterwards
        self.assertEqual(self.confirm(purchase).balance, 10)

    def test_confirm_after_expiry(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=10)
        later = purchase.expires_at + timedelta(seconds=1)

        with self.assertRaises(PurchaseExpired):
            self.confirm(purchase, now=later)

        purchase.refresh_from_db()
        self.assertEqual(purchase.status, PendingPurchase.EXPIRED)
        self.assertFalse(LedgerEntry.objects.exists())

        with self.assertRaises(PurchaseExpired):
            self.confirm(purchase)

    def test_confirm_unknown_order(self):
        with self.assertRaises(PurchaseNotFound):
            PurchaseService.confirm('order_missing', 'pay_1', 'sig')

    def test_confirm_over_ceiling_stays_pending(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=10)
        BalanceService.credit('user-1', settings.CREDIT_CONFIG['MAX_BALANCE'] - 5)

        with self.assertRaises(BalanceCeilingExceeded):
            self.confirm(purchase)

        purchase.refresh_from_db()
        self.assertEqual(purchase.status, PendingPurchase.PENDING)

    def test_fail(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=10)
        PurchaseService.fail(purchase.order_ref, 'Card declined')

        purchase.refresh_from_db()
        self.assertEqual(purchase.status, PendingPurchase.FAILED)
        self.assertEqual(purchase.error_message, 'Card declined')

        with self.assertRaises(AlreadyConfirmed):
            self.confirm(purchase)
        with self.assertRaises(AlreadyConfirmed):
            PurchaseService.fail(purchase.order_ref, 'again')

    def test_terminal_states_are_final(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=10)
        purchase.mark_expired()
        with self.assertRaises(ValueError):
            purchase.mark_failed('late failure')


@override_settings(PAYMENT_GATEWAY_SECRET='test-secret')
class PurchaseTaskTests(TestCase):
    """Test Celery tasks (called directly)."""

    def test_expire_stale_purchases(self):
        stale = PurchaseService.initiate('user-1', credits_amount=5, now=timezone.now() - timedelta(hours=1))
        fresh = PurchaseService.initiate('user-1', credits_amount=5)

        result = expire_stale_purchases()
        self.assertEqual(result, {'expired': 1})

        stale.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(stale.status, PendingPurchase.EXPIRED)
        self.assertEqual(fresh.status, PendingPurchase.PENDING)

        # Idempotent
        self.assertEqual(expire_stale_purchases(), {'expired': 0})

    def test_fail_purchase_task_is_idempotent(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=5)

        self.assertEqual(fail_purchase(purchase.order_ref, 'Card declined')['status'], PendingPurchase.FAILED)
        self.assertEqual(fail_purchase(purchase.order_ref, 'Card declined')['message'], 'Already finalized')
        self.assertEqual(fail_purchase('order_missing', 'x'), {'error': 'Purchase not found'})


@override_settings(PAYMENT_GATEWAY_SECRET='test-secret')
class PurchaseApiTests(TestCase):
    """Test the HTTP surface."""

    def setUp(self):
        self.client = APIClient()

    def test_packages(self):
        response = self.client.get('/api/purchases/packages/', {'monthly_applications': 20})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['recommended']['name'], 'Pro')

    def test_initiate_and_confirm(self):
        response = self.client.post(
            '/api/purchases/', {'account_id': 'user-1', 'credits_amount': 10}, format='json'
        )
        self.assertEqual(response.status_code, 201)
        order_ref = response.data['order_ref']
        self.assertEqual(response.data['status'], PendingPurchase.PENDING)

        response = self.client.post(
            f'/api/purchases/{order_ref}/confirm/',
            {'payment_id': 'pay_1', 'signature': compute_signature(order_ref, 'pay_1')},
            format='json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['balance'], 10)

        response = self.client.get(f'/api/purchases/{order_ref}/')
        self.assertEqual(response.data['status'], PendingPurchase.CONFIRMED)

    def test_bad_signature(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=10)
        response = self.client.post(
            f'/api/purchases/{purchase.order_ref}/confirm/',
            {'payment_id': 'pay_1', 'signature': 'forged'},
            format='json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error']['code'], 'INVALID_SIGNATURE')

    def test_missing_purchase(self):
        response = self.client.get('/api/purchases/order_missing/')
        self.assertEqual(response.status_code, 404)
