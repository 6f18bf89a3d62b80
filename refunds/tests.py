"""
Tests for Refund Policy and Services

Tests cover:
- Time-tiered refund windows
- Capping at credits still unused from the purchase
- Refund application and its audit trail
- A purchase made through the purchase flow, partly spent, then refunded
"""

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from events.models import Event
from ledger.exceptions import InvalidCreditOperation, RefundIneligible
from ledger.models import LedgerEntry
from ledger.services import BalanceService, LedgerService
from purchases.services import PurchaseService
from purchases.signatures import compute_signature
from refunds.policy import (
    REASON_ALREADY_REFUNDED,
    REASON_NOT_PURCHASE,
    REASON_WINDOW_EXPIRED,
    RefundReason,
    compute_refund_eligibility,
    unused_credits_by_entry,
)
from refunds.services import RefundService


class RefundPolicyTests(TestCase):
    """Test the pure eligibility rules."""

    def setUp(self):
        self.now = timezone.now()

    def purchase(self, amount=10, age=timedelta(0)):
        return SimpleNamespace(
            entry_type=LedgerEntry.PURCHASE, amount=amount, created_at=self.now - age
        )

    def test_full_window(self):
        decision = compute_refund_eligibility(self.purchase(age=timedelta(minutes=10)), self.now, 10)
        self.assertTrue(decision.eligible)
        self.assertEqual(decision.percent, 100)
        self.assertEqual(decision.refund_amount, 10)

    def test_partial_window(self):
        decision = compute_refund_eligibility(self.purchase(age=timedelta(hours=5)), self.now, 10)
        self.assertTrue(decision.eligible)
        self.assertEqual(decision.percent, 50)
        self.assertEqual(decision.refund_amount, 5)

    def test_window_expired(self):
        decision = compute_refund_eligibility(self.purchase(age=timedelta(hours=48)), self.now, 10)
        self.assertFalse(decision.eligible)
        self.assertEqual(decision.reason, REASON_WINDOW_EXPIRED)

    def test_window_boundaries(self):
        at_full = compute_refund_eligibility(self.purchase(age=timedelta(minutes=30)), self.now, 10)
        self.assertEqual(at_full.percent, 100)
        at_partial = compute_refund_eligibility(self.purchase(age=timedelta(hours=24)), self.now, 10)
        self.assertEqual(at_partial.percent, 50)

    def test_capped_at_unused(self):
        decision = compute_refund_eligibility(self.purchase(age=timedelta(minutes=20)), self.now, 7)
        self.assertEqual(decision.refund_amount, 7)
        decision = compute_refund_eligibility(self.purchase(age=timedelta(hours=2)), self.now, 3)
        self.assertEqual(decision.refund_amount, 3)

    def test_nothing_unused(self):
        decision = compute_refund_eligibility(self.purchase(), self.now, 0)
        self.assertFalse(decision.eligible)

    def test_non_withdrawal_reasons_ignore_window(self):
        decision = compute_refund_eligibility(
            self.purchase(age=timedelta(days=10)), self.now, 6, reason=RefundReason.TECHNICAL_ERROR
        )
        self.assertTrue(decision.eligible)
        self.assertEqual(decision.refund_amount, 6)

    def test_only_purchases_refundable(self):
        bonus = SimpleNamespace(entry_type=LedgerEntry.SIGNUP_BONUS, amount=5, created_at=self.now)
        decision = compute_refund_eligibility(bonus, self.now, 5)
        self.assertEqual(decision.reason, REASON_NOT_PURCHASE)

    def test_already_refunded(self):
        decision = compute_refund_eligibility(self.purchase(), self.now, 10, already_refunded=True)
        self.assertEqual(decision.reason, REASON_ALREADY_REFUNDED)

    def test_unknown_reason(self):
        with self.assertRaises(InvalidCreditOperation):
            compute_refund_eligibility(self.purchase(), self.now, 10, reason='changed_my_mind')

    def test_usage_drains_oldest_credits_first(self):
        unused = unused_credits_by_entry([(1, 5), (2, 10), (3, -7), (4, 4), (5, -2)])
        self.assertEqual(unused, {1: 0, 2: 6, 4: 4})


class RefundServiceTests(TestCase):
    """Test refund application against the ledger."""

    def setUp(self):
        BalanceService.credit('user-1', 10, reference='order_1')
        self.purchase = LedgerEntry.objects.get(account__account_id='user-1')
        BalanceService.debit('user-1', 3, reference='12')

    def test_refund_unused_portion(self):
        now = self.purchase.created_at + timedelta(minutes=20)

        decision = RefundService.check_eligibility('user-1', self.purchase.entry_id, now=now)
        self.assertEqual(decision.refund_amount, 7)

        projection, decision = RefundService.apply_refund('user-1', self.purchase.entry_id, now=now)
        self.assertEqual(decision.refund_amount, 7)
        self.assertEqual(projection.balance, 14)
        self.assertEqual(projection.total_used, 0)

        refund = LedgerEntry.objects.filter(entry_type=LedgerEntry.REFUND).get()
        self.assertEqual(refund.amount, 7)
        self.assertEqual(refund.reference_type, LedgerEntry.REF_PURCHASE_ENTRY)
        self.assertEqual(refund.reference, str(self.purchase.entry_id))
        self.assertTrue(Event.objects.filter(event_id=f"refund_{self.purchase.entry_id}").exists())

        # Original purchase entry is untouched
        original = LedgerEntry.objects.get(entry_id=self.purchase.entry_id)
        self.assertEqual(original.amount, 10)
        self.assertEqual(original.balance_after, 10)

    def test_refund_only_once(self):
        now = self.purchase.created_at + timedelta(minutes=5)
        RefundService.apply_refund('user-1', self.purchase.entry_id, now=now)

        with self.assertRaises(RefundIneligible) as ctx:
            RefundService.apply_refund('user-1', self.purchase.entry_id, now=now)
        self.assertEqual(ctx.exception.reason, REASON_ALREADY_REFUNDED)
        self.assertEqual(LedgerEntry.objects.filter(entry_type=LedgerEntry.REFUND).count(), 1)

    def test_expired_window_leaves_ledger_unchanged(self):
        now = self.purchase.created_at + timedelta(hours=48)
        with self.assertRaises(RefundIneligible) as ctx:
            RefundService.apply_refund('user-1', self.purchase.entry_id, now=now)
        self.assertEqual(ctx.exception.reason, REASON_WINDOW_EXPIRED)
        self.assertEqual(LedgerEntry.objects.count(), 2)

    def test_non_purchase_entry(self):
        debit = LedgerEntry.objects.get(entry_type=LedgerEntry.DEDUCTION)
        with self.assertRaises(RefundIneligible):
            RefundService.apply_refund('user-1', debit.entry_id)

    def test_other_accounts_entry(self):
        BalanceService.credit('user-2', 5)
        with self.assertRaises(RefundIneligible):
            RefundService.apply_refund('user-2', self.purchase.entry_id)


class RefundApiTests(TestCase):
    """Test the HTTP surface."""

    def setUp(self):
        self.client = APIClient()
        BalanceService.credit('user-1', 10)
        self.purchase = LedgerEntry.objects.get(account__account_id='user-1')

    def test_eligibility_and_apply(self):
        response = self.client.get(f'/api/accounts/user-1/refunds/{self.purchase.entry_id}/eligibility/')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['eligible'])
        self.assertEqual(response.data['refund_amount'], 10)

        response = self.client.post(
            '/api/accounts/user-1/refunds/', {'entry_id': self.purchase.entry_id}, format='json'
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['balance'], 20)
        self.assertEqual(response.data['refund']['refund_amount'], 10)

        response = self.client.post(
            '/api/accounts/user-1/refunds/', {'entry_id': self.purchase.entry_id}, format='json'
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error']['code'], 'REFUND_NOT_ELIGIBLE')
        self.assertEqual(response.data['error']['reason'], REASON_ALREADY_REFUNDED)


@override_settings(PAYMENT_GATEWAY_SECRET='test-secret')
class PurchaseRefundFlowTests(TestCase):
    """A refund of a purchase made through the purchase flow."""

    def test_buy_spend_refund(self):
        purchase = PurchaseService.initiate('user-1', credits_amount=10)
        self.assertEqual(purchase.amount_charged, Decimal('500'))
        PurchaseService.confirm(
            purchase.order_ref, 'pay_1', compute_signature(purchase.order_ref, 'pay_1')
        )
        BalanceService.debit('user-1', 3, reference='12')

        purchase.refresh_from_db()
        entry = purchase.ledger_entry
        now = entry.created_at + timedelta(minutes=20)

        projection, decision = RefundService.apply_refund('user-1', entry.entry_id, now=now)

        self.assertEqual(decision.percent, 100)
        self.assertEqual(decision.refund_amount, 7)
        self.assertEqual(projection.balance, 14)
        self.assertEqual(LedgerService.verify_account('user-1').balance, 14)
        self.assertEqual(
            list(LedgerEntry.objects.filter(account__account_id='user-1')
                 .order_by('sequence').values_list('entry_type', 'amount')),
            [(LedgerEntry.PURCHASE, 10), (LedgerEntry.DEDUCTION, -3), (LedgerEntry.REFUND, 7)],
        )
