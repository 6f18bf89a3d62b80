"""
Tests for Read Models

Tests cover:
- Read model rebuilds
- State derivation from source data
"""

from django.test import TestCase

from ledger.models import Account, LedgerEntry
from ledger.services import BalanceService
from read_models.models import AccountBalance, apply_entry


class ReadModelTests(TestCase):
    """Test read models."""

    def setUp(self):
        BalanceService.credit('user-1', 10)
        BalanceService.debit('user-1', 4)
        BalanceService.admin_adjust('user-1', 3, 'Goodwill credit for outage', 'admin-1')
        self.account = Account.objects.get(account_id='user-1')

    def test_account_balance_rebuild(self):
        """Test that account balance can be rebuilt from scratch."""
        AccountBalance.objects.filter(account=self.account).delete()

        balance = AccountBalance.rebuild_for_account(self.account)

        self.assertEqual(balance.balance, 9)
        self.assertEqual(balance.total_purchased, 13)
        self.assertEqual(balance.total_used, 4)
        self.assertEqual(balance.last_entry_sequence, 3)

    def test_incremental_matches_replay(self):
        stored = AccountBalance.objects.get(account=self.account)
        self.assertEqual(AccountBalance.replay(self.account), stored.totals())

    def test_refund_gives_usage_back(self):
        totals = {'balance': 6, 'total_purchased': 10, 'total_used': 4, 'last_entry_sequence': 2}
        apply_entry(totals, LedgerEntry.REFUND, 6, 12, 3)
        self.assertEqual(totals['total_used'], 0)
        self.assertEqual(totals['balance'], 12)
        self.assertEqual(totals['last_entry_sequence'], 3)

    def test_empty_account_rebuilds_to_zero(self):
        account = Account.objects.create(account_id='user-2')
        balance = AccountBalance.rebuild_for_account(account)
        self.assertEqual(balance.totals(), {
            'balance': 0, 'total_purchased': 0, 'total_used': 0, 'last_entry_sequence': 0,
        })
