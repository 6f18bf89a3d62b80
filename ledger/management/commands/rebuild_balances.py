"""
Management command to rebuild or verify balance projections from the ledger.
"""
from django.core.management.base import BaseCommand, CommandError

from ledger.exceptions import CreditsError, InvariantViolation
from ledger.models import Account
from ledger.services import LedgerService


class Command(BaseCommand):
    help = 'Rebuild (or with --check, verify) account balances from ledger entries'

    def add_arguments(self, parser):
        parser.add_argument('--account', help='Only process this account_id')
        parser.add_argument(
            '--check',
            action='store_true',
            help='Report drift without rewriting projections',
        )

    def handle(self, *args, **options):
        if options['account']:
            account_ids = [options['account']]
        else:
            account_ids = list(Account.objects.order_by('account_id').values_list('account_id', flat=True))

        drifted = 0
        for account_id in account_ids:
            try:
                if options['check']:
                    LedgerService.verify_account(account_id)
                    self.stdout.write(f'OK: {account_id}')
                else:
                    projection = LedgerService.rebuild_account(account_id)
                    self.stdout.write(
                        self.style.SUCCESS(f'Rebuilt {account_id}: balance {projection.balance}')
                    )
            except InvariantViolation as exc:
                drifted += 1
                self.stderr.write(self.style.ERROR(f'DRIFT: {account_id}: {exc.internal_detail}'))
            except CreditsError as exc:
                raise CommandError(exc.message)

        if options['check'] and drifted:
            raise CommandError(f'{drifted} account(s) drifted from the ledger')
        self.stdout.write(self.style.SUCCESS(f'\nProcessed {len(account_ids)} account(s).'))
