"""Admin configuration for ledger app."""
from django.contrib import admin
from .models import Account, LedgerEntry


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    list_display = ['account_id', 'created_at']
    search_fields = ['account_id']
    readonly_fields = ['id', 'created_at', 'updated_at']


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    list_display = ['account', 'sequence', 'entry_type', 'amount', 'balance_after', 'reference', 'created_at']
    list_filter = ['entry_type', 'reference_type', 'created_at']
    search_fields = ['account__account_id', 'reference']
    readonly_fields = ['entry_id', 'created_at']
    ordering = ['account', '-sequence']

    def has_add_permission(self, request):
        # Entries are appended through the balance service only
        return False

    def has_delete_permission(self, request, obj=None):
        # Prevent deletion of ledger entries (immutable)
        return False

    def has_change_permission(self, request, obj=None):
        # Prevent updates to ledger entries (immutable)
        return False
