"""Admin configuration for read_models app."""
from django.contrib import admin
from .models import AccountBalance


@admin.register(AccountBalance)
class AccountBalanceAdmin(admin.ModelAdmin):
    list_display = ['account', 'balance', 'total_purchased', 'total_used', 'last_updated_at']
    list_filter = ['last_updated_at']
    search_fields = ['account__account_id']
    readonly_fields = [
        'id', 'account', 'balance', 'total_purchased', 'total_used',
        'last_entry_sequence', 'last_updated_at',
    ]

    def has_add_permission(self, request):
        # Projections are written only by the balance service
        return False
