"""Admin configuration for purchases app."""
from django.contrib import admin
from .models import PendingPurchase, PurchaseEvent


@admin.register(PendingPurchase)
class PendingPurchaseAdmin(admin.ModelAdmin):
    list_display = ['order_ref', 'account', 'credits_requested', 'amount_charged', 'status', 'created_at']
    list_filter = ['status', 'created_at']
    search_fields = ['order_ref', 'account__account_id', 'payment_id']
    readonly_fields = [
        'id', 'order_ref', 'account', 'credits_requested', 'amount_charged', 'currency',
        'package_id', 'package_name', 'status', 'payment_id', 'ledger_entry',
        'error_message', 'created_at', 'expires_at', 'updated_at', 'finalized_at', 'metadata',
    ]

    fieldsets = (
        ('Order', {
            'fields': ('order_ref', 'account', 'status')
        }),
        ('Pricing', {
            'fields': ('credits_requested', 'amount_charged', 'currency', 'package_id', 'package_name')
        }),
        ('Tracking', {
            'fields': ('payment_id', 'ledger_entry', 'error_message')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'expires_at', 'updated_at', 'finalized_at')
        }),
        ('Metadata', {
            'fields': ('metadata',)
        }),
    )

    def has_add_permission(self, request):
        # Purchases are created through the purchase flow only
        return False

    def has_delete_permission(self, request, obj=None):
        # Kept for audit
        return False


@admin.register(PurchaseEvent)
class PurchaseEventAdmin(admin.ModelAdmin):
    list_display = ['purchase', 'event_type', 'created_at']
    list_filter = ['event_type', 'created_at']
    search_fields = ['purchase__order_ref']
    readonly_fields = ['id', 'purchase', 'event_type', 'event_data', 'created_at']
    ordering = ['-created_at']

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
