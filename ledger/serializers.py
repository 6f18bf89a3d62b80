"""Serializers for ledger API views."""

from rest_framework import serializers

from ledger.models import LedgerEntry
from ledger.services import ENTRY_SORT_FIELDS
from read_models.models import AccountBalance


class LedgerEntrySerializer(serializers.ModelSerializer):
    type = serializers.CharField(source='entry_type')
    account_id = serializers.CharField(source='account.account_id')

    class Meta:
        model = LedgerEntry
        fields = [
            'entry_id', 'account_id', 'sequence', 'type', 'amount', 'balance_after',
            'reference_type', 'reference', 'description', 'created_at',
        ]


class AccountBalanceSerializer(serializers.ModelSerializer):
    account_id = serializers.CharField(source='account.account_id')

    class Meta:
        model = AccountBalance
        fields = ['account_id', 'balance', 'total_purchased', 'total_used', 'last_updated_at']


class DebitSerializer(serializers.Serializer):
    amount = serializers.IntegerField(min_value=1)
    reference = serializers.CharField(required=False, allow_blank=True, default='')
    description = serializers.CharField(required=False, allow_blank=True, default='')


class AdminAdjustSerializer(serializers.Serializer):
    delta = serializers.IntegerField()
    reason = serializers.CharField()
    admin_id = serializers.CharField()


class DateRangeQuerySerializer(serializers.Serializer):
    date_from = serializers.DateTimeField(required=False)
    date_to = serializers.DateTimeField(required=False)

    def to_internal_value(self, data):
        data = data.copy()
        # Accept the shorter ?from= / ?to= query parameters
        for short, full in (('from', 'date_from'), ('to', 'date_to')):
            if short in data and full not in data:
                data[full] = data[short]
        return super().to_internal_value(data)


class EntryExportQuerySerializer(DateRangeQuerySerializer):
    account_id = serializers.CharField(required=False)
    type = serializers.ChoiceField(choices=LedgerEntry.ENTRY_TYPES, required=False)


class EntryListQuerySerializer(EntryExportQuerySerializer):
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    limit = serializers.IntegerField(required=False, min_value=1, default=50)
    sort_by = serializers.ChoiceField(choices=ENTRY_SORT_FIELDS, required=False, default='created_at')
    sort_order = serializers.ChoiceField(choices=['asc', 'desc'], required=False, default='desc')


class HistoryQuerySerializer(DateRangeQuerySerializer):
    limit = serializers.IntegerField(required=False, min_value=1, max_value=100, default=20)
    offset = serializers.IntegerField(required=False, min_value=0, default=0)
    type = serializers.ChoiceField(choices=LedgerEntry.ENTRY_TYPES, required=False)
