"""Serializers for purchase API views."""

from rest_framework import serializers

from purchases.models import PendingPurchase


class PendingPurchaseSerializer(serializers.ModelSerializer):
    account_id = serializers.CharField(source='account.account_id')
    entry_id = serializers.IntegerField(source='ledger_entry_id', allow_null=True)

    class Meta:
        model = PendingPurchase
        fields = [
            'order_ref', 'account_id', 'credits_requested', 'amount_charged', 'currency',
            'package_id', 'package_name', 'status', 'payment_id', 'entry_id',
            'error_message', 'created_at', 'expires_at', 'finalized_at',
        ]


class InitiatePurchaseSerializer(serializers.Serializer):
    account_id = serializers.CharField()
    credits_amount = serializers.IntegerField(required=False)
    package_id = serializers.IntegerField(required=False)

    def validate(self, attrs):
        if ('credits_amount' in attrs) == ('package_id' in attrs):
            raise serializers.ValidationError("Provide either credits_amount or package_id")
        return attrs


class ConfirmPurchaseSerializer(serializers.Serializer):
    payment_id = serializers.CharField()
    signature = serializers.CharField()


class FailPurchaseSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')
