"""Serializers for refund API views."""

from rest_framework import serializers

from refunds.policy import RefundReason


class RefundRequestSerializer(serializers.Serializer):
    entry_id = serializers.IntegerField(min_value=1)
    reason = serializers.ChoiceField(choices=RefundReason.choices, default=RefundReason.WITHDRAWAL)
    description = serializers.CharField(required=False, allow_blank=True, default='')


class EligibilityQuerySerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=RefundReason.choices, default=RefundReason.WITHDRAWAL)
