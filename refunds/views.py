"""
Refund API Views

REST API endpoints for refund eligibility checks and refund application.
"""

from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from ledger.serializers import AccountBalanceSerializer
from refunds.serializers import EligibilityQuerySerializer, RefundRequestSerializer
from refunds.services import RefundService


@api_view(['GET'])
def refund_eligibility(request, account_id, entry_id):
    """
    Check whether a purchase entry can be refunded, and for how much.

    GET /api/accounts/{account_id}/refunds/{entry_id}/eligibility/?reason=withdrawal
    """
    query = EligibilityQuerySerializer(data=request.query_params)
    query.is_valid(raise_exception=True)
    decision = RefundService.check_eligibility(account_id, entry_id, reason=query.validated_data['reason'])
    data = decision.as_dict()
    data['entry_id'] = entry_id
    return Response(data, status=status.HTTP_200_OK)


@api_view(['POST'])
def apply_refund(request, account_id):
    """
    Refund the eligible portion of a purchase.

    POST /api/accounts/{account_id}/refunds/

    Body:
    {
        "entry_id": 17,
        "reason": "withdrawal"
    }
    """
    body = RefundRequestSerializer(data=request.data)
    body.is_valid(raise_exception=True)
    projection, decision = RefundService.apply_refund(
        account_id,
        body.validated_data['entry_id'],
        reason=body.validated_data['reason'],
        description=body.validated_data['description'],
    )
    data = AccountBalanceSerializer(projection).data
    data['refund'] = decision.as_dict()
    return Response(data, status=status.HTTP_201_CREATED)
