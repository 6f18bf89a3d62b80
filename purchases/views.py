"""
Purchase API Views

REST API endpoints for the package catalogue and the purchase lifecycle.
"""

from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response

from ledger.serializers import AccountBalanceSerializer
from purchases.packages import get_packages, recommended_package
from purchases.serializers import (
    ConfirmPurchaseSerializer,
    FailPurchaseSerializer,
    InitiatePurchaseSerializer,
    PendingPurchaseSerializer,
)
from purchases.services import PurchaseService


@api_view(['GET'])
def list_packages(request):
    """
    Get the package catalogue, unit price and purchase limits.

    GET /api/purchases/packages/?monthly_applications=12
    """
    data = get_packages()
    monthly = request.query_params.get('monthly_applications')
    if monthly is not None:
        try:
            monthly = int(monthly)
        except ValueError:
            raise ValidationError({'monthly_applications': 'Must be an integer'})
        data['recommended'] = recommended_package(monthly)
    return Response(data, status=status.HTTP_200_OK)


@api_view(['POST'])
def initiate_purchase(request):
    """
    Initiate a credit purchase.

    POST /api/purchases/

    Body:
    {
        "account_id": "user-42",
        "package_id": 2
    }
    or
    {
        "account_id": "user-42",
        "credits_amount": 15
    }

    Returns:
        201 Created: Pending purchase with its order reference
    """
    body = InitiatePurchaseSerializer(data=request.data)
    body.is_valid(raise_exception=True)
    purchase = PurchaseService.initiate(
        body.validated_data['account_id'],
        credits_amount=body.validated_data.get('credits_amount'),
        package_id=body.validated_data.get('package_id'),
    )
    return Response(PendingPurchaseSerializer(purchase).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
def get_purchase(request, order_ref):
    """
    Get purchase details.

    GET /api/purchases/{order_ref}/
    """
    purchase = PurchaseService.get(order_ref)
    return Response(PendingPurchaseSerializer(purchase).data, status=status.HTTP_200_OK)


@api_view(['POST'])
def confirm_purchase(request, order_ref):
    """
    Confirm a purchase with the payment gateway's signature.

    POST /api/purchases/{order_ref}/confirm/

    Body:
    {
        "payment_id": "pay_123",
        "signature": "<hex hmac>"
    }
    """
    body = ConfirmPurchaseSerializer(data=request.data)
    body.is_valid(raise_exception=True)
    projection = PurchaseService.confirm(
        order_ref,
        body.validated_data['payment_id'],
        body.validated_data['signature'],
    )
    data = AccountBalanceSerializer(projection).data
    data['order_ref'] = order_ref
    return Response(data, status=status.HTTP_200_OK)


@api_view(['POST'])
def fail_purchase(request, order_ref):
    """
    Record a payment failure reported by the gateway.

    POST /api/purchases/{order_ref}/fail/
    """
    body = FailPurchaseSerializer(data=request.data)
    body.is_valid(raise_exception=True)
    purchase = PurchaseService.fail(order_ref, body.validated_data['reason'])
    return Response(PendingPurchaseSerializer(purchase).data, status=status.HTTP_200_OK)
