"""
Ledger API Views

REST API endpoints for balances, history and balance mutations.
Identity is supplied by the caller; authentication is handled upstream.
"""

import csv

from django.http import HttpResponse
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from ledger.models import LedgerEntry
from ledger.serializers import (
    AccountBalanceSerializer,
    AdminAdjustSerializer,
    DateRangeQuerySerializer,
    DebitSerializer,
    EntryExportQuerySerializer,
    EntryListQuerySerializer,
    HistoryQuerySerializer,
    LedgerEntrySerializer,
)
from ledger.services import BalanceService, LedgerService


@api_view(['GET'])
def get_balance(request, account_id):
    """
    Get the current credits position.

    GET /api/accounts/{account_id}/balance/
    """
    projection = LedgerService.get_balance(account_id)
    return Response(AccountBalanceSerializer(projection).data, status=status.HTTP_200_OK)


@api_view(['GET'])
def get_history(request, account_id):
    """
    Get ledger history, most recent first.

    GET /api/accounts/{account_id}/history/?limit=20&offset=0&type=purchase&from=...&to=...
    """
    query = HistoryQuerySerializer(data=request.query_params)
    query.is_valid(raise_exception=True)
    filters = {
        'entry_type': query.validated_data.get('type'),
        'date_from': query.validated_data.get('date_from'),
        'date_to': query.validated_data.get('date_to'),
    }
    limit = query.validated_data['limit']
    offset = query.validated_data['offset']

    projection = LedgerService.get_balance(account_id)
    entries = LedgerService.history(account_id, limit=limit, offset=offset, **filters)
    total = LedgerService.history_count(account_id, **filters)

    return Response({
        'entries': LedgerEntrySerializer(entries, many=True).data,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
        },
        'balance': projection.balance,
    }, status=status.HTTP_200_OK)


@api_view(['POST'])
def debit_credits(request, account_id):
    """
    Spend credits (e.g. applying to a project).

    POST /api/accounts/{account_id}/debit/

    Body:
    {
        "amount": 1,
        "reference": "project-42"
    }
    """
    body = DebitSerializer(data=request.data)
    body.is_valid(raise_exception=True)
    reference = body.validated_data['reference']
    projection = BalanceService.debit(
        account_id,
        body.validated_data['amount'],
        entry_type=LedgerEntry.DEDUCTION,
        reference_type=LedgerEntry.REF_APPLICATION if reference else '',
        reference=reference,
        description=body.validated_data['description'],
    )
    return Response(AccountBalanceSerializer(projection).data, status=status.HTTP_200_OK)


@api_view(['POST'])
def adjust_credits(request, account_id):
    """
    Administrative adjustment.

    POST /api/accounts/{account_id}/adjust/

    Body:
    {
        "delta": -3,
        "reason": "Duplicate application charge",
        "admin_id": "admin-7"
    }
    """
    body = AdminAdjustSerializer(data=request.data)
    body.is_valid(raise_exception=True)
    projection = BalanceService.admin_adjust(
        account_id,
        body.validated_data['delta'],
        body.validated_data['reason'],
        body.validated_data['admin_id'],
    )
    data = AccountBalanceSerializer(projection).data
    data['adjustment'] = body.validated_data['delta']
    return Response(data, status=status.HTTP_200_OK)


@api_view(['POST'])
def grant_signup_bonus(request, account_id):
    """
    Grant the one-time welcome bonus.

    POST /api/accounts/{account_id}/signup-bonus/

    Returns:
        201 Created: Bonus granted
        200 OK: Bonus was already granted (idempotent)
    """
    projection, granted = BalanceService.grant_signup_bonus(account_id)
    data = AccountBalanceSerializer(projection).data
    data['granted'] = granted
    return Response(data, status=status.HTTP_201_CREATED if granted else status.HTTP_200_OK)


@api_view(['GET'])
def list_entries(request):
    """
    List ledger entries across all accounts (administrators).

    GET /api/admin/credits/entries/?page=1&limit=50&account_id=user-42&type=purchase
        &from=...&to=...&sort_by=created_at&sort_order=desc
    """
    query = EntryListQuerySerializer(data=request.query_params)
    query.is_valid(raise_exception=True)
    params = query.validated_data
    result = LedgerService.list_entries(
        page=params['page'],
        limit=params['limit'],
        account_id=params.get('account_id'),
        entry_type=params.get('type'),
        date_from=params.get('date_from'),
        date_to=params.get('date_to'),
        sort_by=params['sort_by'],
        sort_order=params['sort_order'],
    )
    return Response({
        'entries': LedgerEntrySerializer(result['entries'], many=True).data,
        'pagination': {
            'total': result['total'],
            'page': result['page'],
            'limit': result['limit'],
            'total_pages': result['total_pages'],
        },
    }, status=status.HTTP_200_OK)


@api_view(['GET'])
def get_analytics(request):
    """
    Ledger-wide credit analytics (administrators).

    GET /api/admin/credits/analytics/?from=...&to=...
    """
    query = DateRangeQuerySerializer(data=request.query_params)
    query.is_valid(raise_exception=True)
    data = LedgerService.analytics(
        date_from=query.validated_data.get('date_from'),
        date_to=query.validated_data.get('date_to'),
    )
    data['overview']['total_revenue'] = str(data['overview']['total_revenue'])
    return Response(data, status=status.HTTP_200_OK)


@api_view(['GET'])
def export_entries(request):
    """
    Export ledger entries as CSV (administrators).

    GET /api/admin/credits/export/?account_id=...&type=...&from=...&to=...
    """
    query = EntryExportQuerySerializer(data=request.query_params)
    query.is_valid(raise_exception=True)
    rows = LedgerService.export_rows(
        account_id=query.validated_data.get('account_id'),
        entry_type=query.validated_data.get('type'),
        date_from=query.validated_data.get('date_from'),
        date_to=query.validated_data.get('date_to'),
    )

    response = HttpResponse(content_type='text/csv')
    response['Content-Disposition'] = (
        f'attachment; filename="credit_entries_{timezone.now():%Y%m%d%H%M%S}.csv"'
    )
    writer = csv.writer(response)
    writer.writerows(rows)
    return response
