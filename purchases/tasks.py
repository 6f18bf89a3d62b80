"""
Celery Tasks for Purchase Processing

Tasks are designed with failure-first principles:
- Restartable
- Idempotent
- No partial state corruption
"""

import logging

from celery import shared_task
from django.db import OperationalError
from django.utils import timezone

from ledger.exceptions import AlreadyConfirmed, PurchaseNotFound
from purchases.services import PurchaseService

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def expire_stale_purchases(self):
    """
    Expire pending purchases past their confirmation window.

    Safe to run concurrently and to retry: each purchase is re-checked
    under its row lock before it is expired.
    """
    try:
        expired = PurchaseService.expire_stale(timezone.now())
    except OperationalError as exc:
        raise self.retry(exc=exc)
    return {'expired': expired}


@shared_task(bind=True, max_retries=3, default_retry_delay=10)
def fail_purchase(self, order_ref, reason):
    """
    Record a gateway-reported payment failure.

    In production, this would be triggered by a webhook from the payment provider.
    """
    try:
        purchase = PurchaseService.fail(order_ref, reason)
    except PurchaseNotFound:
        return {'error': 'Purchase not found'}
    except AlreadyConfirmed as exc:
        # Already terminal - nothing to do (idempotent)
        return {'status': exc.details.get('status'), 'message': 'Already finalized'}
    except OperationalError as exc:
        raise self.retry(exc=exc)
    return {'status': purchase.status, 'order_ref': purchase.order_ref}
