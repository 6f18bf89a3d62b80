"""DRF exception handler mapping credits failures to structured responses."""

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from ledger.exceptions import CreditsError, InvariantViolation

logger = logging.getLogger(__name__)


def credits_exception_handler(exc, context):
    if isinstance(exc, CreditsError):
        if isinstance(exc, InvariantViolation):
            # Full detail goes to the log only
            logger.error("Invariant violation while handling %s: %s", context.get('view'), exc)
        return Response({'error': exc.to_dict()}, status=exc.status_code)
    return exception_handler(exc, context)
