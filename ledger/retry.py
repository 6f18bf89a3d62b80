"""
Bounded retry for transient lock / storage contention.

Only the outermost transactional boundary retries: once inside an
enclosing ``atomic()`` block the broken transaction cannot be replayed
from here, so contention is surfaced immediately as ``LedgerBusy`` and
the outermost decorated call retries the whole unit of work.
"""

import functools
import logging
import time

from django.db import OperationalError, transaction

from ledger.conf import credit_config
from ledger.exceptions import LedgerBusy

logger = logging.getLogger(__name__)


def retry_on_contention(func):
    """Retry ``func`` on ``OperationalError`` with exponential backoff."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        config = credit_config()
        attempts = max(1, config['LOCK_RETRY_ATTEMPTS'])
        backoff = config['LOCK_RETRY_BACKOFF']

        if transaction.get_connection().in_atomic_block:
            try:
                return func(*args, **kwargs)
            except OperationalError as exc:
                raise LedgerBusy() from exc

        for attempt in range(attempts):
            try:
                return func(*args, **kwargs)
            except (OperationalError, LedgerBusy) as exc:
                if attempt >= attempts - 1:
                    logger.warning(
                        "%s gave up after %d attempts: %s", func.__qualname__, attempts, exc
                    )
                    if isinstance(exc, LedgerBusy):
                        raise
                    raise LedgerBusy() from exc
                logger.warning(
                    "%s hit contention (attempt %d/%d): %s",
                    func.__qualname__, attempt + 1, attempts, exc,
                )
                time.sleep(backoff * (2 ** attempt))

    return wrapper
