"""
Credits Error Taxonomy

Every failure that crosses the service boundary is a ``CreditsError``.
Client-facing errors carry structured, actionable detail; internal
invariant failures carry a generic public payload only.
"""


class CreditsError(Exception):
    """Base class for all categorized credits failures."""

    code = 'CREDITS_ERROR'
    status_code = 400
    retryable = False
    default_message = 'Credits operation failed'

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        payload = {
            'code': self.code,
            'message': self.message,
            'retryable': self.retryable,
        }
        payload.update(self.details)
        return payload


class InvalidCreditOperation(CreditsError):
    """Input rejected before any store mutation was attempted."""

    code = 'INVALID_OPERATION'
    default_message = 'Invalid credits operation'


class AccountNotFound(CreditsError):
    code = 'ACCOUNT_NOT_FOUND'
    status_code = 404
    default_message = 'Credits account not found'


class InsufficientCredits(CreditsError):
    code = 'INSUFFICIENT_CREDITS'
    default_message = 'Insufficient credits balance'

    def __init__(self, required, available, message=None):
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            message,
            required=required,
            available=available,
            shortfall=self.shortfall,
        )


class BalanceCeilingExceeded(CreditsError):
    code = 'MAX_BALANCE_EXCEEDED'
    default_message = 'Operation would exceed the maximum credits balance'

    def __init__(self, current_balance, attempted, max_balance, message=None):
        super().__init__(
            message or f'Cannot exceed maximum balance of {max_balance} credits',
            current_balance=current_balance,
            attempted=attempted,
            max_allowed=max(0, max_balance - current_balance),
        )


class InvariantViolation(CreditsError):
    """
    Internal consistency failure. Indicates a logic or data-corruption bug.

    The internal detail stays on the exception for logging; ``to_dict``
    never exposes it.
    """

    code = 'INTERNAL_ERROR'
    status_code = 500
    default_message = 'Internal ledger error'

    def __init__(self, internal_detail, **context):
        self.internal_detail = internal_detail
        self.context = context
        super().__init__(None)

    def __str__(self):
        return f'{self.internal_detail} {self.context}' if self.context else self.internal_detail

    def to_dict(self):
        return {
            'code': self.code,
            'message': self.default_message,
            'retryable': False,
        }


class LedgerBusy(CreditsError):
    """Lock or storage contention persisted past the retry budget."""

    code = 'LEDGER_BUSY'
    status_code = 503
    retryable = True
    default_message = 'Ledger is busy, please retry'


class PurchaseNotFound(CreditsError):
    code = 'PURCHASE_NOT_FOUND'
    status_code = 404
    default_message = 'Purchase not found'


class PurchaseExpired(CreditsError):
    code = 'PURCHASE_EXPIRED'
    status_code = 410
    default_message = 'Purchase has expired'


class AlreadyConfirmed(CreditsError):
    code = 'PURCHASE_NOT_PENDING'
    status_code = 409
    default_message = 'Purchase is no longer pending'


class SignatureMismatch(CreditsError):
    code = 'INVALID_SIGNATURE'
    default_message = 'Invalid payment signature'


class RefundIneligible(CreditsError):
    code = 'REFUND_NOT_ELIGIBLE'
    default_message = 'Refund not eligible'

    def __init__(self, reason, **details):
        self.reason = reason
        super().__init__(reason, reason=reason, **details)
