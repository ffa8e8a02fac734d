"""
Execution tracking error taxonomy.

Lifecycle violations are surfaced to callers as distinct error kinds.
RateUnavailableError is internal: the aggregator logs it and skips the
affected conversion.
"""


class ExecutionError(Exception):
    """Base class for execution tracking errors"""

    code = "execution_error"
    default_message = "Execution tracking error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class RecordAlreadyExistsError(ExecutionError):
    code = "record_already_exists"
    default_message = "An execution record for this month already exists"


class RecordNotFoundError(ExecutionError):
    code = "record_not_found"
    default_message = "Execution record not found"


class UndoPeriodExpiredError(ExecutionError):
    code = "undo_period_expired"
    default_message = "The undo grace period has expired"


class InvalidStateError(ExecutionError):
    code = "invalid_state"
    default_message = "Invalid state for this operation"


class RateUnavailableError(ExecutionError):
    code = "rate_unavailable"
    default_message = "Exchange rate unavailable"

    def __init__(self, from_currency: str, to_currency: str, reason: str | None = None):
        self.from_currency = from_currency
        self.to_currency = to_currency
        detail = f"Exchange rate unavailable for {from_currency}->{to_currency}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)
