"""Billing error hierarchy.

Every error carries a machine-readable code and the HTTP status the API layer
should answer with. Needs-review accruals and per-row import skips are not
errors and never raise.
"""


class BillingError(Exception):
    """Base billing error."""

    def __init__(self, message: str, code: str = "billing_error", http_status: int = 400):
        """Initialize error."""
        self.message = message
        self.code = code
        self.http_status = http_status
        super().__init__(message)


class ValidationError(BillingError):
    """Bad input shape, missing required field or malformed amount."""

    def __init__(self, message: str, code: str = "validation_error"):
        super().__init__(message, code, 400)


class NotFoundError(BillingError):
    """Unknown period, tariff, override, payment or plan."""

    def __init__(self, message: str, code: str = "not_found"):
        super().__init__(message, code, 404)


class ConflictError(BillingError):
    """Operation conflicts with current state; caller may retry deliberately."""

    def __init__(self, message: str, code: str = "conflict"):
        super().__init__(message, code, 409)


class PeriodLockedError(ConflictError):
    """Mutation attempted on a locked billing period."""

    def __init__(self, period_id: int):
        self.period_id = period_id
        super().__init__(f"Period {period_id} is locked", "period_locked")


class AccrualsExistError(ConflictError):
    """Accruals already exist for the period; resubmit with force=True to overwrite."""

    def __init__(self, period_id: int, existing_count: int):
        self.period_id = period_id
        self.existing_count = existing_count
        super().__init__(
            f"Period {period_id} already has {existing_count} accruals; use force to regenerate",
            "accruals_exist",
        )


class DuplicatePaymentError(ConflictError):
    """Payment with the same reference (or fingerprint) is already recorded."""

    def __init__(self, message: str = "Duplicate payment"):
        super().__init__(message, "duplicate_payment")


def error_response(error: BillingError) -> dict:
    """Create a standardized error response body."""
    return {
        "error": {
            "code": error.code,
            "message": error.message,
        }
    }


__all__ = [
    "BillingError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "PeriodLockedError",
    "AccrualsExistError",
    "DuplicatePaymentError",
    "error_response",
]
