"""Unit tests for the billing error hierarchy."""

import pytest

from src.services.errors import (
    AccrualsExistError,
    BillingError,
    ConflictError,
    DuplicatePaymentError,
    NotFoundError,
    PeriodLockedError,
    ValidationError,
    error_response,
)


@pytest.mark.parametrize(
    "error, status, code",
    [
        (ValidationError("bad amount"), 400, "validation_error"),
        (NotFoundError("no such period"), 404, "not_found"),
        (ConflictError("busy"), 409, "conflict"),
        (PeriodLockedError(5), 409, "period_locked"),
        (AccrualsExistError(5, 3), 409, "accruals_exist"),
        (DuplicatePaymentError(), 409, "duplicate_payment"),
    ],
)
def test_status_and_code(error, status, code):
    assert isinstance(error, BillingError)
    assert error.http_status == status
    assert error.code == code


def test_conflicts_are_catchable_as_conflict():
    with pytest.raises(ConflictError):
        raise PeriodLockedError(1)


def test_accruals_exist_carries_details():
    error = AccrualsExistError(7, 12)

    assert error.period_id == 7
    assert error.existing_count == 12
    assert "force" in error.message


def test_error_response_body():
    body = error_response(ValidationError("Amount must be positive", "invalid_amount"))

    assert body == {"error": {"code": "invalid_amount", "message": "Amount must be positive"}}
