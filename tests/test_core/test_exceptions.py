import pytest
from fastapi import HTTPException

from core.exceptions import (
    AuthenticationError,
    CodedSignalException,
    ConflictError,
    DatabaseError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    PaymentPendingError,
    PaymentRequiredError,
    UploadError,
    to_http_exception,
)


class TestCodedSignalException:
    """Test the base exception."""

    def test_defaults(self):
        exc = CodedSignalException("Something failed")

        assert exc.message == "Something failed"
        assert exc.error_code == "CODED_SIGNAL_ERROR"
        assert exc.details == {}
        assert exc.status_code == 500
        assert str(exc) == "Something failed"

    def test_custom_code_and_details(self):
        exc = CodedSignalException("Custom", "CUSTOM", {"key": "value"})

        assert exc.error_code == "CUSTOM"
        assert exc.details == {"key": "value"}


class TestErrorTaxonomy:
    @pytest.mark.parametrize(
        "exc,status_code,error_code",
        [
            (InvalidArgumentError("text", "", "text is required"), 400, "INVALID_ARGUMENT"),
            (InvalidStateError("Post", "p1", "expired", "Post has expired"), 400, "INVALID_STATE"),
            (UploadError("a.pdf", "Only JPEG or PNG images are allowed"), 400, "INVALID_UPLOAD"),
            (AuthenticationError("Invalid credentials"), 401, "UNAUTHORIZED"),
            (ForbiddenError("Admin access required"), 403, "FORBIDDEN"),
            (PaymentRequiredError(5, {}), 403, "PAYMENT_REQUIRED"),
            (PaymentPendingError("pay1"), 403, "PAYMENT_PENDING"),
            (NotFoundError("Chat", "c1"), 404, "NOT_FOUND"),
            (ConflictError("Email already registered", "email"), 409, "CONFLICT"),
            (DatabaseError("send_message", "timeout"), 500, "DATABASE_ERROR"),
        ],
    )
    def test_status_and_code(self, exc, status_code, error_code):
        assert isinstance(exc, CodedSignalException)
        assert exc.status_code == status_code
        assert exc.error_code == error_code

    def test_invalid_argument_details(self):
        exc = InvalidArgumentError("age", 17, "age must be at least 18")

        assert exc.message == "age must be at least 18"
        assert exc.details == {"field": "age", "value": "17", "reason": "age must be at least 18"}

    def test_not_found_message(self):
        exc = NotFoundError("Post", "abc")

        assert exc.message == "Post not found"
        assert exc.details == {"entity": "Post", "id": "abc"}

    def test_payment_required_details(self):
        details = {"bank": "Bank", "reference": "ACCEPT-1"}
        exc = PaymentRequiredError(5, details)

        assert "5" in exc.message
        assert exc.details == {"requiresPayment": True, "accountDetails": details}

    def test_forbidden_without_resource(self):
        assert ForbiddenError("Admin access required").details == {}


def test_to_http_exception():
    http_exc = to_http_exception(ConflictError("Phone number already registered", "phone"))

    assert isinstance(http_exc, HTTPException)
    assert http_exc.status_code == 409
    assert http_exc.detail == {
        "error_code": "CONFLICT",
        "message": "Phone number already registered",
        "details": {"field": "phone"},
    }
