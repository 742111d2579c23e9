"""
Custom Exception Classes for the Coded Signal API.

This module defines the exception hierarchy used by every service and router.
Services raise these exceptions directly; the error handling layer in
`core.middleware` turns them into JSON responses, so no service ever builds an
HTTP response on its own.

Key Components:
- `CodedSignalException`: The base class. Every error carries a message, an
  `error_code`, an HTTP `status_code` and an optional `details` dictionary that
  is safe to expose to clients.
- Input and state errors: `InvalidArgumentError`, `InvalidStateError` and
  `UploadError` for requests that can never succeed as sent.
- Access errors: `AuthenticationError` (missing or bad credential) and
  `ForbiddenError` (valid credential, not allowed).
- Lookup and uniqueness errors: `NotFoundError` and `ConflictError`.
- Quota gate: `PaymentRequiredError` carries the bank details and a fresh
  payment reference; `PaymentPendingError` is raised for a payment that has
  not been verified yet.
- `DatabaseError`: persistence failures and timeouts (the ServerError class
  of the taxonomy).
- `to_http_exception`: maps any `CodedSignalException` to FastAPI's
  `HTTPException`.
"""

from typing import Optional, Dict, Any
from fastapi import HTTPException


class CodedSignalException(Exception):
    """Base exception class for the Coded Signal API"""

    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: str = "CODED_SIGNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class InvalidArgumentError(CodedSignalException):
    """Raised when input is malformed or missing"""

    status_code = 400

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            reason,
            "INVALID_ARGUMENT",
            {"field": field, "value": str(value), "reason": reason},
        )


class InvalidStateError(CodedSignalException):
    """Raised when an entity is not in a state that allows the operation"""

    status_code = 400

    def __init__(self, entity: str, identifier: str, state: str, reason: str):
        super().__init__(
            reason,
            "INVALID_STATE",
            {"entity": entity, "id": identifier, "state": state},
        )


class UploadError(CodedSignalException):
    """Raised when an uploaded file is rejected"""

    status_code = 400

    def __init__(self, filename: str, reason: str):
        super().__init__(
            reason,
            "INVALID_UPLOAD",
            {"filename": filename, "reason": reason},
        )


class AuthenticationError(CodedSignalException):
    """Raised when authentication fails"""

    status_code = 401

    def __init__(self, reason: str):
        super().__init__(
            reason,
            "UNAUTHORIZED",
            {"reason": reason},
        )


class ForbiddenError(CodedSignalException):
    """Raised when an authenticated user may not touch a resource"""

    status_code = 403

    def __init__(self, reason: str, resource: Optional[str] = None):
        super().__init__(
            reason,
            "FORBIDDEN",
            {"resource": resource} if resource else {},
        )


class NotFoundError(CodedSignalException):
    """Raised when an entity does not exist"""

    status_code = 404

    def __init__(self, entity: str, identifier: Any):
        super().__init__(
            f"{entity} not found",
            "NOT_FOUND",
            {"entity": entity, "id": str(identifier)},
        )


class ConflictError(CodedSignalException):
    """Raised when a uniqueness constraint would be violated"""

    status_code = 409

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message,
            "CONFLICT",
            {"field": field} if field else {},
        )


class PaymentRequiredError(CodedSignalException):
    """Raised when the acceptance quota is used up and no payment was supplied"""

    status_code = 403

    def __init__(self, quota: int, account_details: Dict[str, str]):
        super().__init__(
            f"You can only accept up to {quota} requests. Pay to unlock more.",
            "PAYMENT_REQUIRED",
            {"requiresPayment": True, "accountDetails": account_details},
        )


class PaymentPendingError(CodedSignalException):
    """Raised when a supplied payment exists but is not verified yet"""

    status_code = 403

    def __init__(self, payment_id: str):
        super().__init__(
            "Payment verification pending",
            "PAYMENT_PENDING",
            {"paymentId": payment_id},
        )


class DatabaseError(CodedSignalException):
    """Raised when database operations fail"""

    status_code = 500

    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"Database operation '{operation}' failed",
            "DATABASE_ERROR",
            {"operation": operation, "reason": reason},
        )


def to_http_exception(exc: CodedSignalException) -> HTTPException:
    """Convert CodedSignalException to FastAPI HTTPException"""
    return HTTPException(
        status_code=exc.status_code,
        detail={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
        },
    )
