"""
Application Middleware for the Coded Signal API.

Cross-cutting concerns that wrap every HTTP request: correlation IDs,
uniform error responses and request timing.

Key Middleware Components:
- `CorrelationMiddleware`: Assigns a correlation ID to every incoming request
  (or reuses `X-Correlation-ID` / `X-Request-ID`) so all log lines of one
  request can be traced together.
- `ErrorHandlingMiddleware`: Catches anything that escapes a router and turns
  it into the standard JSON error body
  `{"error": {"type", "code", "message", "details", "correlation_id"}}`.
- `PerformanceMiddleware`: Logs each request on the way in and out, adds an
  `X-Process-Time` header and warns about slow requests.
- `register_exception_handlers`: installs FastAPI exception handlers for the
  `CodedSignalException` hierarchy and for request validation, so errors
  raised inside routes produce the same body as the middleware does. Body
  validation failures become 400 `INVALID_ARGUMENT`.

`CorrelationMiddleware` must be the outermost middleware (added last) so the
correlation ID is available to the other two.
"""

import time
import uuid
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_config import set_correlation_id, get_logger
from .exceptions import CodedSignalException

logger = get_logger("core.middleware")

SLOW_REQUEST_SECONDS = 1.0
CORRELATION_HEADERS = ("X-Correlation-ID", "X-Request-ID")


def request_extra(request: Request, **fields: Any) -> Dict[str, Any]:
    """Log fields shared by every request-scoped log line"""
    return {"method": request.method, "path": request.url.path, **fields}


def create_error_response(
    error_type: str,
    error_code: str,
    message: Any,
    status_code: int = 400,
    correlation_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Create standardized error response"""
    body = {
        "type": error_type,
        "code": error_code,
        "message": message,
        "details": details or {},
        "correlation_id": correlation_id,
    }
    return JSONResponse(status_code=status_code, content={"error": body})


def _correlation_of(request: Request) -> Optional[str]:
    return getattr(request.state, "correlation_id", None)


def exception_response(request: Request, exc: CodedSignalException) -> JSONResponse:
    level = logger.error if exc.status_code >= 500 else logger.warning
    level(
        f"{exc.error_code}: {exc.message}",
        extra=request_extra(request, error_type=type(exc).__name__, error_code=exc.error_code),
    )
    return create_error_response(
        type(exc).__name__,
        exc.error_code,
        exc.message,
        status_code=exc.status_code,
        correlation_id=_correlation_of(request),
        details=exc.details,
    )


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Tags each request with a correlation ID, echoed back in the response"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = next(
            (request.headers[name] for name in CORRELATION_HEADERS if request.headers.get(name)),
            None,
        )
        request.state.correlation_id = incoming or str(uuid.uuid4())
        set_correlation_id(request.state.correlation_id)

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = request.state.correlation_id
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Converts anything escaping the routers into the standard error body"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except CodedSignalException as exc:
            return exception_response(request, exc)
        except Exception as exc:
            logger.error(
                f"Unhandled {type(exc).__name__}: {exc}",
                extra=request_extra(request, error_type=type(exc).__name__),
                exc_info=True,
            )
            return create_error_response(
                "InternalServerError",
                "INTERNAL_ERROR",
                "An unexpected error occurred",
                status_code=500,
                correlation_id=_correlation_of(request),
            )


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Logs each request with its duration and sets `X-Process-Time` (ms)"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        logger.info(
            f"--> {request.method} {request.url.path}",
            extra=request_extra(
                request,
                query_params=dict(request.query_params),
                client_ip=request.client.host if request.client else None,
            ),
        )

        response = await call_next(request)

        elapsed = time.perf_counter() - started
        elapsed_ms = round(elapsed * 1000, 2)
        response.headers["X-Process-Time"] = str(elapsed_ms)

        fields = request_extra(request, status_code=response.status_code, process_time_ms=elapsed_ms)
        if elapsed > SLOW_REQUEST_SECONDS:
            logger.warning(f"<-- {request.method} {request.url.path} slow ({elapsed_ms} ms)", extra=fields)
        else:
            logger.info(f"<-- {request.method} {request.url.path} {response.status_code}", extra=fields)
        return response


def register_exception_handlers(app: FastAPI):
    """Render errors raised inside routes with the same body as the middleware"""

    async def handle_coded_signal_exception(request: Request, exc: CodedSignalException):
        return exception_response(request, exc)

    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        first = next(iter(exc.errors()), {})
        # loc is ("body" | "query" | ..., field, ...)
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
        logger.warning(f"Request validation failed on {field}", extra=request_extra(request))
        return create_error_response(
            "InvalidArgumentError",
            "INVALID_ARGUMENT",
            first.get("msg", "Invalid request"),
            status_code=400,
            correlation_id=_correlation_of(request),
            details={"field": field},
        )

    app.add_exception_handler(CodedSignalException, handle_coded_signal_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
