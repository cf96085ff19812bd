from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


# Webhook ingestion. Only the first three ever reach the provider as non-2xx.


class AuthenticationFailure(UnauthorizedError):
    """Bad or missing webhook signature. Nothing is decoded or applied."""

    def __init__(self, provider: str):
        super().__init__("Invalid webhook signature")
        self.provider = provider


class MalformedPayloadError(BadRequestError):
    def __init__(self, message: str = "Malformed webhook payload", details: dict[str, Any] | None = None):
        super().__init__(message, details=details)
        self.code = "MALFORMED_PAYLOAD"


class WebhookSecretNotConfigured(AppError):
    def __init__(self, provider: str):
        super().__init__(
            f"Webhook secret for {provider} is not configured",
            code="WEBHOOK_NOT_CONFIGURED",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        self.provider = provider


class TransientConflictError(ConflictError):
    """Concurrent writers kept winning the order's version; the provider should redeliver."""

    def __init__(self, order_id: str, attempts: int):
        super().__init__(
            "Order is being updated concurrently, retry later",
            details={"order_id": order_id, "attempts": attempts},
        )
        self.code = "TRANSIENT_CONFLICT"


class UnresolvableReference(Exception):
    """No order matches the event's provider references (acknowledged, dropped)."""


class InvalidTransition(Exception):
    """Requested status precedes or equals the current one (acknowledged as a no-op)."""

    def __init__(self, current: str, target: str):
        super().__init__(f"{current} -> {target}")
        self.current = current
        self.target = target


class DownstreamSyncFailure(Exception):
    """Outbound sync to a fulfillment provider failed after the local transition committed."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class EmailDeliveryFailure(Exception):
    """The SMTP server did not take a customer email; another attempt is allowed."""


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "data": None,
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        },
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "data": None,
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": exc.errors()},
        },
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from orderflow.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "data": None,
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        },
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )


def ok_response(data: Any, message: str = "OK") -> dict[str, Any]:
    """Success envelope shared by every endpoint."""
    return {"data": data, "error": {"code": 0, "message": message}}
