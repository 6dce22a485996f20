import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("trulybot.errors")

STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMITED",
}


class AppError(HTTPException):
    """Classified error converted to the response envelope at the boundary."""

    status_code = 500
    code = "INTERNAL_SERVER_ERROR"
    message = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
        headers: Optional[dict] = None,
    ):
        super().__init__(
            status_code=status_code or type(self).status_code,
            detail=message or type(self).message,
            headers=headers,
        )
        self.code = code or type(self).code
        self.details = details


class ConfigurationError(AppError):
    """A required secret or credential is missing.

    The reason is kept server side; callers only see a generic message.
    """

    status_code = 500
    code = "CONFIG_ERROR"
    message = "Server configuration error"

    def __init__(self, reason: str):
        super().__init__()
        self.reason = reason

    def __str__(self):
        return self.reason


class ClientInputError(AppError):
    status_code = 400
    code = "BAD_REQUEST"
    message = "Invalid request"


class AuthenticationRequired(AppError):
    status_code = 401
    code = "AUTH_REQUIRED"
    message = "Authentication required"


class AccessDenied(AppError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Access denied"


class StateConflict(AppError):
    status_code = 409
    code = "CONFLICT"
    message = "Request conflicts with current state"


class TransientError(AppError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    message = "Service temporarily unavailable"


class RateLimitExceeded(AppError):
    status_code = 429
    code = "RATE_LIMITED"
    message = "Too many requests, please try again later"


# --- Signature verification ---

class MissingSignature(ClientInputError):
    code = "MISSING_SIGNATURE"
    message = "Missing signature"


class InvalidPayload(ClientInputError):
    code = "INVALID_PAYLOAD"
    message = "Invalid payload"


class InvalidSignature(AccessDenied):
    code = "INVALID_SIGNATURE"
    message = "Invalid signature"


# --- Order / payment security gates ---

class OrderSecurityError(AppError):
    """Base for the order gates; `security_event` names the logged subtype."""

    security_event = "order_security_violation"


class OrderNotFound(OrderSecurityError):
    status_code = 404
    code = "ORDER_NOT_FOUND"
    message = "Order not found"
    security_event = "order_not_found"


class OrderAccessDenied(OrderSecurityError):
    status_code = 403
    code = "ORDER_ACCESS_DENIED"
    message = "Order access denied"
    security_event = "order_ownership_violation"


class OrderAlreadyProcessed(OrderSecurityError):
    status_code = 409
    code = "ORDER_ALREADY_PROCESSED"
    message = "Order already processed"
    security_event = "order_already_processed"


class OrderExpired(OrderSecurityError):
    status_code = 400
    code = "ORDER_EXPIRED"
    message = "Order expired"
    security_event = "order_expired"


class AmountMismatch(OrderSecurityError):
    status_code = 400
    code = "AMOUNT_MISMATCH"
    message = "Payment amount does not match order"
    security_event = "amount_mismatch"


class PaymentProcessingError(AppError):
    status_code = 500
    code = "PROCESSING_ERROR"
    message = "Payment processing failed"


def request_id_for(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def envelope(
    success: bool,
    *,
    request_id: Optional[str],
    data: Any = None,
    message: Optional[str] = None,
    code: Optional[str] = None,
) -> dict:
    body = {"success": success}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    if code is not None:
        body["code"] = code
    body["requestId"] = request_id
    return body


def error_response(request: Request, status_code: int, message: str, code: str, details=None, headers=None):
    body = envelope(False, request_id=request_id_for(request), message=message, code=code)
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if isinstance(exc, ConfigurationError):
            logger.error(
                f"Configuration error on {request.url.path}: {exc.reason}",
                extra={"request_id": request_id_for(request)},
            )
        return error_response(request, exc.status_code, exc.detail, exc.code, exc.details, exc.headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        code = STATUS_CODES.get(exc.status_code, "HTTP_ERROR")
        return error_response(request, exc.status_code, str(exc.detail), code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
        return error_response(
            request, 400, "Invalid request body", "VALIDATION_ERROR", details={"fields": fields}
        )
