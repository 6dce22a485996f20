import os
import time
import traceback
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from trulybot.errors import envelope
from trulybot.logging_config import get_logger
from trulybot.metrics import observe_request

logger = get_logger("trulybot")

MAX_REQUEST_ID_LENGTH = 128


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", "")[:MAX_REQUEST_ID_LENGTH] or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class TimingAccessLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.time()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            elapsed = time.time() - start
            route = request.scope.get("route")
            path_template = getattr(route, "path", None) or "unmatched"
            observe_request(request.method, path_template, status, elapsed)
            logger.info(
                "",
                extra={
                    "request_id": getattr(request.state, "request_id", None),
                    "path": request.url.path,
                    "method": request.method,
                    "status": status,
                    "latency_ms": int(elapsed * 1000),
                },
            )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        if os.getenv("ENABLE_HSTS", "true").lower() == "true":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Content-Security-Policy"] = os.getenv("CSP", "default-src 'none'; frame-ancestors 'none'")
        return response


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    """Copy the limiter decision stored on the request onto the response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        result = getattr(request.state, "rate_limit", None)
        if result is not None:
            for name, value in result.headers().items():
                response.headers[name] = value
        return response


class ErrorEnvelopeMiddleware(BaseHTTPMiddleware):
    """Last resort for exceptions no handler claimed."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", None)
            logger.error(
                f"Unhandled error: {exc.__class__.__name__}: {exc} {traceback.format_exc()}",
                extra={"request_id": request_id, "path": request.url.path},
            )
            return JSONResponse(
                status_code=500,
                content=envelope(False, request_id=request_id, message="Internal server error", code="INTERNAL_SERVER_ERROR"),
            )
