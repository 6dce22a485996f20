import json
from typing import Optional, Type

from fastapi import Depends, Request
from pydantic import BaseModel, ValidationError

from trulybot.config import SESSION_COOKIE, cron_secret
from trulybot.errors import AuthenticationRequired, ClientInputError
from trulybot.schemas import validation_fields
from trulybot.security import decode_access_token, log_security_event, read_session, signatures_match

ACCESS_TOKEN_COOKIE = "sb-access-token"


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def get_current_user_id(request: Request) -> Optional[str]:
    """Resolve the caller from a bearer token, the access token cookie, or
    the signed session cookie. Returns None when unauthenticated."""
    cached = getattr(request.state, "user_id", None)
    if cached:
        return cached
    user_id = None
    token = bearer_token(request) or request.cookies.get(ACCESS_TOKEN_COOKIE)
    if token:
        claims = decode_access_token(token)
        if claims:
            user_id = claims.get("sub")
    if not user_id and request.cookies.get(SESSION_COOKIE):
        user_id = read_session(request.cookies[SESSION_COOKIE])
    request.state.user_id = user_id
    return user_id


def require_user_id(user_id: Optional[str] = Depends(get_current_user_id)) -> str:
    if not user_id:
        raise AuthenticationRequired()
    return user_id


def require_cron_secret(request: Request):
    # Read first: an unset secret fails closed as a configuration error.
    secret = cron_secret()
    token = bearer_token(request)
    if not token or not signatures_match(secret, token):
        log_security_event("cron_unauthorized", path=request.url.path)
        raise AuthenticationRequired("Unauthorized", code="UNAUTHORIZED")


def get_rate_limiter(request: Request):
    return request.app.state.rate_limiter


def get_gateway(request: Request):
    return request.app.state.gateway_factory()


def json_body(model: Type[BaseModel]):
    """Parse the JSON body into `model`, reporting failures as 400.

    Declared after the auth dependency so unauthenticated calls are
    rejected before the body is looked at.
    """
    async def dependency(request: Request):
        raw = await request.body()
        try:
            data = json.loads(raw or b"{}")
        except ValueError:
            raise ClientInputError("Invalid JSON", code="INVALID_JSON")
        if not isinstance(data, dict):
            raise ClientInputError("Invalid request body", code="VALIDATION_ERROR")
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ClientInputError(
                "Invalid request body",
                code="VALIDATION_ERROR",
                details={"fields": validation_fields(e.errors())},
            )
    return dependency
