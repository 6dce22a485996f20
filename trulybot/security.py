import hashlib
import hmac
import json
import logging
from typing import Optional

from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from jose import JWTError, jwt

from trulybot.config import SESSION_MAX_AGE, SUPABASE_JWT_AUDIENCE, jwt_secret, session_secret
from trulybot.errors import ConfigurationError, InvalidPayload, InvalidSignature, MissingSignature, ClientInputError
from trulybot.logging_config import truncate
from trulybot.metrics import increment_security_event

security_logger = logging.getLogger("trulybot.security")

ALGORITHM = "HS256"


def log_security_event(event: str, **details):
    """Record a security event. Callers pass only non-sensitive details."""
    security_logger.warning(
        f"security event: {event}",
        extra={"event": event, "details": details},
    )
    increment_security_event(event)


# --- HMAC signatures ---

def compute_signature(body: bytes, secret: str) -> str:
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def signatures_match(expected: str, provided: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def verify_webhook_payload(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> dict:
    """Verify a gateway webhook delivery and return the parsed event.

    The HMAC is computed over the exact bytes received; the body is only
    parsed once the signature matches.
    """
    if not secret:
        raise ConfigurationError("webhook secret is empty")
    if not signature:
        raise MissingSignature()
    expected = compute_signature(raw_body, secret)
    if not signatures_match(expected, signature.strip()):
        log_security_event(
            "webhook_signature_invalid",
            provided_signature=truncate(signature),
            expected_length=len(expected),
            provided_length=len(signature),
        )
        raise InvalidSignature()
    try:
        event = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        raise InvalidPayload("Invalid JSON payload", code="INVALID_JSON")
    if not isinstance(event, dict):
        raise InvalidPayload("Invalid JSON payload", code="INVALID_JSON")
    return event


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: Optional[str]) -> None:
    """Check the checkout signature, HMAC-SHA256 of `order_id|payment_id`."""
    if not secret:
        raise ConfigurationError("payment key secret is empty")
    expected = compute_signature(f"{order_id}|{payment_id}".encode("utf-8"), secret)
    if not signatures_match(expected, signature or ""):
        log_security_event(
            "payment_signature_invalid",
            order_id=order_id,
            payment_id=payment_id,
            provided_signature=truncate(signature),
        )
        raise ClientInputError("Payment verification failed", code="INVALID_SIGNATURE")


# --- Access tokens and session cookies ---

def decode_access_token(token: str) -> Optional[dict]:
    """Decode a Supabase-issued access token; None when invalid or expired."""
    try:
        return jwt.decode(token, jwt_secret(), algorithms=[ALGORITHM], audience=SUPABASE_JWT_AUDIENCE)
    except JWTError:
        return None


def create_access_token(user_id: str, email: Optional[str] = None, expires_in: int = 3600) -> str:
    """Issue a token in the Supabase shape. Used by scripts and tests."""
    from datetime import timedelta
    from trulybot.utils import utcnow

    claims = {
        "sub": user_id,
        "aud": SUPABASE_JWT_AUDIENCE,
        "role": "authenticated",
        "exp": utcnow() + timedelta(seconds=expires_in),
    }
    if email:
        claims["email"] = email
    return jwt.encode(claims, jwt_secret(), algorithm=ALGORITHM)


def _session_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(session_secret(), salt="session")


def sign_session(user_id: str) -> str:
    return _session_serializer().dumps(user_id)


def read_session(cookie: str) -> Optional[str]:
    try:
        return _session_serializer().loads(cookie, max_age=SESSION_MAX_AGE)
    except (BadSignature, SignatureExpired):
        return None
