from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from trulybot.config import APP_BASE_URL, SESSION_COOKIE, SESSION_MAX_AGE
from trulybot.dependencies import bearer_token, json_body
from trulybot.errors import AuthenticationRequired, envelope, request_id_for
from trulybot.rate_limit import rate_limit
from trulybot.schemas import SessionRequest
from trulybot.security import decode_access_token, log_security_event, sign_session

router = APIRouter(prefix="/auth")


@router.post("/session")
def create_session(
    request: Request,
    _rl=Depends(rate_limit("auth")),
    body: SessionRequest = Depends(json_body(SessionRequest)),
):
    """Exchange a valid access token for a signed session cookie."""
    token = bearer_token(request) or body.access_token
    claims = decode_access_token(token) if token else None
    if not claims or not claims.get("sub"):
        if token:
            log_security_event("invalid_access_token", path=request.url.path)
        raise AuthenticationRequired("Invalid or expired token", code="INVALID_TOKEN")

    user_id = claims["sub"]
    response = JSONResponse(envelope(True, request_id=request_id_for(request), data={"user_id": user_id}))
    response.set_cookie(
        SESSION_COOKIE,
        sign_session(user_id),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=APP_BASE_URL.startswith("https://"),
        samesite="lax",
    )
    return response


@router.post("/logout")
def logout(request: Request):
    response = JSONResponse(envelope(True, request_id=request_id_for(request), message="Logged out"))
    response.delete_cookie(SESSION_COOKIE)
    return response
