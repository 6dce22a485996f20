from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from trulybot.db import get_db
from trulybot.dependencies import require_user_id
from trulybot.errors import envelope, request_id_for
from trulybot.rate_limit import rate_limit
from trulybot.repository import get_profile
from trulybot.services.access import calculate_access, format_subscription_status
from trulybot.services.entitlements import get_restrictions, upgrade_message
from trulybot.services.trials import start_trial

router = APIRouter(prefix="/api")


@router.get("/subscription/status")
def subscription_status(
    request: Request,
    user_id: str = Depends(require_user_id),
    _rl=Depends(rate_limit("api")),
    db: Session = Depends(get_db),
):
    view = calculate_access(get_profile(db, user_id))
    data = view.to_dict()
    data["label"] = format_subscription_status(view)
    return envelope(True, request_id=request_id_for(request), data=data)


@router.post("/start-trial")
def start_trial_endpoint(
    request: Request,
    user_id: str = Depends(require_user_id),
    _rl=Depends(rate_limit("trial")),
    db: Session = Depends(get_db),
):
    view = start_trial(db, user_id)
    return envelope(True, request_id=request_id_for(request), data=view.to_dict(), message="Trial started")


@router.get("/features")
def features(
    request: Request,
    user_id: str = Depends(require_user_id),
    _rl=Depends(rate_limit("api")),
    db: Session = Depends(get_db),
):
    """Restrictions for the tier the caller can use right now."""
    view = calculate_access(get_profile(db, user_id))
    restrictions = get_restrictions(view.tier if view.has_access else "free")
    locked = {k: upgrade_message(k) for k, v in restrictions.items() if v is False}
    data = {
        "tier": view.tier.value if view.has_access else "free",
        "status": view.status.value,
        "restrictions": restrictions,
        "upgrade_messages": locked,
    }
    return envelope(True, request_id=request_id_for(request), data=data)
