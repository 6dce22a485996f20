import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from trulybot.config import TRIAL_DAYS, TRIAL_TIER
from trulybot.errors import ClientInputError
from trulybot.models import SubscriptionStatus, Tier
from trulybot.repository import add_subscription_audit, get_or_create_profile
from trulybot.services.access import calculate_access
from trulybot.utils import as_utc, utcnow

logger = logging.getLogger("trulybot.trials")


class TrialRefused(ClientInputError):
    message = "Trial cannot be started"


def start_trial(db: Session, user_id: str, now: Optional[datetime] = None, email: Optional[str] = None):
    """Grant a one-time trial window at the trial tier.

    Refused while a paid term is active, while a trial is running, or once
    any trial has been granted before.
    """
    now = as_utc(now) or utcnow()
    profile = get_or_create_profile(db, user_id, email=email)
    view = calculate_access(profile, now)

    if view.status == SubscriptionStatus.active:
        raise TrialRefused("You already have an active subscription", code="active-subscription")
    if view.status == SubscriptionStatus.trial:
        raise TrialRefused("Your trial is already active", code="trial-already-active")
    if profile.has_used_trial:
        raise TrialRefused("Trial has already been used", code="trial-already-used")

    old_status, old_tier = profile.subscription_status, profile.subscription_tier
    trial_tier = Tier(TRIAL_TIER)
    profile.subscription_status = SubscriptionStatus.trial
    profile.subscription_tier = trial_tier
    profile.trial_ends_at = now + timedelta(days=TRIAL_DAYS)
    # a lapsed paid term would otherwise mask the trial as expired
    sub_ends = as_utc(profile.subscription_ends_at)
    if sub_ends is not None and sub_ends <= now:
        profile.subscription_ends_at = None
    profile.has_used_trial = True
    add_subscription_audit(
        db,
        user_id=user_id,
        old_status=old_status,
        new_status=SubscriptionStatus.trial,
        old_tier=old_tier,
        new_tier=trial_tier,
        reason="trial.started",
    )
    db.commit()
    db.refresh(profile)
    logger.info(f"Started {TRIAL_DAYS}-day trial for {user_id}", extra={"user_id": user_id})
    return calculate_access(profile, now)
