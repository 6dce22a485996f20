"""Effective subscription state for a profile.

`calculate_access` is pure: it reads the profile fields and the clock value
passed in, and never touches the database.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from trulybot.config import TRIAL_TIER
from trulybot.models import SubscriptionStatus, Tier
from trulybot.services.entitlements import features_for
from trulybot.utils import as_utc, days_until, isoformat, utcnow


@dataclass
class SubscriptionView:
    status: SubscriptionStatus
    tier: Tier
    has_access: bool
    is_trial_active: bool = False
    days_remaining: int = 0
    features: List[str] = field(default_factory=list)
    trial_ends_at: Optional[datetime] = None
    subscription_ends_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "tier": self.tier.value,
            "has_access": self.has_access,
            "is_trial_active": self.is_trial_active,
            "days_remaining": self.days_remaining,
            "features": list(self.features),
            "trial_ends_at": isoformat(self.trial_ends_at),
            "subscription_ends_at": isoformat(self.subscription_ends_at),
        }


def _no_access(status: SubscriptionStatus, tier: Tier, trial_ends_at=None, subscription_ends_at=None):
    return SubscriptionView(
        status=status,
        tier=tier,
        has_access=False,
        trial_ends_at=trial_ends_at,
        subscription_ends_at=subscription_ends_at,
    )


def calculate_access(profile, now: Optional[datetime] = None) -> SubscriptionView:
    now = as_utc(now) or utcnow()
    if profile is None:
        return _no_access(SubscriptionStatus.none, Tier.free)

    status = SubscriptionStatus(profile.subscription_status or SubscriptionStatus.none)
    tier = Tier(profile.subscription_tier or Tier.free)
    sub_ends = as_utc(profile.subscription_ends_at)
    trial_ends = as_utc(profile.trial_ends_at)

    # A paid term wins over a concurrent trial window.
    if status == SubscriptionStatus.active and sub_ends is not None and sub_ends > now:
        return SubscriptionView(
            status=SubscriptionStatus.active,
            tier=tier,
            has_access=True,
            days_remaining=days_until(sub_ends, now),
            features=features_for(tier),
            subscription_ends_at=sub_ends,
        )

    if sub_ends is not None and sub_ends <= now:
        return _no_access(SubscriptionStatus.expired, tier, subscription_ends_at=sub_ends)

    if trial_ends is not None and trial_ends > now:
        trial_tier = Tier(TRIAL_TIER)
        return SubscriptionView(
            status=SubscriptionStatus.trial,
            tier=trial_tier,
            has_access=True,
            is_trial_active=True,
            days_remaining=days_until(trial_ends, now),
            features=features_for(trial_tier),
            trial_ends_at=trial_ends,
        )

    if trial_ends is not None:
        return _no_access(SubscriptionStatus.expired, Tier(TRIAL_TIER), trial_ends_at=trial_ends)

    return _no_access(SubscriptionStatus.none, Tier.free)


def format_subscription_status(view: SubscriptionView) -> str:
    if view.status == SubscriptionStatus.active:
        return f"{view.tier.value.capitalize()} plan, {view.days_remaining} day(s) remaining"
    if view.status == SubscriptionStatus.trial:
        return f"Free trial, {view.days_remaining} day(s) remaining"
    if view.status == SubscriptionStatus.expired:
        return "Subscription expired"
    return "No active subscription"
