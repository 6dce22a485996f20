import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trulybot.billing import PAID_PLANS, period_days
from trulybot.errors import PaymentProcessingError
from trulybot.metrics import increment_activation
from trulybot.models import Profile, SubscriptionStatus, Tier
from trulybot.repository import add_subscription_audit, find_profile_by_subscription, get_or_create_profile, get_profile
from trulybot.utils import as_utc, from_unix, utcnow

logger = logging.getLogger("trulybot.subscriptions")

RENEWAL_NOTICE = timedelta(hours=24)


@dataclass
class RenewalReport:
    checked: int = 0
    expiring_soon: int = 0
    expired: int = 0

    def to_dict(self):
        return asdict(self)


def _resolve_profile(db: Session, subscription) -> Optional[Profile]:
    profile = find_profile_by_subscription(db, subscription.id)
    if profile is None and subscription.notes.get("user_id"):
        profile = get_profile(db, subscription.notes["user_id"])
    return profile


def _commit(db: Session, what: str):
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"{what} failed: {e.__class__.__name__}")
        raise PaymentProcessingError()


def activate_from_subscription_entity(db: Session, subscription, now: Optional[datetime] = None) -> Optional[Profile]:
    """Activate the plan named in the subscription notes.

    Returns None when the entity cannot be tied to a user or a paid plan.
    """
    now = as_utc(now) or utcnow()
    notes = subscription.notes
    user_id = notes.get("user_id")
    try:
        tier = Tier(notes.get("plan_id") or notes.get("tier"))
    except ValueError:
        tier = None
    if tier not in PAID_PLANS:
        logger.warning(f"Subscription {subscription.id} has no recognised plan in notes")
        return None

    profile = find_profile_by_subscription(db, subscription.id)
    if profile is None:
        if not user_id:
            logger.warning(f"Subscription {subscription.id} has no user_id in notes")
            return None
        profile = get_or_create_profile(db, user_id)

    billing_period = notes.get("billing_period") or "monthly"
    ends_at = from_unix(subscription.current_end) or now + timedelta(days=period_days(billing_period))
    old_status, old_tier = profile.subscription_status, profile.subscription_tier

    if (
        profile.razorpay_subscription_id == subscription.id
        and old_status == SubscriptionStatus.active
        and old_tier == tier
        and as_utc(profile.subscription_ends_at) == ends_at
    ):
        logger.info(f"Subscription {subscription.id} already active for {profile.id}")
        return profile

    profile.subscription_status = SubscriptionStatus.active
    profile.subscription_tier = tier
    profile.subscription_billing_period = billing_period
    profile.subscription_starts_at = from_unix(subscription.current_start) or now
    profile.subscription_ends_at = ends_at
    profile.trial_ends_at = None
    profile.razorpay_subscription_id = subscription.id
    add_subscription_audit(
        db,
        user_id=profile.id,
        old_status=old_status,
        new_status=SubscriptionStatus.active,
        old_tier=old_tier,
        new_tier=tier,
        reason="subscription.activated",
        reference=subscription.id,
    )
    _commit(db, f"Activating subscription {subscription.id}")
    increment_activation(tier.value, "subscription")
    logger.info(f"Subscription {subscription.id} activated {tier.value} for {profile.id}", extra={"user_id": profile.id})
    return profile


def set_subscription_status(db: Session, subscription, status: SubscriptionStatus, reason: str) -> Optional[Profile]:
    profile = _resolve_profile(db, subscription)
    if profile is None:
        logger.warning(f"No profile found for subscription {subscription.id} ({reason})")
        return None
    old_status = profile.subscription_status
    profile.subscription_status = status
    add_subscription_audit(
        db,
        user_id=profile.id,
        old_status=old_status,
        new_status=status,
        old_tier=profile.subscription_tier,
        new_tier=profile.subscription_tier,
        reason=reason,
        reference=subscription.id,
    )
    _commit(db, f"Updating subscription {subscription.id}")
    logger.info(f"Subscription {subscription.id} for {profile.id}: {old_status.value} -> {status.value}")
    return profile


def run_subscription_renewal(db: Session, now: Optional[datetime] = None) -> RenewalReport:
    """Count terms ending within a day and expire the ones that have lapsed."""
    now = as_utc(now) or utcnow()
    report = RenewalReport()
    active = db.query(Profile).filter(Profile.subscription_status == SubscriptionStatus.active).all()
    report.checked = len(active)
    for profile in active:
        ends_at = as_utc(profile.subscription_ends_at)
        if ends_at is None:
            continue
        if ends_at <= now:
            profile.subscription_status = SubscriptionStatus.expired
            add_subscription_audit(
                db,
                user_id=profile.id,
                old_status=SubscriptionStatus.active,
                new_status=SubscriptionStatus.expired,
                old_tier=profile.subscription_tier,
                new_tier=profile.subscription_tier,
                reason="renewal.lapsed",
            )
            report.expired += 1
        elif ends_at <= now + RENEWAL_NOTICE:
            report.expiring_soon += 1
            logger.info(
                f"Subscription for {profile.id} ends at {ends_at.isoformat()}",
                extra={"user_id": profile.id, "event": "renewal_due"},
            )
    _commit(db, "Subscription renewal sweep")
    logger.info(f"Renewal sweep: {report.to_dict()}")
    return report
