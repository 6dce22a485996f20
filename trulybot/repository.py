from typing import Optional

from sqlalchemy.orm import Session

from trulybot.models import BillingHistory, Profile, SubscriptionAudit, SubscriptionStatus, Tier, WebhookEvent
from trulybot.utils import normalize_email


def get_profile(db: Session, user_id: str) -> Optional[Profile]:
    return db.query(Profile).filter(Profile.id == user_id).first()


def get_or_create_profile(db: Session, user_id: str, email: Optional[str] = None) -> Profile:
    """Return the profile, adding a fresh one to the session if absent.

    Does not commit; callers commit together with the state change.
    """
    profile = get_profile(db, user_id)
    if profile is None:
        profile = Profile(
            id=user_id,
            email=normalize_email(email),
            subscription_status=SubscriptionStatus.none,
            subscription_tier=Tier.free,
            has_used_trial=False,
        )
        db.add(profile)
        db.flush()
    elif email and not profile.email:
        profile.email = normalize_email(email)
    return profile


def find_profile_by_subscription(db: Session, subscription_id: str) -> Optional[Profile]:
    return db.query(Profile).filter(Profile.razorpay_subscription_id == subscription_id).first()


def get_billing_record(db: Session, payment_id: str) -> Optional[BillingHistory]:
    return db.query(BillingHistory).filter(BillingHistory.razorpay_payment_id == payment_id).first()


def add_subscription_audit(db: Session, *, user_id, old_status, new_status, old_tier, new_tier, reason, reference=None):
    audit = SubscriptionAudit(
        user_id=user_id,
        old_status=old_status,
        new_status=new_status,
        old_tier=old_tier,
        new_tier=new_tier,
        reason=reason,
        reference=reference,
    )
    db.add(audit)
    return audit


def get_webhook_event(db: Session, event_id: str) -> Optional[WebhookEvent]:
    return db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()
