import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from trulybot.billing import CURRENCIES, PAID_PLANS, period_days, plan_amount
from trulybot.errors import PaymentProcessingError
from trulybot.metrics import increment_activation
from trulybot.models import BillingHistory, OrderStatus, SubscriptionStatus, Tier
from trulybot.repository import add_subscription_audit, get_billing_record, get_or_create_profile
from trulybot.services.orders import OrderCheck, ensure_amount_matches, get_order, validate_order_security
from trulybot.utils import as_utc, utcnow

logger = logging.getLogger("trulybot.payments")


@dataclass
class PaymentEvent:
    type: str
    payment_id: str
    order_id: Optional[str]
    amount: Optional[int]
    currency: str = "INR"
    status: str = "captured"
    user_id: Optional[str] = None
    plan_id: Optional[str] = None
    billing_period: str = "monthly"
    email: Optional[str] = None
    timestamp: Optional[datetime] = None
    source: str = "webhook"


@dataclass
class PaymentOutcome:
    activated: bool
    duplicate: bool = False
    reason: Optional[str] = None
    user_id: Optional[str] = None
    tier: Optional[Tier] = None
    subscription_ends_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = {"activated": self.activated, "duplicate": self.duplicate}
        if self.reason:
            data["reason"] = self.reason
        if self.tier is not None:
            data["tier"] = self.tier.value
        if self.subscription_ends_at is not None:
            data["subscription_ends_at"] = self.subscription_ends_at.isoformat()
        return data


def _check_without_order(event: PaymentEvent) -> Optional[OrderCheck]:
    """Build the expected terms from the payment notes when no order row exists."""
    try:
        plan = Tier(event.plan_id)
    except ValueError:
        return None
    if plan not in PAID_PLANS or not event.user_id or event.currency not in CURRENCIES:
        return None
    period = event.billing_period if event.billing_period in ("monthly", "yearly") else "monthly"
    return OrderCheck(
        order_id=event.order_id,
        user_id=event.user_id,
        plan_id=plan,
        amount=plan_amount(plan, event.currency, period),
        currency=event.currency,
        billing_period=period,
    )


def process_payment_event(
    db: Session, event: PaymentEvent, require_order: bool = True, now: Optional[datetime] = None
) -> PaymentOutcome:
    """Apply a captured/authorized payment at most once per payment id.

    Order gate failures propagate as OrderSecurityError; callers decide how
    to surface them.
    """
    now = as_utc(now) or utcnow()

    if get_billing_record(db, event.payment_id) is not None:
        logger.info(f"Payment {event.payment_id} already processed")
        return PaymentOutcome(activated=False, duplicate=True, reason="already_processed")

    order = get_order(db, event.order_id) if event.order_id else None
    if require_order or order is not None:
        check = validate_order_security(db, event.order_id, event.user_id, now=now)
    else:
        check = _check_without_order(event)
        if check is None:
            logger.warning(f"Payment {event.payment_id} has no order and no usable user/plan notes")
            return PaymentOutcome(activated=False, reason="unresolved_payment")
    ensure_amount_matches(check, event.amount)

    try:
        profile = get_or_create_profile(db, check.user_id, email=event.email)
        old_status, old_tier = profile.subscription_status, profile.subscription_tier
        ends_at = now + timedelta(days=period_days(check.billing_period))

        profile.subscription_status = SubscriptionStatus.active
        profile.subscription_tier = check.plan_id
        profile.subscription_billing_period = check.billing_period
        profile.subscription_starts_at = now
        profile.subscription_ends_at = ends_at
        profile.trial_ends_at = None
        profile.razorpay_payment_id = event.payment_id
        profile.razorpay_order_id = event.order_id
        profile.last_payment_at = now

        if order is not None:
            order.status = OrderStatus.paid

        db.add(BillingHistory(
            razorpay_payment_id=event.payment_id,
            razorpay_order_id=event.order_id,
            user_id=check.user_id,
            plan_id=check.plan_id,
            amount=event.amount,
            currency=event.currency,
            status=event.status,
            source=event.source,
        ))
        add_subscription_audit(
            db,
            user_id=check.user_id,
            old_status=old_status,
            new_status=SubscriptionStatus.active,
            old_tier=old_tier,
            new_tier=check.plan_id,
            reason=event.type,
            reference=event.payment_id,
        )
        db.commit()
    except IntegrityError:
        # A concurrent delivery inserted the same payment id first.
        db.rollback()
        logger.info(f"Payment {event.payment_id} recorded concurrently; treating as duplicate")
        return PaymentOutcome(activated=False, duplicate=True, reason="already_processed")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Payment {event.payment_id} activation failed: {e.__class__.__name__}")
        raise PaymentProcessingError()

    increment_activation(check.plan_id.value, event.source)
    logger.info(
        f"Activated {check.plan_id.value} for {check.user_id} until {ends_at.isoformat()}",
        extra={"user_id": check.user_id},
    )
    return PaymentOutcome(
        activated=True,
        user_id=check.user_id,
        tier=check.plan_id,
        subscription_ends_at=ends_at,
    )
