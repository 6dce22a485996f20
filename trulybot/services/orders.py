import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trulybot.billing import BILLING_PERIODS, CURRENCIES, parse_plan, plan_amount
from trulybot.config import ORDER_MAX_AGE_HOURS
from trulybot.errors import (
    AmountMismatch,
    ClientInputError,
    OrderAccessDenied,
    OrderAlreadyProcessed,
    OrderExpired,
    OrderNotFound,
    OrderSecurityError,
)
from trulybot.models import Order, OrderStatus, Tier
from trulybot.security import log_security_event
from trulybot.utils import as_utc, utcnow

logger = logging.getLogger("trulybot.orders")

SUSPICIOUS_WINDOW = timedelta(hours=1)
MAX_ORDERS_PER_WINDOW = 5
MAX_FAILED_PER_WINDOW = 3


@dataclass
class OrderCheck:
    order_id: str
    user_id: str
    plan_id: Tier
    amount: int
    currency: str
    billing_period: str


@dataclass
class SuspicionReport:
    suspicious: bool
    recent_orders: int = 0
    failed_orders: int = 0


def get_order(db: Session, order_id: str) -> Optional[Order]:
    return db.query(Order).filter(Order.razorpay_order_id == order_id).first()


def _reject(exc: OrderSecurityError, **details):
    log_security_event(exc.security_event, **details)
    raise exc


def validate_order_security(
    db: Session, order_id: str, user_id: Optional[str] = None, now: Optional[datetime] = None
) -> OrderCheck:
    """Run the order gates in order; the first failure is logged and raised."""
    now = as_utc(now) or utcnow()
    order = get_order(db, order_id)
    if order is None:
        _reject(OrderNotFound(), order_id=order_id, user_id=user_id)
    if user_id is not None and order.user_id != user_id:
        _reject(OrderAccessDenied(), order_id=order_id, user_id=user_id)
    if order.status == OrderStatus.paid:
        _reject(OrderAlreadyProcessed(), order_id=order_id, user_id=order.user_id)
    if now - as_utc(order.created_at) > timedelta(hours=ORDER_MAX_AGE_HOURS):
        _reject(
            OrderExpired(),
            order_id=order_id,
            user_id=order.user_id,
            created_at=as_utc(order.created_at).isoformat(),
        )
    return OrderCheck(
        order_id=order.razorpay_order_id,
        user_id=order.user_id,
        plan_id=Tier(order.plan_id),
        amount=order.amount,
        currency=order.currency,
        billing_period=order.billing_period,
    )


def ensure_amount_matches(check: OrderCheck, amount: Optional[int]):
    if amount is None or int(amount) != check.amount:
        _reject(
            AmountMismatch(),
            order_id=check.order_id,
            user_id=check.user_id,
            expected_amount=check.amount,
            received_amount=amount,
        )


def detect_suspicious_activity(db: Session, user_id: str, now: Optional[datetime] = None) -> SuspicionReport:
    """Flag bursts of order attempts. Never blocks the caller."""
    now = as_utc(now) or utcnow()
    since = now - SUSPICIOUS_WINDOW
    try:
        recent = (
            db.query(func.count(Order.id))
            .filter(Order.user_id == user_id, Order.created_at >= since)
            .scalar()
        )
        failed = (
            db.query(func.count(Order.id))
            .filter(Order.user_id == user_id, Order.created_at >= since, Order.status == OrderStatus.failed)
            .scalar()
        )
    except SQLAlchemyError as e:
        logger.error(f"Suspicious activity check failed for {user_id}: {e.__class__.__name__}")
        db.rollback()
        return SuspicionReport(suspicious=False)

    report = SuspicionReport(
        suspicious=recent > MAX_ORDERS_PER_WINDOW or failed > MAX_FAILED_PER_WINDOW,
        recent_orders=recent,
        failed_orders=failed,
    )
    if report.suspicious:
        log_security_event(
            "suspicious_payment_activity",
            user_id=user_id,
            recent_orders=recent,
            failed_orders=failed,
        )
    return report


def create_order(
    db: Session,
    gateway,
    user_id: str,
    plan_id: str,
    currency: str = "INR",
    billing_period: str = "monthly",
    receipt: Optional[str] = None,
    notes: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> Order:
    now = as_utc(now) or utcnow()
    plan = parse_plan(plan_id)
    if currency not in CURRENCIES:
        raise ClientInputError("Unsupported currency", code="INVALID_CURRENCY")
    if billing_period not in BILLING_PERIODS:
        raise ClientInputError("Unsupported billing period", code="INVALID_BILLING_PERIOD")
    amount = plan_amount(plan, currency, billing_period)

    detect_suspicious_activity(db, user_id, now=now)

    receipt = receipt or f"{plan.value}-{billing_period}-{int(time.time() * 1000)}"
    order_notes = dict(notes or {})
    order_notes.update({"plan_id": plan.value, "billing_period": billing_period, "user_id": user_id})
    remote = gateway.create_order(amount=amount, currency=currency, receipt=receipt, notes=order_notes)

    order = Order(
        razorpay_order_id=remote["id"],
        user_id=user_id,
        plan_id=plan,
        billing_period=billing_period,
        amount=amount,
        currency=currency,
        status=OrderStatus.created,
        receipt=receipt,
        created_at=now,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info(f"Created order {order.razorpay_order_id} for {user_id} ({plan.value}/{billing_period})")
    return order


def mark_order_failed(db: Session, order_id: str) -> Optional[Order]:
    order = get_order(db, order_id)
    if order is None or order.status == OrderStatus.paid:
        return order
    order.status = OrderStatus.failed
    db.commit()
    return order
