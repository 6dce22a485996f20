from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum as SqlEnum, Text, func, Index
from sqlalchemy.orm import declarative_base
from enum import Enum as PyEnum

Base = declarative_base()


class Tier(str, PyEnum):
    free = "free"
    basic = "basic"
    pro = "pro"
    ultra = "ultra"


class SubscriptionStatus(str, PyEnum):
    none = "none"
    trial = "trial"
    active = "active"
    past_due = "past_due"
    canceled = "canceled"
    expired = "expired"


class OrderStatus(str, PyEnum):
    created = "created"
    paid = "paid"
    failed = "failed"
    expired = "expired"


class Profile(Base):
    __tablename__ = "profiles"
    id = Column(String(64), primary_key=True)
    email = Column(String(320), index=True, nullable=True)
    subscription_status = Column(SqlEnum(SubscriptionStatus), default=SubscriptionStatus.none, nullable=False)
    subscription_tier = Column(SqlEnum(Tier), default=Tier.free, nullable=False)
    subscription_billing_period = Column(String(16), nullable=True)
    subscription_starts_at = Column(DateTime(timezone=True), nullable=True)
    subscription_ends_at = Column(DateTime(timezone=True), nullable=True)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    has_used_trial = Column(Boolean, default=False, nullable=False)
    razorpay_payment_id = Column(String, nullable=True)
    razorpay_order_id = Column(String, nullable=True)
    razorpay_subscription_id = Column(String, nullable=True)
    last_payment_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True)
    razorpay_order_id = Column(String, unique=True, nullable=False)
    user_id = Column(String(64), index=True, nullable=False)
    plan_id = Column(SqlEnum(Tier), nullable=False)
    billing_period = Column(String(16), default="monthly", nullable=False)
    # smallest currency unit (paise / cents)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), default="INR", nullable=False)
    status = Column(SqlEnum(OrderStatus), default=OrderStatus.created, nullable=False)
    receipt = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
    )


class BillingHistory(Base):
    __tablename__ = "billing_history"
    id = Column(Integer, primary_key=True)
    razorpay_payment_id = Column(String, unique=True, nullable=False)
    razorpay_order_id = Column(String, nullable=True)
    user_id = Column(String(64), index=True, nullable=False)
    plan_id = Column(SqlEnum(Tier), nullable=False)
    amount = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=True)
    status = Column(String(32), nullable=False)
    source = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    id = Column(Integer, primary_key=True)
    event_id = Column(String, unique=True, nullable=False)
    event_type = Column(String, nullable=False)
    payload = Column(Text, nullable=False)
    outcome = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SubscriptionAudit(Base):
    __tablename__ = "subscription_audit"
    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), index=True, nullable=False)
    old_status = Column(SqlEnum(SubscriptionStatus), nullable=True)
    new_status = Column(SqlEnum(SubscriptionStatus), nullable=False)
    old_tier = Column(SqlEnum(Tier), nullable=True)
    new_tier = Column(SqlEnum(Tier), nullable=False)
    reason = Column(String, nullable=False)
    reference = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
