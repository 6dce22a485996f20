"""Dispatch verified gateway events to their handlers.

Every handler returns a small dict that becomes the `data` of the
acknowledgement. Handlers that change subscription state let database
failures propagate so the gateway redelivers; informational handlers log
and acknowledge.
"""
import logging
from typing import Callable, Dict

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trulybot.errors import InvalidPayload, OrderSecurityError
from trulybot.models import SubscriptionStatus
from trulybot.schemas import PaymentWebhook, SubscriptionWebhook, validation_fields, webhook_adapter
from trulybot.services.orders import mark_order_failed
from trulybot.services.payments import PaymentEvent, process_payment_event
from trulybot.services.subscriptions import activate_from_subscription_entity, set_subscription_status
from trulybot.utils import from_unix

logger = logging.getLogger("trulybot.webhooks")


def payment_event_from(event: PaymentWebhook) -> PaymentEvent:
    payment = event.payment
    notes = payment.notes
    return PaymentEvent(
        type=event.event,
        payment_id=payment.id,
        order_id=payment.order_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        user_id=notes.get("user_id"),
        plan_id=notes.get("plan_id"),
        billing_period=notes.get("billing_period") or "monthly",
        email=payment.email,
        timestamp=from_unix(payment.created_at or event.created_at),
        source="webhook",
    )


def handle_payment_success(db: Session, event: PaymentWebhook) -> dict:
    payment_event = payment_event_from(event)
    try:
        outcome = process_payment_event(db, payment_event, require_order=False)
    except OrderSecurityError as e:
        # Already logged as a security event; redelivery cannot change the result.
        return {"activated": False, "duplicate": False, "reason": e.security_event}
    return outcome.to_dict()


def handle_payment_failed(db: Session, event: PaymentWebhook) -> dict:
    payment = event.payment
    logger.info(
        f"Payment {payment.id} failed: {payment.error_code or 'unknown'}",
        extra={"user_id": payment.notes.get("user_id")},
    )
    if not payment.order_id:
        return {"recorded": False}
    try:
        order = mark_order_failed(db, payment.order_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not mark order {payment.order_id} failed: {e.__class__.__name__}")
        return {"recorded": False}
    return {"recorded": order is not None}


def handle_subscription_activated(db: Session, event: SubscriptionWebhook) -> dict:
    profile = activate_from_subscription_entity(db, event.subscription)
    if profile is None:
        return {"activated": False, "reason": "unresolved_subscription"}
    return {"activated": True, "tier": profile.subscription_tier.value}


def _status_handler(status: SubscriptionStatus):
    def handler(db: Session, event: SubscriptionWebhook) -> dict:
        profile = set_subscription_status(db, event.subscription, status, reason=event.event)
        return {"updated": profile is not None, "status": status.value}
    return handler


HANDLERS: Dict[str, Callable[[Session, object], dict]] = {
    "payment.authorized": handle_payment_success,
    "payment.captured": handle_payment_success,
    "payment.failed": handle_payment_failed,
    "subscription.activated": handle_subscription_activated,
    "subscription.paused": _status_handler(SubscriptionStatus.past_due),
    "subscription.cancelled": _status_handler(SubscriptionStatus.canceled),
}


def dispatch_event(db: Session, raw_event: dict) -> dict:
    """Route a parsed event to its handler; unknown types are a no-op."""
    event_type = raw_event.get("event")
    if not isinstance(event_type, str):
        logger.warning(f"Webhook event type is a {type(event_type).__name__}, not a string")
        raise InvalidPayload(details={"fields": ["event"]})
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Ignoring unhandled webhook event {event_type!r}")
        return {"handled": False, "event": event_type}
    try:
        event = webhook_adapter.validate_python(raw_event)
    except ValidationError as e:
        logger.warning(f"Webhook {event_type} failed validation: {validation_fields(e.errors())}")
        raise InvalidPayload(details={"fields": validation_fields(e.errors())})
    result = handler(db, event)
    return {"handled": True, "event": event_type, **result}
