import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trulybot.config import webhook_secret
from trulybot.db import get_db
from trulybot.errors import AppError, envelope, request_id_for
from trulybot.metrics import increment_webhook_event
from trulybot.models import WebhookEvent
from trulybot.repository import get_webhook_event
from trulybot.security import verify_webhook_payload
from trulybot.services.webhooks import dispatch_event

logger = logging.getLogger("trulybot.webhooks")

router = APIRouter()

SIGNATURE_HEADER = "x-razorpay-signature"
EVENT_ID_HEADER = "x-razorpay-event-id"


def _ack(request: Request, data: dict, message: str = "Webhook processed"):
    return JSONResponse(envelope(True, request_id=request_id_for(request), data=data, message=message))


def _record_delivery(db: Session, event_id: str, event_type: str, raw_body: bytes, outcome: str):
    db.add(WebhookEvent(
        event_id=event_id,
        event_type=event_type or "unknown",
        payload=raw_body.decode("utf-8", errors="replace"),
        outcome=outcome,
    ))
    try:
        db.commit()
    except IntegrityError:
        # recorded by a concurrent delivery of the same id
        db.rollback()


@router.post("/api/payments/webhook")
@router.post("/api/webhooks/razorpay")
async def razorpay_webhook(request: Request, db: Session = Depends(get_db)):
    raw_body = await request.body()
    event_id = request.headers.get(EVENT_ID_HEADER)
    event_type = None
    try:
        event = verify_webhook_payload(raw_body, request.headers.get(SIGNATURE_HEADER), webhook_secret())
        event_type = event.get("event") if isinstance(event.get("event"), str) else None

        if event_id and get_webhook_event(db, event_id) is not None:
            increment_webhook_event(event_type or "unknown", "duplicate")
            logger.info(f"Webhook {event_id} already processed")
            return _ack(request, {"duplicate": True, "event": event_type}, message="Already processed")

        result = dispatch_event(db, event)
    except AppError as e:
        increment_webhook_event(event_type or "unverified", e.code.lower())
        raise

    outcome = "handled" if result.get("handled") else "ignored"
    if result.get("duplicate"):
        outcome = "duplicate"
    if event_id:
        _record_delivery(db, event_id, event_type, raw_body, outcome)
    increment_webhook_event(event_type or "unknown", outcome)
    logger.info(
        f"Webhook {event_type} {outcome}",
        extra={"request_id": request_id_for(request), "event": event_type},
    )
    return _ack(request, result)
