import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from trulybot.config import razorpay_credentials
from trulybot.db import get_db
from trulybot.dependencies import get_gateway, json_body, require_user_id
from trulybot.errors import AccessDenied, ClientInputError, envelope, request_id_for
from trulybot.rate_limit import rate_limit
from trulybot.repository import get_billing_record
from trulybot.schemas import CreateOrderRequest, VerifyPaymentRequest
from trulybot.security import log_security_event, verify_payment_signature
from trulybot.services.orders import create_order, ensure_amount_matches, validate_order_security
from trulybot.services.payments import PaymentEvent, PaymentOutcome, process_payment_event

logger = logging.getLogger("trulybot.payments")

router = APIRouter(prefix="/api/payments")


@router.post("/create-order")
def create_order_endpoint(
    request: Request,
    user_id: str = Depends(require_user_id),
    _rl=Depends(rate_limit("payment")),
    body: CreateOrderRequest = Depends(json_body(CreateOrderRequest)),
    db: Session = Depends(get_db),
):
    if body.user_id and body.user_id != user_id:
        log_security_event("cross_user_order_attempt", user_id=user_id)
        raise AccessDenied("Cannot create order for another user", code="CROSS_USER_FORBIDDEN")

    key_id, _ = razorpay_credentials()
    gateway = get_gateway(request)
    order = create_order(
        db,
        gateway,
        user_id=user_id,
        plan_id=body.plan_id,
        currency=body.currency,
        billing_period=body.billing_period,
        receipt=body.receipt,
        notes=body.notes,
    )
    data = {
        "order_id": order.razorpay_order_id,
        "amount": order.amount,
        "currency": order.currency,
        "plan_id": order.plan_id.value,
        "billing_period": order.billing_period,
        "key_id": key_id,
    }
    return envelope(True, request_id=request_id_for(request), data=data, message="Order created")


@router.post("/verify-payment")
def verify_payment_endpoint(
    request: Request,
    user_id: str = Depends(require_user_id),
    _rl=Depends(rate_limit("payment")),
    body: VerifyPaymentRequest = Depends(json_body(VerifyPaymentRequest)),
    db: Session = Depends(get_db),
):
    if body.user_id and body.user_id != user_id:
        log_security_event("cross_user_verify_attempt", user_id=user_id)
        raise AccessDenied("Order access denied", code="ORDER_ACCESS_DENIED")

    _, key_secret = razorpay_credentials()
    verify_payment_signature(body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature, key_secret)

    # The webhook may have activated this payment already.
    record = get_billing_record(db, body.razorpay_payment_id)
    if record is not None and record.user_id == user_id:
        data = PaymentOutcome(activated=False, duplicate=True, reason="already_processed").to_dict()
        return envelope(True, request_id=request_id_for(request), data=data, message="Payment already processed")

    # Gate before the gateway round trip so replays and foreign orders never leave the process.
    check = validate_order_security(db, body.razorpay_order_id, user_id)

    payment = get_gateway(request).fetch_payment(body.razorpay_payment_id)
    if payment.get("order_id") != body.razorpay_order_id:
        log_security_event(
            "payment_order_mismatch",
            user_id=user_id,
            order_id=body.razorpay_order_id,
            payment_id=body.razorpay_payment_id,
        )
        raise ClientInputError("Payment verification failed", code="PAYMENT_ORDER_MISMATCH")
    if payment.get("status") not in ("authorized", "captured"):
        raise ClientInputError("Payment not completed", code="PAYMENT_NOT_CAPTURED")
    ensure_amount_matches(check, payment.get("amount"))

    event = PaymentEvent(
        type="payment.verified",
        payment_id=body.razorpay_payment_id,
        order_id=body.razorpay_order_id,
        amount=payment.get("amount"),
        currency=payment.get("currency") or check.currency,
        status=payment.get("status"),
        user_id=user_id,
        plan_id=check.plan_id.value,
        billing_period=check.billing_period,
        email=payment.get("email"),
        source="verify",
    )
    outcome = process_payment_event(db, event, require_order=True)
    message = "Payment already processed" if outcome.duplicate else "Payment verified"
    return envelope(True, request_id=request_id_for(request), data=outcome.to_dict(), message=message)
