import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone

from trulybot.models import Order, OrderStatus, Profile, SubscriptionStatus, Tier
from trulybot.security import create_access_token

WEBHOOK_SECRET = "whsec_test_4f8a2c"
KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret_91b2"
JWT_SECRET = "jwt-test-secret"
CRON_SECRET = "cron-test-secret"


def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def checkout_signature(order_id, payment_id, secret: str = KEY_SECRET) -> str:
    return sign(f"{order_id}|{payment_id}".encode(), secret)


def payment_webhook(event="payment.captured", payment_id="pay_test_1", order_id="order_test_1",
                    amount=29900, notes=None, currency="INR"):
    return {
        "entity": "event",
        "event": event,
        "contains": ["payment"],
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "entity": "payment",
                    "amount": amount,
                    "currency": currency,
                    "status": event.split(".")[1],
                    "order_id": order_id,
                    "email": "owner@example.com",
                    "notes": notes if notes is not None else [],
                    "created_at": 1760000000,
                }
            }
        },
        "created_at": 1760000000,
    }


def subscription_webhook(event="subscription.activated", subscription_id="sub_test_1", notes=None,
                         current_end=None):
    return {
        "entity": "event",
        "event": event,
        "contains": ["subscription"],
        "payload": {
            "subscription": {
                "entity": {
                    "id": subscription_id,
                    "entity": "subscription",
                    "plan_id": "plan_rzp_1",
                    "status": event.split(".")[1],
                    "current_start": 1760000000,
                    "current_end": current_end,
                    "notes": notes if notes is not None else [],
                }
            }
        },
    }


def post_webhook(client, payload, secret=WEBHOOK_SECRET, headers=None, path="/api/payments/webhook"):
    body = json.dumps(payload).encode()
    all_headers = {"x-razorpay-signature": sign(body, secret), "content-type": "application/json"}
    all_headers.update(headers or {})
    return client.post(path, content=body, headers=all_headers)


def make_order(db, order_id="order_test_1", user_id="user-1", plan=Tier.pro, amount=29900,
               status=OrderStatus.created, created_at=None, billing_period="monthly"):
    order = Order(
        razorpay_order_id=order_id,
        user_id=user_id,
        plan_id=plan,
        billing_period=billing_period,
        amount=amount,
        currency="INR",
        status=status,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(order)
    db.commit()
    return order


def make_profile(db, user_id="user-1", **fields):
    profile = Profile(
        id=user_id,
        subscription_status=fields.pop("subscription_status", SubscriptionStatus.none),
        subscription_tier=fields.pop("subscription_tier", Tier.free),
        has_used_trial=fields.pop("has_used_trial", False),
        **fields,
    )
    db.add(profile)
    db.commit()
    return profile


def days_from_now(days):
    return datetime.now(timezone.utc) + timedelta(days=days)
