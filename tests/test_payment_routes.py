import pytest

from helpers import KEY_ID, auth_headers, checkout_signature, make_order, payment_webhook, post_webhook
from trulybot.errors import TransientError
from trulybot.models import BillingHistory, Order, OrderStatus, Profile, SubscriptionStatus, Tier


@pytest.mark.parametrize("path", ["/api/payments/create-order", "/api/payments/verify-payment"])
@pytest.mark.parametrize("body", [{}, {"plan_id": "pro"}, None])
def test_unauthenticated_calls_get_401(client, path, body):
    resp = client.post(path, json=body) if body is not None else client.post(path, content=b"{broken")
    assert resp.status_code == 401
    assert resp.json()["code"] == "AUTH_REQUIRED"
    assert resp.json()["success"] is False


def test_garbage_token_is_401(client):
    resp = client.post(
        "/api/payments/create-order",
        json={"plan_id": "pro"},
        headers={"Authorization": "Bearer not.a.jwt"},
    )
    assert resp.status_code == 401


def test_create_order(client, db, gateway):
    resp = client.post(
        "/api/payments/create-order",
        json={"plan_id": "pro", "currency": "INR", "billing_period": "monthly"},
        headers=auth_headers("user-1"),
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data == {
        "order_id": "order_test_1",
        "amount": 29900,
        "currency": "INR",
        "plan_id": "pro",
        "billing_period": "monthly",
        "key_id": KEY_ID,
    }
    order = db.query(Order).one()
    assert order.user_id == "user-1"
    assert order.status == OrderStatus.created
    assert gateway.orders[0]["notes"]["user_id"] == "user-1"


def test_create_order_rejects_unknown_plan(client):
    resp = client.post("/api/payments/create-order", json={"plan_id": "gold"}, headers=auth_headers("user-1"))
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_PLAN"


def test_create_order_rejects_bad_currency_as_validation_error(client):
    resp = client.post(
        "/api/payments/create-order",
        json={"plan_id": "pro", "currency": "EUR"},
        headers=auth_headers("user-1"),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"
    assert resp.json()["details"]["fields"] == ["currency"]


def test_create_order_for_someone_else(client, db):
    resp = client.post(
        "/api/payments/create-order",
        json={"plan_id": "pro", "user_id": "user-2"},
        headers=auth_headers("user-1"),
    )
    assert resp.status_code == 403
    assert db.query(Order).count() == 0


def test_create_order_without_gateway_credentials(client, monkeypatch):
    monkeypatch.delenv("RAZORPAY_KEY_SECRET")
    resp = client.post("/api/payments/create-order", json={"plan_id": "pro"}, headers=auth_headers("user-1"))
    assert resp.status_code == 500
    assert resp.json()["code"] == "CONFIG_ERROR"


def verify_body(order_id="order_test_1", payment_id="pay_1", signature=None):
    return {
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature or checkout_signature(order_id, payment_id),
    }


def test_verify_payment_activates(client, db, gateway):
    make_order(db)
    gateway.add_payment("pay_1", "order_test_1", 29900)

    resp = client.post("/api/payments/verify-payment", json=verify_body(), headers=auth_headers("user-1"))

    assert resp.status_code == 200
    assert resp.json()["data"]["activated"] is True
    db.expire_all()
    profile = db.get(Profile, "user-1")
    assert profile.subscription_status == SubscriptionStatus.active
    assert profile.subscription_tier == Tier.pro
    assert db.query(BillingHistory).one().source == "verify"


def test_verify_payment_accepts_short_field_names(client, db, gateway):
    make_order(db)
    gateway.add_payment("pay_1", "order_test_1", 29900)
    body = {
        "order_id": "order_test_1",
        "payment_id": "pay_1",
        "signature": checkout_signature("order_test_1", "pay_1"),
    }
    resp = client.post("/api/payments/verify-payment", json=body, headers=auth_headers("user-1"))
    assert resp.status_code == 200


@pytest.mark.parametrize("missing", ["razorpay_order_id", "razorpay_payment_id", "razorpay_signature"])
def test_verify_payment_missing_field(client, missing):
    body = verify_body()
    body.pop(missing)
    resp = client.post("/api/payments/verify-payment", json=body, headers=auth_headers("user-1"))
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


def test_verify_payment_bad_signature(client, db):
    make_order(db)
    resp = client.post(
        "/api/payments/verify-payment",
        json=verify_body(signature="ab" * 32),
        headers=auth_headers("user-1"),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_SIGNATURE"
    assert db.query(BillingHistory).count() == 0


def test_verify_payment_for_foreign_order(client, db, gateway):
    make_order(db, user_id="user-2")
    gateway.add_payment("pay_1", "order_test_1", 29900)
    resp = client.post("/api/payments/verify-payment", json=verify_body(), headers=auth_headers("user-1"))
    assert resp.status_code == 403
    assert resp.json()["message"] == "Order access denied"


def test_verify_payment_amount_from_gateway_must_match(client, db, gateway):
    make_order(db)
    gateway.add_payment("pay_1", "order_test_1", 100)
    resp = client.post("/api/payments/verify-payment", json=verify_body(), headers=auth_headers("user-1"))
    assert resp.status_code == 400
    assert resp.json()["code"] == "AMOUNT_MISMATCH"


def test_verify_payment_for_other_order_payment(client, db, gateway):
    make_order(db)
    gateway.add_payment("pay_1", "order_other", 29900)
    resp = client.post("/api/payments/verify-payment", json=verify_body(), headers=auth_headers("user-1"))
    assert resp.status_code == 400
    assert resp.json()["code"] == "PAYMENT_ORDER_MISMATCH"


def test_verify_payment_gateway_timeout_is_retryable(client, db, gateway):
    make_order(db)
    gateway.fetch_error = TransientError("Payment gateway timed out", code="GATEWAY_TIMEOUT")
    resp = client.post("/api/payments/verify-payment", json=verify_body(), headers=auth_headers("user-1"))
    assert resp.status_code == 503
    assert resp.json()["code"] == "GATEWAY_TIMEOUT"


def test_verify_after_webhook_is_idempotent(client, db, gateway):
    make_order(db)
    gateway.add_payment("pay_test_1", "order_test_1", 29900)
    notes = {"user_id": "user-1", "plan_id": "pro"}
    assert post_webhook(client, payment_webhook(notes=notes)).json()["data"]["activated"] is True

    resp = client.post(
        "/api/payments/verify-payment",
        json=verify_body(payment_id="pay_test_1"),
        headers=auth_headers("user-1"),
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["duplicate"] is True
    assert db.query(BillingHistory).count() == 1
