import logging
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from helpers import make_order
from trulybot.errors import AmountMismatch, OrderAccessDenied, OrderAlreadyProcessed, OrderExpired, OrderNotFound
from trulybot.models import Order, OrderStatus, Tier
from trulybot.services import orders
from trulybot.services.orders import (
    create_order,
    detect_suspicious_activity,
    ensure_amount_matches,
    mark_order_failed,
    validate_order_security,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def security_events(caplog):
    return [r.event for r in caplog.records if r.name == "trulybot.security"]


def test_valid_order_returns_terms(db):
    make_order(db, created_at=NOW - timedelta(hours=1))
    check = validate_order_security(db, "order_test_1", "user-1", now=NOW)
    assert check.user_id == "user-1"
    assert check.plan_id == Tier.pro
    assert check.amount == 29900


def test_owner_check_is_optional(db):
    make_order(db, created_at=NOW)
    assert validate_order_security(db, "order_test_1", now=NOW).user_id == "user-1"


def test_unknown_order(db, caplog):
    with pytest.raises(OrderNotFound) as exc:
        validate_order_security(db, "order_missing", "user-1", now=NOW)
    assert exc.value.status_code == 404
    assert security_events(caplog) == ["order_not_found"]


def test_foreign_order_is_generic_access_denied(db, caplog):
    make_order(db, created_at=NOW)
    with pytest.raises(OrderAccessDenied) as exc:
        validate_order_security(db, "order_test_1", "user-2", now=NOW)
    assert exc.value.status_code == 403
    assert exc.value.detail == "Order access denied"
    assert security_events(caplog) == ["order_ownership_violation"]


def test_paid_order_cannot_be_processed_twice(db, caplog):
    make_order(db, status=OrderStatus.paid, created_at=NOW)
    with pytest.raises(OrderAlreadyProcessed) as exc:
        validate_order_security(db, "order_test_1", "user-1", now=NOW)
    assert exc.value.status_code == 409
    assert security_events(caplog) == ["order_already_processed"]


def test_ownership_checked_before_status(db):
    make_order(db, status=OrderStatus.paid, created_at=NOW)
    with pytest.raises(OrderAccessDenied):
        validate_order_security(db, "order_test_1", "user-2", now=NOW)


@pytest.mark.parametrize(
    "age, accepted",
    [
        (timedelta(hours=23, minutes=59, seconds=59), True),
        (timedelta(hours=24), True),
        (timedelta(hours=24, seconds=1), False),
        (timedelta(days=3), False),
    ],
)
def test_order_age_boundary(db, age, accepted):
    make_order(db, created_at=NOW - age)
    if accepted:
        validate_order_security(db, "order_test_1", "user-1", now=NOW)
    else:
        with pytest.raises(OrderExpired):
            validate_order_security(db, "order_test_1", "user-1", now=NOW)


def test_amount_must_match_exactly(db, caplog):
    make_order(db, created_at=NOW)
    check = validate_order_security(db, "order_test_1", now=NOW)
    ensure_amount_matches(check, 29900)
    for amount in (29899, 29901, None):
        with pytest.raises(AmountMismatch):
            ensure_amount_matches(check, amount)
    assert security_events(caplog).count("amount_mismatch") == 3


def test_suspicious_activity_flags_bursts_without_blocking(db, caplog):
    for i in range(6):
        make_order(db, order_id=f"order_{i}", created_at=NOW - timedelta(minutes=10))
    # outside the window
    make_order(db, order_id="order_old", created_at=NOW - timedelta(hours=2))
    report = detect_suspicious_activity(db, "user-1", now=NOW)
    assert report.suspicious
    assert report.recent_orders == 6
    assert "suspicious_payment_activity" in security_events(caplog)


def test_failed_orders_flag_at_four(db):
    for i in range(4):
        make_order(db, order_id=f"order_{i}", status=OrderStatus.failed, created_at=NOW - timedelta(minutes=5))
    report = detect_suspicious_activity(db, "user-1", now=NOW)
    assert report.suspicious
    assert report.failed_orders == 4


def test_five_orders_is_not_suspicious(db):
    for i in range(5):
        make_order(db, order_id=f"order_{i}", created_at=NOW - timedelta(minutes=5))
    assert not detect_suspicious_activity(db, "user-1", now=NOW).suspicious


def test_detection_failure_is_not_suspicious(db, monkeypatch, caplog):
    def broken_query(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("db down"))

    monkeypatch.setattr(db, "query", broken_query)
    with caplog.at_level(logging.ERROR, logger="trulybot.orders"):
        report = detect_suspicious_activity(db, "user-1", now=NOW)
    assert not report.suspicious
    assert any("Suspicious activity check failed" in r.getMessage() for r in caplog.records)


def test_create_order_prices_plan_and_persists(db, gateway):
    order = create_order(db, gateway, "user-1", "ultra", "INR", "yearly", now=NOW)
    assert order.razorpay_order_id == "order_test_1"
    assert order.amount == 479000
    assert order.status == OrderStatus.created
    sent = gateway.orders[0]
    assert sent["amount"] == 479000
    assert sent["notes"]["user_id"] == "user-1"
    assert sent["notes"]["plan_id"] == "ultra"
    assert db.query(Order).count() == 1


def test_create_order_still_allowed_when_suspicious(db, gateway, monkeypatch):
    monkeypatch.setattr(orders, "detect_suspicious_activity", lambda *a, **k: orders.SuspicionReport(True, 9, 9))
    assert create_order(db, gateway, "user-1", "basic", now=NOW).amount == 9900


def test_mark_order_failed_leaves_paid_orders(db):
    make_order(db, order_id="order_a", created_at=NOW)
    make_order(db, order_id="order_b", status=OrderStatus.paid, created_at=NOW)
    assert mark_order_failed(db, "order_a").status == OrderStatus.failed
    assert mark_order_failed(db, "order_b").status == OrderStatus.paid
    assert mark_order_failed(db, "order_missing") is None
