import pytest

from trulybot.billing import is_upgrade, period_days, plan_amount, plan_price, tier_rank
from trulybot.errors import ClientInputError
from trulybot.models import Tier
from trulybot.services.entitlements import (
    can_access_feature,
    features_for,
    get_restrictions,
    has_reached_limit,
    upgrade_message,
)

FLAGS = (
    "can_customize_name",
    "can_customize_welcome_message",
    "can_upload_logo",
    "can_change_colors",
    "can_capture_leads",
    "can_remove_branding",
)


@pytest.mark.parametrize("tier", list(Tier))
def test_every_tier_has_every_key(tier):
    restrictions = get_restrictions(tier)
    for key in FLAGS + ("max_knowledge_uploads", "max_knowledge_words", "monthly_conversation_limit"):
        assert key in restrictions
    assert features_for(tier)


def test_free_tier_is_locked_down():
    assert not any(can_access_feature(Tier.free, flag) for flag in FLAGS)
    assert get_restrictions(Tier.free)["max_knowledge_uploads"] == 10


def test_basic_can_remove_branding_but_not_theme():
    assert can_access_feature(Tier.basic, "can_remove_branding")
    assert can_access_feature(Tier.basic, "can_capture_leads")
    assert not can_access_feature(Tier.basic, "can_upload_logo")
    assert not can_access_feature(Tier.basic, "can_change_colors")


def test_numeric_quota_and_unlimited_count_as_access():
    assert can_access_feature(Tier.free, "max_knowledge_words")
    assert can_access_feature(Tier.pro, "monthly_conversation_limit")


def test_unknown_feature_key():
    with pytest.raises(KeyError):
        can_access_feature(Tier.pro, "can_fly")


def test_conversation_limits():
    assert not has_reached_limit(Tier.basic, 999)
    assert has_reached_limit(Tier.basic, 1000)
    assert has_reached_limit(Tier.free, 300)
    # null limit is never reached
    assert not has_reached_limit(Tier.ultra, 10 ** 9)


def test_other_limit_keys():
    assert has_reached_limit(Tier.free, 10, limit_key="max_knowledge_uploads")
    assert not has_reached_limit(Tier.ultra, 99, limit_key="max_knowledge_uploads")


def test_restrictions_are_copies():
    get_restrictions(Tier.pro)["can_upload_logo"] = False
    assert can_access_feature(Tier.pro, "can_upload_logo")


def test_upgrade_messages():
    assert "Pro" in upgrade_message("can_upload_logo")
    assert upgrade_message("something_else") == "Upgrade your plan to access this feature"


def test_plan_amounts_in_smallest_unit():
    assert plan_amount("basic") == 9900
    assert plan_amount("pro", "INR", "monthly") == 29900
    assert plan_amount("ultra", "USD", "monthly") == 2500
    # 99 * 12 less the annual discount, whole rupees
    assert plan_amount("basic", "INR", "yearly") == 95000
    assert plan_price("pro", "USD", "yearly") == plan_price("pro", "USD", "monthly") * 12 * 8 / 10


@pytest.mark.parametrize("plan", ["free", "gold", ""])
def test_invalid_plans_rejected(plan):
    with pytest.raises(ClientInputError) as exc:
        plan_amount(plan)
    assert exc.value.code == "INVALID_PLAN"


def test_unsupported_currency_and_period():
    with pytest.raises(ClientInputError):
        plan_amount("pro", "EUR")
    with pytest.raises(ClientInputError):
        plan_amount("pro", "INR", "weekly")


def test_tier_ordering():
    assert tier_rank(Tier.free) < tier_rank("basic") < tier_rank(Tier.pro) < tier_rank(Tier.ultra)
    assert is_upgrade(Tier.basic, Tier.ultra)
    assert not is_upgrade(Tier.pro, Tier.basic)
    assert period_days("yearly") == 365
    assert period_days(None) == 30
