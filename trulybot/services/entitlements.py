import os
import yaml

from trulybot.models import Tier

ENTITLEMENTS_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__), "../entitlements.yaml"))

UPGRADE_MESSAGES = {
    "can_customize_name": "Upgrade to Basic plan to customize your chatbot name",
    "can_customize_welcome_message": "Upgrade to Basic plan to customize welcome messages",
    "can_upload_logo": "Upgrade to Pro plan to upload custom logos",
    "can_change_colors": "Upgrade to Pro plan to customize colors and themes",
    "can_capture_leads": "Upgrade to Basic plan to enable lead capture",
    "can_remove_branding": "Upgrade to Basic plan to remove TrulyBot branding",
}
DEFAULT_UPGRADE_MESSAGE = "Upgrade your plan to access this feature"


def _load(path):
    with open(path, "r") as f:
        data = yaml.safe_load(f)
    if not data:
        raise RuntimeError("Entitlements YAML is empty or malformed!")
    missing = [t.value for t in Tier if t.value not in data]
    if missing:
        raise RuntimeError(f"Entitlements YAML has no entry for tier(s): {', '.join(missing)}")
    return data


_entitlements = _load(ENTITLEMENTS_PATH)


def get_restrictions(tier) -> dict:
    """Restrictions for `tier` without the display feature list."""
    ent = dict(_entitlements[Tier(tier).value])
    ent.pop("features", None)
    return ent


def can_access_feature(tier, key: str) -> bool:
    restrictions = get_restrictions(tier)
    if key not in restrictions:
        raise KeyError(key)
    value = restrictions[key]
    if value is None:
        return True
    if isinstance(value, bool):
        return value
    return value > 0


def has_reached_limit(tier, current_usage: int, limit_key: str = "monthly_conversation_limit") -> bool:
    limit = get_restrictions(tier)[limit_key]
    if limit is None:
        return False
    return current_usage >= limit


def features_for(tier) -> list:
    return list(_entitlements[Tier(tier).value].get("features", []))


def upgrade_message(feature: str) -> str:
    return UPGRADE_MESSAGES.get(feature, DEFAULT_UPGRADE_MESSAGE)
