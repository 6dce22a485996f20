from decimal import Decimal, ROUND_HALF_UP

from trulybot.errors import ClientInputError
from trulybot.models import Tier

PAID_PLANS = (Tier.basic, Tier.pro, Tier.ultra)
BILLING_PERIODS = ("monthly", "yearly")
CURRENCIES = ("INR", "USD")

ANNUAL_DISCOUNT = Decimal("0.20")

# Monthly list prices in major currency units.
MONTHLY_PRICES = {
    "INR": {Tier.basic: Decimal("99"), Tier.pro: Decimal("299"), Tier.ultra: Decimal("499")},
    "USD": {Tier.basic: Decimal("5"), Tier.pro: Decimal("15"), Tier.ultra: Decimal("25")},
}

PERIOD_DAYS = {"monthly": 30, "yearly": 365}

TIER_ORDER = [Tier.free, Tier.basic, Tier.pro, Tier.ultra]


def tier_rank(tier) -> int:
    """Return the rank of a tier for comparison (higher is better)."""
    return TIER_ORDER.index(Tier(tier))


def is_upgrade(current, new) -> bool:
    return tier_rank(new) > tier_rank(current)


def parse_plan(plan_id) -> Tier:
    try:
        tier = Tier(plan_id)
    except ValueError:
        tier = None
    if tier not in PAID_PLANS:
        raise ClientInputError(
            "Invalid plan ID",
            code="INVALID_PLAN",
            details={"validPlans": [t.value for t in PAID_PLANS]},
        )
    return tier


def plan_price(plan_id, currency: str = "INR", billing_period: str = "monthly") -> Decimal:
    """Price in major units; yearly plans get the annual discount."""
    tier = parse_plan(plan_id)
    if currency not in MONTHLY_PRICES:
        raise ClientInputError("Unsupported currency", code="INVALID_CURRENCY")
    if billing_period not in PERIOD_DAYS:
        raise ClientInputError("Unsupported billing period", code="INVALID_BILLING_PERIOD")
    monthly = MONTHLY_PRICES[currency][tier]
    if billing_period == "yearly":
        price = monthly * 12 * (1 - ANNUAL_DISCOUNT)
        # INR is charged in whole rupees
        quantum = Decimal("1") if currency == "INR" else Decimal("0.01")
        return price.quantize(quantum, rounding=ROUND_HALF_UP)
    return monthly


def plan_amount(plan_id, currency: str = "INR", billing_period: str = "monthly") -> int:
    """Price in the smallest currency unit (paise or cents)."""
    price = plan_price(plan_id, currency, billing_period)
    return int((price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def period_days(billing_period) -> int:
    return PERIOD_DAYS.get(billing_period or "monthly", PERIOD_DAYS["monthly"])
