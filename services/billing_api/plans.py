"""Subscription plan catalog keyed by Stripe price id."""

import logging
from dataclasses import dataclass, field

from shared.config import optional_env

logger = logging.getLogger("creditsync.plans")

FREE_PLAN = "Free"
UNKNOWN_PLAN = "Unknown Plan"


@dataclass(frozen=True)
class Plan:
    title: str
    price_id: str
    is_yearly: bool
    level: int
    credits: int
    monthly_price: int
    yearly_price: int
    features: tuple[str, ...] = field(default_factory=tuple)
    popular: bool = False

    @property
    def display_name(self) -> str:
        """Pricing-page name; yearly plans drop the "-Pro" suffix."""
        return self.title.removesuffix("-Pro")


@dataclass(frozen=True)
class PlanDetails:
    title: str
    is_yearly: bool
    level: int


_UNKNOWN = PlanDetails(title=UNKNOWN_PLAN, is_yearly=False, level=0)

_BEGINNER_FEATURES = ("1000 credits/month", "Basic features", "Email support")
_DAILY_FEATURES = ("2000 credits/month", "All basic features", "Priority support")
_CREATOR_FEATURES = ("5000 credits/month", "All features", "24/7 support", "API access")


def load_plans() -> list[Plan]:
    """Build the catalog from the environment. Price ids fall back to placeholders."""
    return [
        Plan(
            "Beginner",
            optional_env("STRIPE_MONTHLY_BEGINNER", "price_monthly_beginner"),
            False, 1, 1000, 23, 14, _BEGINNER_FEATURES,
        ),
        Plan(
            "Daily",
            optional_env("STRIPE_MONTHLY_DAILY", "price_monthly_daily"),
            False, 2, 2000, 39, 23, _DAILY_FEATURES, popular=True,
        ),
        Plan(
            "Creator",
            optional_env("STRIPE_MONTHLY_CREATOR", "price_monthly_creator"),
            False, 3, 5000, 79, 48, _CREATOR_FEATURES,
        ),
        Plan(
            "Beginner-Pro",
            optional_env("STRIPE_YEARLY_BEGINNER", "price_yearly_beginner"),
            True, 1, 1000, 23, 14, _BEGINNER_FEATURES,
        ),
        Plan(
            "Daily-Pro",
            optional_env("STRIPE_YEARLY_DAILY", "price_yearly_daily"),
            True, 2, 2000, 39, 23, _DAILY_FEATURES, popular=True,
        ),
        Plan(
            "Creator-Pro",
            optional_env("STRIPE_YEARLY_CREATOR", "price_yearly_creator"),
            True, 3, 5000, 79, 48, _CREATOR_FEATURES,
        ),
    ]


PLANS: list[Plan] = load_plans()


def get_plan_by_price_id(price_id: str | None) -> PlanDetails:
    for plan in PLANS:
        if plan.price_id == price_id:
            return PlanDetails(title=plan.title, is_yearly=plan.is_yearly, level=plan.level)
    logger.error("No plan found for price id", extra={"price_id": price_id})
    return _UNKNOWN


def plan_credits(title: str | None) -> int:
    """Credits granted per billing period. Free and unknown plans grant nothing."""
    for plan in PLANS:
        if plan.title == title:
            return plan.credits
    return 0


def list_plans(interval: str = "monthly") -> list[dict]:
    """Pricing table for one billing interval ('monthly' or 'yearly')."""
    yearly = interval == "yearly"
    result = []
    for plan in PLANS:
        if plan.is_yearly != yearly:
            continue
        display_price = plan.yearly_price if yearly else plan.monthly_price
        entry = {
            "name": plan.display_name,
            "plan": plan.title,
            "priceId": plan.price_id,
            "isYearly": plan.is_yearly,
            "level": plan.level,
            "credits": plan.credits,
            "price": display_price,
            "currency": "eur",
            "features": list(plan.features),
            "popular": plan.popular,
        }
        if yearly:
            entry["billedAnnually"] = plan.yearly_price * 12
        result.append(entry)
    return result
