"""Plan catalog offered on the subscriptions page."""

from __future__ import annotations

from pydantic import BaseModel, Field

from billing_sync.config import Settings, settings


class SubscriptionPlan(BaseModel):
    id: str
    name: str
    description: str
    price: float
    interval: str
    price_id: str = Field(serialization_alias="priceId")
    features: list[str] = Field(default_factory=list)
    popular: bool = False


_BASIC_FEATURES = ["Unlimited chats", "Basic AI responses", "Email support"]
_PRO_FEATURES = [
    "Everything in Basic",
    "Advanced AI capabilities",
    "Priority support",
    "Custom chat templates",
]
_ENTERPRISE_FEATURES = [
    "Everything in Pro",
    "Team collaboration",
    "Advanced analytics",
    "Dedicated account manager",
    "Custom integrations",
]


def get_plans(config: Settings | None = None) -> list[SubscriptionPlan]:
    """Return the catalog with price ids resolved from settings."""
    config = config or settings
    tiers = [
        ("basic", "Basic", "Essential features for individuals", _BASIC_FEATURES, False),
        ("pro", "Pro", "Advanced features for professionals", _PRO_FEATURES, True),
        ("enterprise", "Enterprise", "Complete solution for teams", _ENTERPRISE_FEATURES, False),
    ]
    amounts = {
        ("basic", "month"): 9.99,
        ("pro", "month"): 19.99,
        ("enterprise", "month"): 49.99,
        ("basic", "year"): 99.99,
        ("pro", "year"): 199.99,
        ("enterprise", "year"): 499.99,
    }
    plans: list[SubscriptionPlan] = []
    for interval, suffix in (("month", "monthly"), ("year", "yearly")):
        for key, name, description, features, popular in tiers:
            plans.append(
                SubscriptionPlan(
                    id=key if interval == "month" else f"{key}-yearly",
                    name=name,
                    description=description,
                    price=amounts[(key, interval)],
                    interval=interval,
                    price_id=getattr(config, f"price_{key}_{suffix}"),
                    features=list(features),
                    popular=popular,
                )
            )
    return plans


def known_price_ids(config: Settings | None = None) -> frozenset[str]:
    return frozenset(plan.price_id for plan in get_plans(config))
