from __future__ import annotations

from billing_sync.billing.plans import get_plans, known_price_ids
from billing_sync.config import Settings


def test_catalog_lists_monthly_and_yearly_tiers():
    plans = get_plans(Settings())

    assert [plan.id for plan in plans] == [
        "basic",
        "pro",
        "enterprise",
        "basic-yearly",
        "pro-yearly",
        "enterprise-yearly",
    ]
    assert [plan.id for plan in plans if plan.popular] == ["pro", "pro-yearly"]


def test_plan_serializes_price_id_in_camel_case():
    pro = get_plans(Settings())[1]

    payload = pro.model_dump(by_alias=True)

    assert payload["priceId"] == "price_pro_monthly"
    assert payload["price"] == 19.99
    assert payload["interval"] == "month"


def test_price_ids_follow_settings():
    config = Settings(price_pro_monthly="price_live_pro")

    assert "price_live_pro" in known_price_ids(config)
    assert "price_pro_monthly" not in known_price_ids(config)
