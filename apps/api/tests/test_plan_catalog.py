import pytest

from app.core.config import Settings
from app.services.plan_catalog import PlanCatalog


class TestResolve:
    def test_known_prices(self, catalog):
        assert catalog.resolve("price_pro_monthly") == "pro"
        assert catalog.resolve("price_premium_monthly") == "premium"

    def test_unknown_price_is_free(self, catalog):
        assert catalog.resolve("price_something_else") == "free"

    def test_missing_price_is_free(self, catalog):
        assert catalog.resolve(None) == "free"
        assert catalog.resolve("") == "free"

    def test_injected_mapping_replaces_defaults(self):
        custom = PlanCatalog({"price_A": "premium"})
        assert custom.resolve("price_A") == "premium"
        assert custom.resolve("price_pro_monthly") == "free"


class TestConstruction:
    def test_rejects_unknown_plan(self):
        with pytest.raises(ValueError):
            PlanCatalog({"price_x": "enterprise"})

    def test_from_settings(self):
        s = Settings(stripe_price_pro="price_p", stripe_price_premium="price_q")
        cat = PlanCatalog.from_settings(s)
        assert cat.resolve("price_p") == "pro"
        assert cat.resolve("price_q") == "premium"


def test_price_for_and_items(catalog):
    assert catalog.price_for("pro") == "price_pro_monthly"
    assert catalog.price_for("free") is None
    assert catalog.items() == [("price_pro_monthly", "pro"), ("price_premium_monthly", "premium")]
