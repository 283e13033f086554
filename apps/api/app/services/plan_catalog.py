from __future__ import annotations

from typing import Mapping, Optional

from app.models.billing import PLAN_FREE, PLANS


class PlanCatalog:
    """Maps Stripe price ids to plan tiers.

    Unknown or missing price ids resolve to the free tier; that is a policy,
    not an error.
    """

    def __init__(self, prices: Mapping[str, str]):
        for price_id, plan in prices.items():
            if plan not in PLANS:
                raise ValueError(f"Price {price_id!r} maps to unknown plan {plan!r}")
        self._prices = dict(prices)

    @classmethod
    def from_settings(cls, settings) -> "PlanCatalog":
        return cls(settings.price_catalog())

    def resolve(self, price_id: Optional[str]) -> str:
        if not price_id:
            return PLAN_FREE
        return self._prices.get(price_id, PLAN_FREE)

    def price_for(self, plan: str) -> Optional[str]:
        for price_id, mapped in self._prices.items():
            if mapped == plan:
                return price_id
        return None

    def is_known_price(self, price_id: str) -> bool:
        return price_id in self._prices

    def items(self) -> list[tuple[str, str]]:
        return sorted(self._prices.items(), key=lambda kv: PLANS.index(kv[1]))
