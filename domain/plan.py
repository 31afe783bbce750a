"""
Domain: subscription plans.

A plan maps a payment-provider price id to the tier name, billing interval and the
number of class credits ("units") one billing period grants.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional


class PlanInterval(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    ONE_TIME = "one-time"


@dataclass(frozen=True, slots=True)
class Plan:
    price_id: str
    name: str
    interval: PlanInterval
    units: int

    def __post_init__(self) -> None:
        if self.units < 0:
            raise ValueError("units must be >= 0")


DEFAULT_PLANS: tuple[Plan, ...] = (
    Plan("price_explorer_monthly", "Explorer", PlanInterval.MONTHLY, 8),
    Plan("price_explorer_yearly", "Explorer", PlanInterval.YEARLY, 96),
    Plan("price_enthusiast_monthly", "Enthusiast", PlanInterval.MONTHLY, 12),
    Plan("price_enthusiast_yearly", "Enthusiast", PlanInterval.YEARLY, 144),
    Plan("price_master_monthly", "Master", PlanInterval.MONTHLY, 16),
    Plan("price_master_yearly", "Master", PlanInterval.YEARLY, 192),
)


class PlanCatalog:
    """Lookup table of plans by price id."""

    def __init__(self, plans: Iterable[Plan] = DEFAULT_PLANS):
        self._by_price: Dict[str, Plan] = {plan.price_id: plan for plan in plans}

    def get(self, price_id: Optional[str]) -> Optional[Plan]:
        if not price_id:
            return None
        return self._by_price.get(price_id)

    def __contains__(self, price_id: object) -> bool:
        return price_id in self._by_price

    def __len__(self) -> int:
        return len(self._by_price)

    @classmethod
    def from_json(cls, text: str) -> "PlanCatalog":
        """
        Build a catalog from a JSON list, e.g.
        `[{"price_id": "price_123", "name": "Master", "interval": "monthly", "units": 16}]`.
        """

        rows = json.loads(text)
        if not isinstance(rows, list):
            raise ValueError("PLAN_CATALOG must be a JSON list")
        return cls(
            Plan(
                price_id=str(row["price_id"]),
                name=str(row["name"]),
                interval=PlanInterval(row.get("interval", PlanInterval.MONTHLY.value)),
                units=int(row["units"]),
            )
            for row in rows
        )
