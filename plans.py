from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class PlanDefinition:
    key: str
    name: str
    price: str
    duration: str
    validity_seconds: int


class PlanCatalog:
    """Read-only mapping from a paid amount to the plan it buys."""

    def __init__(self, plans: Mapping[int, PlanDefinition]) -> None:
        self._plans = MappingProxyType(dict(plans))

    def lookup(self, amount: int) -> PlanDefinition | None:
        return self._plans.get(amount)

    def __contains__(self, amount: object) -> bool:
        return amount in self._plans

    def __len__(self) -> int:
        return len(self._plans)


HOUR = 60 * 60
DAY = 24 * HOUR

DEFAULT_CATALOG = PlanCatalog(
    {
        50: PlanDefinition(
            key="student",
            name="Student Plan",
            price="Ksh 50",
            duration="5 hours",
            validity_seconds=5 * HOUR,
        ),
        100: PlanDefinition(
            key="hobbyist",
            name="Hobbyist Plan",
            price="Ksh 100",
            duration="24 hours",
            validity_seconds=DAY,
        ),
        500: PlanDefinition(
            key="pro",
            name="Pro Plan",
            price="Ksh 500",
            duration="1 week",
            validity_seconds=7 * DAY,
        ),
    }
)
