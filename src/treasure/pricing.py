"""Plan pricing: base amount plus PCT/FLAT components per currency."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from treasure.db.models import Plan, PlanPrice
from treasure.errors import NotFound

_CENT = Decimal("0.01")


class PricingPort(Protocol):
    def compute_total(self, plan: Plan, currency: str) -> tuple[Decimal, str]: ...


def find_price(plan: Plan, currency: str) -> PlanPrice | None:
    """Price row for a currency, or None."""
    wanted = currency.upper()
    for price in plan.prices:
        if price.currency.upper() == wanted:
            return price
    return None


def apply_components(base: Decimal, components: list[dict]) -> Decimal:
    """Add each component to the base amount.

    PCT components are a percentage of the base, FLAT components are added
    as-is. Unknown ``calc`` values raise ValueError.
    """
    total = base
    for component in components:
        calc = str(component.get("calc", "FLAT")).upper()
        value = Decimal(str(component.get("value", 0)))
        if calc == "PCT":
            total += base * value / Decimal(100)
        elif calc == "FLAT":
            total += value
        else:
            raise ValueError(f"Unknown price component calc: {calc}")
    return total.quantize(_CENT, rounding=ROUND_HALF_UP)


class PlanPricingService:
    """Default pricing collaborator reading ``plan_price`` rows."""

    def compute_total(self, plan: Plan, currency: str) -> tuple[Decimal, str]:
        price = find_price(plan, currency)
        if price is None:
            raise NotFound(f"No price configured for plan {plan.id} in {currency}")
        return apply_components(Decimal(price.base_amount), price.components or []), price.currency.upper()
