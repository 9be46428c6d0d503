"""
Discrepancy Engine.

Pure computation for stock reconciliation lines: signed discrepancy,
verification requirement, estimated financial impact and aggregate totals.
No I/O happens here.

Money is handled in integer minor units (e.g. cents) so that summing many
line impacts never drifts. Amounts enter as Decimal (or anything Decimal
accepts) and leave as Decimal quantized to the currency's minor unit.
"""
from dataclasses import dataclass, fields
from decimal import Decimal, ROUND_HALF_UP
from functools import reduce
from typing import Any, Dict, Iterable, Optional, Union

from app.config import settings
from app.core.exceptions import ReconciliationValidationError


Amount = Union[Decimal, int, str, float]


# ============================================================================
# MONEY
# ============================================================================

def _minor_units(minor_units: Optional[int]) -> int:
    return settings.CURRENCY_MINOR_UNITS if minor_units is None else minor_units


def _as_decimal(amount: Amount) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, float):
        # Go through str so 0.1 stays 0.1
        return Decimal(str(amount))
    return Decimal(amount)


def to_minor_units(amount: Amount, minor_units: Optional[int] = None) -> int:
    """Convert a money amount to an integer count of minor units (half-up rounding)."""
    scale = Decimal(10) ** _minor_units(minor_units)
    return int((_as_decimal(amount) * scale).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(value: int, minor_units: Optional[int] = None) -> Decimal:
    """Convert integer minor units back to a quantized Decimal amount."""
    places = _minor_units(minor_units)
    return (Decimal(value) / (Decimal(10) ** places)).quantize(Decimal(1).scaleb(-places))


# ============================================================================
# PER-LINE COMPUTATION
# ============================================================================

def _check_count(name: str, value: Any) -> int:
    # bool is an int subclass; a True count is a caller bug
    if isinstance(value, bool) or not isinstance(value, int):
        raise ReconciliationValidationError(
            f"{name} must be an integer",
            details={"field": name, "value": repr(value)},
        )
    if value < 0:
        raise ReconciliationValidationError(
            f"{name} cannot be negative",
            details={"field": name, "value": value},
        )
    return value


def compute_discrepancy(system_count: int, physical_count: int) -> int:
    """Signed discrepancy: positive is overage, negative is shortage."""
    system_count = _check_count("system_count", system_count)
    physical_count = _check_count("physical_count", physical_count)
    return physical_count - system_count


def requires_verification(discrepancy: int) -> bool:
    """Any non-zero discrepancy must be verified."""
    return discrepancy != 0


def resolve_verified(discrepancy: int, requested: Optional[bool] = None, current: bool = False) -> bool:
    """
    Decide the verified flag for a line.

    Forced True whenever there is a discrepancy, whatever the caller asked
    for. With no discrepancy the explicit request wins, otherwise the
    current value is kept.
    """
    if requires_verification(discrepancy):
        return True
    if requested is None:
        return current
    return bool(requested)


def compute_impact_minor(discrepancy: int, unit_cost: Amount, minor_units: Optional[int] = None) -> int:
    """Estimated impact in minor units: discrepancy x unit cost."""
    return discrepancy * to_minor_units(unit_cost, minor_units)


def compute_impact(discrepancy: int, unit_cost: Amount, minor_units: Optional[int] = None) -> Decimal:
    """Estimated impact as a Decimal amount: discrepancy x unit cost."""
    return from_minor_units(compute_impact_minor(discrepancy, unit_cost, minor_units), minor_units)


# ============================================================================
# AGGREGATION
# ============================================================================

@dataclass(frozen=True)
class DiscrepancyTotals:
    """
    Aggregate figures for a set of lines.

    Totals form a commutative monoid under ``+`` with ``DiscrepancyTotals()``
    as identity, which is what makes ``aggregate`` independent of item order.
    Impacts are integer minor units; use the ``*_impact`` properties for
    Decimal amounts.
    """
    net_units: int = 0
    net_impact_minor: int = 0
    overage_units: int = 0
    overage_impact_minor: int = 0
    shortage_units: int = 0
    shortage_impact_minor: int = 0
    verified_units: int = 0
    verified_item_count: int = 0
    total_items: int = 0

    def __add__(self, other: "DiscrepancyTotals") -> "DiscrepancyTotals":
        if not isinstance(other, DiscrepancyTotals):
            return NotImplemented
        return DiscrepancyTotals(**{
            f.name: getattr(self, f.name) + getattr(other, f.name)
            for f in fields(self)
        })

    @property
    def net_impact(self) -> Decimal:
        return from_minor_units(self.net_impact_minor)

    @property
    def overage_impact(self) -> Decimal:
        return from_minor_units(self.overage_impact_minor)

    @property
    def shortage_impact(self) -> Decimal:
        return from_minor_units(self.shortage_impact_minor)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "net_units": self.net_units,
            "net_impact": self.net_impact,
            "overage_units": self.overage_units,
            "overage_impact": self.overage_impact,
            "shortage_units": self.shortage_units,
            "shortage_impact": self.shortage_impact,
            "verified_units": self.verified_units,
            "verified_item_count": self.verified_item_count,
            "total_items": self.total_items,
        }


def evaluate_line(
    system_count: int,
    physical_count: int,
    unit_cost: Amount,
    verified: bool = False,
) -> DiscrepancyTotals:
    """Totals contributed by a single line."""
    discrepancy = compute_discrepancy(system_count, physical_count)
    impact = compute_impact_minor(discrepancy, unit_cost)
    is_verified = resolve_verified(discrepancy, current=verified)

    return DiscrepancyTotals(
        net_units=discrepancy,
        net_impact_minor=impact,
        overage_units=max(discrepancy, 0),
        overage_impact_minor=max(impact, 0),
        shortage_units=max(-discrepancy, 0),
        shortage_impact_minor=max(-impact, 0),
        verified_units=physical_count if is_verified else 0,
        verified_item_count=1 if is_verified else 0,
        total_items=1,
    )


def aggregate(items: Iterable[Any]) -> DiscrepancyTotals:
    """
    Aggregate reconciliation lines.

    Each item needs ``system_count``, ``physical_count``, ``unit_cost`` and
    ``verified`` attributes. Discrepancies are recomputed from the counts,
    stored discrepancy values are ignored.
    """
    return reduce(
        lambda totals, item: totals + evaluate_line(
            item.system_count,
            item.physical_count,
            item.unit_cost if item.unit_cost is not None else 0,
            bool(item.verified),
        ),
        items,
        DiscrepancyTotals(),
    )
