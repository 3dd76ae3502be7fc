# SPDX-License-Identifier: Apache-2.0

"""
Cost calculation domain logic.

Round-trip service pricing for a client site, per-round operational cost
and fuel price resolution. All functions are pure.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Any, Iterable, Optional

MONTHLY_WORK_HOURS = 220
DEFAULT_PROFIT_MARGIN = 30.0
DEFAULT_FUEL_PRICE = 5.50

DEFAULT_FUEL_PRICES = {
    "gasoline": 5.50,
    "diesel": 6.20,
    "ethanol": 3.80,
    "electric": 0.80
}


@dataclass
class CostInput:
    """Inputs for a monthly service cost estimate."""
    fuel_efficiency: float
    fuel_price: float
    distance_base_to_client: float
    rounds_per_day: int
    days_per_month: int
    time_per_round: float
    tactical_salary: float = 0.0
    hourly_rate: Optional[float] = None
    other_monthly_costs: float = 0.0
    profit_margin: float = DEFAULT_PROFIT_MARGIN


@dataclass
class CostBreakdown:
    """Result of a monthly service cost estimate."""
    daily_distance: float
    monthly_distance: float
    daily_fuel_cost: float
    monthly_fuel_cost: float
    daily_labor_cost: float
    monthly_labor_cost: float
    total_monthly_cost: float
    suggested_price: float
    fuel_consumption_monthly: float
    cost_per_km: float
    hourly_rate_calculated: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def validate_cost_input(cost_input: CostInput) -> list:
    """Return the list of violated input constraints (empty when valid)."""
    errors = []
    if cost_input.fuel_efficiency <= 0:
        errors.append("fuel_efficiency must be greater than zero")
    if cost_input.fuel_price <= 0:
        errors.append("fuel_price must be greater than zero")
    if cost_input.distance_base_to_client < 0:
        errors.append("distance_base_to_client cannot be negative")
    if cost_input.rounds_per_day <= 0:
        errors.append("rounds_per_day must be greater than zero")
    if not 1 <= cost_input.days_per_month <= 31:
        errors.append("days_per_month must be between 1 and 31")
    if cost_input.time_per_round <= 0:
        errors.append("time_per_round must be greater than zero")
    if cost_input.hourly_rate is None and cost_input.tactical_salary <= 0:
        errors.append("hourly_rate or a positive tactical_salary is required")
    if cost_input.profit_margin < 0:
        errors.append("profit_margin cannot be negative")
    return errors


def calculate_costs(cost_input: CostInput) -> CostBreakdown:
    """
    Estimate the monthly cost of serving a client with round trips from base.

    Every round drives base -> client -> base. Labour is billed by the hour,
    derived from the monthly salary over 220 hours when no rate is given. A
    zero margin is treated as unset and priced at the default 30%.

    Args:
        cost_input: Validated calculation inputs

    Returns:
        CostBreakdown with monetary values rounded to two decimals

    Raises:
        ValueError: If the inputs violate a constraint
    """
    errors = validate_cost_input(cost_input)
    if errors:
        raise ValueError("; ".join(errors))

    round_trip_distance = cost_input.distance_base_to_client * 2
    daily_distance = round_trip_distance * cost_input.rounds_per_day
    monthly_distance = daily_distance * cost_input.days_per_month

    daily_fuel_liters = daily_distance / cost_input.fuel_efficiency
    monthly_fuel_liters = monthly_distance / cost_input.fuel_efficiency
    daily_fuel_cost = daily_fuel_liters * cost_input.fuel_price
    monthly_fuel_cost = monthly_fuel_liters * cost_input.fuel_price

    hourly_rate = cost_input.hourly_rate or (cost_input.tactical_salary / MONTHLY_WORK_HOURS)
    daily_labor_hours = cost_input.time_per_round * cost_input.rounds_per_day
    daily_labor_cost = hourly_rate * daily_labor_hours
    monthly_labor_cost = daily_labor_cost * cost_input.days_per_month

    total_monthly_cost = monthly_fuel_cost + monthly_labor_cost + (cost_input.other_monthly_costs or 0)
    profit_margin = cost_input.profit_margin or DEFAULT_PROFIT_MARGIN
    suggested_price = total_monthly_cost * (1 + profit_margin / 100)

    # Zero distance (on-site client) has no per-km cost
    cost_per_km = total_monthly_cost / monthly_distance if monthly_distance > 0 else 0.0

    return CostBreakdown(
        daily_distance=round(daily_distance, 2),
        monthly_distance=round(monthly_distance, 2),
        daily_fuel_cost=round(daily_fuel_cost, 2),
        monthly_fuel_cost=round(monthly_fuel_cost, 2),
        daily_labor_cost=round(daily_labor_cost, 2),
        monthly_labor_cost=round(monthly_labor_cost, 2),
        total_monthly_cost=round(total_monthly_cost, 2),
        suggested_price=round(suggested_price, 2),
        fuel_consumption_monthly=round(monthly_fuel_liters, 2),
        cost_per_km=round(cost_per_km, 2),
        hourly_rate_calculated=round(hourly_rate, 2)
    )


def calculate_operational_cost(
    distance_km: float,
    duration_hours: float,
    fuel_cost: float,
    hourly_wage: float = 15.0,
    maintenance_per_km: float = 0.30,
    depreciation_per_km: float = 0.50
) -> Dict[str, float]:
    """
    Total cost of a single round.

    Args:
        distance_km: Distance driven
        duration_hours: Time spent by the agent
        fuel_cost: Fuel spent on the round
        hourly_wage: Agent wage per hour
        maintenance_per_km: Maintenance reserve per km
        depreciation_per_km: Vehicle depreciation per km

    Returns:
        Cost components and total, rounded to two decimals
    """
    labor_cost = duration_hours * hourly_wage
    maintenance_cost = distance_km * maintenance_per_km
    depreciation_cost = distance_km * depreciation_per_km
    total_cost = fuel_cost + labor_cost + maintenance_cost + depreciation_cost

    return {
        "fuel_cost": round(fuel_cost, 2),
        "labor_cost": round(labor_cost, 2),
        "maintenance_cost": round(maintenance_cost, 2),
        "depreciation_cost": round(depreciation_cost, 2),
        "total_cost": round(total_cost, 2)
    }


def resolve_fuel_price(
    prices: Iterable[Dict[str, Any]],
    fuel_type: str,
    default: float = DEFAULT_FUEL_PRICE
) -> float:
    """
    Price per litre for a fuel type from configured price documents.

    Inactive entries are ignored; unknown fuel types fall back to ``default``.
    """
    for price in prices:
        if price.get("fuelType") == fuel_type and price.get("active", True):
            return float(price["pricePerLiter"])
    return default


def default_fuel_price_documents() -> Dict[str, float]:
    """Seed prices used when an organization has none configured."""
    return dict(DEFAULT_FUEL_PRICES)


CALCULATION_TRANSITIONS = {
    "draft": {"sent", "approved", "rejected"},
    "sent": {"approved", "rejected", "draft"},
    "approved": set(),
    "rejected": {"draft"}
}


def can_transition_calculation(current_status: str, new_status: str) -> bool:
    """Approved proposals are final; rejected ones may be reworked as drafts."""
    return new_status in CALCULATION_TRANSITIONS.get(current_status, set())
