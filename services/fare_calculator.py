"""
Fare adjustment for trips that ran longer than planned.
Pure functions: no database, no clock.
"""
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Union
import math

from models.order import VehicleType
from services.exceptions import ValidationError

Number = Union[int, float, Decimal]

TWO_PLACES = Decimal("0.01")
THREE_PLACES = Decimal("0.001")

# Base fare per vehicle class, used when an order arrives without a price
BASE_FARES: Dict[VehicleType, int] = {
    VehicleType.TWO_WHEELER: 150,
    VehicleType.THREE_WHEELER: 250,
    VehicleType.HEAVY_TRUCK: 495,
}
INCLUDED_DISTANCE_KM = 2
MIN_PER_KM_RATE = 10

@dataclass(frozen=True)
class FareBreakdown:
    base_distance_km: float
    base_price: float
    per_km_rate: float
    actual_distance_km: float
    extra_distance_km: float
    extra_charge: float
    adjusted_price: float

    def to_dict(self) -> dict:
        return asdict(self)

@dataclass(frozen=True)
class Quote:
    vehicle_type: VehicleType
    distance_km: float
    base: int
    per_km: int
    total: float

def _to_decimal(value: Number, name: str) -> Decimal:
    if value is None:
        raise ValidationError(f"{name} is required")
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValidationError(f"{name} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number")
    # str() keeps the shortest repr, so 0.1 stays 0.1 instead of its binary expansion
    amount = Decimal(str(value))
    if not amount.is_finite():
        raise ValidationError(f"{name} must be a finite number")
    if amount < 0:
        raise ValidationError(f"{name} cannot be negative")
    return amount

def _round(value: Decimal, places: Decimal) -> float:
    return float(value.quantize(places, rounding=ROUND_HALF_UP))

def compute_adjusted_fare(
    planned_distance_km: Number,
    planned_price: Number,
    actual_distance_km: Number
) -> FareBreakdown:
    """
    Charge extra distance at the planned per-km rate.

    Trips shorter than planned keep the planned price; there is no discount.
    Raises ValidationError for negative or non-finite inputs.
    """
    planned_distance = _to_decimal(planned_distance_km, "planned_distance_km")
    planned = _to_decimal(planned_price, "planned_price")
    actual = _to_decimal(actual_distance_km, "actual_distance_km")

    per_km_rate = planned / planned_distance if planned_distance > 0 else Decimal(0)
    extra_distance = max(Decimal(0), actual - planned_distance)
    extra_charge = (extra_distance * per_km_rate).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    adjusted = (planned + extra_charge).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    return FareBreakdown(
        base_distance_km=float(planned_distance),
        base_price=float(planned),
        per_km_rate=_round(per_km_rate, TWO_PLACES),
        actual_distance_km=float(actual),
        extra_distance_km=_round(extra_distance, THREE_PLACES),
        extra_charge=float(extra_charge),
        adjusted_price=float(adjusted),
    )

def quote_price(vehicle_type: Union[VehicleType, str], distance_km: Number) -> Quote:
    """Tariff price for a trip: base fare plus a per-km charge beyond the included distance"""
    try:
        vehicle = VehicleType(vehicle_type)
    except ValueError:
        raise ValidationError(f"Unknown vehicle type: {vehicle_type}")
    distance = _to_decimal(distance_km, "distance_km")

    base = BASE_FARES[vehicle]
    per_km = max(MIN_PER_KM_RATE, int((Decimal(base) * Decimal("0.05")).quantize(Decimal(1), rounding=ROUND_HALF_UP)))
    billable = max(Decimal(0), distance - INCLUDED_DISTANCE_KM)
    total = (Decimal(base) + per_km * billable).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    return Quote(
        vehicle_type=vehicle,
        distance_km=float(distance),
        base=base,
        per_km=per_km,
        total=float(total),
    )
