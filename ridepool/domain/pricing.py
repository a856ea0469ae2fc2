"""
Per-person Fare  (Strategy Pattern)
===================================

Formula
-------
Fare = (Base_Fare[vehicle class] + Distance x Rate_Per_KM) x (1 - Pooling_Discount)

* **Base_Fare**: 50 for a CAR, 30 for a CNG auto-rickshaw.
* **Pooling_Discount**: 0 % riding alone, 25 % for 2 riders, 40 % for 3+.

The result only populates ``fare_per_person``; billing and settlement are
handled elsewhere.

Complexity: O(1) per fare calculation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .enums import VehicleType


# ── Strategy hierarchy ────────────────────────────────────────────────


class FareStrategy(ABC):
    @abstractmethod
    def calculate(
        self, distance_km: float, base_fare: float, rate_per_km: float
    ) -> float: ...


class StandardFare(FareStrategy):
    def calculate(
        self, distance_km: float, base_fare: float, rate_per_km: float
    ) -> float:
        return base_fare + distance_km * rate_per_km


class PoolDiscountFare(FareStrategy):
    """Applies a discount that grows with the number of riders sharing."""

    DISCOUNTS = {1: 0.0, 2: 0.25, 3: 0.40}

    def __init__(self, passenger_count: int):
        self.discount = self.DISCOUNTS.get(min(max(passenger_count, 1), 3), 0.40)

    def calculate(
        self, distance_km: float, base_fare: float, rate_per_km: float
    ) -> float:
        raw = StandardFare().calculate(distance_km, base_fare, rate_per_km)
        return round(raw * (1 - self.discount), 2)


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """``(distance, vehicle class, passenger count) -> per-person fare``."""

    def __init__(
        self,
        car_base_fare: float = 50.0,
        cng_base_fare: float = 30.0,
        rate_per_km: float = 15.0,
    ):
        self.base_fares = {
            VehicleType.CAR: car_base_fare,
            VehicleType.CNG: cng_base_fare,
        }
        self.rate_per_km = rate_per_km

    def fare_per_person(
        self, distance_km: float, vehicle_type: VehicleType, passenger_count: int
    ) -> float:
        base = self.base_fares[VehicleType(vehicle_type)]
        strategy = PoolDiscountFare(passenger_count)
        return strategy.calculate(max(distance_km, 0.0), base, self.rate_per_km)
