# coldfleet/optimization.py
# ------------------------------------------------------------
# Energy optimization estimator.
#
# baseline  = fuel_rate_lph * 24                       (L/day)
# factor    = clamp(0.85 * stability * weather_opt * efficiency
#                   * maintenance_condition, 0.7, 1.0)  per reading
# optimized = mean(factor * fuel_rate_lph) * 24
#
# Stateless: the same window always yields the same result.
# ------------------------------------------------------------

from __future__ import annotations

from typing import Sequence

from .models import EnergyOptimizationResult, Reading, Vehicle, clamp

HOURS_PER_DAY = 24
BASE_FACTOR = 0.85
FACTOR_MIN = 0.7
FACTOR_MAX = 1.0


def weather_opt(ambient_temp: float) -> float:
    if ambient_temp < 10:
        return 0.9
    if ambient_temp < 20:
        return 0.95
    if ambient_temp < 30:
        return 1.0
    return 1.05


def stability_factor(deviation: float) -> float:
    # a hold that sits close to target needs less compressor work
    return 0.9 if abs(deviation) < 1.0 else 0.95


def optimization_factor(
    deviation: float,
    ambient_temp: float,
    efficiency: float,
    maintenance_condition: float,
) -> float:
    raw = (
        BASE_FACTOR
        * stability_factor(deviation)
        * weather_opt(ambient_temp)
        * efficiency
        * maintenance_condition
    )
    return clamp(raw, FACTOR_MIN, FACTOR_MAX)


def estimate(vehicle: Vehicle, readings: Sequence[Reading]) -> EnergyOptimizationResult:
    """
    Baseline vs optimized daily consumption for a vehicle over a window of readings.
    """
    if not readings:
        raise ValueError(f"{vehicle.vehicle_id}: empty reading window")

    foreign = {r.vehicle_id for r in readings} - {vehicle.vehicle_id}
    if foreign:
        raise ValueError(f"{vehicle.vehicle_id}: window contains readings for {sorted(foreign)}")

    eq = vehicle.equipment
    rate = eq.fuel_rate_lph
    baseline = rate * HOURS_PER_DAY

    per_reading = [
        optimization_factor(
            r.temperature - r.target_temperature,
            r.environment.temperature,
            eq.efficiency,
            eq.maintenance_condition,
        ) * rate
        for r in readings
    ]
    optimized = sum(per_reading) / len(per_reading) * HOURS_PER_DAY

    savings = baseline - optimized
    return EnergyOptimizationResult(
        vehicle_id=vehicle.vehicle_id,
        baseline_consumption=baseline,
        optimized_consumption=optimized,
        savings=savings,
        savings_pct=savings / baseline * 100.0,
        window_size=len(readings),
        timestamp=max(r.timestamp for r in readings),
    )
