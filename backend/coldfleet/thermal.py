# coldfleet/thermal.py
# ------------------------------------------------------------
# Thermal model: cargo-hold temperature/humidity for one vehicle tick.
#
#   measured = target + weather + equipment + maintenance + noise
#
#   weather     = (ambient - 20.0) * 0.1
#   equipment   = (1 - efficiency) * 5.0
#   maintenance = (1 - maintenance_condition) * 3.0
#   noise       ~ U[-1.0, 1.0]
#
# Equipment failure injection (this tick only, not persisted):
#   p(age) = 0.01 (<3y), 0.03 (<7y), 0.08 (<12y), 0.15 (>=12y)
#   perturbation ~ U[-5.0, 5.0]
# ------------------------------------------------------------

from __future__ import annotations

import random
from datetime import datetime

from .anomaly import is_anomalous
from .errors import InvalidVehicleStateError
from .models import EnvironmentSample, Reading, Vehicle, clamp

CONFIDENCE_NORMAL = 0.95
CONFIDENCE_FAILURE = 0.9


def failure_probability(age_years: float) -> float:
    if age_years < 3:
        return 0.01
    if age_years < 7:
        return 0.03
    if age_years < 12:
        return 0.08
    return 0.15


def weather_factor(ambient_temp: float) -> float:
    return (ambient_temp - 20.0) * 0.1


def equipment_factor(efficiency: float) -> float:
    return (1 - efficiency) * 5.0


def maintenance_factor(condition: float) -> float:
    return (1 - condition) * 3.0


def measured_temperature(
    target: float,
    ambient_temp: float,
    efficiency: float,
    maintenance_condition: float,
    noise: float = 0.0,
    perturbation: float = 0.0,
) -> float:
    return (
        target
        + weather_factor(ambient_temp)
        + equipment_factor(efficiency)
        + maintenance_factor(maintenance_condition)
        + noise
        + perturbation
    )


def target_temperature(vehicle: Vehicle) -> float:
    """
    Midpoint of the cargo range. A reversed range is an invalid vehicle state.
    """
    cargo = vehicle.cargo
    if cargo.min_temp > cargo.max_temp:
        raise InvalidVehicleStateError(
            vehicle.vehicle_id,
            f"cargo range min {cargo.min_temp} > max {cargo.max_temp}",
        )
    return cargo.target


def cargo_humidity(ambient_humidity: float, jitter: float) -> float:
    return clamp(60.0 + (ambient_humidity - 50.0) * 0.3 + jitter, 0.0, 100.0)


class ThermalModel:
    def read(
        self,
        vehicle: Vehicle,
        environment: EnvironmentSample,
        timestamp: datetime,
        rng: random.Random,
    ) -> Reading:
        target = target_temperature(vehicle)
        eq = vehicle.equipment

        noise = rng.uniform(-1.0, 1.0)
        failed = rng.random() < failure_probability(eq.age_years)
        perturbation = rng.uniform(-5.0, 5.0) if failed else 0.0

        measured = measured_temperature(
            target,
            environment.temperature,
            eq.efficiency,
            eq.maintenance_condition,
            noise=noise,
            perturbation=perturbation,
        )
        humidity = cargo_humidity(environment.humidity, rng.uniform(-5.0, 5.0))

        return Reading(
            vehicle_id=vehicle.vehicle_id,
            timestamp=timestamp,
            temperature=measured,
            target_temperature=target,
            humidity=humidity,
            location=vehicle.location,
            environment=environment,
            is_anomaly=is_anomalous(measured, target),
            confidence=CONFIDENCE_FAILURE if failed else CONFIDENCE_NORMAL,
            failure_injected=failed,
            status=vehicle.status,
        )
