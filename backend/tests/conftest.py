from datetime import datetime, timezone

import pytest

from coldfleet.anomaly import is_anomalous
from coldfleet.config import Settings
from coldfleet.environment import EnvironmentProvider
from coldfleet.errors import EnvironmentUnavailableError
from coldfleet.models import (
    CargoSpec,
    CargoType,
    EnvironmentSample,
    EquipmentProfile,
    Location,
    Reading,
    Vehicle,
)

T0 = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)


class FixedRng:
    """Stand-in random source: uniform() always returns `value`, random() returns `roll`."""

    def __init__(self, value: float = 0.0, roll: float = 0.999):
        self.value = value
        self.roll = roll

    def uniform(self, a, b):
        return self.value

    def random(self):
        return self.roll


class StaticEnvironment(EnvironmentProvider):
    def __init__(self, temperature: float = 20.0, humidity: float = 50.0):
        self.temperature = temperature
        self.humidity = humidity
        self.calls = 0

    async def get_environment(self, location, at):
        self.calls += 1
        return env_sample(self.temperature, humidity=self.humidity, at=at)


class DownEnvironment(EnvironmentProvider):
    async def get_environment(self, location, at):
        raise EnvironmentUnavailableError("weather service down")


def env_sample(temperature: float = 20.0, humidity: float = 50.0, at: datetime = T0) -> EnvironmentSample:
    return EnvironmentSample(
        temperature=temperature,
        humidity=humidity,
        wind_speed=10.0,
        precipitation=0.0,
        cloud_cover=20.0,
        observed_at=at,
    )


def make_vehicle(
    vehicle_id: str = "veh_test",
    cargo_range=(2.0, 4.0),
    efficiency: float = 1.0,
    maintenance: float = 1.0,
    age: float = 1.0,
    fuel_rate: float = 2.0,
    status: str = "in-transit",
    fuel_level: float = 80.0,
) -> Vehicle:
    return Vehicle(
        vehicle_id=vehicle_id,
        location=Location(lat=51.92, lon=4.48, city="Rotterdam", region="South Holland", country="NL"),
        cargo=CargoSpec(cargo_type=CargoType.PHARMACEUTICAL, min_temp=cargo_range[0], max_temp=cargo_range[1]),
        equipment=EquipmentProfile(
            manufacturer="Thermo King",
            model="SLXi 300",
            age_years=age,
            efficiency=efficiency,
            fuel_rate_lph=fuel_rate,
            maintenance_condition=maintenance,
        ),
        status=status,
        fuel_level=fuel_level,
        last_maintenance=T0,
    )


def make_reading(
    temperature: float,
    target: float = 3.0,
    ambient: float = 20.0,
    vehicle_id: str = "veh_test",
    at: datetime = T0,
    failure: bool = False,
) -> Reading:
    return Reading(
        vehicle_id=vehicle_id,
        timestamp=at,
        temperature=temperature,
        target_temperature=target,
        humidity=60.0,
        location=Location(lat=51.92, lon=4.48),
        environment=env_sample(ambient, at=at),
        is_anomaly=is_anomalous(temperature, target),
        confidence=0.9 if failure else 0.95,
        failure_injected=failure,
    )


@pytest.fixture
def sim_settings() -> Settings:
    return Settings(
        realtime=False,
        tick_interval_sec=30.0,
        random_seed=7,
        max_concurrency=4,
        stop_probability=0.0,
        retry_attempts=3,
        retry_backoff_sec=0.0,
        retry_backoff_max_sec=0.0,
        maintenance_decay_per_hour=0.0,
        optimization_every_ticks=1000,
    )
