# coldfleet/models.py
# ------------------------------------------------------------
# Core domain models for the refrigerated fleet simulator
# ------------------------------------------------------------

from __future__ import annotations

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Literal, Tuple
from datetime import datetime, timezone
import uuid


# -------------------------------
# Shared helpers & enums
# -------------------------------
Severity = Literal["warning", "critical"]
Classification = Literal["normal", "warning", "critical"]
VehicleStatus = Literal["in-transit", "loading", "unloading", "maintenance", "idle"]


def uid(prefix: str) -> str:
    """
    Short, readable IDs for logs/debugging.
    Example: veh_a3f91c2b1e
    """
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


def utcnow() -> datetime:
    """
    Always return timezone-aware UTC datetime.
    """
    return datetime.now(timezone.utc)


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


# -------------------------------
# Cargo
# -------------------------------
class CargoType(str, Enum):
    """
    Closed set of cargo variants. Each carries its default (min, max) band in °C.
    """

    FROZEN = "frozen"
    REFRIGERATED = "refrigerated"
    PHARMACEUTICAL = "pharmaceutical"

    @property
    def default_range(self) -> Tuple[float, float]:
        return _CARGO_RANGES[self]


_CARGO_RANGES = {
    CargoType.FROZEN: (-25.0, -18.0),
    CargoType.REFRIGERATED: (0.0, 4.0),
    CargoType.PHARMACEUTICAL: (2.0, 8.0),
}


class CargoSpec(BaseModel):
    """
    Cargo type plus the temperature band it must be kept within.

    min_temp > max_temp is not rejected here; the thermal model raises
    InvalidVehicleStateError for such a range, per vehicle.
    """

    model_config = ConfigDict(frozen=True)

    cargo_type: CargoType
    min_temp: float
    max_temp: float

    @classmethod
    def of(cls, cargo_type: CargoType) -> "CargoSpec":
        lo, hi = cargo_type.default_range
        return cls(cargo_type=cargo_type, min_temp=lo, max_temp=hi)

    @property
    def target(self) -> float:
        return (self.min_temp + self.max_temp) / 2.0


# -------------------------------
# Equipment
# -------------------------------
class EquipmentProfile(BaseModel):
    """
    Refrigeration unit attributes. Only maintenance_condition changes over a session.
    """

    manufacturer: str
    model: str
    age_years: float = Field(ge=0.0)
    efficiency: float = Field(ge=0.7, le=1.0)
    fuel_rate_lph: float = Field(gt=0.0)
    maintenance_condition: float = Field(ge=0.0, le=1.0)


# -------------------------------
# Location / Environment
# -------------------------------
class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)

    city: str = ""
    region: str = ""
    country: str = ""


class EnvironmentSample(BaseModel):
    """
    Ambient conditions at a point in space/time. Produced fresh per request.
    """

    model_config = ConfigDict(frozen=True)

    temperature: float
    humidity: float = Field(ge=0.0, le=100.0)
    wind_speed: float = Field(ge=0.0)
    precipitation: float = Field(ge=0.0)
    cloud_cover: float = Field(ge=0.0, le=100.0)

    observed_at: datetime = Field(default_factory=utcnow)
    source: str = "synthetic"
    stale: bool = False


# -------------------------------
# Vehicle
# -------------------------------
class Vehicle(BaseModel):
    """
    A simulated refrigerated truck. Owned by the FleetRegistry.
    """

    vehicle_id: str = Field(default_factory=lambda: uid("veh"))
    name: str = ""
    operator_id: str = Field(default_factory=lambda: uid("op"))

    location: Location
    destination: Optional[Location] = None

    cargo: CargoSpec
    equipment: EquipmentProfile

    status: VehicleStatus = "in-transit"
    status_ticks: int = 0

    distance_km: float = Field(default=0.0, ge=0.0)
    fuel_level: float = Field(default=100.0, ge=0.0, le=100.0)
    last_maintenance: datetime = Field(default_factory=utcnow)


# -------------------------------
# Reading
# -------------------------------
class Reading(BaseModel):
    """
    One sensor sample per vehicle per tick. Never mutated after emission.
    """

    model_config = ConfigDict(frozen=True)

    reading_id: str = Field(default_factory=lambda: uid("rdg"))
    vehicle_id: str
    timestamp: datetime

    temperature: float
    target_temperature: float
    humidity: float = Field(ge=0.0, le=100.0)

    location: Location
    environment: EnvironmentSample

    is_anomaly: bool
    confidence: float = Field(ge=0.0, le=1.0)

    failure_injected: bool = False
    status: VehicleStatus = "in-transit"

    @property
    def deviation(self) -> float:
        return abs(self.temperature - self.target_temperature)


# -------------------------------
# Alert
# -------------------------------
class Alert(BaseModel):
    """
    Temperature excursion requiring attention. Built only from anomalous readings.
    """

    model_config = ConfigDict(frozen=True)

    alert_id: str = Field(default_factory=lambda: uid("alr"))
    vehicle_id: str

    # set by the dispatcher when absent
    created_at: Optional[datetime] = None
    timestamp: datetime

    severity: Severity
    message: str

    temperature: float
    target_temperature: float
    location: Location
    environment: EnvironmentSample


# -------------------------------
# Energy optimization
# -------------------------------
class EnergyOptimizationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    vehicle_id: str

    baseline_consumption: float     # L/day
    optimized_consumption: float    # L/day
    savings: float                  # L/day
    savings_pct: float

    window_size: int
    timestamp: datetime
