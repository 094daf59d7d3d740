# coldfleet/fleet.py
# ------------------------------------------------------------
# Fleet registry: the single source of truth for vehicle state.
#
# Storage model (arena-style):
# - one entry per vehicle_id, created once, never re-keyed
# - each entry carries its own asyncio.Lock, so pipelines for
#   different vehicles never contend with each other
# - excluded vehicles keep their entry (for inspection) but are
#   skipped by active_ids()
# ------------------------------------------------------------

from __future__ import annotations

import asyncio
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Iterator, List, Optional

from loguru import logger

from .errors import UnknownVehicleError
from .models import CargoSpec, CargoType, EquipmentProfile, Location, Vehicle, utcnow


@dataclass
class _Entry:
    vehicle: Vehicle
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    excluded_reason: Optional[str] = None


class FleetRegistry:
    def __init__(self, vehicles: Optional[List[Vehicle]] = None):
        self._entries: Dict[str, _Entry] = {}
        for v in vehicles or []:
            self.register(v)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, vehicle_id: str) -> bool:
        return vehicle_id in self._entries

    def __iter__(self) -> Iterator[Vehicle]:
        return (e.vehicle for e in self._entries.values())

    def _entry(self, vehicle_id: str) -> _Entry:
        try:
            return self._entries[vehicle_id]
        except KeyError:
            raise UnknownVehicleError(vehicle_id) from None

    def register(self, vehicle: Vehicle) -> None:
        if vehicle.vehicle_id in self._entries:
            raise ValueError(f"duplicate vehicle_id: {vehicle.vehicle_id}")
        self._entries[vehicle.vehicle_id] = _Entry(vehicle=vehicle)

    def get(self, vehicle_id: str) -> Vehicle:
        """
        Return a copy; callers outside a lease must not mutate registry state.
        """
        return self._entry(vehicle_id).vehicle.model_copy(deep=True)

    @asynccontextmanager
    async def lease(self, vehicle_id: str) -> AsyncIterator[Vehicle]:
        """
        Exclusive access to one vehicle's record for the duration of the block.
        The yielded object is the live record.
        """
        entry = self._entry(vehicle_id)
        async with entry.lock:
            yield entry.vehicle

    def replace(self, vehicle: Vehicle) -> None:
        """
        Swap in an updated record. Only call while holding the vehicle's lease.
        """
        self._entry(vehicle.vehicle_id).vehicle = vehicle

    def exclude(self, vehicle_id: str, reason: str) -> None:
        entry = self._entry(vehicle_id)
        if entry.excluded_reason is None:
            entry.excluded_reason = reason
            logger.error(f"Vehicle {vehicle_id} excluded from simulation: {reason}")

    def is_excluded(self, vehicle_id: str) -> bool:
        return self._entry(vehicle_id).excluded_reason is not None

    @property
    def excluded(self) -> Dict[str, str]:
        return {
            vid: e.excluded_reason
            for vid, e in self._entries.items()
            if e.excluded_reason is not None
        }

    def active_ids(self) -> List[str]:
        return [vid for vid, e in self._entries.items() if e.excluded_reason is None]

    def snapshot(self) -> List[Vehicle]:
        return [e.vehicle.model_copy(deep=True) for e in self._entries.values()]


# -------------------------------
# Bootstrap
# -------------------------------
CITIES = [
    # (city, region, country, lat, lon)
    ("Rotterdam", "South Holland", "NL", 51.92, 4.48),
    ("Hamburg", "Hamburg", "DE", 53.55, 9.99),
    ("Lyon", "Auvergne-Rhone-Alpes", "FR", 45.76, 4.84),
    ("Milan", "Lombardy", "IT", 45.46, 9.19),
    ("Madrid", "Community of Madrid", "ES", 40.42, -3.70),
    ("Warsaw", "Masovia", "PL", 52.23, 21.01),
    ("Bucharest", "Bucharest", "RO", 44.43, 26.10),
    ("Chicago", "Illinois", "US", 41.88, -87.63),
    ("Dallas", "Texas", "US", 32.78, -96.80),
    ("Sao Paulo", "Sao Paulo", "BR", -23.55, -46.63),
    ("Johannesburg", "Gauteng", "ZA", -26.20, 28.05),
    ("Singapore", "Central", "SG", 1.35, 103.82),
]

REEFER_UNITS = [
    ("Carrier Transicold", ["Vector 1550", "Vector 8500", "Supra 1150"]),
    ("Thermo King", ["SLXi 300", "Precedent S-600", "T-1200R"]),
    ("Daikin", ["Zestia", "Exigo"]),
    ("Mitsubishi Heavy", ["TEJ35", "TU100"]),
]


def random_location(rng: random.Random) -> Location:
    city, region, country, lat, lon = rng.choice(CITIES)
    return Location(
        lat=lat + rng.uniform(-0.2, 0.2),
        lon=lon + rng.uniform(-0.2, 0.2),
        city=city,
        region=region,
        country=country,
    )


def random_equipment(rng: random.Random) -> EquipmentProfile:
    manufacturer, models = rng.choice(REEFER_UNITS)
    return EquipmentProfile(
        manufacturer=manufacturer,
        model=rng.choice(models),
        age_years=round(rng.uniform(0.0, 15.0), 1),
        efficiency=round(rng.uniform(0.7, 1.0), 3),
        fuel_rate_lph=round(rng.uniform(1.5, 3.5), 2),
        maintenance_condition=round(rng.uniform(0.5, 1.0), 3),
    )


def _seeded_uid(prefix: str, rng: random.Random) -> str:
    # same shape as models.uid, but reproducible under a seeded rng
    return f"{prefix}_{rng.getrandbits(40):010x}"


def bootstrap_fleet(n: int, rng: random.Random) -> FleetRegistry:
    """
    Build a registry of n vehicles with random cargo, equipment and start city.
    """
    registry = FleetRegistry()
    operators = [_seeded_uid("op", rng) for _ in range(max(1, n // 5))]
    now = utcnow()

    for i in range(n):
        v = Vehicle(
            vehicle_id=_seeded_uid("veh", rng),
            name=f"Reefer-{i:03d}",
            operator_id=rng.choice(operators),
            location=random_location(rng),
            destination=random_location(rng),
            cargo=CargoSpec.of(rng.choice(list(CargoType))),
            equipment=random_equipment(rng),
            fuel_level=round(rng.uniform(40.0, 100.0), 1),
            last_maintenance=now,
        )
        registry.register(v)

    logger.info(f"Bootstrapped fleet with {n} vehicles")
    return registry
