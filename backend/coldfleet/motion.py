# coldfleet/motion.py
# ------------------------------------------------------------
# Motion model: flat-earth position update per tick.
#
# Not geodesic, not road-following. Speed and heading are the only
# random inputs; given both, the step is deterministic.
# ------------------------------------------------------------

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Tuple

from .models import Location


@dataclass(frozen=True)
class Step:
    location: Location
    speed_kmh: float
    heading_deg: float
    distance_km: float


def wrap_lon(lon: float) -> float:
    """
    Wrap longitude into [-180, 180).
    """
    return (lon + 180.0) % 360.0 - 180.0


def displace(
    lat: float,
    lon: float,
    speed_kmh: float,
    heading_deg: float,
    k: float,
) -> Tuple[float, float]:
    """
    new_lat = lat + speed * cos(heading) * k
    new_lon = lon + speed * sin(heading) * k
    """
    h = math.radians(heading_deg)
    new_lat = lat + speed_kmh * math.cos(h) * k
    new_lon = lon + speed_kmh * math.sin(h) * k
    return max(-90.0, min(90.0, new_lat)), wrap_lon(new_lon)


class MotionModel:
    def __init__(
        self,
        speed_min_kmh: float = 60.0,
        speed_max_kmh: float = 80.0,
        k: float = 1e-4,
        tick_hours: float = 30.0 / 3600.0,
    ):
        self.speed_min_kmh = speed_min_kmh
        self.speed_max_kmh = speed_max_kmh
        self.k = k
        self.tick_hours = tick_hours

    def advance(self, location: Location, rng: random.Random) -> Step:
        speed = rng.uniform(self.speed_min_kmh, self.speed_max_kmh)
        heading = rng.uniform(0.0, 360.0) % 360.0
        lat, lon = displace(location.lat, location.lon, speed, heading, self.k)

        # descriptive strings travel with the vehicle
        moved = location.model_copy(update={"lat": lat, "lon": lon})
        return Step(
            location=moved,
            speed_kmh=speed,
            heading_deg=heading,
            distance_km=speed * self.tick_hours,
        )
