# coldfleet/environment.py
# ------------------------------------------------------------
# Environment providers: ambient conditions for (location, time).
#
# - SyntheticEnvironment: deterministic climate-ish model, no I/O
# - OpenMeteoEnvironment: live current weather over HTTP (httpx)
# - CachedEnvironment: TTL cache keyed by grid cell + hour
# - FallbackEnvironment: serves the last good sample for a grid cell
#   when the wrapped source is unavailable (stale-but-available)
# ------------------------------------------------------------

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta
import math
import random
from typing import Optional, Tuple

import httpx
from loguru import logger

from .errors import EnvironmentUnavailableError
from .models import EnvironmentSample, Location, clamp


GridKey = Tuple[float, float]


def grid_key(location: Location, precision: int = 1) -> GridKey:
    """
    Round a location to a grid cell (precision=1 -> 0.1°, roughly 11 km).
    """
    return (round(location.lat, precision), round(location.lon, precision))


class EnvironmentProvider:
    """
    Boundary: get_environment(location, time) -> EnvironmentSample.
    May raise EnvironmentUnavailableError.
    """

    async def get_environment(self, location: Location, at: datetime) -> EnvironmentSample:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


# -------------------------------
# Synthetic source
# -------------------------------
class SyntheticEnvironment(EnvironmentProvider):
    """
    Pure function of (grid cell, hour): latitude sets the baseline,
    day-of-year a seasonal swing, hour-of-day a diurnal swing, and a
    noise term seeded from the cell/hour keeps it reproducible.
    """

    def __init__(self, seed: int = 0):
        self.seed = seed

    def sample(self, location: Location, at: datetime) -> EnvironmentSample:
        lat, lon = grid_key(location)
        hour = at.replace(minute=0, second=0, microsecond=0)
        rng = random.Random(f"{self.seed}:{lat}:{lon}:{hour.isoformat()}")

        # warmer near the equator, seasons flip across hemispheres
        base = 28.0 - 0.45 * abs(lat)
        season = math.cos(2 * math.pi * (at.timetuple().tm_yday - 196) / 365.0)
        if lat < 0:
            season = -season
        seasonal = 9.0 * season * min(1.0, abs(lat) / 45.0)

        # local solar hour: warmest around 15:00
        solar_hour = (at.hour + at.minute / 60.0 + lon / 15.0) % 24
        diurnal = 4.0 * math.cos(2 * math.pi * (solar_hour - 15.0) / 24.0)

        temperature = base + seasonal + diurnal + rng.gauss(0.0, 1.5)

        cloud = clamp(rng.uniform(0.0, 100.0), 0.0, 100.0)
        precipitation = 0.0
        if cloud > 70.0 and rng.random() < 0.5:
            precipitation = round(rng.uniform(0.1, 8.0), 1)

        humidity = clamp(45.0 + cloud * 0.35 + (10.0 if precipitation else 0.0) + rng.uniform(-8.0, 8.0), 0.0, 100.0)
        wind = abs(rng.gauss(12.0, 6.0))

        return EnvironmentSample(
            temperature=round(temperature, 2),
            humidity=round(humidity, 1),
            wind_speed=round(wind, 1),
            precipitation=precipitation,
            cloud_cover=round(cloud, 1),
            observed_at=at,
            source="synthetic",
        )

    async def get_environment(self, location: Location, at: datetime) -> EnvironmentSample:
        return self.sample(location, at)


# -------------------------------
# Open-Meteo source
# -------------------------------
OPEN_METEO_FIELDS = "temperature_2m,relative_humidity_2m,wind_speed_10m,precipitation,cloud_cover"


class OpenMeteoEnvironment(EnvironmentProvider):
    """
    Current conditions from the Open-Meteo forecast API (no key required).
    Any transport or payload problem is reported as EnvironmentUnavailableError.
    """

    def __init__(
        self,
        base_url: str = "https://api.open-meteo.com/v1/forecast",
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def get_environment(self, location: Location, at: datetime) -> EnvironmentSample:
        params = {
            "latitude": round(location.lat, 4),
            "longitude": round(location.lon, 4),
            "current": OPEN_METEO_FIELDS,
            "timezone": "UTC",
        }
        try:
            r = await self._client.get(self.base_url, params=params)
            r.raise_for_status()
            current = r.json()["current"]
            return EnvironmentSample(
                temperature=float(current["temperature_2m"]),
                humidity=clamp(float(current["relative_humidity_2m"]), 0.0, 100.0),
                wind_speed=max(0.0, float(current["wind_speed_10m"])),
                precipitation=max(0.0, float(current["precipitation"])),
                cloud_cover=clamp(float(current["cloud_cover"]), 0.0, 100.0),
                observed_at=at,
                source="open-meteo",
            )
        except httpx.HTTPError as exc:
            raise EnvironmentUnavailableError(f"open-meteo request failed: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise EnvironmentUnavailableError(f"open-meteo payload invalid: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


# -------------------------------
# Wrappers
# -------------------------------
class CachedEnvironment(EnvironmentProvider):
    """
    TTL cache in front of another provider, keyed by grid cell.
    Bounded (LRU) so a long run over a wide area doesn't grow forever.
    """

    def __init__(self, inner: EnvironmentProvider, ttl_sec: int = 600, max_entries: int = 4096):
        self.inner = inner
        self.ttl = timedelta(seconds=ttl_sec)
        self.max_entries = max_entries
        self._cache: "OrderedDict[GridKey, EnvironmentSample]" = OrderedDict()

    async def get_environment(self, location: Location, at: datetime) -> EnvironmentSample:
        key = grid_key(location)
        hit = self._cache.get(key)
        if hit is not None and abs(at - hit.observed_at) < self.ttl:
            self._cache.move_to_end(key)
            return hit

        sample = await self.inner.get_environment(location, at)
        self._cache[key] = sample
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_entries:
            self._cache.popitem(last=False)
        return sample

    async def aclose(self) -> None:
        await self.inner.aclose()


class FallbackEnvironment(EnvironmentProvider):
    """
    Remembers the last successful sample per grid cell. When the wrapped
    provider fails, that sample is returned marked stale. With nothing
    remembered for the cell the error propagates to the caller.
    """

    def __init__(self, inner: EnvironmentProvider, max_entries: int = 4096):
        self.inner = inner
        self.max_entries = max_entries
        self._last_good: "OrderedDict[GridKey, EnvironmentSample]" = OrderedDict()

    async def get_environment(self, location: Location, at: datetime) -> EnvironmentSample:
        key = grid_key(location)
        try:
            sample = await self.inner.get_environment(location, at)
        except EnvironmentUnavailableError as exc:
            last = self._last_good.get(key)
            if last is None:
                raise
            logger.warning(f"Environment unavailable for {key}, serving stale sample: {exc}")
            return last.model_copy(update={"stale": True})

        self._last_good[key] = sample
        self._last_good.move_to_end(key)
        while len(self._last_good) > self.max_entries:
            self._last_good.popitem(last=False)
        return sample

    async def aclose(self) -> None:
        await self.inner.aclose()


def build_environment(settings) -> EnvironmentProvider:
    """
    Compose the provider stack from settings: source -> cache -> fallback.
    """
    if settings.environment_source == "open-meteo":
        source: EnvironmentProvider = OpenMeteoEnvironment(
            base_url=settings.open_meteo_url,
            timeout=settings.environment_timeout_sec,
        )
    else:
        source = SyntheticEnvironment(seed=settings.random_seed or 0)

    cached = CachedEnvironment(
        source,
        ttl_sec=settings.environment_cache_ttl_sec,
        max_entries=settings.environment_max_entries,
    )
    return FallbackEnvironment(cached, max_entries=settings.environment_max_entries)
