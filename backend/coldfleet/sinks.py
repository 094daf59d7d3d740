# coldfleet/sinks.py
# ------------------------------------------------------------
# Output boundaries: reading sink + alert channel.
#
# Redis storage model:
# - readings:<vehicle_id> -> list of JSON readings (recent, trimmed)
# - alerts:list           -> list of alert_ids (recent)
# - alert:<id>            -> JSON blob
# - optimization:<vid>    -> latest EnergyOptimizationResult JSON
# - updates:stream        -> list of JSON messages (SSE pulls from here)
# ------------------------------------------------------------

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, TypeVar

import redis
import redis.asyncio as aioredis
from loguru import logger

from .errors import SinkUnavailableError
from .models import Alert, EnergyOptimizationResult, Reading


# -------------------------------
# Redis keys
# -------------------------------
K_ALERTS = "alerts:list"          # list of alert_ids (recent)
K_UPDATES = "updates:stream"      # list of JSON messages (SSE pulls from here)

UPDATES_KEEP = 500
ALERTS_KEEP = 300
ALERT_TTL_SEC = 3600


def readings_key(vehicle_id: str) -> str:
    return f"readings:{vehicle_id}"


def optimization_key(vehicle_id: str) -> str:
    return f"optimization:{vehicle_id}"


T = TypeVar("T")


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    backoff: float = 0.2,
    backoff_max: float = 2.0,
    what: str = "sink call",
) -> T:
    """
    Await fn() up to `attempts` times with exponential backoff between tries.
    Only SinkUnavailableError is retried; the last one is re-raised.
    """
    delay = backoff
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except SinkUnavailableError as exc:
            if attempt == attempts:
                raise
            logger.warning(f"{what} failed (attempt {attempt}/{attempts}), retrying in {delay:.2f}s: {exc}")
            await asyncio.sleep(delay)
            delay = min(delay * 2, backoff_max)
    raise AssertionError("unreachable")


# -------------------------------
# Boundaries
# -------------------------------
class ReadingSink:
    async def emit(self, reading: Reading) -> None:
        raise NotImplementedError

    async def record_optimization(self, result: EnergyOptimizationResult) -> None:
        return None


class AlertChannel:
    async def dispatch(self, alert: Alert) -> None:
        raise NotImplementedError


# -------------------------------
# In-memory (tests, offline runs)
# -------------------------------
class MemoryReadingSink(ReadingSink):
    def __init__(self):
        self.readings: List[Reading] = []
        self.optimizations: List[EnergyOptimizationResult] = []

    async def emit(self, reading: Reading) -> None:
        self.readings.append(reading)

    async def record_optimization(self, result: EnergyOptimizationResult) -> None:
        self.optimizations.append(result)


class MemoryAlertChannel(AlertChannel):
    def __init__(self):
        self.alerts: List[Alert] = []

    async def dispatch(self, alert: Alert) -> None:
        self.alerts.append(alert)


# -------------------------------
# Redis
# -------------------------------
async def _push_update(r: aioredis.Redis, payload: Dict[str, Any]) -> None:
    """
    payload example:
      {"type": "reading", "data": {...}}
    """
    await r.rpush(K_UPDATES, json.dumps(payload))
    # keep last N
    await r.ltrim(K_UPDATES, -UPDATES_KEEP, -1)


class RedisReadingSink(ReadingSink):
    def __init__(self, r: aioredis.Redis, keep: int = 500):
        self.r = r
        self.keep = keep

    async def emit(self, reading: Reading) -> None:
        data = reading.model_dump(mode="json")
        key = readings_key(reading.vehicle_id)
        try:
            await self.r.rpush(key, json.dumps(data))
            await self.r.ltrim(key, -self.keep, -1)
            await _push_update(self.r, {"type": "reading", "data": data})
        except redis.RedisError as exc:
            raise SinkUnavailableError(f"redis emit failed: {exc}") from exc

    async def record_optimization(self, result: EnergyOptimizationResult) -> None:
        data = result.model_dump(mode="json")
        try:
            await self.r.set(optimization_key(result.vehicle_id), json.dumps(data))
            await _push_update(self.r, {"type": "optimization", "data": data})
        except redis.RedisError as exc:
            raise SinkUnavailableError(f"redis optimization write failed: {exc}") from exc


class RedisAlertChannel(AlertChannel):
    def __init__(self, r: aioredis.Redis):
        self.r = r

    async def dispatch(self, alert: Alert) -> None:
        data = alert.model_dump(mode="json")
        try:
            await self.r.set(f"alert:{alert.alert_id}", json.dumps(data), ex=ALERT_TTL_SEC)
            await self.r.rpush(K_ALERTS, alert.alert_id)
            await self.r.ltrim(K_ALERTS, -ALERTS_KEEP, -1)
            await _push_update(self.r, {"type": "alert_raised", "data": data})
        except redis.RedisError as exc:
            raise SinkUnavailableError(f"redis alert dispatch failed: {exc}") from exc
