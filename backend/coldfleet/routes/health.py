# coldfleet/routes/health.py
# ------------------------------------------------------------
# Health endpoint
#
# Purpose:
# - quick liveness check
# - engine progress (tick, last report, exclusions)
# - Redis dependency state
# ------------------------------------------------------------

from datetime import datetime, timezone
import time

import redis
from fastapi import APIRouter, Depends

from ..engine import SimulationEngine
from ..redis_client import get_redis
from ..sinks import K_ALERTS, K_UPDATES
from ._common import get_engine

router = APIRouter(tags=["health"])

# server start reference (module load time)
STARTED_AT = datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@router.get("/api/health")
def health(engine: SimulationEngine = Depends(get_engine)):
    """
    Health status.

    Returns:
    - ok, utc, started_at, uptime_seconds
    - simulation: tick count, last tick summary, fleet counts
    - redis: dependency state and list sizes
    - latency_ms (server-measured for this handler)
    """
    t0 = time.perf_counter()

    registry = engine.registry
    last = engine.last_report
    simulation = {
        "tick": engine.tick_count,
        "stopping": engine.stopping,
        "vehicles": len(registry),
        "active": len(registry.active_ids()),
        "excluded": engine.failures,
        "last_tick": None if last is None else {
            "tick": last.tick,
            "at": _iso(last.at),
            "readings": last.readings,
            "alerts": last.alerts,
            "errors": last.errors,
        },
    }

    try:
        r = get_redis()
        r.ping()
        redis_info = {
            "ok": True,
            "alerts": r.llen(K_ALERTS),
            "stream_backlog": r.llen(K_UPDATES),
        }
    except redis.RedisError:
        redis_info = {"ok": False}

    now = datetime.now(timezone.utc)
    return {
        # ok reflects the API + engine; redis.ok carries dependency state
        "ok": simulation["active"] > 0,
        "utc": _iso(now),
        "started_at": _iso(STARTED_AT),
        "uptime_seconds": int((now - STARTED_AT).total_seconds()),
        "simulation": simulation,
        "redis": redis_info,
        "latency_ms": round((time.perf_counter() - t0) * 1000, 2),
    }
