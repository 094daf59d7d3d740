# coldfleet/routes/_common.py
# ------------------------------------------------------------
# Shared helpers for route modules.
# Keeps route files small and consistent.
# ------------------------------------------------------------

import json
from typing import List, Dict, Any

import redis
from fastapi import Request

from ..engine import SimulationEngine


def get_engine(request: Request) -> SimulationEngine:
    """
    FastAPI dependency: the engine created in the app lifespan.
    """
    return request.app.state.engine


def fetch_items_by_ids(
    r: redis.Redis,
    ids: List[str],
    key_prefix: str,
) -> List[Dict[str, Any]]:
    """
    Given a list of entity IDs, fetch their JSON payloads from Redis.

    Example:
        ids = ["alr_x", "alr_y"]
        key_prefix = "alert"
        -> GET alert:alr_x, alert:alr_y
    """
    out: List[Dict[str, Any]] = []
    for _id in ids:
        raw = r.get(f"{key_prefix}:{_id}")
        if raw:
            out.append(json.loads(raw))
    return out
