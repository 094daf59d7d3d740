# coldfleet/routes/vehicles.py
# ------------------------------------------------------------
# Vehicles API
#
# Live state comes from the engine's registry (in memory);
# recent readings come from Redis:
# - readings:<vehicle_id>: list of JSON readings (tail is newest)
# ------------------------------------------------------------

import json

from fastapi import APIRouter, Depends, HTTPException, Query

from ..engine import SimulationEngine
from ..errors import UnknownVehicleError
from ..redis_client import get_redis
from ..sinks import readings_key
from ._common import get_engine

router = APIRouter(tags=["vehicles"])


def _vehicle_out(engine: SimulationEngine, vehicle_id: str) -> dict:
    v = engine.registry.get(vehicle_id).model_dump(mode="json")
    v["excluded_reason"] = engine.failures.get(vehicle_id)
    return v


@router.get("/api/vehicles")
def list_vehicles(
    limit: int = Query(200, ge=1, le=1000),
    engine: SimulationEngine = Depends(get_engine),
):
    """
    Current state of every vehicle, in registry order.
    """
    failures = engine.failures
    out = []
    for v in engine.registry.snapshot()[:limit]:
        item = v.model_dump(mode="json")
        item["excluded_reason"] = failures.get(v.vehicle_id)
        out.append(item)
    return {"items": out}


@router.get("/api/vehicles/{vehicle_id}")
def get_vehicle(vehicle_id: str, engine: SimulationEngine = Depends(get_engine)):
    try:
        return _vehicle_out(engine, vehicle_id)
    except UnknownVehicleError:
        raise HTTPException(status_code=404, detail=f"Unknown vehicle {vehicle_id}")


@router.get("/api/vehicles/{vehicle_id}/readings")
def list_readings(
    vehicle_id: str,
    limit: int = Query(50, ge=1, le=500),
    engine: SimulationEngine = Depends(get_engine),
):
    """
    Recent readings for one vehicle (newest first).
    """
    if vehicle_id not in engine.registry:
        raise HTTPException(status_code=404, detail=f"Unknown vehicle {vehicle_id}")

    r = get_redis()
    raw = r.lrange(readings_key(vehicle_id), -limit, -1)
    return {"items": [json.loads(x) for x in reversed(raw)]}


@router.get("/api/vehicles/{vehicle_id}/optimization")
def get_optimization(vehicle_id: str, engine: SimulationEngine = Depends(get_engine)):
    """
    Energy estimate over the vehicle's current in-memory reading window.
    """
    if vehicle_id not in engine.registry:
        raise HTTPException(status_code=404, detail=f"Unknown vehicle {vehicle_id}")
    try:
        result = engine.optimize(vehicle_id)
    except ValueError:
        raise HTTPException(status_code=409, detail="No readings yet for this vehicle")
    return result.model_dump(mode="json")
