# coldfleet/routes/alerts.py
# ------------------------------------------------------------
# Alerts API
#
# Alerts are stored as:
# - K_ALERTS: list of alert_ids (tail is newest)
# - alert:<id>: JSON payload (has TTL)
# ------------------------------------------------------------

from typing import Optional

from fastapi import APIRouter, Query

from ..models import Severity
from ..redis_client import get_redis
from ..sinks import K_ALERTS
from ._common import fetch_items_by_ids

router = APIRouter(tags=["alerts"])


@router.get("/api/alerts")
def list_alerts(
    limit: int = Query(50, ge=1, le=300),
    severity: Optional[Severity] = None,
    vehicle_id: Optional[str] = None,
):
    """
    List recent alerts (newest first).

    Filters run over every retained alert id (K_ALERTS is trimmed to
    ALERTS_KEEP) and `limit` applies to the filtered result.
    Alerts may expire (TTL), so missing payloads are skipped.
    """
    r = get_redis()

    total = r.llen(K_ALERTS)
    if total <= 0:
        return {"items": []}

    filtered = bool(severity or vehicle_id)
    ids = r.lrange(K_ALERTS, 0, -1) if filtered else r.lrange(K_ALERTS, -limit, -1)
    ids = list(reversed(ids))

    out = fetch_items_by_ids(r, ids, key_prefix="alert")
    if severity:
        out = [a for a in out if a.get("severity") == severity]
    if vehicle_id:
        out = [a for a in out if a.get("vehicle_id") == vehicle_id]
    return {"items": out[:limit]}
