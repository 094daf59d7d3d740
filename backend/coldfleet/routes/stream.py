# coldfleet/routes/stream.py
# ------------------------------------------------------------
# Server-Sent Events (SSE) stream
#
# The Redis sinks write updates into list K_UPDATES:
# readings, alert_raised, optimization.
# This endpoint replays new items to connected clients:
# - event: <type>
# - data: <json>
# ------------------------------------------------------------

import asyncio
import json
import time
from typing import AsyncGenerator, Optional, Set

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from ..redis_client import get_async_redis
from ..sinks import K_UPDATES

router = APIRouter(tags=["stream"])

HEARTBEAT_EVERY = 10  # seconds
POLL_EVERY = 0.5      # seconds


def sse(event: str, data_obj) -> str:
    """
    Build an SSE message.

    Format:
        event: name
        data: json
    """
    return f"event: {event}\ndata: {json.dumps(data_obj)}\n\n"


@router.get("/api/stream")
async def stream(types: Optional[str] = None):
    """
    Live updates stream.

    - Starts from "now" (does not replay history).
    - `types` is an optional comma-separated filter, e.g. "alert_raised".
    - Sends a heartbeat periodically to keep the connection alive.
    """
    wanted = {t.strip() for t in types.split(",") if t.strip()} if types else None
    headers = {
        # SSE must not be cached
        "Cache-Control": "no-cache",
        # keep TCP connection open
        "Connection": "keep-alive",
        # if behind nginx, prevents response buffering
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(updates(wanted), media_type="text/event-stream", headers=headers)


async def updates(wanted: Optional[Set[str]] = None) -> AsyncGenerator[str, None]:
    """
    Tail K_UPDATES with the asyncio client so polling never blocks the
    event loop the simulation runs on. The client is closed when the
    consumer goes away.
    """
    r = get_async_redis()
    try:
        last_idx = await r.llen(K_UPDATES)  # start from "now"

        # initial hello + retry hint (client reconnect delay)
        yield "retry: 2000\n\n"
        yield sse("hello", {"ok": True, "ts": time.time()})

        last_heartbeat = time.time()

        while True:
            length = await r.llen(K_UPDATES)

            # list was trimmed under us; resync to the tail
            if length < last_idx:
                last_idx = length

            if length > last_idx:
                items = await r.lrange(K_UPDATES, last_idx, length - 1)
                last_idx = length

                for raw in items:
                    payload = json.loads(raw)
                    evt_type = payload.get("type", "update")
                    if wanted and evt_type not in wanted:
                        continue
                    yield sse(evt_type, payload.get("data", {}))

            now = time.time()
            if now - last_heartbeat >= HEARTBEAT_EVERY:
                yield sse("heartbeat", {"t": now})
                last_heartbeat = now

            await asyncio.sleep(POLL_EVERY)
    finally:
        await r.aclose()
