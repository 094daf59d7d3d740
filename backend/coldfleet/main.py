# coldfleet/main.py
# ------------------------------------------------------------
# FastAPI entrypoint for the cold-chain fleet simulator.
#
# Responsibilities:
# - App initialization & middleware
# - Route registration
# - Lifespan: fleet bootstrap, engine start, clean stop on shutdown
# ------------------------------------------------------------

import asyncio
import random
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .config import settings
from .engine import SimulationEngine
from .environment import build_environment
from .errors import FleetExhaustedError
from .fleet import bootstrap_fleet
from .log import configure_logging
from .redis_client import get_async_redis
from .routes import alerts, health, stream, vehicles
from .sinks import RedisAlertChannel, RedisReadingSink

configure_logging(settings.log_level)


def log_engine_exit(task: "asyncio.Task") -> None:
    """
    Done-callback for the engine task: a failed run is logged the moment
    it ends, not at shutdown when the task is finally awaited.
    """
    if task.cancelled():
        logger.warning("Simulation task cancelled")
        return
    exc = task.exception()
    if exc is None:
        logger.info("Simulation finished")
    elif isinstance(exc, FleetExhaustedError):
        logger.error(f"Simulation halted: {exc}")
    else:
        logger.opt(exception=exc).error(f"Simulation crashed: {exc!r}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    On startup:
    1. Bootstrap the fleet.
    2. Wire environment + Redis sinks into the engine.
    3. Start the tick loop if enabled.

    On shutdown the engine finishes its in-flight tick before we return.
    """
    registry = bootstrap_fleet(settings.fleet_size, random.Random(settings.random_seed))
    r = get_async_redis()
    environment = build_environment(settings)

    engine = SimulationEngine(
        registry,
        environment,
        RedisReadingSink(r, keep=settings.readings_keep),
        RedisAlertChannel(r),
        settings,
    )
    app.state.engine = engine

    task = None
    if settings.simulation_enabled:
        task = asyncio.create_task(engine.run())
        task.add_done_callback(log_engine_exit)
    else:
        logger.info("Simulation disabled; serving static fleet")

    yield

    logger.info("Shutting down...")
    engine.stop()
    if task is not None:
        try:
            await task
        except FleetExhaustedError:
            # already logged by log_engine_exit
            pass
    await environment.aclose()
    await r.aclose()
    logger.info("Shutdown complete")


# ------------------------------------------------------------
# FastAPI application instance
# ------------------------------------------------------------
app = FastAPI(
    title="Cold Fleet Telemetry API",
    version="0.1.0",
    description="Simulated refrigerated fleet: readings, excursion alerts, energy estimates",
    lifespan=lifespan,
)


# ------------------------------------------------------------
# CORS configuration
# ------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"Unhandled exception on {request.method} {request.url}")
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": str(exc), "path": str(request.url)},
    )


# ------------------------------------------------------------
# API routes
# ------------------------------------------------------------
app.include_router(vehicles.router)
app.include_router(alerts.router)
app.include_router(stream.router)
app.include_router(health.router)
