# coldfleet/engine.py
# ------------------------------------------------------------
# Simulation engine: the tick loop.
#
# Per tick, every active vehicle runs one pipeline:
#   status lifecycle -> motion -> environment -> thermal reading
#   -> anomaly -> alert dispatch (if anomalous) -> reading sink
# Pipelines run concurrently (bounded by a semaphore); each one holds
# its vehicle's registry lease for its whole duration.
#
# Failures stay local to one vehicle:
# - transient dependency errors are recorded in the TickReport
# - invalid vehicle state excludes that vehicle from later ticks
# Only an empty active fleet halts the loop.
# ------------------------------------------------------------

from __future__ import annotations

import asyncio
import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional

from loguru import logger

from .alerts import AlertDispatcher, build_alert
from .anomaly import AnomalyDetector
from .config import Settings
from .environment import EnvironmentProvider
from .errors import (
    AlertDispatchError,
    ConfigurationError,
    FleetExhaustedError,
    InvalidVehicleStateError,
    SinkUnavailableError,
    TransientDependencyError,
)
from .fleet import FleetRegistry
from .models import EnergyOptimizationResult, Reading, Vehicle, utcnow
from .motion import MotionModel
from .optimization import estimate
from .sinks import AlertChannel, ReadingSink, call_with_retry
from .thermal import ThermalModel, target_temperature

ACTIVE_STATUSES = ("in-transit", "loading", "unloading")


@dataclass
class TickReport:
    tick: int
    at: datetime
    readings: int = 0
    alerts: int = 0
    errors: Dict[str, str] = field(default_factory=dict)     # recoverable, this tick only
    excluded: Dict[str, str] = field(default_factory=dict)   # invalid state, permanent


class SimulationEngine:
    def __init__(
        self,
        registry: FleetRegistry,
        environment: EnvironmentProvider,
        reading_sink: ReadingSink,
        alert_channel: AlertChannel,
        settings: Settings,
        start_time: Optional[datetime] = None,
        seed: Optional[int] = None,
    ):
        if settings.tick_interval_sec <= 0:
            raise ConfigurationError(f"tick interval must be > 0, got {settings.tick_interval_sec}")
        if settings.max_concurrency < 1:
            raise ConfigurationError(f"max_concurrency must be >= 1, got {settings.max_concurrency}")
        if len(registry) == 0:
            raise ConfigurationError("fleet registry is empty")

        self.registry = registry
        self.environment = environment
        self.reading_sink = reading_sink
        self.settings = settings

        self.motion = MotionModel(
            speed_min_kmh=settings.speed_min_kmh,
            speed_max_kmh=settings.speed_max_kmh,
            k=settings.motion_scale,
            tick_hours=settings.tick_hours,
        )
        self.thermal = ThermalModel()
        self.detector = AnomalyDetector()
        self.dispatcher = AlertDispatcher(
            alert_channel,
            attempts=settings.retry_attempts,
            backoff=settings.retry_backoff_sec,
            backoff_max=settings.retry_backoff_max_sec,
        )

        if seed is None:
            seed = settings.random_seed
        if seed is None:
            seed = random.SystemRandom().getrandbits(32)
        self.seed = seed

        self.start_time = start_time or utcnow()
        self.tick_count = 0
        self.last_report: Optional[TickReport] = None
        self.latest_optimization: Dict[str, EnergyOptimizationResult] = {}

        self._rngs: Dict[str, random.Random] = {}
        self._windows: Dict[str, Deque[Reading]] = {}
        self._semaphore = asyncio.Semaphore(settings.max_concurrency)
        self._stop = asyncio.Event()

    # --------------------------------------------------------
    # Accessors
    # --------------------------------------------------------
    def rng_for(self, vehicle_id: str) -> random.Random:
        """
        One random source per vehicle, derived from the run seed, so each
        vehicle's sequence is reproducible regardless of task scheduling.
        """
        rng = self._rngs.get(vehicle_id)
        if rng is None:
            rng = self._rngs[vehicle_id] = random.Random(f"{self.seed}:{vehicle_id}")
        return rng

    def window(self, vehicle_id: str) -> List[Reading]:
        return list(self._windows.get(vehicle_id, ()))

    @property
    def failures(self) -> Dict[str, str]:
        return self.registry.excluded

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def tick_time(self, tick: int) -> datetime:
        return self.start_time + timedelta(seconds=self.settings.tick_interval_sec * tick)

    # --------------------------------------------------------
    # Loop
    # --------------------------------------------------------
    def stop(self) -> None:
        """
        Request a stop. The tick in flight completes; no further tick starts.
        """
        self._stop.set()

    async def run(
        self,
        max_ticks: Optional[int] = None,
        on_tick: Optional[Callable[[TickReport], None]] = None,
    ) -> None:
        logger.info(
            f"Simulation started: {len(self.registry)} vehicles, "
            f"tick={self.settings.tick_interval_sec}s, seed={self.seed}"
        )
        ran = 0
        while not self._stop.is_set():
            if not self.registry.active_ids():
                raise FleetExhaustedError("no processable vehicles left")

            report = await self.tick()
            ran += 1
            if on_tick is not None:
                on_tick(report)

            if not self.registry.active_ids():
                raise FleetExhaustedError(f"all {len(self.registry)} vehicles excluded: {self.failures}")

            if max_ticks is not None and ran >= max_ticks:
                break

            if self.settings.realtime:
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.settings.tick_interval_sec)
                except asyncio.TimeoutError:
                    pass
            else:
                # yield so API handlers and stop requests get a turn
                await asyncio.sleep(0)

        logger.info(f"Simulation stopped after tick {self.tick_count}")

    async def tick(self) -> TickReport:
        at = self.tick_time(self.tick_count)
        report = TickReport(tick=self.tick_count, at=at)

        await asyncio.gather(*(self._guarded(vid, at, report) for vid in self.registry.active_ids()))

        self.tick_count += 1
        if self.tick_count % self.settings.optimization_every_ticks == 0:
            await self._optimize_fleet()

        self.last_report = report
        logger.debug(
            f"tick {report.tick} @ {at.isoformat()}: readings={report.readings} "
            f"alerts={report.alerts} errors={len(report.errors)} excluded={len(report.excluded)}"
        )
        return report

    # --------------------------------------------------------
    # Per-vehicle pipeline
    # --------------------------------------------------------
    async def _guarded(self, vehicle_id: str, at: datetime, report: TickReport) -> None:
        async with self._semaphore:
            try:
                await self._process_vehicle(vehicle_id, at, report)
            except InvalidVehicleStateError as exc:
                self.registry.exclude(vehicle_id, exc.reason)
                report.excluded[vehicle_id] = exc.reason
            except TransientDependencyError as exc:
                logger.warning(f"tick {report.tick} {vehicle_id}: {exc}")
                report.errors[vehicle_id] = str(exc)
            except Exception as exc:
                logger.exception(f"tick {report.tick} {vehicle_id}: unexpected pipeline error")
                report.errors[vehicle_id] = repr(exc)

    async def _process_vehicle(self, vehicle_id: str, at: datetime, report: TickReport) -> None:
        async with self.registry.lease(vehicle_id) as vehicle:
            # reject invalid state before touching the record
            target_temperature(vehicle)

            rng = self.rng_for(vehicle_id)
            vehicle = self._advance_status(vehicle, at, rng)
            if vehicle.status == "in-transit":
                step = self.motion.advance(vehicle.location, rng)
                vehicle = vehicle.model_copy(update={
                    "location": step.location,
                    "distance_km": vehicle.distance_km + step.distance_km,
                })
            vehicle = self._consume(vehicle)
            self.registry.replace(vehicle)

            env = await self.environment.get_environment(vehicle.location, at)
            reading = self.thermal.read(vehicle, env, at, rng)
            self._remember(reading)

            alert_error: Optional[AlertDispatchError] = None
            if self.detector.severity(reading) is not None:
                try:
                    await self.dispatcher.dispatch(build_alert(reading))
                    report.alerts += 1
                except AlertDispatchError as exc:
                    alert_error = exc

            # the reading goes out whether or not the alert made it
            await call_with_retry(
                lambda: self.reading_sink.emit(reading),
                attempts=self.settings.retry_attempts,
                backoff=self.settings.retry_backoff_sec,
                backoff_max=self.settings.retry_backoff_max_sec,
                what=f"reading {reading.reading_id}",
            )
            report.readings += 1

            if alert_error is not None:
                raise alert_error

    def _remember(self, reading: Reading) -> None:
        w = self._windows.get(reading.vehicle_id)
        if w is None:
            w = self._windows[reading.vehicle_id] = deque(maxlen=self.settings.optimization_window)
        w.append(reading)

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------
    def _advance_status(self, vehicle: Vehicle, at: datetime, rng: random.Random) -> Vehicle:
        s = self.settings
        status = vehicle.status
        ticks = vehicle.status_ticks + 1
        eq = vehicle.equipment
        update = {}
        new = status

        if status != "maintenance" and eq.maintenance_condition < s.maintenance_threshold:
            new = "maintenance"
        elif status == "maintenance":
            if ticks >= s.maintenance_ticks:
                new = "idle"
                update["equipment"] = eq.model_copy(update={"maintenance_condition": 1.0})
                update["last_maintenance"] = at
        elif status == "idle":
            new = "in-transit"
            update["fuel_level"] = 100.0
        elif status == "in-transit":
            if vehicle.fuel_level < s.refuel_threshold:
                new = "idle"
            elif rng.random() < s.stop_probability:
                new = "unloading"
        elif status == "unloading":
            if ticks >= s.dwell_ticks:
                new = "loading"
        elif status == "loading":
            if ticks >= s.dwell_ticks:
                new = "in-transit"

        if new != status:
            logger.info(f"{vehicle.vehicle_id}: {status} -> {new}")
            update["status"] = new
            update["status_ticks"] = 0
        else:
            update["status_ticks"] = ticks
        return vehicle.model_copy(update=update)

    def _consume(self, vehicle: Vehicle) -> Vehicle:
        h = self.settings.tick_hours
        eq = vehicle.equipment
        fuel = vehicle.fuel_level
        if vehicle.status in ACTIVE_STATUSES:
            burned_pct = eq.fuel_rate_lph * h / self.settings.tank_capacity_l * 100.0
            fuel = max(0.0, fuel - burned_pct)

        condition = max(0.0, eq.maintenance_condition - self.settings.maintenance_decay_per_hour * h)
        return vehicle.model_copy(update={
            "fuel_level": fuel,
            "equipment": eq.model_copy(update={"maintenance_condition": condition}),
        })

    # --------------------------------------------------------
    # Energy optimization
    # --------------------------------------------------------
    def optimize(self, vehicle_id: str) -> EnergyOptimizationResult:
        """
        Estimate over the vehicle's current reading window.
        Raises UnknownVehicleError / ValueError (empty window).
        """
        return estimate(self.registry.get(vehicle_id), self.window(vehicle_id))

    async def _optimize_fleet(self) -> None:
        for vid in self.registry.active_ids():
            if not self._windows.get(vid):
                continue
            result = self.optimize(vid)
            self.latest_optimization[vid] = result
            logger.debug(
                f"{vid}: baseline={result.baseline_consumption:.2f}L/d "
                f"optimized={result.optimized_consumption:.2f}L/d ({result.savings_pct:.1f}% saved)"
            )
            try:
                await call_with_retry(
                    lambda: self.reading_sink.record_optimization(result),
                    attempts=self.settings.retry_attempts,
                    backoff=self.settings.retry_backoff_sec,
                    backoff_max=self.settings.retry_backoff_max_sec,
                    what=f"optimization {vid}",
                )
            except SinkUnavailableError as exc:
                logger.warning(f"{vid}: optimization result not recorded: {exc}")
