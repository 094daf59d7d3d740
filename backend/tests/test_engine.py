import asyncio
import random
from collections import Counter

import pytest

from coldfleet.anomaly import classify_deviation
from coldfleet.config import Settings, load_settings
from coldfleet.engine import SimulationEngine
from coldfleet.environment import EnvironmentProvider
from coldfleet.errors import ConfigurationError, FleetExhaustedError, SinkUnavailableError
from coldfleet.fleet import FleetRegistry, bootstrap_fleet
from coldfleet.sinks import AlertChannel, MemoryAlertChannel, MemoryReadingSink, ReadingSink
from conftest import T0, DownEnvironment, StaticEnvironment, make_vehicle


def build(settings, vehicles=None, environment=None, sink=None, channel=None, registry=None):
    if registry is None:
        registry = FleetRegistry(vehicles or [make_vehicle(f"veh_{i}") for i in range(5)])
    sink = sink or MemoryReadingSink()
    channel = channel or MemoryAlertChannel()
    engine = SimulationEngine(
        registry,
        environment or StaticEnvironment(20.0),
        sink,
        channel,
        settings,
        start_time=T0,
    )
    return engine, sink, channel


class DownChannel(AlertChannel):
    def __init__(self):
        self.calls = 0

    async def dispatch(self, alert):
        self.calls += 1
        raise SinkUnavailableError("pager offline")


class PickySink(ReadingSink):
    """Rejects readings for one vehicle, accepts the rest."""

    def __init__(self, reject: str):
        self.reject = reject
        self.readings = []

    async def emit(self, reading):
        if reading.vehicle_id == self.reject:
            raise SinkUnavailableError("partition unavailable")
        self.readings.append(reading)


class StoppingEnvironment(EnvironmentProvider):
    """Requests an engine stop on the first call, mid-tick."""

    def __init__(self):
        self.engine = None
        self.calls = 0

    async def get_environment(self, location, at):
        self.calls += 1
        if self.calls == 1:
            self.engine.stop()
        await asyncio.sleep(0.01)
        return await StaticEnvironment(20.0).get_environment(location, at)


class TestTick:
    @pytest.mark.asyncio
    async def test_every_vehicle_once_per_tick(self, sim_settings):
        engine, sink, _ = build(sim_settings)

        r1 = await engine.tick()
        r2 = await engine.tick()

        counts = Counter(r.vehicle_id for r in sink.readings)
        assert counts == {f"veh_{i}": 2 for i in range(5)}
        assert r1.readings == 5 and r2.readings == 5
        assert r1.at == T0
        assert (r2.at - r1.at).total_seconds() == 30.0
        assert engine.tick_count == 2

    @pytest.mark.asyncio
    async def test_target_is_midpoint_every_tick(self, sim_settings):
        vehicles = [
            make_vehicle("veh_frozen", cargo_range=(-25.0, -18.0)),
            make_vehicle("veh_pharma", cargo_range=(2.0, 8.0)),
            make_vehicle("veh_chill", cargo_range=(0.0, 4.0)),
        ]
        engine, sink, _ = build(sim_settings, vehicles=vehicles)
        for _ in range(10):
            await engine.tick()

        midpoints = {"veh_frozen": -21.5, "veh_pharma": 5.0, "veh_chill": 2.0}
        for r in sink.readings:
            assert r.target_temperature == midpoints[r.vehicle_id]

    @pytest.mark.asyncio
    async def test_alerts_match_anomalous_readings(self, sim_settings):
        vehicles = [make_vehicle(f"veh_{i}", efficiency=0.75, maintenance=0.5, age=13) for i in range(6)]
        engine, sink, channel = build(sim_settings, vehicles=vehicles, environment=StaticEnvironment(45.0))
        for _ in range(5):
            await engine.tick()

        anomalous = [r for r in sink.readings if r.is_anomaly]
        assert anomalous
        assert len(channel.alerts) == len(anomalous)

        by_key = {(r.vehicle_id, r.timestamp): r for r in anomalous}
        for alert in channel.alerts:
            reading = by_key[(alert.vehicle_id, alert.timestamp)]
            assert alert.severity == classify_deviation(reading.temperature - reading.target_temperature)
            assert alert.created_at is not None

    @pytest.mark.asyncio
    async def test_in_transit_vehicles_move(self, sim_settings):
        engine, _, _ = build(sim_settings, vehicles=[make_vehicle("veh_a")])
        start = engine.registry.get("veh_a")
        await engine.tick()
        moved = engine.registry.get("veh_a")

        assert (moved.location.lat, moved.location.lon) != (start.location.lat, start.location.lon)
        assert moved.distance_km > 0
        assert moved.fuel_level < start.fuel_level

    @pytest.mark.asyncio
    async def test_loading_vehicle_stays_put(self, sim_settings):
        engine, _, _ = build(sim_settings, vehicles=[make_vehicle("veh_a", status="loading")])
        start = engine.registry.get("veh_a")
        await engine.tick()
        assert engine.registry.get("veh_a").location == start.location

    @pytest.mark.asyncio
    async def test_single_worker_still_completes(self, sim_settings):
        settings = sim_settings.model_copy(update={"max_concurrency": 1})
        engine, sink, _ = build(settings)
        await engine.tick()
        assert len(sink.readings) == 5


class TestFailures:
    @pytest.mark.asyncio
    async def test_invalid_vehicle_is_excluded(self, sim_settings):
        vehicles = [make_vehicle("veh_ok"), make_vehicle("veh_bad", cargo_range=(8.0, 2.0))]
        engine, sink, _ = build(sim_settings, vehicles=vehicles)

        report = await engine.tick()
        assert "veh_bad" in report.excluded
        assert engine.failures.keys() == {"veh_bad"}

        await engine.tick()
        assert [r.vehicle_id for r in sink.readings] == ["veh_ok", "veh_ok"]

    @pytest.mark.asyncio
    async def test_total_failure_halts_run(self, sim_settings):
        vehicles = [make_vehicle(f"veh_{i}", cargo_range=(5.0, 1.0)) for i in range(3)]
        engine, _, _ = build(sim_settings, vehicles=vehicles)
        with pytest.raises(FleetExhaustedError):
            await engine.run(max_ticks=5)
        assert engine.tick_count == 1

    @pytest.mark.asyncio
    async def test_alert_channel_down_keeps_readings_flowing(self, sim_settings):
        channel = DownChannel()
        engine, sink, _ = build(
            sim_settings,
            vehicles=[make_vehicle("veh_a"), make_vehicle("veh_b")],
            environment=StaticEnvironment(90.0),
            channel=channel,
        )
        report = await engine.tick()

        assert len(sink.readings) == 2
        assert set(report.errors) == {"veh_a", "veh_b"}
        assert channel.calls == 2 * sim_settings.retry_attempts
        assert not engine.failures

    @pytest.mark.asyncio
    async def test_reading_sink_failure_is_per_vehicle(self, sim_settings):
        sink = PickySink(reject="veh_1")
        engine, _, _ = build(sim_settings, sink=sink)
        report = await engine.tick()

        assert set(report.errors) == {"veh_1"}
        assert report.readings == 4
        assert "veh_1" in engine.registry.active_ids()

    @pytest.mark.asyncio
    async def test_environment_outage_without_fallback(self, sim_settings):
        engine, sink, _ = build(sim_settings, environment=DownEnvironment())
        report = await engine.tick()

        assert len(report.errors) == 5
        assert sink.readings == []
        assert len(engine.registry.active_ids()) == 5


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_max_ticks(self, sim_settings):
        engine, sink, _ = build(sim_settings)
        seen = []
        await engine.run(max_ticks=3, on_tick=seen.append)
        assert engine.tick_count == 3
        assert [r.tick for r in seen] == [0, 1, 2]
        assert len(sink.readings) == 15

    @pytest.mark.asyncio
    async def test_stop_completes_in_flight_tick(self, sim_settings):
        env = StoppingEnvironment()
        engine, sink, _ = build(sim_settings, environment=env)
        env.engine = engine

        await asyncio.wait_for(engine.run(), timeout=5)

        assert engine.tick_count == 1
        assert sorted(r.vehicle_id for r in sink.readings) == [f"veh_{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_stop_interrupts_realtime_wait(self, sim_settings):
        settings = sim_settings.model_copy(update={"realtime": True, "tick_interval_sec": 3600.0})
        engine, _, _ = build(settings)

        task = asyncio.create_task(engine.run())
        await asyncio.sleep(0.05)
        engine.stop()
        await asyncio.wait_for(task, timeout=2)
        assert engine.tick_count == 1

    @pytest.mark.asyncio
    async def test_same_seed_same_readings(self, sim_settings):
        async def temps():
            registry = bootstrap_fleet(6, random.Random(99))
            engine, sink, _ = build(sim_settings, registry=registry)
            for _ in range(4):
                await engine.tick()
            return sorted((r.vehicle_id, r.timestamp, r.temperature) for r in sink.readings)

        assert await temps() == await temps()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_maintenance_cycle(self, sim_settings):
        settings = sim_settings.model_copy(update={"maintenance_ticks": 2})
        engine, _, _ = build(settings, vehicles=[make_vehicle("veh_a", maintenance=0.2, fuel_level=50.0)])

        await engine.tick()
        assert engine.registry.get("veh_a").status == "maintenance"
        await engine.tick()
        assert engine.registry.get("veh_a").status == "maintenance"

        await engine.tick()
        v = engine.registry.get("veh_a")
        assert v.status == "idle"
        assert v.equipment.maintenance_condition == 1.0
        assert v.last_maintenance == engine.tick_time(2)

        await engine.tick()
        v = engine.registry.get("veh_a")
        assert v.status == "in-transit"
        assert v.fuel_level < 100.0

    @pytest.mark.asyncio
    async def test_low_fuel_goes_idle_then_refuels(self, sim_settings):
        engine, _, _ = build(sim_settings, vehicles=[make_vehicle("veh_a", fuel_level=5.0)])
        await engine.tick()
        assert engine.registry.get("veh_a").status == "idle"
        await engine.tick()
        v = engine.registry.get("veh_a")
        assert v.status == "in-transit"
        assert v.fuel_level > 99.0

    @pytest.mark.asyncio
    async def test_stop_and_dwell(self, sim_settings):
        settings = sim_settings.model_copy(update={"stop_probability": 1.0, "dwell_ticks": 1})
        engine, _, _ = build(settings, vehicles=[make_vehicle("veh_a")])
        statuses = []
        for _ in range(3):
            await engine.tick()
            statuses.append(engine.registry.get("veh_a").status)
        assert statuses == ["unloading", "loading", "in-transit"]


class TestOptimization:
    @pytest.mark.asyncio
    async def test_periodic_estimates(self, sim_settings):
        settings = sim_settings.model_copy(update={"optimization_every_ticks": 2})
        engine, sink, _ = build(settings)

        await engine.tick()
        assert sink.optimizations == []
        await engine.tick()

        assert len(sink.optimizations) == 5
        assert set(engine.latest_optimization) == {f"veh_{i}" for i in range(5)}
        assert all(r.window_size == 2 for r in sink.optimizations)

    @pytest.mark.asyncio
    async def test_on_demand_is_idempotent(self, sim_settings):
        engine, _, _ = build(sim_settings)
        for _ in range(3):
            await engine.tick()
        assert engine.optimize("veh_0") == engine.optimize("veh_0")

    @pytest.mark.asyncio
    async def test_window_is_bounded(self, sim_settings):
        settings = sim_settings.model_copy(update={"optimization_window": 3})
        engine, _, _ = build(settings)
        for _ in range(5):
            await engine.tick()
        assert len(engine.window("veh_0")) == 3
        assert engine.window("veh_0")[-1].timestamp == engine.tick_time(4)

    def test_empty_window(self, sim_settings):
        engine, _, _ = build(sim_settings)
        with pytest.raises(ValueError):
            engine.optimize("veh_0")


class TestConfiguration:
    @pytest.mark.parametrize("interval", [0, -30])
    def test_bad_tick_interval_rejected(self, interval):
        with pytest.raises(ConfigurationError):
            load_settings(tick_interval_sec=interval)

    def test_engine_rechecks_interval(self, sim_settings):
        bad = sim_settings.model_copy(update={"tick_interval_sec": 0.0})
        with pytest.raises(ConfigurationError):
            build(bad)

    def test_empty_fleet_rejected(self, sim_settings):
        with pytest.raises(ConfigurationError):
            build(sim_settings, registry=FleetRegistry())

    def test_speed_range(self):
        with pytest.raises(ConfigurationError):
            load_settings(speed_min_kmh=90.0, speed_max_kmh=60.0)

    def test_helpers(self):
        s = Settings(api_cors_origins=" http://a.test , ,http://b.test", tick_interval_sec=36.0)
        assert s.cors_list() == ["http://a.test", "http://b.test"]
        assert s.tick_hours == pytest.approx(0.01)
