# coldfleet/config.py
# ------------------------------------------------------------
# Central configuration using pydantic-settings.
#
# All values can be overridden via environment variables.
# ------------------------------------------------------------

import os
from typing import List, Literal, Optional

from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from .errors import ConfigurationError


class Settings(BaseSettings):
    """
    Runtime configuration for the simulator and its HTTP surface.
    """

    # --------------------------------------------------------
    # Infrastructure
    # --------------------------------------------------------
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"

    # --------------------------------------------------------
    # CORS / Frontend integration
    # --------------------------------------------------------
    api_cors_origins: str = (
        "http://localhost:5173,"
        "http://localhost:3000"
    )

    # --------------------------------------------------------
    # Simulation toggles
    # --------------------------------------------------------
    simulation_enabled: bool = True
    realtime: bool = True           # sleep tick_interval_sec between ticks
    fleet_size: int = 25
    random_seed: Optional[int] = None

    # --------------------------------------------------------
    # Tick loop
    # --------------------------------------------------------
    tick_interval_sec: float = 30.0
    max_concurrency: int = os.cpu_count() or 4

    # --------------------------------------------------------
    # Motion
    # --------------------------------------------------------
    speed_min_kmh: float = 60.0
    speed_max_kmh: float = 80.0
    motion_scale: float = 1e-4      # degrees per km/h per tick

    # --------------------------------------------------------
    # Environment source
    # --------------------------------------------------------
    environment_source: Literal["synthetic", "open-meteo"] = "synthetic"
    open_meteo_url: str = "https://api.open-meteo.com/v1/forecast"
    environment_timeout_sec: float = 5.0
    environment_cache_ttl_sec: int = 600
    environment_max_entries: int = 4096

    # --------------------------------------------------------
    # Sink retry policy
    # --------------------------------------------------------
    retry_attempts: int = 3
    retry_backoff_sec: float = 0.2
    retry_backoff_max_sec: float = 2.0

    # --------------------------------------------------------
    # Energy optimization
    # --------------------------------------------------------
    optimization_window: int = 120      # readings (1h at 30s ticks)
    optimization_every_ticks: int = 20

    # --------------------------------------------------------
    # Vehicle lifecycle
    # --------------------------------------------------------
    tank_capacity_l: float = 200.0
    refuel_threshold: float = 10.0      # fuel level %
    maintenance_threshold: float = 0.35
    maintenance_ticks: int = 10
    maintenance_decay_per_hour: float = 0.002
    stop_probability: float = 0.01
    dwell_ticks: int = 4

    # --------------------------------------------------------
    # Storage
    # --------------------------------------------------------
    readings_keep: int = 500            # per vehicle

    @field_validator("tick_interval_sec")
    @classmethod
    def check_tick_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("tick_interval_sec must be > 0")
        return v

    @field_validator(
        "fleet_size",
        "max_concurrency",
        "retry_attempts",
        "optimization_window",
        "optimization_every_ticks",
        "maintenance_ticks",
        "dwell_ticks",
        "readings_keep",
        "environment_max_entries",
    )
    @classmethod
    def check_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("stop_probability")
    @classmethod
    def check_probability(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("must be within [0, 1]")
        return v

    @model_validator(mode="after")
    def check_speed_range(self) -> "Settings":
        if self.speed_min_kmh <= 0 or self.speed_min_kmh > self.speed_max_kmh:
            raise ValueError("speed range must satisfy 0 < speed_min_kmh <= speed_max_kmh")
        return self

    # --------------------------------------------------------
    # Helpers
    # --------------------------------------------------------
    def cors_list(self) -> List[str]:
        """
        Parse comma-separated CORS origins into a clean list.
        """
        return [
            x.strip()
            for x in self.api_cors_origins.split(",")
            if x.strip()
        ]

    @property
    def tick_hours(self) -> float:
        return self.tick_interval_sec / 3600.0


def load_settings(**overrides) -> Settings:
    """
    Build settings from the environment (plus explicit overrides).

    Any validation failure is reported as a ConfigurationError so callers
    can refuse to start without catching pydantic internals.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


# Singleton settings object
settings = load_settings()
