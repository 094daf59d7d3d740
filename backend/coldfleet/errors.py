# coldfleet/errors.py
# ------------------------------------------------------------
# Error taxonomy.
#
# - transient dependency errors are recovered locally (fallback/retry)
# - invalid vehicle state excludes one vehicle, never the fleet
# - configuration errors stop the process before anything starts
# ------------------------------------------------------------


class ColdFleetError(Exception):
    """Base class for all simulator errors."""


class ConfigurationError(ColdFleetError):
    """Nonsensical settings detected at startup."""


class TransientDependencyError(ColdFleetError):
    """An external collaborator is temporarily unavailable."""


class EnvironmentUnavailableError(TransientDependencyError):
    pass


class SinkUnavailableError(TransientDependencyError):
    pass


class AlertDispatchError(SinkUnavailableError):
    pass


class InvalidVehicleStateError(ColdFleetError):
    def __init__(self, vehicle_id: str, reason: str):
        super().__init__(f"{vehicle_id}: {reason}")
        self.vehicle_id = vehicle_id
        self.reason = reason


class FleetExhaustedError(ColdFleetError):
    """Every vehicle in the registry has been excluded."""


class UnknownVehicleError(ColdFleetError, KeyError):
    def __str__(self) -> str:
        return f"unknown vehicle: {self.args[0]}"
