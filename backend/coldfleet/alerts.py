# coldfleet/alerts.py
# ------------------------------------------------------------
# Alert construction + dispatch.
#
# Alerts are built only from anomalous readings; severity is a pure
# function of the reading's deviation. The dispatcher stamps
# created_at and forwards to the channel with bounded retry.
# ------------------------------------------------------------

from __future__ import annotations

from loguru import logger

from .anomaly import classify_deviation
from .errors import AlertDispatchError, SinkUnavailableError
from .models import Alert, Reading, utcnow
from .sinks import AlertChannel, call_with_retry


def build_alert(reading: Reading) -> Alert:
    severity = classify_deviation(reading.deviation)
    if severity == "normal" or not reading.is_anomaly:
        raise ValueError(f"reading {reading.reading_id} is not anomalous")

    delta = reading.temperature - reading.target_temperature
    direction = "above" if delta > 0 else "below"
    msg = (
        f"Cargo temperature {reading.temperature:.1f}°C is {abs(delta):.1f}°C "
        f"{direction} target {reading.target_temperature:.1f}°C"
    )
    if reading.failure_injected:
        msg += " (refrigeration unit fault suspected)"

    return Alert(
        vehicle_id=reading.vehicle_id,
        timestamp=reading.timestamp,
        severity=severity,
        message=msg,
        temperature=reading.temperature,
        target_temperature=reading.target_temperature,
        location=reading.location,
        environment=reading.environment,
    )


class AlertDispatcher:
    def __init__(
        self,
        channel: AlertChannel,
        attempts: int = 3,
        backoff: float = 0.2,
        backoff_max: float = 2.0,
    ):
        self.channel = channel
        self.attempts = attempts
        self.backoff = backoff
        self.backoff_max = backoff_max

    async def dispatch(self, alert: Alert) -> Alert:
        """
        Forward an alert. Returns the alert as sent (with created_at set).
        Raises AlertDispatchError once retries are exhausted.
        """
        if alert.created_at is None:
            alert = alert.model_copy(update={"created_at": utcnow()})

        try:
            await call_with_retry(
                lambda: self.channel.dispatch(alert),
                attempts=self.attempts,
                backoff=self.backoff,
                backoff_max=self.backoff_max,
                what=f"alert {alert.alert_id}",
            )
        except SinkUnavailableError as exc:
            raise AlertDispatchError(f"alert {alert.alert_id} for {alert.vehicle_id} not delivered: {exc}") from exc

        logger.warning(f"[{alert.severity.upper()}] {alert.vehicle_id}: {alert.message}")
        return alert
