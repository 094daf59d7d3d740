# coldfleet/anomaly.py
# ------------------------------------------------------------
# Anomaly detector: deviation from target -> normal / warning / critical.
#
# Boundaries are exclusive: a deviation of exactly 2.0 is normal,
# exactly 5.0 is a warning.
# ------------------------------------------------------------

from __future__ import annotations

from typing import Optional

from .models import Classification, Reading, Severity

WARNING_THRESHOLD = 2.0
CRITICAL_THRESHOLD = 5.0


def is_anomalous(measured: float, target: float) -> bool:
    return abs(measured - target) > WARNING_THRESHOLD


def classify_deviation(deviation: float) -> Classification:
    deviation = abs(deviation)
    if deviation > CRITICAL_THRESHOLD:
        return "critical"
    if deviation > WARNING_THRESHOLD:
        return "warning"
    return "normal"


class AnomalyDetector:
    def classify(self, reading: Reading) -> Classification:
        return classify_deviation(reading.deviation)

    def severity(self, reading: Reading) -> Optional[Severity]:
        """
        Alert severity for an anomalous reading, None for a normal one.
        """
        c = self.classify(reading)
        if c == "normal":
            return None
        return c
