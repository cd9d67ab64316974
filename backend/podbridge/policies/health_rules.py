from __future__ import annotations

import datetime as dt
import math
from typing import List, Optional, Tuple

from podbridge.schemas.health import HealthMetric, HealthReport, HealthStatus
from podbridge.schemas.relay import RelayState
from podbridge.schemas.telemetry import TelemetryFrame
from podbridge.utils.time import age_ms


# --- Metric weights (sum to 100) ---
CONNECTION_WEIGHT = 25
POWER_WEIGHT = 25
THERMAL_WEIGHT = 30
MOTION_WEIGHT = 10
DATA_STREAM_WEIGHT = 10

# Rail -> (nominal, min, max) volts
VOLTAGE_RAILS = {
    "lvs": (12.0, 10.0, 14.0),
    "inverter": (48.0, 40.0, 54.0),
    "contacter": (24.0, 20.0, 28.0),
}
OUT_OF_RANGE_RAIL_SCORE = 25.0

# Max-temperature steps, °C (strictly greater than)
TEMP_CRITICAL_C = 120.0
TEMP_DANGER_C = 100.0
TEMP_CAUTION_C = 80.0
TEMP_NORMAL_C = 60.0

# Frame-age steps, ms (strictly less than)
AGE_EXCELLENT_MS = 1000.0
AGE_GOOD_MS = 3000.0
AGE_WARNING_MS = 5000.0
AGE_CRITICAL_MS = 10000.0
AGE_SHOWN_MS = 60000.0


def rail_score(actual: float, nominal: float, min_v: float, max_v: float) -> float:
    if actual == 0:
        return 0.0
    if actual < min_v or actual > max_v:
        return OUT_OF_RANGE_RAIL_SCORE
    deviation = abs(actual - nominal) / nominal
    return max(0.0, 100.0 - deviation * 100.0)


def score_status(value: float) -> HealthStatus:
    """Bucket a 0..100 sub-score (strict thresholds)."""
    if value > 80:
        return "excellent"
    if value > 60:
        return "good"
    if value > 40:
        return "warning"
    if value > 0:
        return "critical"
    return "offline"


def overall_status(score: int) -> HealthStatus:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "warning"
    if score > 0:
        return "critical"
    return "offline"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _connection_metric(connected: bool, critical: List[str]) -> HealthMetric:
    if not connected:
        critical.append("Pod connection lost")
    return HealthMetric(
        name="Connection",
        status="excellent" if connected else "offline",
        value=100.0 if connected else 0.0,
        weight=CONNECTION_WEIGHT,
        message="Pod link connected" if connected else "Not connected to pod controller",
    )


def _power_metric(
    frame: TelemetryFrame,
    relays: Optional[RelayState],
    critical: List[str],
    warnings: List[str],
) -> HealthMetric:
    v = frame.voltage
    scores = [rail_score(getattr(v, rail), *limits) for rail, limits in VOLTAGE_RAILS.items()]
    avg = sum(scores) / len(scores)

    if avg == 0:
        critical.append("No voltage readings from power system")
    elif avg < 40:
        critical.append("Power system voltage critically low")
    elif avg < 60:
        warnings.append("Power system voltage below optimal range")

    message = f"LVS: {v.lvs:.1f}V, Inverter: {v.inverter:.1f}V, Contacter: {v.contacter:.1f}V"
    if relays is not None:
        message += f" | Relays: {relays.summary()}"

    return HealthMetric(
        name="Power System",
        status=score_status(avg),
        value=avg,
        weight=POWER_WEIGHT,
        message=message,
    )


def _thermal_step(max_temp: float) -> Tuple[float, HealthStatus]:
    if max_temp == 0:
        return 0.0, "offline"
    if max_temp > TEMP_CRITICAL_C:
        return 0.0, "critical"
    if max_temp > TEMP_DANGER_C:
        return 25.0, "critical"
    if max_temp > TEMP_CAUTION_C:
        return 50.0, "warning"
    if max_temp > TEMP_NORMAL_C:
        return 75.0, "good"
    return 100.0, "excellent"


def _thermal_metric(frame: TelemetryFrame, critical: List[str], warnings: List[str]) -> HealthMetric:
    t = frame.temperature
    max_temp = max(t.motor, t.object, t.battery, t.ambient)
    value, status = _thermal_step(max_temp)

    if max_temp == 0:
        critical.append("No temperature readings available")
    elif max_temp > TEMP_CRITICAL_C:
        critical.append(f"CRITICAL: Temperature at {max_temp:.1f}°C - Emergency shutdown required!")
    elif max_temp > TEMP_DANGER_C:
        critical.append(f"Temperature dangerously high: {max_temp:.1f}°C")
    elif max_temp > TEMP_CAUTION_C:
        warnings.append(f"Temperature elevated: {max_temp:.1f}°C")

    return HealthMetric(
        name="Thermal System",
        status=status,
        value=value,
        weight=THERMAL_WEIGHT,
        message=f"Motor: {t.motor:.1f}°C, Battery: {t.battery:.1f}°C, Max: {max_temp:.1f}°C",
    )


def _motion_metric(frame: TelemetryFrame, warnings: List[str]) -> HealthMetric:
    mag = frame.acceleration.magnitude
    ok = mag > 0
    if not ok:
        warnings.append("Motion sensors not responding")
    return HealthMetric(
        name="Motion Sensors",
        status="excellent" if ok else "offline",
        value=100.0 if ok else 0.0,
        weight=MOTION_WEIGHT,
        message=f"IMU operational ({mag:.2f} m/s²)" if ok else "No IMU data received",
    )


def _data_stream_metric(frame_age_ms: float, critical: List[str], warnings: List[str]) -> HealthMetric:
    if frame_age_ms < AGE_EXCELLENT_MS:
        value, status = 100.0, "excellent"
    elif frame_age_ms < AGE_GOOD_MS:
        value, status = 75.0, "good"
    elif frame_age_ms < AGE_WARNING_MS:
        value, status = 50.0, "warning"
        warnings.append("Data stream experiencing delays")
    elif frame_age_ms < AGE_CRITICAL_MS:
        value, status = 25.0, "critical"
        warnings.append("Data stream critically delayed")
    else:
        value, status = 0.0, "offline"
        critical.append("No recent data received")

    if frame_age_ms < AGE_SHOWN_MS:
        message = f"Last update: {max(frame_age_ms, 0.0) / 1000:.1f}s ago"
    else:
        message = "No recent data"

    return HealthMetric(
        name="Data Stream",
        status=status,
        value=value,
        weight=DATA_STREAM_WEIGHT,
        message=message,
    )


def evaluate_health(
    connected: bool,
    frame: TelemetryFrame,
    relays: Optional[RelayState] = None,
    now: Optional[dt.datetime] = None,
    *,
    frame_age_ms: Optional[float] = None,
) -> HealthReport:
    """Score the pod over five weighted subsystems.

    Pure: the same inputs (including ``now``) always give the same report.
    ``frame_age_ms`` overrides the age derived from ``frame.timestamp``.
    Issue and warning lists are advisory and never gate commands.
    """
    critical: List[str] = []
    warnings: List[str] = []

    if frame_age_ms is None:
        frame_age_ms = age_ms(frame.timestamp, now)

    metrics = [
        _connection_metric(connected, critical),
        _power_metric(frame, relays, critical, warnings),
        _thermal_metric(frame, critical, warnings),
        _motion_metric(frame, warnings),
        _data_stream_metric(frame_age_ms, critical, warnings),
    ]

    total_weight = sum(m.weight for m in metrics)
    weighted = sum(m.value * m.weight for m in metrics)
    score = round_half_up(weighted / total_weight)

    return HealthReport(
        overall_score=score,
        overall_status=overall_status(score),
        metrics=metrics,
        critical_issues=critical,
        warnings=warnings,
    )
