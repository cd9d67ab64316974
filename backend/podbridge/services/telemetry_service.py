from __future__ import annotations

import logging
import math
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Sequence

from pydantic import ValidationError

from podbridge.core.exceptions import PayloadRejected
from podbridge.schemas.relay import RelayState
from podbridge.schemas.telemetry import (
    AccelerationData,
    CalibrationData,
    OrientationData,
    RangefinderData,
    RawPayload,
    TelemetryFrame,
    TemperatureData,
    VoltageData,
)
from podbridge.utils.time import utc_now

logger = logging.getLogger("podbridge.telemetry")

DEFAULT_HISTORY_SIZE = 100

# Raw keys that make up each replace-on-touch field group
VOLTAGE_KEYS = ("VB1", "VB2", "VB3")
TEMPERATURE_KEYS = ("dsTemperature", "objectTemp", "ambientTemp", "mlxTemperature")
RANGEFINDER_KEYS = ("lidarDistance", "lidarQuality", "gap_height")


def parse_payload(payload: Any) -> RawPayload:
    """Validate the structure of one decoded JSON line."""
    if not isinstance(payload, dict):
        raise PayloadRejected(f"payload must be a JSON object, got {type(payload).__name__}")
    try:
        return RawPayload.model_validate(payload)
    except ValidationError as e:
        raise PayloadRejected(f"invalid payload: {e.error_count()} field error(s): {e.errors()[0]['msg']}") from e


def _touched(raw: RawPayload, keys: Sequence[str]) -> bool:
    return any(getattr(raw, k) is not None for k in keys)


def _triple(values: Optional[List[Any]]) -> Optional[List[Any]]:
    if values is None or len(values) < 3:
        return None
    return list(values[:3])


def magnitude(x: float, y: float, z: float) -> float:
    return math.sqrt(x * x + y * y + z * z)


class FrameNormalizer:
    """Folds sparse upstream payloads into one long-lived TelemetryFrame.

    Field groups follow replace-on-touch: a group changes only when at least
    one of its raw keys is present, and then every missing key in that group
    falls back to 0. The IMU arrays (accel, orientation, calibration) only
    apply when they carry at least three values.

    A copy of the frame is appended to a bounded history after every
    accepted payload; the oldest copy is evicted first.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self._frame = TelemetryFrame()
        self._history: Deque[TelemetryFrame] = deque(maxlen=history_size)
        self._frames_seen = 0

    @property
    def frame(self) -> TelemetryFrame:
        return self._frame

    @property
    def latest(self) -> Optional[TelemetryFrame]:
        """The live frame, or None until the first payload has been applied."""
        return self._frame if self._frames_seen else None

    @property
    def frames_seen(self) -> int:
        return self._frames_seen

    @property
    def history_size(self) -> int:
        return self._history.maxlen or 0

    def history(self, limit: Optional[int] = None) -> List[TelemetryFrame]:
        """Past frames, oldest first; ``limit`` keeps only the newest N."""
        items = list(self._history)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def clear_history(self) -> None:
        self._history.clear()

    def apply_relay_state(self, state: RelayState) -> TelemetryFrame:
        """Record relay state the device reported outside a JSON payload."""
        self._frame.relay_state = state.model_copy()
        return self._frame

    def apply(self, payload: Any) -> TelemetryFrame:
        """Validate ``payload`` and merge it into the live frame.

        Raises PayloadRejected without touching the frame when the payload
        fails validation.
        """
        raw = payload if isinstance(payload, RawPayload) else parse_payload(payload)

        # Build every group first so a bad value cannot leave the frame half-updated.
        try:
            updates = self._build_updates(raw)
        except ValidationError as e:
            raise PayloadRejected(f"invalid payload: {e.errors()[0]['msg']}") from e

        for name, value in updates.items():
            setattr(self._frame, name, value)
        self._frame.timestamp = raw.timestamp or utc_now()

        self._frames_seen += 1
        self._history.append(self._frame.model_copy(deep=True))
        return self._frame

    def _build_updates(self, raw: RawPayload) -> Dict[str, Any]:
        updates: Dict[str, Any] = {}

        if _touched(raw, VOLTAGE_KEYS):
            updates["voltage"] = VoltageData(
                lvs=raw.VB1 or 0.0,
                inverter=raw.VB2 or 0.0,
                contacter=raw.VB3 or 0.0,
            )

        if _touched(raw, TEMPERATURE_KEYS):
            updates["temperature"] = TemperatureData(
                motor=raw.dsTemperature or 0.0,
                object=raw.objectTemp or 0.0,
                ambient=raw.ambientTemp or 0.0,
                battery=raw.mlxTemperature or 0.0,
            )

        accel = _triple(raw.accel)
        if accel is not None:
            x, y, z = accel
            updates["acceleration"] = AccelerationData(x=x, y=y, z=z, magnitude=magnitude(x, y, z))

        orientation = _triple(raw.orientation)
        if orientation is not None:
            x, y, z = orientation
            updates["orientation"] = OrientationData(x=x, y=y, z=z)

        calibration = _triple(raw.calibration)
        if calibration is not None:
            gyro, sys_, magneto = calibration
            updates["calibration"] = CalibrationData(gyro=gyro, sys=sys_, magneto=magneto)

        if _touched(raw, RANGEFINDER_KEYS):
            distance = raw.lidarDistance if raw.lidarDistance is not None else raw.gap_height
            updates["rangefinder"] = RangefinderData(
                distance=distance or 0.0,
                quality=raw.lidarQuality or 0.0,
            )

        if raw.voltage is not None:
            updates["bus_voltage"] = raw.voltage

        if raw.relayStates is not None:
            current = self._frame.relay_state or RelayState()
            reported = raw.relayStates.model_dump(exclude_none=True)
            updates["relay_state"] = current.model_copy(update=reported)

        return updates
