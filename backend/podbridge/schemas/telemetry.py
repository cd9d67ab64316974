from __future__ import annotations

import datetime as dt
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from podbridge.schemas.relay import RelayState


class VoltageData(BaseModel):
    inverter: float = 0.0
    lvs: float = 0.0
    contacter: float = 0.0


class TemperatureData(BaseModel):
    motor: float = 0.0
    object: float = 0.0
    ambient: float = 0.0
    battery: float = 0.0


class AccelerationData(BaseModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    magnitude: float = 0.0


class OrientationData(BaseModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class CalibrationData(BaseModel):
    gyro: int = Field(default=0, ge=0, le=3)
    sys: int = Field(default=0, ge=0, le=3)
    magneto: int = Field(default=0, ge=0, le=3)


class RangefinderData(BaseModel):
    distance: float = 0.0
    quality: float = 0.0


class TelemetryFrame(BaseModel):
    """Canonical, fully populated snapshot of the pod's sensors."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: Optional[dt.datetime] = None
    voltage: VoltageData = Field(default_factory=VoltageData)
    temperature: TemperatureData = Field(default_factory=TemperatureData)
    acceleration: AccelerationData = Field(default_factory=AccelerationData)
    orientation: OrientationData = Field(default_factory=OrientationData)
    calibration: CalibrationData = Field(default_factory=CalibrationData)
    rangefinder: RangefinderData = Field(default_factory=RangefinderData)
    bus_voltage: float = Field(default=0.0, alias="busVoltage")
    relay_state: Optional[RelayState] = Field(default=None, alias="relayState")


class RawRelayStates(BaseModel):
    """``relayStates`` as reported in JSON; any subset of the four keys."""

    A: Optional[bool] = None
    B: Optional[bool] = None
    C: Optional[bool] = None
    D: Optional[bool] = None


class RawPayload(BaseModel):
    """Structural schema of one upstream JSON line.

    Every key is optional and unknown keys (status, battery, statusMessage,
    ...) are kept so they can be passed through to subscribers.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, allow_inf_nan=False)

    timestamp: Optional[dt.datetime] = None

    # Voltage rails
    VB1: Optional[float] = None  # LVS
    VB2: Optional[float] = None  # Inverter
    VB3: Optional[float] = None  # Contacter

    # Temperatures
    dsTemperature: Optional[float] = None  # Motor
    objectTemp: Optional[float] = None
    ambientTemp: Optional[float] = None
    mlxTemperature: Optional[float] = None  # Battery

    # IMU arrays [x, y, z]
    accel: Optional[List[float]] = None
    orientation: Optional[List[float]] = None
    calibration: Optional[List[int]] = None

    # Rangefinder
    lidarDistance: Optional[float] = None
    lidarQuality: Optional[float] = None
    gap_height: Optional[float] = None

    # Bus voltage
    voltage: Optional[float] = None

    relayStates: Optional[RawRelayStates] = None
