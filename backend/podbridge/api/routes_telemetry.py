from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from podbridge.deps import get_bridge
from podbridge.schemas.events import LinkStatus, SerialPortInfo
from podbridge.schemas.telemetry import TelemetryFrame
from podbridge.services.bridge_service import PodBridge
from podbridge.services.serial_link import list_candidate_ports

router = APIRouter()


@router.get("/telemetry/latest", response_model=TelemetryFrame)
def latest_frame(bridge: PodBridge = Depends(get_bridge)):
    frame = bridge.normalizer.latest
    if frame is None:
        raise HTTPException(status_code=404, detail="no telemetry received yet")
    return frame


@router.get("/telemetry/history", response_model=List[TelemetryFrame])
def frame_history(
    limit: Optional[int] = Query(None, ge=1),
    bridge: PodBridge = Depends(get_bridge),
):
    """Recent frames, oldest first."""
    return bridge.normalizer.history(limit)


@router.delete("/telemetry/history")
def clear_history(bridge: PodBridge = Depends(get_bridge)):
    bridge.normalizer.clear_history()
    return {"ok": True}


@router.get("/pod/status", response_model=LinkStatus)
def link_status(bridge: PodBridge = Depends(get_bridge)):
    return bridge.status()


@router.get("/pod/ports", response_model=List[SerialPortInfo])
def serial_ports():
    """Serial ports that look like a pod controller, best match first."""
    return [SerialPortInfo(device=d, description=desc) for d, desc in list_candidate_ports()]
