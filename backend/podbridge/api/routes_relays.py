from __future__ import annotations

import logging
from typing import Awaitable

from fastapi import APIRouter, Depends, HTTPException

from podbridge.core.exceptions import UpstreamError
from podbridge.deps import get_bridge
from podbridge.schemas.relay import CommandResult, RelaySetRequest, RelaySnapshot
from podbridge.services.bridge_service import PodBridge

logger = logging.getLogger("podbridge.api.relays")
router = APIRouter()


async def _run(op: Awaitable[CommandResult]) -> CommandResult:
    try:
        return await op
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UpstreamError as e:
        logger.warning("Relay command rejected: %s", e)
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/relays", response_model=RelaySnapshot)
def get_relays(bridge: PodBridge = Depends(get_bridge)):
    return bridge.relays.snapshot()


@router.post("/relays/all", response_model=CommandResult)
async def set_all_relays(body: RelaySetRequest, bridge: PodBridge = Depends(get_bridge)):
    return await _run(bridge.set_all(body.on))


@router.post("/relays/emergency-stop", response_model=CommandResult)
async def emergency_stop(bridge: PodBridge = Depends(get_bridge)):
    """LV, inverter, pod power, then launchpad: all OFF."""
    return await _run(bridge.emergency_stop())


@router.post("/relays/resume", response_model=CommandResult)
async def resume(bridge: PodBridge = Depends(get_bridge)):
    return await _run(bridge.resume())


@router.post("/relays/{key}/toggle", response_model=CommandResult)
async def toggle_relay(key: str, bridge: PodBridge = Depends(get_bridge)):
    return await _run(bridge.toggle_relay(key))


@router.put("/relays/{key}", response_model=CommandResult)
async def set_relay(key: str, body: RelaySetRequest, bridge: PodBridge = Depends(get_bridge)):
    return await _run(bridge.set_relay(key, body.on))
