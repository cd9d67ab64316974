from __future__ import annotations

from fastapi import HTTPException, Request

from podbridge.services.bridge_service import PodBridge


def get_bridge(request: Request) -> PodBridge:
    bridge = getattr(request.app.state, "bridge", None)
    if bridge is None:
        raise HTTPException(status_code=503, detail="Pod bridge not initialized")
    return bridge
