from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from podbridge.core.exceptions import BridgeError
from podbridge.schemas.events import WsMessage
from podbridge.services.bridge_service import PodBridge

logger = logging.getLogger("podbridge.ws")
router = APIRouter()


@router.websocket("/ws")
async def ws_subscriber(ws: WebSocket):
    """Telemetry stream plus relay command channel for one subscriber.

    Every text message from the subscriber is one command token
    (``A``..``D``, ``a``..``d``, ``EMERGENCY_BRAKE``, ``RESUME``,
    ``ALL_ON``, ``ALL_OFF``, ``STATUS``); the reply goes to this subscriber
    only.
    """
    bridge: PodBridge = ws.app.state.bridge
    await ws.accept()
    logger.info("WS connect: %s", ws.client)
    if not await bridge.registry.add(ws):
        return

    try:
        while True:
            raw = await ws.receive_text()
            for token in raw.splitlines():
                token = token.strip()
                if token:
                    await _handle_command(bridge, ws, token)
    except WebSocketDisconnect:
        logger.info("WS disconnect: %s", ws.client)
    except Exception:
        logger.info("WS error/disconnect: %s", ws.client)
    finally:
        await bridge.registry.remove(ws)


async def _handle_command(bridge: PodBridge, ws: WebSocket, token: str) -> None:
    try:
        result = await bridge.execute(token)
    except BridgeError as e:
        logger.warning("Command %s rejected: %s", token, e)
        reply = WsMessage(kind="command_rejected", data={"command": token, "error": str(e)})
    else:
        reply = WsMessage(kind="command_ack", data={"command": token, **result.model_dump(by_alias=True)})
    await bridge.registry.send(ws, reply.model_dump())
