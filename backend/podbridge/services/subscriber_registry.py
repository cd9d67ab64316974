from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Protocol, Set

logger = logging.getLogger("podbridge.subscribers")


class Subscriber(Protocol):
    async def send_text(self, data: str) -> None: ...


class SubscriberRegistry:
    """Set of connected downstream channels plus the last broadcast frame.

    ``add`` and ``broadcast`` take the same lock: a joiner gets the last
    frame before it can be part of any later broadcast.
    """

    def __init__(self):
        self._clients: Set[Subscriber] = set()
        self._last_frame: Optional[str] = None
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._clients)

    @property
    def last_frame(self) -> Optional[Dict[str, Any]]:
        return json.loads(self._last_frame) if self._last_frame is not None else None

    async def add(self, ws: Subscriber) -> bool:
        """Register ``ws``; returns False if it died while catching up."""
        async with self._lock:
            if self._last_frame is not None:
                try:
                    await ws.send_text(self._last_frame)
                except Exception as e:  # noqa: BLE001
                    logger.info("Subscriber dropped during catch-up: %s", e)
                    return False
            self._clients.add(ws)
        logger.debug("Subscriber added (%d connected)", len(self._clients))
        return True

    async def remove(self, ws: Subscriber) -> None:
        async with self._lock:
            self._clients.discard(ws)

    async def broadcast_frame(self, message: Dict[str, Any]) -> int:
        """Send a telemetry frame to everyone and remember it for late joiners."""
        payload = json.dumps(message, ensure_ascii=False, allow_nan=False)
        async with self._lock:
            self._last_frame = payload
            clients = list(self._clients)
        return await self._send_all(clients, payload)

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Send a control message (not replayed to late joiners)."""
        async with self._lock:
            clients = list(self._clients)
        return await self._send_all(clients, json.dumps(message, ensure_ascii=False, allow_nan=False))

    async def send(self, ws: Subscriber, message: Dict[str, Any]) -> bool:
        try:
            await ws.send_text(json.dumps(message, ensure_ascii=False, allow_nan=False))
            return True
        except Exception:  # noqa: BLE001
            await self.remove(ws)
            return False

    async def _send_all(self, clients: list, payload: str) -> int:
        if not clients:
            return 0
        dead = []
        for ws in clients:
            try:
                await ws.send_text(payload)
            except Exception:  # noqa: BLE001
                dead.append(ws)
        # Prune sockets that can no longer be written
        for ws in dead:
            await self.remove(ws)
        if dead:
            logger.info("Pruned %d dead subscriber(s)", len(dead))
        return len(clients) - len(dead)
