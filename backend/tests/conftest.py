"""Test fixtures: in-memory upstream link and downstream subscribers."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from podbridge.config import Settings
from podbridge.core.exceptions import UpstreamError


class FakeLink:
    """Upstream link that replays queued lines and records writes."""

    def __init__(self, lines: Optional[List[str]] = None, fail_open: bool = False):
        self.chunks: List[bytes] = [(line + "\n").encode("utf-8") for line in (lines or [])]
        self.writes: List[bytes] = []
        self.fail_open = fail_open
        self.fail_write = False
        self.opened = 0
        self.closed = False

    def push(self, line: str) -> None:
        self.chunks.append((line + "\n").encode("utf-8"))

    async def open(self) -> None:
        self.opened += 1
        if self.fail_open:
            raise UpstreamError("no such device")
        self.closed = False

    async def read(self) -> bytes:
        if self.closed:
            raise EOFError("closed")
        if self.chunks:
            return self.chunks.pop(0)
        await asyncio.sleep(0.005)
        return b""

    async def write(self, data: bytes) -> None:
        if self.fail_write:
            raise UpstreamError("write timeout")
        self.writes.append(data)

    async def close(self) -> None:
        self.closed = True

    @property
    def commands(self) -> List[str]:
        return [w.decode("ascii").strip() for w in self.writes]


class FakeSubscriber:
    """Downstream channel that keeps every message it was sent."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: List[Dict[str, Any]] = []

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.messages.append(json.loads(data))

    def of_kind(self, kind: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m.get("kind") == kind]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def bridge_settings() -> Settings:
    return Settings(serial_port="loop://", reconnect_delay_ms=20, history_size=100)
