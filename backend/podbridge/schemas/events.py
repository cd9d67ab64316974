from __future__ import annotations

from pydantic import BaseModel
from typing import Any, Dict, Optional


class LinkStatus(BaseModel):
    state: str  # disconnected|connecting|connected|closed|errored
    connected: bool
    port: str
    baudrate: int
    dialect: str
    reconnect_attempts: int = 0
    reconnect_delay_ms: int
    last_error: Optional[str] = None
    frames_received: int = 0
    decode_errors: int = 0
    subscribers: int = 0


class SerialPortInfo(BaseModel):
    device: str
    description: str


class WsMessage(BaseModel):
    kind: str  # link_status|relay_state|command_ack|command_rejected
    data: Dict[str, Any]
