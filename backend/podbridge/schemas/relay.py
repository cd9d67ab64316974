from __future__ import annotations

import datetime as dt
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

RELAY_KEYS: tuple[str, ...] = ("A", "B", "C", "D")

RELAY_LABELS: Dict[str, str] = {
    "A": "LV subsystem",
    "B": "Pod main power",
    "C": "Launchpad relays",
    "D": "Inverter",
}

StateSource = Literal["optimistic", "authoritative"]


class RelayState(BaseModel):
    A: bool = False
    B: bool = False
    C: bool = False
    D: bool = False

    def get(self, key: str) -> bool:
        return bool(getattr(self, key))

    def summary(self) -> str:
        return " ".join(f"{k}={'ON' if self.get(k) else 'OFF'}" for k in RELAY_KEYS)


class RelaySnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    state: RelayState
    source: StateSource = "optimistic"
    updated_at: Optional[dt.datetime] = Field(default=None, alias="updatedAt")


class RelaySetRequest(BaseModel):
    on: bool


class CommandResult(BaseModel):
    """What a relay operation put on the wire, and the state it left behind."""

    model_config = ConfigDict(populate_by_name=True)

    sent: List[str] = Field(default_factory=list)
    relay_states: RelayState = Field(alias="relayStates")
