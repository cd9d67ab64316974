from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from podbridge.core.exceptions import PayloadRejected, UpstreamError
from podbridge.schemas.relay import RELAY_KEYS, RELAY_LABELS, RelaySnapshot, RelayState, StateSource
from podbridge.utils.time import utc_now

logger = logging.getLogger("podbridge.relays")

SendFn = Callable[[str], Awaitable[None]]

# (relay, desired_on) steps; order matters: load-bearing power goes first,
# the launch interlock is isolated last.
EMERGENCY_STOP_STEPS: Tuple[Tuple[str, bool], ...] = (
    ("A", False),  # LV OFF
    ("D", False),  # Inverter OFF
    ("B", False),  # Pod OFF
    ("C", False),  # Launchpad OFF
)

RESUME_STEPS: Tuple[Tuple[str, bool], ...] = (
    ("D", True),  # Inverter ON
    ("A", True),  # LV ON
    ("B", True),  # Pod ON
    ("C", False),  # Launchpad OFF
)

STATE_LINE_MARKER = "STATE:"


# ---------------------------------------------------------------------------
# Command dialects
# ---------------------------------------------------------------------------


class CommandDialect:
    """Encodes relay intents into upstream wire commands."""

    name = "base"
    # True when one wire command switches every relay at once
    has_all_command = False

    def relay(self, key: str, on: bool) -> str:
        raise NotImplementedError

    def all(self, on: bool) -> List[str]:
        return [self.relay(k, on) for k in RELAY_KEYS]

    def status_request(self) -> Optional[str]:
        return None


class LetterDialect(CommandDialect):
    """Single character per command: uppercase turns a relay ON, lowercase OFF."""

    name = "letter"

    def relay(self, key: str, on: bool) -> str:
        return key.upper() if on else key.lower()


class WordDialect(CommandDialect):
    """Verbose firmware variant: RELAYA_ON, ALL_OFF, STATUS."""

    name = "word"
    has_all_command = True

    def relay(self, key: str, on: bool) -> str:
        return f"RELAY{key.upper()}_{'ON' if on else 'OFF'}"

    def all(self, on: bool) -> List[str]:
        return ["ALL_ON" if on else "ALL_OFF"]

    def status_request(self) -> Optional[str]:
        return "STATUS"


DIALECTS: Dict[str, CommandDialect] = {
    LetterDialect.name: LetterDialect(),
    WordDialect.name: WordDialect(),
}


def get_dialect(name: str) -> CommandDialect:
    try:
        return DIALECTS[name]
    except KeyError:
        raise ValueError(f"Unknown command dialect: {name!r}") from None


def decode_letter_command(token: str) -> Tuple[str, bool]:
    """``"A"`` -> ("A", True); ``"a"`` -> ("A", False)."""
    if len(token) != 1 or token.upper() not in RELAY_KEYS:
        raise ValueError(f"not a relay command: {token!r}")
    return token.upper(), token.isupper()


def parse_state_line(line: str) -> RelayState:
    """Decode ``STATE:b0,b1,b2,b3`` (0/1 for A, B, C, D)."""
    if STATE_LINE_MARKER not in line:
        raise PayloadRejected(f"not a state line: {line!r}")
    tokens = [t.strip() for t in line.split(STATE_LINE_MARKER, 1)[1].strip().split(",")]
    if len(tokens) != len(RELAY_KEYS) or any(t not in ("0", "1") for t in tokens):
        raise PayloadRejected(f"malformed state line: {line!r}")
    return RelayState(**{k: t == "1" for k, t in zip(RELAY_KEYS, tokens)})


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class RelayStateTracker:
    """Single owner of the four relay states.

    Every mutation runs under one lock so that read-then-write operations
    such as toggle never act on a stale value. When a ``send`` callable is
    given, the encoded command is written while the lock is held and the
    local state only changes once the write returned.
    """

    def __init__(self, dialect: CommandDialect | str = "letter"):
        self.dialect = get_dialect(dialect) if isinstance(dialect, str) else dialect
        self._state = RelayState()
        self._source: StateSource = "optimistic"
        self._updated_at = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> RelayState:
        return self._state.model_copy()

    @property
    def source(self) -> StateSource:
        return self._source

    def snapshot(self) -> RelaySnapshot:
        return RelaySnapshot(state=self.state, source=self._source, updated_at=self._updated_at)

    def _commit(self, updates: Mapping[str, bool], source: StateSource) -> None:
        self._state = self._state.model_copy(update=dict(updates))
        self._source = source
        self._updated_at = utc_now()

    async def _apply(self, key: str, on: bool, send: Optional[SendFn]) -> str:
        command = self.dialect.relay(key, on)
        if send is not None:
            await send(command)
        self._commit({key: on}, "optimistic")
        logger.info("Relay %s (%s) -> %s [%s]", key, RELAY_LABELS[key], "ON" if on else "OFF", command)
        return command

    async def toggle(self, key: str, send: Optional[SendFn] = None) -> str:
        key = _check_key(key)
        async with self._lock:
            return await self._apply(key, not self._state.get(key), send)

    async def set(self, key: str, on: bool, send: Optional[SendFn] = None) -> str:
        key = _check_key(key)
        async with self._lock:
            return await self._apply(key, on, send)

    async def set_all(self, on: bool, send: Optional[SendFn] = None) -> List[str]:
        """Switch every relay; with per-relay commands each one commits as it is written."""
        async with self._lock:
            if self.dialect.has_all_command:
                commands = self.dialect.all(on)
                for command in commands:
                    if send is not None:
                        await send(command)
                self._commit({k: on for k in RELAY_KEYS}, "optimistic")
            else:
                commands = [await self._apply(key, on, send) for key in RELAY_KEYS]
        logger.info("All relays -> %s", "ON" if on else "OFF")
        return commands

    async def emergency_stop_sequence(self, send: Optional[SendFn] = None) -> List[str]:
        """Shut every relay off in a fixed order, whatever the current state.

        Every step is attempted even if an earlier write failed; the first
        failure is re-raised once the sequence has run.
        """
        sent: List[str] = []
        failure: Optional[UpstreamError] = None
        async with self._lock:
            for key, on in EMERGENCY_STOP_STEPS:
                try:
                    sent.append(await self._apply(key, on, send))
                except UpstreamError as e:
                    logger.error("Emergency stop step %s failed: %s", key, e)
                    failure = failure or e
        logger.warning("Emergency stop sequence sent: %s", ",".join(sent))
        if failure is not None:
            raise failure
        return sent

    async def resume_sequence(self, send: Optional[SendFn] = None) -> List[str]:
        """Inverse of the emergency stop; stops at the first failed write."""
        async with self._lock:
            sent = [await self._apply(key, on, send) for key, on in RESUME_STEPS]
        logger.info("Resume sequence sent: %s", ",".join(sent))
        return sent

    async def apply_authoritative(self, state: RelayState | Sequence[bool]) -> RelayState:
        """Overwrite all four relays with what the device reported."""
        if not isinstance(state, RelayState):
            values = list(state)
            if len(values) != len(RELAY_KEYS):
                raise ValueError(f"expected {len(RELAY_KEYS)} relay states, got {len(values)}")
            state = RelayState(**dict(zip(RELAY_KEYS, (bool(v) for v in values))))
        async with self._lock:
            if self._source == "optimistic" and state != self._state:
                logger.debug("Device state %s overrides local %s", state.summary(), self._state.summary())
            self._commit(state.model_dump(), "authoritative")
            return self.state

    async def merge_authoritative(self, partial: Mapping[str, bool]) -> RelayState:
        """Apply a device report that names only some relays."""
        updates = {_check_key(k): bool(v) for k, v in partial.items()}
        async with self._lock:
            self._commit(updates, "authoritative")
            return self.state


def _check_key(key: str) -> str:
    k = str(key).upper()
    if k not in RELAY_KEYS:
        raise ValueError(f"Unknown relay {key!r}; expected one of {', '.join(RELAY_KEYS)}")
    return k
