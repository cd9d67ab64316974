from __future__ import annotations

import asyncio
import enum
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from podbridge.config import Settings, settings as default_settings
from podbridge.core.exceptions import (
    CommandWriteError,
    PayloadRejected,
    UnknownCommand,
    UpstreamError,
    UpstreamUnavailable,
)
from podbridge.schemas.events import LinkStatus, WsMessage
from podbridge.schemas.health import HealthReport
from podbridge.schemas.relay import CommandResult, RelayState
from podbridge.services.health_service import HealthScorer
from podbridge.services.relay_service import (
    STATE_LINE_MARKER,
    RelayStateTracker,
    decode_letter_command,
    parse_state_line,
)
from podbridge.services.serial_link import SerialLink, UpstreamLink
from podbridge.services.subscriber_registry import SubscriberRegistry
from podbridge.services.telemetry_service import FrameNormalizer, parse_payload

logger = logging.getLogger("podbridge.bridge")

LinkFactory = Callable[[], UpstreamLink]

EMERGENCY_BRAKE = "EMERGENCY_BRAKE"
RESUME = "RESUME"
ALL_ON = "ALL_ON"
ALL_OFF = "ALL_OFF"
STATUS = "STATUS"

MAX_LINE_BYTES = 64 * 1024


def _reject_constant(token: str) -> Any:
    raise ValueError(f"non-finite number {token}")


class LinkState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"
    ERRORED = "errored"


class LineFramer:
    """Splits an upstream byte stream on ``\\n`` into decoded text lines.

    A partial line longer than ``max_line_bytes`` is discarded and counted
    in ``overflows``.
    """

    def __init__(self, max_line_bytes: int = MAX_LINE_BYTES):
        self._buf = bytearray()
        self.max_line_bytes = max_line_bytes
        self.overflows = 0

    def reset(self) -> None:
        self._buf.clear()

    def feed(self, chunk: bytes) -> List[str]:
        self._buf.extend(chunk)
        lines: List[str] = []
        while True:
            try:
                idx = self._buf.index(b"\n")
            except ValueError:
                if len(self._buf) > self.max_line_bytes:
                    logger.warning("Dropping %d buffered bytes with no line break", len(self._buf))
                    self._buf.clear()
                    self.overflows += 1
                return lines
            raw = bytes(self._buf[:idx])
            del self._buf[: idx + 1]
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                lines.append(line)


class PodBridge:
    """Owns the single upstream link and fans frames out to subscribers.

    Per connection attempt the link walks
    disconnected -> connecting -> connected -> closed|errored -> disconnected,
    then waits ``reconnect_delay_ms`` and starts over, forever, until
    ``stop()`` is called. Subscribers are unaffected by link churn.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        link_factory: Optional[LinkFactory] = None,
    ):
        self.settings = settings or default_settings
        self._link_factory = link_factory or self._serial_link
        self.normalizer = FrameNormalizer(history_size=self.settings.history_size)
        self.relays = RelayStateTracker(self.settings.command_dialect)
        self.registry = SubscriberRegistry()
        self.scorer = HealthScorer()

        self._link: Optional[UpstreamLink] = None
        self._framer = LineFramer()
        self._state = LinkState.DISCONNECTED
        self._stop = asyncio.Event()
        self._write_lock = asyncio.Lock()

        self.reconnect_attempts = 0
        self.last_error: Optional[str] = None
        self.decode_errors = 0

    def _serial_link(self) -> UpstreamLink:
        return SerialLink(
            self.settings.serial_port,
            self.settings.serial_baudrate,
            timeout_s=self.settings.serial_read_timeout_s,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == LinkState.CONNECTED

    def status(self) -> LinkStatus:
        return LinkStatus(
            state=self._state.value,
            connected=self.connected,
            port=self.settings.serial_port,
            baudrate=self.settings.serial_baudrate,
            dialect=self.relays.dialect.name,
            reconnect_attempts=self.reconnect_attempts,
            reconnect_delay_ms=self.settings.reconnect_delay_ms,
            last_error=self.last_error,
            frames_received=self.normalizer.frames_seen,
            decode_errors=self.decode_errors,
            subscribers=len(self.registry),
        )

    def health(self) -> HealthReport:
        return self.scorer.evaluate(self.connected, self.normalizer.frame, self.relays.state)

    async def _set_state(self, state: LinkState, error: Optional[str] = None) -> None:
        self._state = state
        if error is not None:
            self.last_error = error
        await self.registry.broadcast(WsMessage(kind="link_status", data=self.status().model_dump()).model_dump())

    # ------------------------------------------------------------------
    # Connection loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        logger.info(
            "Bridge starting: port=%s baud=%d dialect=%s reconnect=%dms",
            self.settings.serial_port,
            self.settings.serial_baudrate,
            self.relays.dialect.name,
            self.settings.reconnect_delay_ms,
        )
        self._stop.clear()
        try:
            while not self._stop.is_set():
                await self._connect_once()
                if self._stop.is_set():
                    break
                self.reconnect_attempts += 1
                logger.info(
                    "Reconnecting in %dms (attempt %d)",
                    self.settings.reconnect_delay_ms,
                    self.reconnect_attempts,
                )
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.settings.reconnect_delay_s)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._teardown()
            self._state = LinkState.DISCONNECTED
            logger.info("Bridge stopped")

    def stop(self) -> None:
        self._stop.set()

    async def _teardown(self) -> None:
        link, self._link = self._link, None
        self._framer.reset()
        if link is not None:
            try:
                await link.close()
            except Exception as e:  # noqa: BLE001
                logger.debug("Error closing upstream link: %s", e)

    async def _connect_once(self) -> None:
        await self._teardown()
        await self._set_state(LinkState.CONNECTING)
        link = self._link_factory()
        try:
            await link.open()
        except Exception as e:  # noqa: BLE001
            logger.warning("Upstream open failed: %s", e)
            await self._set_state(LinkState.ERRORED, str(e))
            await self._set_state(LinkState.DISCONNECTED)
            return

        self._link = link
        self.reconnect_attempts = 0
        await self._set_state(LinkState.CONNECTED)
        logger.info("Upstream connected: %r", link)

        status_cmd = self.relays.dialect.status_request()
        if status_cmd is not None:
            try:
                await self.write_command(status_cmd)
            except UpstreamError as e:
                logger.warning("Status request failed: %s", e)

        end_state = LinkState.CLOSED
        error: Optional[str] = None
        try:
            await self._read_loop(link)
        except asyncio.CancelledError:
            raise
        except EOFError:
            logger.info("Upstream closed")
        except UpstreamError as e:
            logger.warning("Upstream read failed: %s", e)
            end_state, error = LinkState.ERRORED, str(e)
        except Exception as e:  # noqa: BLE001
            logger.exception("Upstream read loop crashed")
            end_state, error = LinkState.ERRORED, str(e)
        finally:
            await self._teardown()

        await self._set_state(end_state, error)
        await self._set_state(LinkState.DISCONNECTED)

    async def _read_loop(self, link: UpstreamLink) -> None:
        while not self._stop.is_set():
            chunk = await link.read()
            if not chunk:
                continue
            overflows = self._framer.overflows
            lines = self._framer.feed(chunk)
            self.decode_errors += self._framer.overflows - overflows
            for line in lines:
                await self.handle_line(line)

    # ------------------------------------------------------------------
    # Inbound lines
    # ------------------------------------------------------------------

    async def handle_line(self, line: str) -> None:
        """Route one upstream line; decode errors are logged and dropped."""
        try:
            if line.startswith("{"):
                await self._handle_json(line)
            elif STATE_LINE_MARKER in line:
                await self._handle_state_line(line)
            else:
                logger.debug("Ignoring upstream line: %s", line)
        except PayloadRejected as e:
            self.decode_errors += 1
            logger.warning("Dropped upstream line: %s", e)

    async def _handle_json(self, line: str) -> None:
        try:
            obj = json.loads(line, parse_constant=_reject_constant)
        except json.JSONDecodeError as e:
            raise PayloadRejected(f"JSON parse error: {e.msg} in {line[:80]!r}") from e
        except ValueError as e:
            raise PayloadRejected(f"{e} in {line[:80]!r}") from e

        raw = parse_payload(obj)
        frame = self.normalizer.apply(raw)

        if raw.relayStates is not None and self.settings.accepts_json_relay_states:
            reported = raw.relayStates.model_dump(exclude_none=True)
            if len(reported) == 4:
                await self.relays.apply_authoritative(RelayState(**reported))
            else:
                await self.relays.merge_authoritative(reported)
            await self._broadcast_relay_state()

        message: Dict[str, Any] = dict(obj)
        message["timestamp"] = frame.timestamp.isoformat() if frame.timestamp else None
        message["frame"] = frame.model_dump(mode="json", by_alias=True)
        message["relayStates"] = self.relays.state.model_dump()
        message["health"] = self.health().model_dump(mode="json", by_alias=True)
        await self.registry.broadcast_frame(message)

    async def _handle_state_line(self, line: str) -> None:
        if not self.settings.accepts_state_line:
            logger.debug("STATE line ignored (source=%s)", self.settings.relay_state_source)
            return
        state = parse_state_line(line)
        await self.relays.apply_authoritative(state)
        self.normalizer.apply_relay_state(state)
        await self._broadcast_relay_state()

    async def _broadcast_relay_state(self) -> None:
        snap = self.relays.snapshot()
        message = WsMessage(kind="relay_state", data=snap.model_dump(mode="json", by_alias=True))
        await self.registry.broadcast(message.model_dump())

    # ------------------------------------------------------------------
    # Outbound commands
    # ------------------------------------------------------------------

    async def write_command(self, command: str) -> None:
        """Write ``command`` upstream, newline-terminated."""
        link = self._link
        if link is None or not self.connected:
            raise UpstreamUnavailable("pod controller is not connected")
        data = (command + "\n").encode("ascii")
        async with self._write_lock:
            try:
                await link.write(data)
            except UpstreamError as e:
                raise CommandWriteError(str(e)) from e
            except Exception as e:  # noqa: BLE001
                raise CommandWriteError(f"write failed: {e}") from e
        logger.debug("Sent command: %s", command)

    def _result(self, sent: List[str]) -> CommandResult:
        return CommandResult(sent=sent, relay_states=self.relays.state)

    async def toggle_relay(self, key: str) -> CommandResult:
        return self._result([await self.relays.toggle(key, send=self.write_command)])

    async def set_relay(self, key: str, on: bool) -> CommandResult:
        return self._result([await self.relays.set(key, on, send=self.write_command)])

    async def set_all(self, on: bool) -> CommandResult:
        return self._result(await self.relays.set_all(on, send=self.write_command))

    async def emergency_stop(self) -> CommandResult:
        return self._result(await self.relays.emergency_stop_sequence(send=self.write_command))

    async def resume(self) -> CommandResult:
        return self._result(await self.relays.resume_sequence(send=self.write_command))

    async def request_status(self) -> CommandResult:
        command = self.relays.dialect.status_request() or STATUS
        await self.write_command(command)
        return self._result([command])

    async def execute(self, command: str) -> CommandResult:
        """Run one subscriber command token."""
        token = command.strip()
        if token == EMERGENCY_BRAKE:
            logger.warning("EMERGENCY_BRAKE requested")
            return await self.emergency_stop()
        if token == RESUME:
            return await self.resume()
        if token == ALL_ON:
            return await self.set_all(True)
        if token == ALL_OFF:
            return await self.set_all(False)
        if token == STATUS:
            return await self.request_status()
        try:
            key, on = decode_letter_command(token)
        except ValueError:
            raise UnknownCommand(f"unknown command: {token!r}") from None
        return await self.set_relay(key, on)
