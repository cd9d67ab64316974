from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol, Tuple

import serial
import serial.tools.list_ports

from podbridge.core.exceptions import UpstreamError

logger = logging.getLogger("podbridge.serial")

READ_CHUNK_BYTES = 512


class UpstreamLink(Protocol):
    """Byte stream to the pod controller.

    ``read`` returns whatever bytes are available (possibly empty on a read
    timeout) and raises ``EOFError`` or ``UpstreamError`` when the stream ends.
    """

    async def open(self) -> None: ...

    async def read(self) -> bytes: ...

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...


class SerialLink:
    """pyserial-backed link; blocking calls run in worker threads.

    ``port`` may be a device path or any pyserial URL
    (``socket://host:port``, ``rfc2217://...``, ``loop://``).
    """

    def __init__(self, port: str, baudrate: int, timeout_s: float = 0.2):
        self.port = port
        self.baudrate = baudrate
        self.timeout_s = timeout_s
        self._ser: Optional[serial.SerialBase] = None

    def __repr__(self) -> str:
        return f"SerialLink({self.port!r}, {self.baudrate})"

    async def open(self) -> None:
        try:
            self._ser = await asyncio.to_thread(
                serial.serial_for_url, self.port, baudrate=self.baudrate, timeout=self.timeout_s
            )
        except (serial.SerialException, OSError, ValueError) as e:
            raise UpstreamError(f"cannot open {self.port}: {e}") from e
        # Drop whatever was buffered before we attached
        try:
            await asyncio.to_thread(self._ser.reset_input_buffer)
        except (serial.SerialException, OSError) as e:
            logger.debug("reset_input_buffer failed on %s: %s", self.port, e)
        logger.info("Serial link open: %s @ %d", self.port, self.baudrate)

    async def read(self) -> bytes:
        ser = self._ser
        if ser is None or not ser.is_open:
            raise EOFError("serial link is closed")
        try:
            return await asyncio.to_thread(_read_available, ser)
        except (serial.SerialException, OSError) as e:
            raise UpstreamError(f"read failed on {self.port}: {e}") from e

    async def write(self, data: bytes) -> None:
        ser = self._ser
        if ser is None or not ser.is_open:
            raise UpstreamError("serial link is closed")
        try:
            await asyncio.to_thread(_write_all, ser, data)
        except (serial.SerialException, OSError) as e:
            raise UpstreamError(f"write failed on {self.port}: {e}") from e

    async def close(self) -> None:
        ser, self._ser = self._ser, None
        if ser is None:
            return
        try:
            await asyncio.to_thread(ser.close)
        except (serial.SerialException, OSError) as e:
            logger.debug("Error closing %s: %s", self.port, e)


def _read_available(ser: serial.SerialBase) -> bytes:
    waiting = getattr(ser, "in_waiting", 0) or 0
    return ser.read(max(1, min(waiting, READ_CHUNK_BYTES)))


def _write_all(ser: serial.SerialBase, data: bytes) -> None:
    ser.write(data)
    ser.flush()


# ---------------------------------------------------------------------------
# Port discovery
# ---------------------------------------------------------------------------


def _is_candidate_serial_port(device: str) -> bool:
    return (
        device.startswith("/dev/ttyACM")
        or device.startswith("/dev/ttyUSB")
        or device.startswith("/dev/cu.")
        or device.upper().startswith("COM")
    )


def _looks_like_esp32(description: str) -> bool:
    d = (description or "").lower()
    keywords = (
        "esp32",
        "espressif",
        "silicon labs",
        "cp210",
        "ch340",
        "wch",
        "ftdi",
        "usb serial",
    )
    return any(k in d for k in keywords)


def list_candidate_ports() -> List[Tuple[str, str]]:
    """Likely pod controller ports as (device, description), ESP32-looking first."""
    ports: List[Tuple[str, str]] = []
    for p in serial.tools.list_ports.comports():
        device = getattr(p, "device", "") or ""
        desc = getattr(p, "description", "") or ""
        if _is_candidate_serial_port(device):
            ports.append((device, desc or "(unknown)"))

    ports.sort(key=lambda x: (not _looks_like_esp32(x[1]), x[0]))
    return ports
