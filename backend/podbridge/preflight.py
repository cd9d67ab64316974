from __future__ import annotations

"""Preflight checks before the server starts.

- the downstream port must be bindable, otherwise startup aborts
- prints a config summary and the serial ports that look like a pod
"""

import errno
import socket

from podbridge.config import Settings, settings
from podbridge.services.serial_link import list_candidate_ports


def check_port_available(host: str, port: int) -> None:
    """Raise SystemExit with a readable message if ``host:port`` cannot be bound."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as e:
        hint = " (already in use?)" if e.errno == errno.EADDRINUSE else ""
        raise SystemExit(f"Cannot bind subscriber port {host}:{port}{hint}: {e.strerror or e}") from e
    finally:
        sock.close()


def main(cfg: Settings = settings) -> None:
    check_port_available(cfg.bridge_host, cfg.bridge_port)
    print("Preflight OK")
    print(f"BRIDGE={cfg.bridge_host}:{cfg.bridge_port}")
    print(f"SERIAL_PORT={cfg.serial_port} @ {cfg.serial_baudrate}")
    print(f"RECONNECT_DELAY_MS={cfg.reconnect_delay_ms}")
    print(f"COMMAND_DIALECT={cfg.command_dialect}")
    ports = list_candidate_ports()
    if ports:
        for device, desc in ports:
            print(f"  candidate port: {device} ({desc})")
    else:
        print("  no candidate serial ports found")


if __name__ == "__main__":
    main()
