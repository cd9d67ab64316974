"""Bridge error taxonomy."""
from __future__ import annotations


class BridgeError(Exception):
    """Base error for the pod bridge."""


class PayloadRejected(BridgeError):
    """Raised when an upstream line or payload fails decoding or validation."""


class UpstreamError(BridgeError):
    """Raised when the upstream device link fails to open, read or write."""


class UpstreamUnavailable(UpstreamError):
    """Raised when a command is sent while no upstream link is open."""


class CommandWriteError(UpstreamError):
    """Raised when writing a command to an open upstream link fails."""


class UnknownCommand(BridgeError):
    """Raised when a subscriber sends a command the bridge does not understand."""
