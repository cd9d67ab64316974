"""Pod bridge: serial pod controller to WebSocket subscribers."""

__version__ = "0.1.0"
