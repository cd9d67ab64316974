from __future__ import annotations

from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ------------------------------------------------------------
    # Downstream (subscriber) server
    # ------------------------------------------------------------
    bridge_host: str = "0.0.0.0"
    bridge_port: int = Field(default=8080, ge=1, le=65535)
    environment: str = "development"  # development | staging | production

    # ------------------------------------------------------------
    # Upstream (pod controller) link
    # ------------------------------------------------------------
    # A device path (/dev/ttyUSB0, COM3) or any pyserial URL, e.g.
    # "socket://127.0.0.1:7000" for a networked frame source.
    serial_port: str = "/dev/ttyUSB0"
    serial_baudrate: int = Field(default=115200, gt=0)
    serial_read_timeout_s: float = Field(default=0.2, gt=0.0)
    reconnect_delay_ms: int = Field(default=3000, ge=0)

    # letter: A/a single-character tokens
    # word:   RELAYA_ON / RELAYA_OFF, ALL_ON / ALL_OFF, STATUS
    command_dialect: Literal["letter", "word"] = "letter"

    # Which upstream message is trusted for relay state:
    # STATE:b0,b1,b2,b3 lines, the JSON "relayStates" object, or both.
    relay_state_source: Literal["state_line", "json", "both"] = "state_line"

    # ------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------
    history_size: int = Field(default=100, ge=1)

    # ------------------------------------------------------------
    # CORS
    # ------------------------------------------------------------
    # Comma-separated origins, e.g. "http://localhost:3000,http://pod-dash.local"
    cors_origins: str = "http://localhost:3000"

    # ------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------
    log_level: str = "INFO"

    @property
    def cors_origins_list(self) -> List[str]:
        return [x.strip() for x in self.cors_origins.split(",") if x.strip()]

    @property
    def reconnect_delay_s(self) -> float:
        return self.reconnect_delay_ms / 1000.0

    @property
    def accepts_state_line(self) -> bool:
        return self.relay_state_source in ("state_line", "both")

    @property
    def accepts_json_relay_states(self) -> bool:
        return self.relay_state_source in ("json", "both")


settings = Settings()
