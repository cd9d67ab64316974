from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from podbridge import __version__
from podbridge.config import Settings, settings as default_settings
from podbridge.observability.logging import configure_logging
from podbridge.api.routes_health import router as health_router
from podbridge.api.routes_relays import router as relays_router
from podbridge.api.routes_telemetry import router as telemetry_router
from podbridge.api.routes_ws import router as ws_router
from podbridge.services.bridge_service import LinkFactory, PodBridge

configure_logging()
logger = logging.getLogger("podbridge")


def create_app(
    settings: Optional[Settings] = None,
    link_factory: Optional[LinkFactory] = None,
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run the upstream bridge for as long as the server is up."""
        bridge = PodBridge(settings, link_factory=link_factory)
        app.state.bridge = bridge
        logger.info("Starting Pod Bridge API")
        logger.info("   Environment: %s", settings.environment)
        logger.info("   Upstream: %s @ %d", settings.serial_port, settings.serial_baudrate)
        logger.info("   Dialect: %s, relay state from: %s", settings.command_dialect, settings.relay_state_source)

        task = asyncio.create_task(bridge.run(), name="pod-bridge")

        yield

        logger.info("Shutting down...")
        bridge.stop()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    app = FastAPI(title="Pod Bridge API", version=__version__, lifespan=lifespan)

    @app.get("/")
    def root():
        return {
            "name": "Pod Bridge API",
            "status": "ok",
            "docs": "/docs",
            "health": "/health",
            "stream": "/ws",
        }

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(health_router)
    app.include_router(telemetry_router)
    app.include_router(relays_router)
    app.include_router(ws_router)
    return app


app = create_app()
