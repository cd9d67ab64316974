from __future__ import annotations

import uvicorn

from podbridge.config import settings
from podbridge.observability.logging import configure_logging
from podbridge.preflight import main as preflight


def main() -> None:
    configure_logging()
    preflight(settings)
    uvicorn.run("podbridge.main:app", host=settings.bridge_host, port=settings.bridge_port)


if __name__ == "__main__":
    main()
