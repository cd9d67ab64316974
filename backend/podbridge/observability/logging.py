from __future__ import annotations

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the process.

    Uvicorn installs its own handlers for ``uvicorn.*`` loggers; everything
    under ``podbridge.*`` propagates to the root handler configured here.
    """
    if level is None:
        from podbridge.config import settings

        level = settings.log_level

    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger("podbridge").setLevel(level.upper())
