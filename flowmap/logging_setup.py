"""Console logging setup shared by the API and the CLI."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> None:
    """
    Install a single console handler on the root logger.

    Safe to call more than once; an existing console handler (other than
    pytest's capture handlers) is left alone.
    """
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    console_handlers = [
        h
        for h in root.handlers
        if isinstance(h, logging.StreamHandler)
        and not isinstance(h, logging.FileHandler)
        and type(h).__name__ not in {"LogCaptureHandler", "_LiveLoggingNullHandler"}
    ]
    if not console_handlers:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(console)

    # urllib3 logs every retry/connection at DEBUG/INFO; keep it quiet
    logging.getLogger("urllib3").setLevel(logging.WARNING)
