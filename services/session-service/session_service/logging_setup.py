"""Process-wide logging configuration."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stdout handler to the ``session_service`` logger tree."""
    root = logging.getLogger("session_service")
    root.setLevel(level)
    if not any(getattr(handler, "_session_service", False) for handler in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._session_service = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.propagate = False
