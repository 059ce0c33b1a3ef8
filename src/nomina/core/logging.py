"""Process-wide logging setup."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the ``nomina`` logger tree."""
    root = logging.getLogger("nomina")
    root.setLevel(level.upper())
    if not any(getattr(h, "_nomina", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._nomina = True  # type: ignore[attr-defined]
        root.addHandler(handler)
