from __future__ import annotations

import logging
import sys

from .config import LOG_LEVEL

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_configured = False


def _configure() -> None:
    global _configured
    if _configured:
        return
    root = logging.getLogger("filekit")
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
    level = logging.getLevelName(LOG_LEVEL)
    root.setLevel(level if isinstance(level, int) else logging.INFO)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    _configure()
    short = name.rsplit(".", 1)[-1]
    return logging.getLogger(f"filekit.{short}")
