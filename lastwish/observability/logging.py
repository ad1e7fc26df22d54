"""Process-wide logging setup.

Every module asks for its logger through get_logger(); the first call attaches
a stream handler (and a file handler when LASTWISH_LOG_FILE is set) to the
root logger so scheduler runs and API requests share one format.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final

_HANDLERS_ATTACHED: bool = False
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATEFMT: Final[str] = "%Y-%m-%d %H:%M:%S"


def _resolve_level() -> int:
    level_name = os.getenv("LASTWISH_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _build_handlers() -> list[logging.Handler]:
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file := os.getenv("LASTWISH_LOG_FILE"):
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path))

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def get_logger(name: str) -> logging.Logger:
    """Return a module logger, attaching the shared handlers on first use."""
    global _HANDLERS_ATTACHED

    level = _resolve_level()
    root = logging.getLogger()

    if not _HANDLERS_ATTACHED:
        for handler in _build_handlers():
            root.addHandler(handler)
        _HANDLERS_ATTACHED = True
    root.setLevel(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
