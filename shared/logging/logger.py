"""
Process-wide logging setup.

Every module asks for its logger through `get_logger`. Loggers of one
runtime share a single console handler and a single per-run log file, so
a chat session leaves one `logs/<runtime>-<stamp>.log` behind.

Environment:
- CHATWEAVE_LOG_DIR   : directory for log files (default `logs`)
- CHATWEAVE_LOG_LEVEL : DEBUG | INFO | WARNING | ERROR (default DEBUG)
"""

import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_RUN_STAMP = datetime.now().strftime("%Y%m%d-%H%M%S")
_LOCK = threading.Lock()
_LOGGERS: Dict[str, logging.Logger] = {}
_HANDLERS: Dict[str, List[logging.Handler]] = {}


def _log_dir() -> Path:
    return Path(os.getenv("CHATWEAVE_LOG_DIR", "logs"))


class _RunFileHandler(logging.FileHandler):
    """File handler that creates its directory and file on the first record."""

    def __init__(self, filename: Path):
        super().__init__(filename, encoding="utf-8", delay=True)

    def _open(self):
        Path(self.baseFilename).parent.mkdir(parents=True, exist_ok=True)
        return super()._open()


def _log_level() -> int:
    raw = os.getenv("CHATWEAVE_LOG_LEVEL", "DEBUG").strip().upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.DEBUG


def _runtime_handlers(runtime: str) -> List[logging.Handler]:
    handlers = _HANDLERS.get(runtime)
    if handlers is not None:
        return handlers

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)

    logfile = _log_dir() / f"{runtime}-{_RUN_STAMP}.log"
    file_handler = _RunFileHandler(logfile)
    file_handler.setFormatter(formatter)

    handlers = [console, file_handler]
    _HANDLERS[runtime] = handlers
    return handlers


def get_logger(
    name: str,
    *,
    runtime: str = "chatweave",
) -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. core.app, twitch.chat)
    - runtime: log file prefix; loggers with the same runtime share a file
    """
    cache_key = f"{runtime}:{name}"
    with _LOCK:
        logger = _LOGGERS.get(cache_key)
        if logger is not None:
            return logger

        logger = logging.getLogger(cache_key)
        logger.setLevel(_log_level())
        for handler in _runtime_handlers(runtime):
            logger.addHandler(handler)
        logger.propagate = False

        _LOGGERS[cache_key] = logger
        return logger


def set_level(level: int) -> None:
    """Change the level of every logger handed out so far."""
    with _LOCK:
        for logger in _LOGGERS.values():
            logger.setLevel(level)


__all__ = ["LOG_FORMAT", "get_logger", "set_level"]
