"""Centralized logging setup: one queue-backed sink for console and rotating file."""

from __future__ import annotations

import atexit
import logging
import os
import sys
import threading
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import Optional

from config import state_dir

_LISTENER_LOCK = threading.Lock()
_LOG_LISTENER: Optional[QueueListener] = None

LOG_FILENAME = "dev-voice.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _stop_listener() -> None:
    global _LOG_LISTENER
    if _LOG_LISTENER is not None:
        _LOG_LISTENER.stop()
        _LOG_LISTENER = None


def resolve_log_dir() -> Optional[Path]:
    env_dir = os.environ.get("DEV_VOICE_LOG_DIR")
    logs_dir = Path(env_dir) if env_dir else state_dir() / "logs"
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        return None
    return logs_dir


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        return default


def setup_logging(verbose: bool = False, include_file: bool = True, include_console: bool = True) -> logging.Logger:
    """Route every logger through a queue to console and rotating file handlers.

    Safe to call more than once; only the first call installs handlers.
    """
    global _LOG_LISTENER
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)

    with _LISTENER_LOCK:
        if _LOG_LISTENER is not None:
            return root

        formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        handlers: list[logging.Handler] = []

        if include_file:
            logs_dir = resolve_log_dir()
            if logs_dir is not None:
                try:
                    file_handler = RotatingFileHandler(
                        logs_dir / LOG_FILENAME,
                        maxBytes=_env_int("DEV_VOICE_LOG_MAX_BYTES", 10 * 1024 * 1024),
                        backupCount=_env_int("DEV_VOICE_LOG_BACKUP_COUNT", 5),
                    )
                except OSError:
                    file_handler = None
                if file_handler is not None:
                    file_handler.setFormatter(formatter)
                    handlers.append(file_handler)

        if include_console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(formatter)
            handlers.append(console_handler)

        if not handlers:
            root.addHandler(logging.NullHandler())
            return root

        log_queue: SimpleQueue = SimpleQueue()
        _LOG_LISTENER = QueueListener(log_queue, *handlers, respect_handler_level=True)
        _LOG_LISTENER.start()
        atexit.register(_stop_listener)
        root.addHandler(QueueHandler(log_queue))
    return root
