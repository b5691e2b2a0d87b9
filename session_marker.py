"""Persisted marker naming the process that owns the active session."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from models import SessionMarker

logger = logging.getLogger(__name__)


def is_process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user.
        return True
    except OSError:
        return False
    return True


class SessionMarkerStore:
    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> Optional[SessionMarker]:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return SessionMarker.from_dict(data)
        except (json.JSONDecodeError, OSError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Unreadable session marker %s: %s", self._path, exc)
            return None

    def exists(self) -> bool:
        return self._path.exists()

    def write(self, marker: SessionMarker) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(marker.to_dict()), encoding="utf-8")
        os.replace(tmp, self._path)

    def remove(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove session marker %s: %s", self._path, exc)
