"""
director.services.local_store — Local Fast Snapshot Cache
==========================================================

A best-effort JSON file holding the most recent session snapshot.  Every
failure (missing file, permissions, bad JSON) is logged and treated as a
cache miss; nothing here is ever fatal to the running session.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class LocalSnapshotStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read(self) -> dict[str, Any] | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            logger.warning("Local snapshot unreadable at %s", self.path, exc_info=True)
            return None

        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            logger.warning("Local snapshot at %s is not valid JSON — ignoring", self.path)
            return None
        return parsed if isinstance(parsed, dict) else None

    def write(self, snapshot: dict[str, Any]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(snapshot, separators=(",", ":")), encoding="utf-8")
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError):
            logger.warning("Local snapshot write failed at %s", self.path, exc_info=True)
