"""JSON snapshot file.

The store writes one record after every committed mutation and reads it once
at startup. Writes go to a temporary file that is then renamed over the old
one, so a crash mid-write leaves the previous snapshot intact.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from .errors import PersistenceWriteFailed

logger = logging.getLogger(__name__)


class SnapshotFile:
    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, Any] | None:
        """Return the saved record, or None when there is nothing usable."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.error("ignoring unreadable snapshot %s", self.path)
            return None
        if not isinstance(data, dict):
            logger.error("ignoring malformed snapshot %s", self.path)
            return None
        return data

    def save(self, record: dict[str, Any]) -> None:
        payload = json.dumps(record, ensure_ascii=False, indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp, self.path)
            except BaseException:
                os.unlink(tmp)
                raise
        except OSError as e:
            raise PersistenceWriteFailed(f"could not write {self.path}: {e}") from e
