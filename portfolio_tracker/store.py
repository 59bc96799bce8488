from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict

from .io_utils import empty_document


class StoredStateError(OSError):
    """The persisted document exists but cannot be read back as a state object."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"stored state at {path} {reason}")
        self.path = path


class JsonStateStore:
    """Whole-document JSON store. Every save replaces the file; last writer wins."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> Dict[str, object]:
        with self._lock:
            if not self.path.is_file():
                return empty_document()
            text = self.path.read_text()
        if not text.strip():
            return empty_document()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StoredStateError(self.path, "is not valid JSON") from exc
        if not isinstance(data, dict):
            raise StoredStateError(self.path, "must be a JSON object")
        return data

    def save(self, document: Dict[str, object]) -> None:
        if not isinstance(document, dict):
            raise ValueError("state document must be a JSON object")
        payload = json.dumps(document)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".json")
            try:
                with os.fdopen(fd, "w") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self.path)
            except OSError:
                Path(tmp_name).unlink(missing_ok=True)
                raise
