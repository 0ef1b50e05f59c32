"""JSON file persistence for the session table and persisted settings."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

from loguru import logger


def _write_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    tmp_path.replace(path)


def _read_object(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        raw = f.read()
    if not raw.strip():
        return {}
    loaded = json.loads(raw)
    if not isinstance(loaded, dict):
        raise ValueError(f"expected a JSON object in {path}")
    return loaded


class JSONSessionStore:
    """Durable copy of the session table. Failures are logged, never raised."""

    def __init__(self, file_path: str | Path) -> None:
        self.file_path = Path(file_path)
        self._lock = threading.Lock()

    def load_all(self) -> dict[str, str]:
        with self._lock:
            try:
                loaded = _read_object(self.file_path)
            except (OSError, ValueError) as e:
                logger.error("session.store.load_failed path={} error={}", self.file_path, e)
                return {}
        return {str(key): value for key, value in loaded.items() if isinstance(value, str) and value}

    def save_all(self, table: dict[str, str]) -> None:
        with self._lock:
            try:
                _write_atomic(self.file_path, dict(table))
            except OSError as e:
                logger.error("session.store.save_failed path={} error={}", self.file_path, e)


class JSONConfigStore:
    """Small JSON document holding settings changed at runtime (model, thinking, agent)."""

    def __init__(self, file_path: str | Path) -> None:
        self.file_path = Path(file_path)
        self._lock = threading.Lock()

    def read(self) -> dict[str, Any]:
        with self._lock:
            try:
                return _read_object(self.file_path)
            except (OSError, ValueError) as e:
                logger.warning("config.store.load_failed path={} error={}", self.file_path, e)
                return {}

    def update(self, patch: dict[str, Any]) -> dict[str, Any]:
        """Merge ``patch`` into the stored document. Keys mapped to ``None`` are removed.

        Raises:
            OSError: when the document cannot be written.
        """
        current = self.read()
        with self._lock:
            merged = {**current, **patch}
            merged = {key: value for key, value in merged.items() if value is not None}
            _write_atomic(self.file_path, merged)
        return merged
