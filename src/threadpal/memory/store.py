"""Append-only JSONL memory files, one per thread key."""

from __future__ import annotations

import dataclasses
import json
import threading
from pathlib import Path
from urllib.parse import quote, unquote

from loguru import logger

from threadpal.memory.events import MemoryEvent
from threadpal.memory.scorer import truncate

MEMORY_FILE_SUFFIX = ".jsonl"
DEFAULT_MAX_FILES = 200
EVENT_TEXT_LIMIT = 1000


class MemoryStore:
    """Stores captured turns under ``<root>/threads/<thread key>.jsonl``."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.threads_dir = root / "threads"
        self._lock = threading.Lock()

    def path_for(self, thread_key: str) -> Path:
        return self.threads_dir / f"{quote(thread_key, safe='')}{MEMORY_FILE_SUFFIX}"

    def append(self, thread_key: str, *events: MemoryEvent) -> None:
        if not events:
            return
        path = self.path_for(thread_key)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                for event in events:
                    handle.write(json.dumps(event.to_payload(), ensure_ascii=False) + "\n")

    def thread_keys(self) -> list[str]:
        if not self.threads_dir.exists():
            return []
        return sorted(
            unquote(path.name.removesuffix(MEMORY_FILE_SUFFIX))
            for path in self.threads_dir.glob(f"*{MEMORY_FILE_SUFFIX}")
        )

    def read_recent(self, max_files: int = DEFAULT_MAX_FILES) -> list[MemoryEvent]:
        """Read events from the most recently modified thread files."""
        if not self.threads_dir.exists():
            return []
        files = [path for path in self.threads_dir.glob(f"*{MEMORY_FILE_SUFFIX}") if path.is_file()]
        files.sort(key=lambda path: path.stat().st_mtime, reverse=True)

        events: list[MemoryEvent] = []
        for path in files[: max(1, max_files)]:
            events.extend(self._read_file(path))
        return events

    @staticmethod
    def _read_file(path: Path) -> list[MemoryEvent]:
        events: list[MemoryEvent] = []
        # Undecodable bytes become U+FFFD and the line then fails to parse.
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("memory.store.skip_line path={}", path.name)
                    continue
                event = MemoryEvent.from_payload(payload)
                if event is None:
                    continue
                text = truncate(event.text, EVENT_TEXT_LIMIT)
                if text:
                    events.append(dataclasses.replace(event, text=text))
        return events
