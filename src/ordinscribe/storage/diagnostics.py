"""Bounded diagnostics sink for step and transport failures."""

import json
import logging
import threading
from collections import deque
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class DiagnosticEntry(BaseModel):
    timestamp: datetime
    kind: str
    message: str
    context: dict = Field(default_factory=dict)


class DiagnosticsSink:
    """Keeps the most recent diagnostics in memory and optionally on disk.

    Oldest entries are evicted once ``max_entries`` is reached. When ``log_dir``
    is set, each entry is also appended as a JSON line to a per-day file.
    """

    def __init__(self, max_entries: int = 100, log_dir: Path | None = None):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.log_dir = log_dir
        self._entries: deque[DiagnosticEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def log_file(self) -> Path | None:
        if self.log_dir is None:
            return None
        return self.log_dir / f"server-errors-{datetime.now(UTC).date().isoformat()}.log"

    def record(self, message: str, kind: str = "server_error", **context) -> DiagnosticEntry:
        entry = DiagnosticEntry(
            timestamp=datetime.now(UTC), kind=kind, message=message, context=context
        )
        with self._lock:
            self._entries.append(entry)
        logger.warning(f"[{kind.upper()}] {message}")
        self._persist(entry)
        return entry

    def entries(self, kind: str | None = None) -> list[DiagnosticEntry]:
        with self._lock:
            snapshot = list(self._entries)
        if kind is None:
            return snapshot
        return [e for e in snapshot if e.kind == kind]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _persist(self, entry: DiagnosticEntry) -> None:
        log_file = self.log_file
        if log_file is None:
            return
        try:
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.model_dump(mode="json")) + "\n")
        except OSError as e:
            logger.error(f"Failed to write to diagnostics log {log_file}: {e}")
