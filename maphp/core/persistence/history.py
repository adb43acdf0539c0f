"""
Operation history — append-only ledger of install/use/remove.

Every state-changing command appends one NDJSON line to
``<workdir>/history.ndjson``: what was attempted, on which version,
and how it ended.  Entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class HistoryEntry(BaseModel):
    """A single ledger line."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation: str = ""            # install, use, remove, refresh
    query: str = ""
    version: str = ""
    status: str = ""               # ok, noop, failed
    duration_ms: int = 0
    error: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)


class HistoryWriter:
    """Append-only ledger writer.

    Each call to write() appends a single JSON line.  A failure to
    write is logged, not raised: the ledger never blocks an operation
    that already succeeded.
    """

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: HistoryEntry) -> None:
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("History entry written: %s %s", entry.operation, entry.version)
        except OSError as e:
            logger.error("Failed to write history entry: %s", e)

    def read_all(self) -> list[HistoryEntry]:
        """Read all entries, oldest first.  Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        with self._path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(HistoryEntry.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning("Skipping corrupt history entry at line %d: %s", line_num, e)
        return entries

    def read_recent(self, n: int = 20) -> list[HistoryEntry]:
        """Read the most recent N entries, oldest first."""
        entries = self.read_all()
        return entries[-n:] if n > 0 else []
