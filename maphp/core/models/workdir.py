"""
WorkDir — the on-disk layout owned by maphp.

    <root>/archives/<version>/   extracted + built source, completion marker
    <root>/bin                   symlink to the active version's binaries
    <root>/tags.json             cached tag catalog
    <root>/state.json            installed registry + activation state
    <root>/config.yml            optional policy overrides
    <root>/history.ndjson        operation ledger

Every component receives a WorkDir explicitly; there is no global
"current work directory".
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

ARCHIVES_DIR = "archives"
BIN_DIR = "bin"
TAGS_FILE = "tags.json"
STATE_FILE = "state.json"
CONFIG_FILE = "config.yml"
HISTORY_FILE = "history.ndjson"


@dataclass(frozen=True)
class WorkDir:
    """Paths below a maphp work directory."""

    root: Path

    @property
    def archives(self) -> Path:
        return self.root / ARCHIVES_DIR

    @property
    def bin(self) -> Path:
        return self.root / BIN_DIR

    @property
    def tags_file(self) -> Path:
        return self.root / TAGS_FILE

    @property
    def state_file(self) -> Path:
        return self.root / STATE_FILE

    @property
    def config_file(self) -> Path:
        return self.root / CONFIG_FILE

    @property
    def history_file(self) -> Path:
        return self.root / HISTORY_FILE

    def archive_for(self, version: object) -> Path:
        """Directory holding the source tree of ``version``."""
        return self.archives / str(version)

    def ensure(self) -> WorkDir:
        """Create the root and archives directories if missing."""
        self.archives.mkdir(parents=True, exist_ok=True)
        return self
