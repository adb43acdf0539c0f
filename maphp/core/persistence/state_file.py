"""
State file persistence — atomic read/write for state.json and tags.json.

Writes are atomic (write to temp file, fsync, then rename) so a crash
mid-write leaves either the old or the new document, never a partial
one.

The two documents differ in how a bad file is treated:

    - state.json is the source of truth → unreadable = CorruptionError
    - tags.json is a disposable cache   → unreadable = treated as absent
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from maphp.core.errors import CorruptionError
from maphp.core.models.state import RegistryState
from maphp.core.models.tag import TagCatalog

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, content: str, *, prefix: str = ".state_") -> None:
    """Replace ``path`` with ``content`` in one rename.

    The temp file lives in the same directory so the rename never
    crosses filesystems.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=prefix, suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

    _fsync_dir(path.parent)


def _fsync_dir(directory: Path) -> None:
    """Flush the directory entry so the rename itself is durable."""
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass  # not supported on every filesystem
    finally:
        os.close(fd)


# ── state.json ──────────────────────────────────────────────────


def load_registry_state(path: Path) -> RegistryState:
    """Load the registry document.

    Returns:
        RegistryState. A missing file yields a fresh, empty state.

    Raises:
        CorruptionError: If the file exists but cannot be parsed.
    """
    if not path.is_file():
        logger.debug("No state file at %s — starting fresh", path)
        return RegistryState()

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise CorruptionError(str(path), f"cannot read: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CorruptionError(str(path), f"invalid JSON: {e}") from e

    try:
        state = RegistryState.model_validate(data)
    except ValidationError as e:
        raise CorruptionError(
            str(path), f"unexpected structure ({e.error_count()} errors)"
        ) from e

    logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
    return state


def save_registry_state(state: RegistryState, path: Path) -> None:
    """Save the registry document (atomic write)."""
    state.touch()
    data = state.model_dump(mode="json")
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    try:
        atomic_write_text(path, content, prefix=".state_")
    except OSError as e:
        logger.error("Failed to save state to %s: %s", path, e)
        raise
    logger.debug("State saved to %s", path)


# ── tags.json ───────────────────────────────────────────────────


def load_catalog(path: Path) -> TagCatalog | None:
    """Load the cached tag catalog, or None when absent or unreadable."""
    if not path.is_file():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return TagCatalog.model_validate(data)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Ignoring unreadable tag cache %s: %s", path, e)
        return None


def save_catalog(catalog: TagCatalog, path: Path) -> None:
    """Save the tag catalog (atomic write)."""
    data = catalog.model_dump(mode="json")
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    atomic_write_text(path, content, prefix=".tags_")
    logger.debug("Tag catalog saved to %s (%d tags)", path, len(catalog.tags))
