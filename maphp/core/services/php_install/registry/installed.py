"""
L4 Registry — installed versions and the activation pointer.

``state.json`` is the source of truth.  Every mutation loads the
document, changes it, and replaces the file atomically, so readers
always see a complete document and no cross-process mutex is needed.

Invariants:
    - an entry exists only for a build that reached its completion marker
    - ``activation.current_version``, when set, names a complete entry;
      anything else is reported as corruption, never repaired
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from maphp.core.errors import CorruptionError, DuplicateVersionError, NotInstalledError
from maphp.core.models.state import ActivationState, InstalledVersion, RegistryState
from maphp.core.models.version import Version
from maphp.core.models.workdir import WorkDir
from maphp.core.persistence.state_file import load_registry_state, save_registry_state
from maphp.core.services.php_install.execution.build_steps import is_complete

logger = logging.getLogger(__name__)


class InstalledRegistry:
    """All reads and writes of ``state.json`` go through here."""

    def __init__(self, work_dir: WorkDir):
        self._work_dir = work_dir
        self._path = work_dir.state_file

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> RegistryState:
        return load_registry_state(self._path)

    def _save(self, state: RegistryState) -> None:
        save_registry_state(state, self._path)

    # ── Queries ─────────────────────────────────────────────────

    def list(self) -> list[InstalledVersion]:
        """Installed versions, newest first."""
        entries = self.load().installed.values()
        return sorted(entries, key=lambda e: e.version.sort_key, reverse=True)

    def get(self, version: Version) -> InstalledVersion | None:
        return self.load().entry(version)

    def is_installed(self, version: Version) -> bool:
        """True iff ``list()`` holds a complete entry for ``version``.

        Raises:
            CorruptionError: The entry is complete but its build
                directory has lost the completion marker.
        """
        entry = self.get(version)
        if entry is None or not entry.complete:
            return False
        if not is_complete(Path(entry.install_path)):
            raise CorruptionError(
                entry.install_path,
                f"PHP {version} is registered but its build is missing or unfinished "
                f"(remove it with `maphp remove {version}` or reinstall with --force)",
            )
        return True

    def current(self) -> Version | None:
        """The active version.

        Raises:
            CorruptionError: The pointer names a missing or incomplete entry.
        """
        state = self.load()
        current = state.activation.current_version
        if current is None:
            return None
        entry = state.entry(current)
        if entry is None or not entry.complete:
            raise CorruptionError(
                str(self._path),
                f"active version {current} is not a completed install",
            )
        return current

    # ── Mutations ───────────────────────────────────────────────

    def record(self, entry: InstalledVersion, *, replace_identical: bool = False) -> bool:
        """Register a finished build.

        Args:
            entry: Result of a successful pipeline run.
            replace_identical: Treat re-recording the same completed
                build as a no-op instead of an error.

        Returns:
            True if the state changed, False for an idempotent no-op.

        Raises:
            DuplicateVersionError: A completed entry already exists.
            ValueError: ``entry`` is not a completed build.
        """
        if not entry.complete:
            raise ValueError(f"only completed builds can be recorded, got {entry.build_status}")

        state = self.load()
        existing = state.entry(entry.version)
        if existing is not None and existing.complete:
            if replace_identical and existing.same_build(entry):
                logger.debug("PHP %s already recorded, nothing to do", entry.version)
                return False
            raise DuplicateVersionError(str(entry.version))

        state.installed[str(entry.version)] = entry
        self._save(state)
        logger.info("Recorded PHP %s at %s", entry.version, entry.install_path)
        return True

    def remove(
        self,
        version: Version,
        *,
        deactivate: Callable[[], None] | None = None,
    ) -> InstalledVersion:
        """Unregister a version and delete its directory.

        Order matters: the entry and, if it was active, the activation
        pointer are dropped in one atomic state write; then the shim set
        is removed via ``deactivate``; the files go last.  An
        interruption therefore never leaves a pointer to deleted files.

        ``deactivate`` also runs when ``bin`` resolves into this build
        even though the pointer names another version (an activation
        interrupted between the link swap and the state write), so
        ``bin`` never dangles afterwards.

        Raises:
            NotInstalledError: No entry for ``version``.
        """
        state = self.load()
        entry = state.entry(version)
        if entry is None:
            raise NotInstalledError(str(version))

        install_path = Path(entry.install_path)
        was_current = state.activation.current_version == version
        del state.installed[str(version)]
        if was_current:
            state.activation = ActivationState(changed_at=_now_iso())
        self._save(state)

        exposed = self._bin_points_into(install_path)
        if exposed and not was_current:
            logger.warning(
                "bin points into PHP %s although %s is recorded as active; removing it",
                version,
                state.activation.current_version,
            )
        if (was_current or exposed) and deactivate is not None:
            deactivate()

        if install_path.exists():
            shutil.rmtree(install_path)
        logger.info("Removed PHP %s%s", version, " (was active)" if was_current else "")
        return entry

    def set_current(self, version: Version | None) -> None:
        """Point the activation state at ``version`` (or clear it).

        Only the Activator calls this.

        Raises:
            NotInstalledError: ``version`` has no completed entry.
        """
        state = self.load()
        if version is not None:
            entry = state.entry(version)
            if entry is None or not entry.complete:
                raise NotInstalledError(str(version))

        if state.activation.current_version == version:
            return

        state.activation = ActivationState(current_version=version, changed_at=_now_iso())
        self._save(state)

    def _bin_points_into(self, install_path: Path) -> bool:
        link = self._work_dir.bin
        if not link.is_symlink():
            return False
        target = Path(os.path.normpath(link.parent / os.readlink(link)))
        return target.is_relative_to(Path(os.path.normpath(install_path)))


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()
