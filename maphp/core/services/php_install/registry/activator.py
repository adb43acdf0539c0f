"""
L4 Registry — Activation of an installed version.

``<workdir>/bin`` is a symlink to ``archives/<version>/dist/bin``.
Switching versions builds the new link under a temp name and renames
it over ``bin`` in a single ``os.replace``: a shell running ``php`` at
any moment sees either the old set or the new one, never an empty or
mixed ``bin``.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from maphp.core.errors import CorruptionError, NotInstalledError
from maphp.core.models.version import Version
from maphp.core.models.workdir import WorkDir
from maphp.core.services.php_install.execution.build_steps import bin_dir
from maphp.core.services.php_install.registry.installed import InstalledRegistry

logger = logging.getLogger(__name__)


class Activator:
    """The only writer of ``bin`` and of the activation pointer."""

    def __init__(self, work_dir: WorkDir, registry: InstalledRegistry):
        self._work_dir = work_dir
        self._registry = registry

    @property
    def bin_path(self) -> Path:
        return self._work_dir.bin

    def current(self) -> Version | None:
        return self._registry.current()

    def activate(self, version: Version) -> bool:
        """Expose ``version`` through ``bin``.

        Returns:
            True if anything changed, False when already active.

        Raises:
            NotInstalledError: No completed install of ``version``.
            CorruptionError: The install has no binaries directory.
        """
        if not self._registry.is_installed(version):
            raise NotInstalledError(str(version))

        entry = self._registry.get(version)
        assert entry is not None  # guaranteed by is_installed
        target = bin_dir(Path(entry.install_path))
        if not target.is_dir():
            raise CorruptionError(str(target), f"PHP {version} has no binaries directory")

        if self._registry.current() == version and self._points_at(target):
            logger.debug("PHP %s already active", version)
            return False

        self._swap_in(target)
        self._registry.set_current(version)
        logger.info("Activated PHP %s", version)
        return True

    def deactivate(self) -> None:
        """Clear the pointer, then remove the shim set entirely."""
        self._registry.set_current(None)
        self.remove_shims()
        logger.info("Deactivated PHP")

    def remove_shims(self) -> None:
        link = self.bin_path
        if link.is_symlink() or link.is_file():
            link.unlink()
        elif link.is_dir():
            shutil.rmtree(link)

    def _points_at(self, target: Path) -> bool:
        link = self.bin_path
        return link.is_symlink() and Path(os.readlink(link)) == target

    def _swap_in(self, target: Path) -> None:
        link = self.bin_path
        tmp = link.with_name(f".{link.name}.{os.getpid()}.tmp")
        if tmp.is_symlink() or tmp.exists():
            tmp.unlink()

        tmp.symlink_to(target, target_is_directory=True)
        try:
            if link.is_dir() and not link.is_symlink():
                self._replace_directory(link, tmp)
            else:
                os.replace(tmp, link)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        logger.debug("%s → %s", link, target)

    @staticmethod
    def _replace_directory(link: Path, tmp: Path) -> None:
        """Replace a real ``bin`` directory left by an older layout.

        A symlink cannot be renamed over a directory, so the directory
        is moved aside first.
        """
        aside = link.with_name(f".{link.name}.old")
        if aside.exists():
            shutil.rmtree(aside)
        os.rename(link, aside)
        try:
            os.replace(tmp, link)
        except BaseException:
            os.rename(aside, link)
            raise
        shutil.rmtree(aside)
