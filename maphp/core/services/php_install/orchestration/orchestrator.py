"""
L5 Orchestration — install / use / remove / list.

The VersionManager is the only caller of the components below it and
the only place where failure handling spans components:

    query → resolve (TagCache + matcher)
          → [version lock: registry.is_installed? → pipeline.build → registry.record]
          → activator.activate

Every state-changing operation appends a line to the history ledger,
whether it succeeded or not.
"""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta

from maphp.adapters.base import Chooser, NullProgress, ProgressReporter, Transport
from maphp.core.config.loader import Settings
from maphp.core.errors import NoMatchError, NotInstalledError, UserCancelled
from maphp.core.models.state import InstalledVersion
from maphp.core.models.tag import ReleaseTag, strip_tag_prefix
from maphp.core.models.version import Version
from maphp.core.models.workdir import WorkDir
from maphp.core.persistence.history import HistoryEntry, HistoryWriter
from maphp.core.services.php_install.catalog.tag_cache import TagCache
from maphp.core.services.php_install.domain.version_match import (
    filter_channels,
    resolve,
    resolve_version,
)
from maphp.core.services.php_install.execution.build_steps import is_complete
from maphp.core.services.php_install.execution.pipeline import BuildPipeline, Runner
from maphp.core.services.php_install.execution.subprocess_runner import _run_subprocess
from maphp.core.services.php_install.registry.activator import Activator
from maphp.core.services.php_install.registry.installed import InstalledRegistry

logger = logging.getLogger(__name__)


@dataclass
class InstallOutcome:
    """What ``install`` did."""

    tag: ReleaseTag
    installed: InstalledVersion
    built: bool = False          # False when the version was already installed
    activated: bool = False
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "version": self.tag.name,
            "install_path": self.installed.install_path,
            "built": self.built,
            "activated": self.activated,
            "warnings": self.warnings,
        }


class VersionManager:
    """Entry point for every version-management operation.

    Args:
        work_dir: Layout to operate on (created by the caller).
        transport: Network collaborator.
        chooser: Asked to pick a version when none is given.
        progress: Receives pipeline stages and build output.
        settings: Policy from config.yml.
        runner: Build command runner (tests inject a fake).
    """

    def __init__(
        self,
        work_dir: WorkDir,
        *,
        transport: Transport,
        chooser: Chooser | None = None,
        progress: ProgressReporter | None = None,
        settings: Settings | None = None,
        runner: Runner = _run_subprocess,
    ):
        self.work_dir = work_dir
        self.settings = settings or Settings()
        self.chooser = chooser
        self.tags = TagCache(
            work_dir.tags_file,
            transport,
            staleness=timedelta(hours=self.settings.staleness_hours),
        )
        self.registry = InstalledRegistry(work_dir)
        self.activator = Activator(work_dir, self.registry)
        self.pipeline = BuildPipeline(
            work_dir,
            transport,
            settings=self.settings,
            progress=progress or NullProgress(),
            runner=runner,
        )
        self.history = HistoryWriter(work_dir.history_file)

    # ── Queries ─────────────────────────────────────────────────

    def resolve(self, query: str) -> ReleaseTag:
        """Resolve ``query`` against the catalog, refreshing it if stale."""
        catalog = self.tags.snapshot(refresh_if_stale=True)
        return resolve(query, catalog)

    def current(self) -> Version | None:
        return self.activator.current()

    def installed(self) -> list[InstalledVersion]:
        return self.registry.list()

    def available(
        self,
        *,
        refresh: bool = False,
        stable: bool = True,
        alpha: bool = False,
        beta: bool = False,
        rc: bool = False,
    ) -> list[ReleaseTag]:
        """Catalog tags of the selected channels, newest first."""
        tags = self.tags.refresh(force=True) if refresh else self.tags.snapshot()
        return filter_channels(tags, stable=stable, alpha=alpha, beta=beta, rc=rc)

    @property
    def catalog_warning(self) -> str | None:
        return self.tags.last_warning

    # ── Operations ──────────────────────────────────────────────

    def install(
        self,
        query: str,
        *,
        dev: bool = False,
        verbose: bool = False,
        force: bool = False,
        activate: bool = False,
    ) -> InstallOutcome:
        """Install the version matching ``query``.

        Already-installed versions are not rebuilt unless ``force`` is
        set.  A forced reinstall of the active version re-activates it
        once the new build is recorded.
        """
        with self._recorded("install", query) as entry:
            tag = self.resolve(query)
            entry.version = tag.name
            version = tag.version
            warnings = [self.tags.last_warning] if self.tags.last_warning else []

            # Held from the "installed?" check until the entry is recorded.
            with self.pipeline.lock(tag):
                if not force and self.registry.is_installed(version):
                    installed = self.registry.get(version)
                    assert installed is not None
                    outcome = InstallOutcome(tag=tag, installed=installed, warnings=warnings)
                    entry.status = "noop"
                else:
                    reactivate = False
                    if self.registry.get(version) is not None:
                        reactivate = self._current_or_none() == version
                        logger.info("Reinstalling PHP %s", version)
                        self.registry.remove(version, deactivate=self.activator.remove_shims)
                    else:
                        self._discard_unrecorded(tag)

                    installed = self.pipeline.build(tag, dev=dev, verbose=verbose)
                    self.registry.record(installed)
                    outcome = InstallOutcome(tag=tag, installed=installed, built=True, warnings=warnings)
                    activate = activate or reactivate

            if activate:
                outcome.activated = self.activator.activate(version)
            entry.context = {"built": outcome.built, "activated": outcome.activated, "dev": dev}
            return outcome

    def use(self, query: str | None = None) -> tuple[Version, bool]:
        """Activate an installed version.

        Returns:
            ``(version, changed)``; ``changed`` is False if it was
            already active.
        """
        with self._recorded("use", query or "") as entry:
            version = self._pick_installed(query, "Choose installed version you want to use")
            entry.version = str(version)
            changed = self.activator.activate(version)
            if not changed:
                entry.status = "noop"
            return version, changed

    def remove(self, query: str | None = None, *, confirm=None) -> InstalledVersion:
        """Remove an installed version, deactivating it first if active.

        Args:
            query: Version to remove; asks the chooser when omitted.
            confirm: Optional ``callable(version) -> bool``; returning
                False cancels.
        """
        with self._recorded("remove", query or "") as entry:
            version = self._pick_installed(query, "Choose installed version you want to remove")
            entry.version = str(version)
            if confirm is not None and not confirm(version):
                raise UserCancelled()
            return self.registry.remove(version, deactivate=self.activator.remove_shims)

    def refresh_catalog(self) -> int:
        """Force a catalog refresh; returns the number of known tags."""
        with self._recorded("refresh", "") as entry:
            tags = self.tags.refresh(force=True)
            entry.context = {"tags": len(tags)}
            if self.tags.last_warning:
                entry.error = self.tags.last_warning
            return len(tags)

    # ── Helpers ─────────────────────────────────────────────────

    def _pick_installed(self, query: str | None, prompt: str) -> Version:
        versions = [e.version for e in self.registry.list() if e.complete]

        if query:
            try:
                return resolve_version(query, versions)
            except NoMatchError as e:
                raise NotInstalledError(strip_tag_prefix(query)) from e

        if not versions:
            raise NotInstalledError("", "No installed version found")
        if self.chooser is None:
            raise UserCancelled("No version given and no interactive chooser available")

        options = [str(v) for v in versions]
        picked = self.chooser.choose_one(prompt, options)
        return versions[options.index(picked)]

    def _discard_unrecorded(self, tag: ReleaseTag) -> None:
        """Drop a finished build whose install died before it was recorded.

        Only called with the version lock held, so no other install can
        own the directory.
        """
        dest = self.work_dir.archive_for(tag.name)
        if is_complete(dest):
            logger.warning("Removing unrecorded build of PHP %s at %s", tag.name, dest)
            shutil.rmtree(dest)

    def _current_or_none(self) -> Version | None:
        return self.registry.load().activation.current_version

    @contextmanager
    def _recorded(self, operation: str, query: str) -> Iterator[HistoryEntry]:
        entry = HistoryEntry(operation=operation, query=query, status="ok")
        start = time.monotonic()
        try:
            yield entry
        except BaseException as e:
            entry.status = "failed"
            entry.error = str(e) or type(e).__name__
            raise
        finally:
            entry.duration_ms = int((time.monotonic() - start) * 1000)
            self.history.write(entry)
