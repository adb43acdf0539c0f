"""
L4 Execution — Build pipeline for one PHP version.

State machine per attempt:

    resolved → downloading → extracting → configuring → compiling
             → installed | failed

Every transition is reported to the ProgressReporter.  The pipeline
returns an InstalledVersion and never writes the registry itself: the
orchestrator records the result, so rollback logic lives in one place.
The orchestrator takes ``lock(tag)`` itself and calls ``build`` inside
it, holding the lock until the entry is recorded; ``install`` is the
self-locking form.

A destination that already carries a completion marker is never
wiped: a finished build is only removed through the registry.

Failure policy: whatever goes wrong (including Ctrl-C), the
destination directory and any temp download are removed before the
error propagates.  The completion marker is written last, so an
interrupted build is never mistaken for a finished one.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

from maphp.adapters.base import NullProgress, ProgressReporter, Transport
from maphp.core.config.loader import Settings
from maphp.core.errors import BuildError, DuplicateVersionError
from maphp.core.models.state import InstalledVersion, InstallStage
from maphp.core.models.tag import ReleaseTag
from maphp.core.models.workdir import WorkDir
from maphp.core.services.php_install.execution.build_steps import (
    ARCHIVE_NAME,
    autotools_plan,
    is_complete,
    php_binary,
    setup_php_ini,
    write_completion_marker,
)
from maphp.core.services.php_install.execution.download import download_archive
from maphp.core.services.php_install.execution.extract import extract_source
from maphp.core.services.php_install.execution.install_lock import InstallLock
from maphp.core.services.php_install.execution.subprocess_runner import _run_subprocess

logger = logging.getLogger(__name__)

Runner = Callable[..., dict[str, Any]]


class BuildPipeline:
    """Turns a resolved ReleaseTag into a built ``archives/<version>/``.

    Args:
        work_dir: Layout to build into.
        transport: Used for the source download.
        settings: Integrity and build policy.
        progress: Receives stage transitions and build output.
        runner: Spawns build commands; same contract as ``_run_subprocess``.
    """

    def __init__(
        self,
        work_dir: WorkDir,
        transport: Transport,
        *,
        settings: Settings | None = None,
        progress: ProgressReporter | None = None,
        runner: Runner = _run_subprocess,
    ):
        self._work_dir = work_dir
        self._transport = transport
        self._settings = settings or Settings()
        self._progress = progress or NullProgress()
        self._runner = runner

    def install(
        self,
        tag: ReleaseTag,
        dest_dir: Path | None = None,
        *,
        dev: bool = False,
        verbose: bool = False,
    ) -> InstalledVersion:
        """Download, extract, configure, compile and install ``tag``.

        Args:
            tag: Release to build.
            dest_dir: Target directory (default ``archives/<version>``).
            dev: Debug build with the development php.ini.
            verbose: Forward build output to the progress reporter.

        Raises:
            AlreadyInstallingError: Another install of this version runs.
            DuplicateVersionError: ``dest_dir`` already holds a finished build.
            DownloadError: Fetch failed or the archive failed verification.
            ExtractError: The archive could not be unpacked.
            BuildError: A build step failed.
        """
        dest = dest_dir or self._work_dir.archive_for(tag.name)
        with InstallLock(dest.parent, tag.name):
            return self.build(tag, dest, dev=dev, verbose=verbose)

    def lock(self, tag: ReleaseTag) -> InstallLock:
        """The per-version lock guarding ``archives/<version>``."""
        return InstallLock(self._work_dir.archives, tag.name)

    def build(
        self,
        tag: ReleaseTag,
        dest_dir: Path | None = None,
        *,
        dev: bool = False,
        verbose: bool = False,
    ) -> InstalledVersion:
        """``install`` for a caller that already holds ``lock(tag)``.

        Raises:
            DuplicateVersionError: The destination holds a finished
                build; it must be unregistered and removed first.
        """
        dest = dest_dir or self._work_dir.archive_for(tag.name)
        if is_complete(dest):
            raise DuplicateVersionError(tag.name)

        self._progress.report(InstallStage.RESOLVED)
        self._reset_destination(dest)

        stage = InstallStage.DOWNLOADING
        download: Path | None = None
        try:
            download = download_archive(
                tag,
                transport=self._transport,
                staging_dir=dest.parent,
                progress=self._progress,
                min_bytes=self._settings.min_archive_bytes,
                verify_checksum=self._settings.verify_checksums,
            )

            stage = InstallStage.EXTRACTING
            dest.mkdir(parents=True)
            archive = dest / ARCHIVE_NAME
            os.replace(download, archive)
            download = archive
            extract_source(archive, dest, version=tag.name, progress=self._progress)
            archive.unlink()
            download = None

            plan = autotools_plan(
                dest,
                dev=dev,
                jobs=self._settings.effective_jobs,
                extra_args=self._settings.configure_args,
            )
            for step in plan:
                stage = step["stage"]
                self._run_step(tag, step, dest, verbose=verbose)

            if not php_binary(dest).is_file():
                raise BuildError(tag.name, stage.value, "make install did not produce bin/php")

            setup_php_ini(dest, dev=dev)
            write_completion_marker(dest, tag.name)
        except BaseException as e:
            logger.error("Install of PHP %s failed while %s: %s", tag.name, stage, e)
            self._progress.report(InstallStage.FAILED)
            self._discard(dest, download)
            raise

        self._progress.report(InstallStage.INSTALLED)
        logger.info("PHP %s installed into %s", tag.name, dest)
        return InstalledVersion(version=tag.version, install_path=str(dest), dev_build=dev)

    def _run_step(self, tag: ReleaseTag, step: dict, dest: Path, *, verbose: bool) -> None:
        stage: InstallStage = step["stage"]
        self._progress.report(stage)
        self._progress.log(f"▶ {step['label']}")

        result = self._runner(
            step["command"],
            cwd=str(dest),
            timeout=self._settings.build_timeout,
            on_line=self._progress.log if verbose else None,
        )
        if not result["ok"]:
            raise BuildError(
                tag.name,
                stage.value,
                f"{step['id']}: {result.get('error', 'unknown error')}",
                exit_code=result.get("exit_code"),
                output=result.get("output", ""),
            )

    @staticmethod
    def _reset_destination(dest: Path) -> None:
        """Retries always start from an empty destination."""
        if dest.is_symlink() or dest.is_file():
            dest.unlink()
        elif dest.exists():
            logger.info("Removing leftover directory %s", dest)
            shutil.rmtree(dest)

    @staticmethod
    def _discard(dest: Path, download: Path | None) -> None:
        if download is not None:
            download.unlink(missing_ok=True)
        if dest.exists():
            shutil.rmtree(dest, ignore_errors=True)
        if dest.exists():
            logger.warning("Could not fully remove %s; it has no completion marker", dest)
