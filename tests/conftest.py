"""
Shared test fixtures and configuration.
"""

import io
import json
import tarfile
from collections.abc import Callable
from pathlib import Path

import pytest

from maphp.adapters.mock import MockTransport, RecordingProgress, ScriptedChooser
from maphp.core.config.loader import Settings
from maphp.core.models.state import InstalledVersion
from maphp.core.models.workdir import WorkDir
from maphp.core.services.php_install.catalog.tag_cache import tags_page_url, tarball_url
from maphp.core.services.php_install.execution.build_steps import (
    php_binary,
    write_completion_marker,
)
from maphp.core.services.php_install.orchestration.orchestrator import VersionManager

SOURCE_FILES = {
    "buildconf": "#!/bin/sh\necho buildconf\n",
    "configure": "#!/bin/sh\necho configure\n",
    "php.ini-production": "; production\ndisplay_errors = Off\n",
    "php.ini-development": "; development\ndisplay_errors = On\n",
    "main/php.h": "/* php */\n",
}


def make_tarball(
    files: dict[str, str | bytes],
    prefix: str = "php-php-src-abc1234",
) -> bytes:
    """Gzip tarball shaped like a GitHub source download."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        if prefix:
            top = tarfile.TarInfo(prefix)
            top.type = tarfile.DIRTYPE
            top.mode = 0o755
            tar.addfile(top)
        for name, content in files.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(f"{prefix}/{name}" if prefix else name)
            info.size = len(data)
            info.mode = 0o755 if name in ("buildconf", "configure") else 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def tags_page(*names: str) -> str:
    """A GitHub tags API page body."""
    return json.dumps([{"name": name, "commit": {"sha": "0" * 40}} for name in names])


class FakeRunner:
    """Stands in for ``_run_subprocess``.

    ``make install`` lays out ``dist/bin/php`` like a real build would.
    ``fail_on`` names the first word of a command that should fail.
    """

    def __init__(self, fail_on: str | None = None, output: str = "checking for cc... yes"):
        self.fail_on = fail_on
        self.output = output
        self.calls: list[tuple[list[str], str | None]] = []

    def __call__(self, cmd, *, cwd=None, timeout=None, on_line=None, **kwargs):
        self.calls.append((list(cmd), cwd))
        if on_line:
            on_line(self.output)

        if self.fail_on and cmd[0] == self.fail_on:
            # leave partial output behind, as an aborted make would
            if cwd:
                (Path(cwd) / "dist").mkdir(exist_ok=True)
            return {
                "ok": False,
                "exit_code": 2,
                "error": "Command failed (exit 2)",
                "output": "error: compilation terminated",
            }

        if cmd[:2] == ["make", "install"] and cwd:
            binary = php_binary(Path(cwd))
            binary.parent.mkdir(parents=True, exist_ok=True)
            binary.write_text("#!/bin/sh\necho PHP\n")
            binary.chmod(0o755)

        return {"ok": True, "exit_code": 0, "output": self.output, "elapsed_ms": 1}

    @property
    def commands(self) -> list[list[str]]:
        return [cmd for cmd, _ in self.calls]


@pytest.fixture
def work_dir(tmp_path: Path) -> WorkDir:
    """An empty maphp work directory."""
    return WorkDir(root=tmp_path / ".maphp").ensure()


@pytest.fixture
def settings() -> Settings:
    """Settings that accept the tiny test archives."""
    return Settings(min_archive_bytes=0, jobs=2)


@pytest.fixture
def source_tarball() -> bytes:
    return make_tarball(SOURCE_FILES)


@pytest.fixture
def php_transport(source_tarball: bytes) -> Callable[..., MockTransport]:
    """Factory: a transport serving one page of tags plus their tarballs."""

    def _make(*versions: str) -> MockTransport:
        return MockTransport(
            texts={tags_page_url(1): tags_page(*(f"php-{v}" for v in versions))},
            blobs={tarball_url(v): source_tarball for v in versions},
        )

    return _make


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def progress() -> RecordingProgress:
    return RecordingProgress()


@pytest.fixture
def make_manager(work_dir, settings, runner, progress):
    """Factory: a VersionManager wired to test doubles."""

    def _make(transport, chooser=None, runner_override=None) -> VersionManager:
        return VersionManager(
            work_dir,
            transport=transport,
            chooser=chooser or ScriptedChooser(),
            progress=progress,
            settings=settings,
            runner=runner_override or runner,
        )

    return _make


@pytest.fixture
def fake_build(work_dir: WorkDir) -> Callable[..., InstalledVersion]:
    """Factory: lay out a finished build on disk and return its entry."""

    def _make(version: str, *, marker: bool = True, dev: bool = False) -> InstalledVersion:
        dest = work_dir.archive_for(version)
        binary = php_binary(dest)
        binary.parent.mkdir(parents=True, exist_ok=True)
        binary.write_text("#!/bin/sh\n")
        if marker:
            write_completion_marker(dest, version)
        return InstalledVersion(version=version, install_path=str(dest), dev_build=dev)

    return _make


@pytest.fixture
def tarball_factory() -> Callable[..., bytes]:
    return make_tarball


@pytest.fixture
def page_factory() -> Callable[..., str]:
    return tags_page


@pytest.fixture
def runner_factory() -> Callable[..., FakeRunner]:
    return FakeRunner
