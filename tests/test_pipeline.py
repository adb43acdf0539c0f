"""
Tests for the build pipeline — download, extraction, build steps, lock.
"""

import hashlib
from pathlib import Path

import pytest

from maphp.adapters.base import ByteStream, Transport
from maphp.adapters.mock import MockTransport, RecordingProgress
from maphp.core.config.loader import Settings
from maphp.core.errors import (
    AlreadyInstallingError,
    BuildError,
    DownloadError,
    DuplicateVersionError,
    ExtractError,
)
from maphp.core.models.state import InstallStage
from maphp.core.models.tag import ReleaseTag
from maphp.core.services.php_install.catalog.tag_cache import tarball_url
from maphp.core.services.php_install.execution.build_steps import (
    COMPLETION_MARKER,
    autotools_plan,
    is_complete,
    php_binary,
    setup_php_ini,
)
from maphp.core.services.php_install.execution.download import (
    _verify_checksum,
    download_archive,
)
from maphp.core.services.php_install.execution.extract import extract_source
from maphp.core.services.php_install.execution.install_lock import InstallLock, lock_path_for
from maphp.core.services.php_install.execution.pipeline import BuildPipeline
from maphp.core.services.php_install.execution.subprocess_runner import _run_subprocess


def _tag(name: str = "8.3.1", **kwargs) -> ReleaseTag:
    return ReleaseTag.from_upstream(f"php-{name}", tarball_url(name), **kwargs)


class _ShortTransport(Transport):
    """Announces more bytes than it delivers."""

    def fetch_text(self, url: str) -> str:
        raise NotImplementedError

    def fetch_bytes(self, url: str) -> ByteStream:
        return ByteStream(chunks=iter([b"abc"]), total=10)


# ── Download ────────────────────────────────────────────────────


class TestDownload:
    def _download(self, tmp_path, transport, tag=None, **kwargs) -> Path:
        return download_archive(
            tag or _tag(),
            transport=transport,
            staging_dir=tmp_path,
            progress=RecordingProgress(),
            **kwargs,
        )

    def test_downloads_to_hidden_temp_file(self, tmp_path, source_tarball):
        transport = MockTransport(blobs={tarball_url("8.3.1"): source_tarball})
        path = self._download(tmp_path, transport)

        assert path.parent == tmp_path
        assert path.name.startswith(".8.3.1.")
        assert path.read_bytes() == source_tarball

    def test_reports_progress(self, tmp_path, source_tarball):
        transport = MockTransport(blobs={tarball_url("8.3.1"): source_tarball}, chunk_size=64)
        progress = RecordingProgress()
        download_archive(_tag(), transport=transport, staging_dir=tmp_path, progress=progress)

        ticks = [(c, t) for s, c, t in progress.events if s == InstallStage.DOWNLOADING]
        assert ticks[0] == (0, len(source_tarball))
        assert ticks[-1] == (len(source_tarball), len(source_tarball))

    def test_missing_archive(self, tmp_path):
        with pytest.raises(DownloadError, match="404"):
            self._download(tmp_path, MockTransport())
        assert list(tmp_path.iterdir()) == []

    def test_connection_drop(self, tmp_path, source_tarball):
        transport = MockTransport(blobs={tarball_url("8.3.1"): source_tarball}, chunk_size=16)
        transport.fail_after_bytes = 32
        with pytest.raises(DownloadError, match="connection reset"):
            self._download(tmp_path, transport)
        assert list(tmp_path.iterdir()) == []

    def test_truncated_against_announced_length(self, tmp_path):
        with pytest.raises(DownloadError, match="truncated"):
            self._download(tmp_path, _ShortTransport())
        assert list(tmp_path.iterdir()) == []

    def test_too_small(self, tmp_path, source_tarball):
        transport = MockTransport(blobs={tarball_url("8.3.1"): source_tarball})
        with pytest.raises(DownloadError, match="too small"):
            self._download(tmp_path, transport, min_bytes=12 * 1024 * 1024)
        assert list(tmp_path.iterdir()) == []

    def test_size_mismatch(self, tmp_path, source_tarball):
        transport = MockTransport(blobs={tarball_url("8.3.1"): source_tarball})
        with pytest.raises(DownloadError, match="size mismatch"):
            self._download(tmp_path, transport, tag=_tag(size=len(source_tarball) + 1))

    def test_checksum_ok(self, tmp_path, source_tarball):
        digest = hashlib.sha256(source_tarball).hexdigest()
        transport = MockTransport(blobs={tarball_url("8.3.1"): source_tarball})
        path = self._download(tmp_path, transport, tag=_tag(checksum=f"sha256:{digest}"))
        assert path.is_file()

    def test_checksum_mismatch(self, tmp_path, source_tarball):
        transport = MockTransport(blobs={tarball_url("8.3.1"): source_tarball})
        with pytest.raises(DownloadError, match="checksum mismatch"):
            self._download(tmp_path, transport, tag=_tag(checksum="sha256:" + "0" * 64))
        assert list(tmp_path.iterdir()) == []

    def test_checksum_skipped_when_disabled(self, tmp_path, source_tarball):
        transport = MockTransport(blobs={tarball_url("8.3.1"): source_tarball})
        path = self._download(
            tmp_path, transport, tag=_tag(checksum="sha256:" + "0" * 64), verify_checksum=False,
        )
        assert path.is_file()

    def test_verify_checksum_format(self, tmp_path):
        f = tmp_path / "f"
        f.write_bytes(b"hello")
        assert _verify_checksum(f, "md5:5d41402abc4b2a76b9719d911017c592")
        assert _verify_checksum(f, "SHA1:AAF4C61DDCC5E8A2DABEDE0F3B482CD9AEA9434D")
        with pytest.raises(ValueError):
            _verify_checksum(f, "5d41402abc4b2a76b9719d911017c592")


# ── Extraction ──────────────────────────────────────────────────


class TestExtract:
    def _write(self, tmp_path, data: bytes) -> Path:
        archive = tmp_path / "src.tar.gz"
        archive.write_bytes(data)
        return archive

    def test_strips_github_prefix(self, tmp_path, source_tarball):
        dest = tmp_path / "8.3.1"
        count = extract_source(
            self._write(tmp_path, source_tarball), dest, version="8.3.1", progress=RecordingProgress(),
        )

        assert count == 5
        assert (dest / "configure").is_file()
        assert (dest / "main" / "php.h").is_file()
        assert not any(p.name.startswith("php-php-src") for p in dest.iterdir())

    def test_without_prefix(self, tmp_path, tarball_factory):
        data = tarball_factory({"configure": "x"}, prefix="")
        dest = tmp_path / "out"
        extract_source(self._write(tmp_path, data), dest, version="8.3.1", progress=RecordingProgress())
        assert (dest / "configure").is_file()

    def test_rejects_path_escape(self, tmp_path, tarball_factory):
        data = tarball_factory({"../../evil.sh": "rm -rf /"})
        dest = tmp_path / "a" / "b"
        with pytest.raises(ExtractError):
            extract_source(self._write(tmp_path, data), dest, version="8.3.1", progress=RecordingProgress())
        assert not (tmp_path / "evil.sh").exists()

    def test_not_a_tarball(self, tmp_path):
        with pytest.raises(ExtractError):
            extract_source(
                self._write(tmp_path, b"<html>404</html>"),
                tmp_path / "out",
                version="8.3.1",
                progress=RecordingProgress(),
            )

    def test_empty_archive(self, tmp_path, tarball_factory):
        with pytest.raises(ExtractError, match="no files"):
            extract_source(
                self._write(tmp_path, tarball_factory({})),
                tmp_path / "out",
                version="8.3.1",
                progress=RecordingProgress(),
            )


# ── Build steps ─────────────────────────────────────────────────


class TestBuildSteps:
    def test_plan(self, tmp_path):
        plan = autotools_plan(tmp_path, jobs=4)
        assert [s["id"] for s in plan] == ["buildconf", "configure", "make_install"]
        assert plan[0]["command"] == ["sh", "buildconf", "--force"]
        assert plan[1]["command"][:2] == ["./configure", f"--prefix={tmp_path / 'dist'}"]
        assert "--with-openssl" in plan[1]["command"]
        assert "--enable-debug" not in plan[1]["command"]
        assert plan[2]["command"] == ["make", "install", "-j4"]
        assert [s["stage"] for s in plan] == [
            InstallStage.CONFIGURING, InstallStage.CONFIGURING, InstallStage.COMPILING,
        ]

    def test_dev_plan_with_extra_args(self, tmp_path):
        configure = autotools_plan(tmp_path, dev=True, extra_args=["--with-pdo-pgsql"])[1]["command"]
        assert configure[-2:] == ["--enable-debug", "--with-pdo-pgsql"]

    def test_php_ini_production(self, tmp_path):
        (tmp_path / "php.ini-production").write_text("prod")
        (tmp_path / "php.ini-development").write_text("dev")

        target = setup_php_ini(tmp_path)
        assert target == tmp_path / "dist" / "lib" / "php.ini"
        assert target.read_text() == "prod"

    def test_php_ini_development(self, tmp_path):
        (tmp_path / "php.ini-development").write_text("dev")
        assert setup_php_ini(tmp_path, dev=True).read_text() == "dev"

    def test_php_ini_keeps_existing(self, tmp_path):
        (tmp_path / "php.ini-production").write_text("prod")
        existing = tmp_path / "dist" / "lib" / "php.ini"
        existing.parent.mkdir(parents=True)
        existing.write_text("custom")

        setup_php_ini(tmp_path)
        assert existing.read_text() == "custom"

    def test_php_ini_missing_template(self, tmp_path):
        assert setup_php_ini(tmp_path) is None


class TestSubprocessRunner:
    def test_success_streams_lines(self, tmp_path):
        lines = []
        result = _run_subprocess(["sh", "-c", "echo one; echo two"], cwd=str(tmp_path), on_line=lines.append)
        assert result["ok"] is True
        assert result["exit_code"] == 0
        assert lines == ["one", "two"]

    def test_failure_keeps_merged_output(self):
        result = _run_subprocess(["sh", "-c", "echo out; echo err >&2; exit 3"])
        assert result["ok"] is False
        assert result["exit_code"] == 3
        assert "out" in result["output"]
        assert "err" in result["output"]

    def test_missing_command(self):
        result = _run_subprocess(["maphp-no-such-command-xyz"])
        assert result["ok"] is False
        assert result["exit_code"] is None

    def test_timeout(self):
        result = _run_subprocess(["sh", "-c", "exec sleep 3"], timeout=1)
        assert result["ok"] is False
        assert "timed out" in result["error"]

    def test_env_overrides(self):
        result = _run_subprocess(["sh", "-c", "echo $MAPHP_TEST_VAR"], env_overrides={"MAPHP_TEST_VAR": "hi"})
        assert result["output"] == "hi"


class TestInstallLock:
    def test_exclusive(self, tmp_path):
        with InstallLock(tmp_path, "8.3.1") as lock:
            assert lock.held
            with pytest.raises(AlreadyInstallingError):
                InstallLock(tmp_path, "8.3.1").acquire()
        assert not lock.held

    def test_other_versions_independent(self, tmp_path):
        with InstallLock(tmp_path, "8.3.1"):
            with InstallLock(tmp_path, "8.2.15") as other:
                assert other.held

    def test_reacquire_after_release(self, tmp_path):
        lock = InstallLock(tmp_path, "8.2.0")
        lock.acquire()
        lock.release()
        lock.acquire()
        assert lock.held
        lock.release()

    def test_lock_file_location(self, tmp_path):
        assert lock_path_for(tmp_path, "8.3.1") == tmp_path / ".8.3.1.lock"


# ── Pipeline ────────────────────────────────────────────────────


@pytest.fixture
def pipeline_for(work_dir, settings, progress, runner):
    def _make(transport, runner_override=None, settings_override=None) -> BuildPipeline:
        return BuildPipeline(
            work_dir,
            transport,
            settings=settings_override or settings,
            progress=progress,
            runner=runner_override or runner,
        )

    return _make


class TestBuildPipeline:
    def test_successful_install(self, pipeline_for, php_transport, work_dir, progress, runner):
        pipeline = pipeline_for(php_transport("8.3.1"))
        installed = pipeline.install(_tag())

        dest = work_dir.archive_for("8.3.1")
        assert installed.install_path == str(dest)
        assert installed.complete
        assert not installed.dev_build
        assert is_complete(dest)
        assert php_binary(dest).is_file()
        assert (dest / "dist" / "lib" / "php.ini").read_text().startswith("; production")
        assert not (dest / ".source.tar.gz").exists()

        assert progress.stages == [
            InstallStage.RESOLVED,
            InstallStage.DOWNLOADING,
            InstallStage.EXTRACTING,
            InstallStage.CONFIGURING,
            InstallStage.COMPILING,
            InstallStage.INSTALLED,
        ]
        assert [cmd[0] for cmd in runner.commands] == ["sh", "./configure", "make"]
        assert all(cwd == str(dest) for _, cwd in runner.calls)

    def test_dev_build(self, pipeline_for, php_transport, work_dir, runner):
        installed = pipeline_for(php_transport("8.3.1")).install(_tag(), dev=True)

        assert installed.dev_build
        assert "--enable-debug" in runner.commands[1]
        ini = work_dir.archive_for("8.3.1") / "dist" / "lib" / "php.ini"
        assert ini.read_text().startswith("; development")

    def test_verbose_forwards_output(self, pipeline_for, php_transport, progress):
        pipeline_for(php_transport("8.3.1")).install(_tag(), verbose=True)
        assert progress.lines.count("checking for cc... yes") == 3

    def test_quiet_keeps_step_labels_only(self, pipeline_for, php_transport, progress):
        pipeline_for(php_transport("8.3.1")).install(_tag())
        assert "checking for cc... yes" not in progress.lines
        assert any(line.startswith("▶ ") for line in progress.lines)

    def test_custom_destination(self, pipeline_for, php_transport, work_dir):
        dest = work_dir.archives / "custom"
        installed = pipeline_for(php_transport("8.3.1")).install(_tag(), dest)
        assert installed.install_path == str(dest)
        assert (dest / COMPLETION_MARKER).is_file()

    def test_leftover_directory_replaced(self, pipeline_for, php_transport, work_dir):
        dest = work_dir.archive_for("8.3.1")
        dest.mkdir(parents=True)
        (dest / "stale.o").write_text("junk")

        pipeline_for(php_transport("8.3.1")).install(_tag())
        assert not (dest / "stale.o").exists()
        assert is_complete(dest)

    def test_compile_failure_cleans_up(self, pipeline_for, php_transport, work_dir, progress, runner_factory):
        failing = runner_factory(fail_on="make")
        pipeline = pipeline_for(php_transport("8.3.1"), runner_override=failing)

        with pytest.raises(BuildError) as exc_info:
            pipeline.install(_tag())

        err = exc_info.value
        assert err.stage == "compiling"
        assert err.exit_code == 2
        assert "compilation terminated" in err.output
        assert not work_dir.archive_for("8.3.1").exists()
        assert progress.stages[-1] == InstallStage.FAILED
        assert [p.name for p in work_dir.archives.iterdir()] == [".8.3.1.lock"]

    def test_configure_failure(self, pipeline_for, php_transport, runner_factory):
        failing = runner_factory(fail_on="./configure")
        with pytest.raises(BuildError) as exc_info:
            pipeline_for(php_transport("8.3.1"), runner_override=failing).install(_tag())
        assert exc_info.value.stage == "configuring"

    def test_missing_binary_is_build_error(self, pipeline_for, php_transport, work_dir):
        def _no_output(cmd, **kwargs):
            return {"ok": True, "exit_code": 0, "output": ""}

        with pytest.raises(BuildError, match="bin/php"):
            pipeline_for(php_transport("8.3.1"), runner_override=_no_output).install(_tag())
        assert not work_dir.archive_for("8.3.1").exists()

    def test_download_failure_leaves_nothing(self, pipeline_for, work_dir):
        with pytest.raises(DownloadError):
            pipeline_for(MockTransport()).install(_tag())
        assert [p.name for p in work_dir.archives.iterdir()] == [".8.3.1.lock"]

    def test_small_archive_rejected_by_default(self, pipeline_for, php_transport, work_dir):
        pipeline = pipeline_for(php_transport("8.3.1"), settings_override=Settings())
        with pytest.raises(DownloadError, match="too small"):
            pipeline.install(_tag())
        assert not work_dir.archive_for("8.3.1").exists()

    def test_corrupt_archive(self, pipeline_for, work_dir):
        transport = MockTransport(blobs={tarball_url("8.3.1"): b"not a tarball"})
        with pytest.raises(ExtractError):
            pipeline_for(transport).install(_tag())
        assert not work_dir.archive_for("8.3.1").exists()

    def test_interrupt_cleans_up(self, pipeline_for, php_transport, work_dir):
        def _interrupted(cmd, **kwargs):
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            pipeline_for(php_transport("8.3.1"), runner_override=_interrupted).install(_tag())
        assert not work_dir.archive_for("8.3.1").exists()

    def test_concurrent_install_rejected(self, pipeline_for, php_transport, work_dir):
        dest = work_dir.archive_for("8.3.1")
        dest.mkdir(parents=True)
        (dest / "in-progress").write_text("other build")

        with InstallLock(work_dir.archives, "8.3.1"):
            with pytest.raises(AlreadyInstallingError):
                pipeline_for(php_transport("8.3.1")).install(_tag())

        assert (dest / "in-progress").is_file()

    def test_lock_released_after_failure(self, pipeline_for, php_transport, runner_factory):
        transport = php_transport("8.3.1")
        with pytest.raises(BuildError):
            pipeline_for(transport, runner_override=runner_factory(fail_on="make")).install(_tag())

        installed = pipeline_for(transport).install(_tag())
        assert installed.complete

    def test_finished_build_is_not_wiped(self, pipeline_for, php_transport, work_dir, runner):
        transport = php_transport("8.3.1")
        pipeline_for(transport).install(_tag())
        calls = len(runner.calls)

        with pytest.raises(DuplicateVersionError):
            pipeline_for(transport).install(_tag())

        assert is_complete(work_dir.archive_for("8.3.1"))
        assert len(runner.calls) == calls

    def test_build_under_callers_lock(self, pipeline_for, php_transport, work_dir):
        pipeline = pipeline_for(php_transport("8.3.1"))
        with pipeline.lock(_tag()) as lock:
            assert lock.path == lock_path_for(work_dir.archives, "8.3.1")
            installed = pipeline.build(_tag())
            with pytest.raises(AlreadyInstallingError):
                pipeline.install(_tag())
        assert installed.complete
