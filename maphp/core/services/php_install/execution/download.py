"""
L4 Execution — Source archive download and integrity verification.

The archive is streamed to a hidden temp file next to the version
directories and handed back only after it passes the integrity
checks, so a half-downloaded file can never pass for a complete one.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path

from maphp.adapters.base import ProgressReporter, Transport
from maphp.core.errors import DownloadError, FetchError
from maphp.core.models.state import InstallStage
from maphp.core.models.tag import ReleaseTag

logger = logging.getLogger(__name__)


def _verify_checksum(path: Path, expected: str) -> bool:
    """Verify file checksum.  Format: ``algo:hex``.

    Supports any algorithm known to hashlib (sha256, sha1, md5, ...).

    Raises:
        ValueError: If the format or algorithm is not recognized.
    """
    algo, sep, expected_hash = expected.partition(":")
    if not sep or not expected_hash:
        raise ValueError(f"checksum must look like 'algo:hex', got {expected!r}")
    h = hashlib.new(algo.lower())
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest() == expected_hash.lower()


def download_archive(
    tag: ReleaseTag,
    *,
    transport: Transport,
    staging_dir: Path,
    progress: ProgressReporter,
    min_bytes: int = 0,
    verify_checksum: bool = True,
) -> Path:
    """Stream the source tarball of ``tag`` to a temp file.

    Args:
        tag: The release to fetch.
        transport: Network collaborator.
        staging_dir: Where the temp file is created.  Must be on the
            same filesystem as the final destination.
        progress: Receives a DOWNLOADING tick per chunk.
        min_bytes: Smallest acceptable archive size.
        verify_checksum: Check ``tag.checksum`` when the catalog has one.

    Returns:
        Path of the verified temp file.  The caller moves or deletes it.

    Raises:
        DownloadError: Transport failure or failed integrity check.
    """
    staging_dir.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=staging_dir, prefix=f".{tag.name}.", suffix=".download")
    tmp = Path(tmp_name)

    try:
        with os.fdopen(fd, "wb") as f:
            received = _stream_to(f, tag, transport, progress)
            f.flush()
            os.fsync(f.fileno())
        _check_integrity(tmp, tag, received, min_bytes=min_bytes, verify_checksum=verify_checksum)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

    logger.info("Downloaded PHP %s (%d bytes)", tag.name, received)
    return tmp


def _stream_to(f, tag: ReleaseTag, transport: Transport, progress: ProgressReporter) -> int:
    try:
        stream = transport.fetch_bytes(tag.source_url)
    except FetchError as e:
        raise DownloadError(tag.name, e.reason) from e

    expected = stream.total
    received = 0
    progress.report(InstallStage.DOWNLOADING, 0, expected)
    try:
        for chunk in stream.chunks:
            f.write(chunk)
            received += len(chunk)
            progress.report(InstallStage.DOWNLOADING, received, expected)
    except FetchError as e:
        raise DownloadError(tag.name, e.reason) from e
    finally:
        stream.close()

    if expected is not None and received != expected:
        raise DownloadError(tag.name, f"truncated: got {received} of {expected} bytes")
    return received


def _check_integrity(
    path: Path,
    tag: ReleaseTag,
    received: int,
    *,
    min_bytes: int,
    verify_checksum: bool,
) -> None:
    if tag.size is not None and received != tag.size:
        raise DownloadError(tag.name, f"size mismatch: expected {tag.size} bytes, got {received}")

    if received < min_bytes:
        raise DownloadError(
            tag.name,
            f"archive too small ({received} bytes, expected at least {min_bytes})",
        )

    if verify_checksum and tag.checksum:
        try:
            matches = _verify_checksum(path, tag.checksum)
        except ValueError as e:
            raise DownloadError(tag.name, f"cannot verify checksum: {e}") from e
        if not matches:
            raise DownloadError(tag.name, f"checksum mismatch (expected {tag.checksum})")
        logger.debug("Checksum verified for %s", tag.name)
