"""
L4 Execution — Source tarball extraction.

GitHub tarballs wrap the tree in a ``php-php-src-<sha>/`` directory;
that component is dropped so the source lands directly in
``archives/<version>/``.  Members are extracted through tarfile's
``data`` filter, which rejects absolute paths, ``..`` escapes and
links pointing outside the destination.
"""

from __future__ import annotations

import logging
import tarfile
from pathlib import Path, PurePosixPath

from maphp.adapters.base import ProgressReporter
from maphp.core.errors import ExtractError
from maphp.core.models.state import InstallStage

logger = logging.getLogger(__name__)

SOURCE_PREFIX = "php-php-src"


def _relocate(name: str) -> str:
    """Strip the leading ``php-php-src-*`` component, if any."""
    parts = PurePosixPath(name).parts
    if parts and parts[0].startswith(SOURCE_PREFIX):
        parts = parts[1:]
    return "/".join(parts)


def extract_source(
    archive: Path,
    dest: Path,
    *,
    version: str,
    progress: ProgressReporter,
) -> int:
    """Unpack a gzip source tarball into ``dest``.

    Returns:
        Number of entries extracted.

    Raises:
        ExtractError: Unreadable archive, unsafe member, or disk error.
    """
    dest.mkdir(parents=True, exist_ok=True)
    count = 0
    progress.report(InstallStage.EXTRACTING, 0, None)

    try:
        with tarfile.open(archive, "r:gz") as tar:
            for member in tar:
                name = _relocate(member.name)
                if not name:
                    continue
                member.name = name
                if member.islnk():
                    member.linkname = _relocate(member.linkname)

                tar.extract(member, dest, filter="data")
                count += 1
                progress.report(InstallStage.EXTRACTING, count, None)
                logger.debug("Extracted %s", name)
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ExtractError(version, str(e)) from e

    if count == 0:
        raise ExtractError(version, "archive contains no files")

    logger.info("Extracted %d entries into %s", count, dest)
    return count
