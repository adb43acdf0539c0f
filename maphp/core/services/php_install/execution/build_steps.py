"""
L4 Execution — Build-from-source helpers.

Plans the autotools steps for a php-src tree and handles the files a
finished build needs (php.ini, completion marker).
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from maphp.core.models.state import InstallStage

logger = logging.getLogger(__name__)

DIST_DIR = "dist"
COMPLETION_MARKER = ".maphp-complete"
ARCHIVE_NAME = ".source.tar.gz"

# Extensions every build gets; mirrors what most distributions ship.
BASE_CONFIGURE_FLAGS = [
    "--with-curl",
    "--with-openssl",
    "--with-pear",
    "--with-zip",
    "--enable-mbstring",
]


def dist_dir(source_dir: Path) -> Path:
    """Install prefix of a build: ``archives/<version>/dist``."""
    return source_dir / DIST_DIR


def bin_dir(source_dir: Path) -> Path:
    return dist_dir(source_dir) / "bin"


def php_binary(source_dir: Path) -> Path:
    return bin_dir(source_dir) / "php"


def marker_path(source_dir: Path) -> Path:
    return source_dir / COMPLETION_MARKER


def is_complete(source_dir: Path) -> bool:
    """Whether a build finished: the marker is only ever written last."""
    return marker_path(source_dir).is_file()


def autotools_plan(
    source_dir: Path,
    *,
    dev: bool = False,
    jobs: int = 1,
    extra_args: list[str] | None = None,
) -> list[dict]:
    """Plan the build of an extracted php-src tree.

    Produces three steps:
        1. ``sh buildconf --force``   (configuring)
        2. ``./configure ...``        (configuring)
        3. ``make install -jN``       (compiling)

    Args:
        source_dir: Root of the extracted source.
        dev: Add ``--enable-debug``.
        jobs: Parallel make jobs.
        extra_args: Additional ``./configure`` arguments.

    Returns:
        Ordered step dicts with ``id``, ``label``, ``stage``, ``command``.
    """
    configure_cmd = ["./configure", f"--prefix={dist_dir(source_dir)}", *BASE_CONFIGURE_FLAGS]
    if dev:
        configure_cmd.append("--enable-debug")
    configure_cmd.extend(extra_args or [])

    return [
        {
            "id": "buildconf",
            "label": "sh buildconf --force",
            "stage": InstallStage.CONFIGURING,
            "command": ["sh", "buildconf", "--force"],
        },
        {
            "id": "configure",
            "label": " ".join(configure_cmd),
            "stage": InstallStage.CONFIGURING,
            "command": configure_cmd,
        },
        {
            "id": "make_install",
            "label": f"make install with {jobs} job(s)",
            "stage": InstallStage.COMPILING,
            "command": ["make", "install", f"-j{jobs}"],
        },
    ]


def setup_php_ini(source_dir: Path, *, dev: bool = False) -> Path | None:
    """Copy the bundled php.ini template into the build's lib directory.

    Uses ``php.ini-development`` for dev builds, ``php.ini-production``
    otherwise.  An existing php.ini is left untouched.

    Returns:
        The php.ini path, or None when no template was found.
    """
    target = dist_dir(source_dir) / "lib" / "php.ini"
    if target.is_file():
        logger.debug("php.ini already exists at %s", target)
        return target

    template = source_dir / ("php.ini-development" if dev else "php.ini-production")
    if not template.is_file():
        logger.warning("%s not found, skipping php.ini setup", template.name)
        return None

    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(template, target)
    logger.info("Installed %s as %s", template.name, target)
    return target


def write_completion_marker(source_dir: Path, version: str) -> Path:
    marker = marker_path(source_dir)
    marker.write_text(f"{version}\n", encoding="utf-8")
    return marker
