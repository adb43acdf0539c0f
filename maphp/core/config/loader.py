"""
Configuration loader — work directory resolution and policy settings.

The work directory comes from (highest first):

    1. the ``--work-dir`` CLI flag
    2. the ``MAPHP_WORK_DIR`` environment variable
    3. ``~/.maphp``

A path that does not already end in ``.maphp`` gets it appended, so
``--work-dir ~`` and ``--work-dir ~/.maphp`` name the same place.

Policy knobs (staleness threshold, integrity checks, build options)
live in an optional ``<workdir>/config.yml``, validated with Pydantic.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from maphp.core.errors import MaphpError
from maphp.core.models.workdir import WorkDir

logger = logging.getLogger(__name__)

WORK_DIR_ENV = "MAPHP_WORK_DIR"
WORK_DIR_NAME = ".maphp"

# GitHub tarballs of php-src are well above this; anything smaller is
# an error page or a truncated download.
DEFAULT_MIN_ARCHIVE_BYTES = 12 * 1024 * 1024


class ConfigError(MaphpError):
    """Raised when configuration is invalid."""


class Settings(BaseModel):
    """Policy read from ``config.yml``.  Every key is optional."""

    model_config = ConfigDict(extra="forbid")

    staleness_hours: float = Field(default=24.0, ge=0)
    min_archive_bytes: int = Field(default=DEFAULT_MIN_ARCHIVE_BYTES, ge=0)
    verify_checksums: bool = True
    jobs: int | None = Field(default=None, ge=1)
    configure_args: list[str] = Field(default_factory=list)
    build_timeout: int = Field(default=3600, ge=1)
    fetch_timeout: int = Field(default=30, ge=1)

    @property
    def effective_jobs(self) -> int:
        return self.jobs or os.cpu_count() or 1


def resolve_work_dir(explicit: str | Path | None = None) -> WorkDir:
    """Resolve the work directory from flag, environment, or home.

    Does not create anything; call ``WorkDir.ensure()`` for that.
    """
    raw = str(explicit) if explicit else os.environ.get(WORK_DIR_ENV, "")
    base = Path(raw).expanduser() if raw else Path.home()

    if base.name != WORK_DIR_NAME:
        base = base / WORK_DIR_NAME

    return WorkDir(root=base.resolve())


def load_settings(work_dir: WorkDir) -> Settings:
    """Load ``config.yml`` from the work directory.

    Returns:
        Settings with defaults for anything not given.

    Raises:
        ConfigError: If the file exists but is invalid.
    """
    path = work_dir.config_file
    if not path.is_file():
        return Settings()

    logger.debug("Loading settings from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return Settings()

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Loaded settings from %s", path)
    return settings
