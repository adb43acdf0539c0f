"""
RegistryState — installed versions plus the activation pointer.

This is the single document that records which PHP versions are
installed and which one is active.  It's serialized to
``<workdir>/state.json`` and re-read on every operation.

Unlike the tag catalog it is NOT disposable: a state file that fails
to parse is a corruption error, never silently reset.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from maphp.core.models.version import Version


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class BuildStatus(StrEnum):
    """Outcome of a build attempt."""

    COMPLETE = "complete"
    FAILED = "failed"


class InstallStage(StrEnum):
    """Stages of a single install attempt, in order."""

    RESOLVED = "resolved"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    CONFIGURING = "configuring"
    COMPILING = "compiling"
    INSTALLED = "installed"
    FAILED = "failed"


class InstalledVersion(BaseModel):
    """A version built into ``archives/<version>/``.

    Created only after a fully successful build; never mutated
    afterwards, only deleted.
    """

    model_config = ConfigDict(frozen=True)

    version: Version
    install_path: str
    installed_at: str = Field(default_factory=_now_iso)
    build_status: BuildStatus = BuildStatus.COMPLETE
    dev_build: bool = False

    @property
    def complete(self) -> bool:
        return self.build_status == BuildStatus.COMPLETE

    def same_build(self, other: InstalledVersion) -> bool:
        """Whether two entries describe the same build (timestamps aside)."""
        return (
            self.version == other.version
            and self.install_path == other.install_path
            and self.build_status == other.build_status
            and self.dev_build == other.dev_build
        )


class ActivationState(BaseModel):
    """Which installed version ``bin/`` exposes, if any."""

    current_version: Version | None = None
    changed_at: str | None = None


class RegistryState(BaseModel):
    """Root state model — serialized to ``state.json``."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Registry ─────────────────────────────────────────────────
    installed: dict[str, InstalledVersion] = Field(default_factory=dict)
    activation: ActivationState = Field(default_factory=ActivationState)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def entry(self, version: Version) -> InstalledVersion | None:
        return self.installed.get(str(version))
