"""
Domain models — Pydantic types for maphp.

All models are re-exported here for convenient access:

    from maphp.core.models import Version, ReleaseTag, RegistryState
"""

from maphp.core.models.state import (
    ActivationState,
    BuildStatus,
    InstalledVersion,
    InstallStage,
    RegistryState,
)
from maphp.core.models.tag import ReleaseTag, TagCatalog, strip_tag_prefix
from maphp.core.models.version import Version
from maphp.core.models.workdir import WorkDir

__all__ = [
    # state.py
    "ActivationState",
    "BuildStatus",
    "InstallStage",
    "InstalledVersion",
    "RegistryState",
    # tag.py
    "ReleaseTag",
    "TagCatalog",
    "strip_tag_prefix",
    # version.py
    "Version",
    # workdir.py
    "WorkDir",
]
