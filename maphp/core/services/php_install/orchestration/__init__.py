"""L5 Orchestration — install / use / remove."""

from maphp.core.services.php_install.orchestration.orchestrator import (  # noqa: F401
    InstallOutcome,
    VersionManager,
)
