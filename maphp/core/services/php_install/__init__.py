"""
PHP install service — package re-exports.

    from maphp.core.services.php_install import VersionManager

Each symbol lives in its single-responsibility module inside the
appropriate layer (domain → catalog → execution → registry →
orchestration).
"""

# ── L1: Domain ──
from maphp.core.services.php_install.domain.version_match import (  # noqa: F401
    filter_channels,
    parse_query,
    resolve,
    resolve_version,
)

# ── L3: Catalog ──
from maphp.core.services.php_install.catalog.tag_cache import TagCache  # noqa: F401

# ── L4: Execution ──
from maphp.core.services.php_install.execution.install_lock import InstallLock  # noqa: F401
from maphp.core.services.php_install.execution.pipeline import BuildPipeline  # noqa: F401

# ── L4: Registry ──
from maphp.core.services.php_install.registry.activator import Activator  # noqa: F401
from maphp.core.services.php_install.registry.installed import InstalledRegistry  # noqa: F401

# ── L5: Orchestration ──
from maphp.core.services.php_install.orchestration.orchestrator import (  # noqa: F401
    InstallOutcome,
    VersionManager,
)
