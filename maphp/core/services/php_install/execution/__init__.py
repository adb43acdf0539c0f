"""L4 Execution — download, extract and build."""

from maphp.core.services.php_install.execution.install_lock import InstallLock  # noqa: F401
from maphp.core.services.php_install.execution.pipeline import BuildPipeline  # noqa: F401
