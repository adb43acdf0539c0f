"""L4 Registry — installed versions and activation."""

from maphp.core.services.php_install.registry.activator import Activator  # noqa: F401
from maphp.core.services.php_install.registry.installed import InstalledRegistry  # noqa: F401
