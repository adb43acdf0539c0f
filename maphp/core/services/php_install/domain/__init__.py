"""L1 Domain — pure version logic."""

from maphp.core.services.php_install.domain.version_match import (  # noqa: F401
    VersionQuery,
    filter_channels,
    parse_query,
    resolve,
    resolve_version,
)
