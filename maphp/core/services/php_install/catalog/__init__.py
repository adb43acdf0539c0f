"""L3 Catalog — upstream release tags."""

from maphp.core.services.php_install.catalog.tag_cache import TagCache  # noqa: F401
