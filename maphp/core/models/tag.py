"""
ReleaseTag and TagCatalog — the cached catalog of upstream releases.

The catalog is serialized to ``<workdir>/tags.json``.  Tags are
immutable once fetched; a tag's identity is its normalized version.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from maphp.core.models.version import Version

# Upstream tags are named "php-8.3.0"; the prefix is dropped on import.
TAG_PREFIX = "php-"


def strip_tag_prefix(name: str) -> str:
    """Drop a leading ``php-`` (any case) and surrounding whitespace."""
    name = name.strip()
    if name[: len(TAG_PREFIX)].lower() == TAG_PREFIX:
        return name[len(TAG_PREFIX):].strip()
    return name


class ReleaseTag(BaseModel):
    """A published PHP source release."""

    model_config = ConfigDict(frozen=True)

    name: str                       # "8.3.0", prefix already stripped
    version: Version
    source_url: str
    checksum: str | None = None     # "algo:hex" when the catalog provides one
    size: int | None = None         # expected archive size in bytes

    @classmethod
    def from_upstream(cls, raw_name: str, source_url: str, **kwargs) -> ReleaseTag:
        """Build a tag from an upstream name like ``php-8.3.0RC1``.

        Raises:
            ValueError: If the name is not a PHP version.
        """
        name = strip_tag_prefix(raw_name)
        return cls(name=name, version=Version.parse(name), source_url=source_url, **kwargs)

    @property
    def channel(self) -> str:
        return self.version.channel

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ReleaseTag):
            return NotImplemented
        return self.version == other.version

    def __hash__(self) -> int:
        return hash(self.version)

    def __str__(self) -> str:
        return self.name


class TagCatalog(BaseModel):
    """Root document of ``tags.json``."""

    schema_version: int = 1
    fetched_at: str | None = None
    tags: list[ReleaseTag] = Field(default_factory=list)

    def tag_set(self) -> set[ReleaseTag]:
        return set(self.tags)

    def fetched_at_datetime(self) -> datetime | None:
        if not self.fetched_at:
            return None
        try:
            return datetime.fromisoformat(self.fetched_at)
        except ValueError:
            return None
