"""
L1 Domain — Version query resolution (pure).

Maps a user query such as ``8.3``, ``php-8.2.15`` or ``8.4.0RC1`` to
one release tag of a catalog snapshot.  No I/O.

Rules:
    - a leading ``php-`` is ignored, in any case
    - a full ``major.minor.patch`` query only matches exactly
    - ``major.minor`` picks the highest patch of that line
    - ``major`` picks the highest release when only one minor line
      matches, and is ambiguous otherwise
    - partial queries prefer stable releases; prereleases are
      considered only for a line that has no stable release yet
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar

from maphp.core.errors import AmbiguousQueryError, NoMatchError
from maphp.core.models.tag import ReleaseTag, strip_tag_prefix
from maphp.core.models.version import PreKind, Version, canonical_prerelease

T = TypeVar("T")

_QUERY_RE = re.compile(
    r"^(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:[-.]?(alpha|beta|rc)(\d*))?$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class VersionQuery:
    """A parsed query: any trailing component may be missing."""

    raw: str
    major: int
    minor: int | None = None
    patch: int | None = None
    pre_kind: PreKind | None = None
    pre_number: int = 0

    @property
    def is_exact(self) -> bool:
        return self.patch is not None

    def as_version(self) -> Version:
        if self.minor is None or self.patch is None:
            raise ValueError(f"partial query {self.raw!r} has no single version")
        return Version(
            major=self.major,
            minor=self.minor,
            patch=self.patch,
            pre_kind=self.pre_kind,
            pre_number=self.pre_number,
        )

    def covers(self, version: Version) -> bool:
        """Whether ``version`` falls within a partial query."""
        if version.major != self.major:
            return False
        return self.minor is None or version.minor == self.minor


def parse_query(query: str) -> VersionQuery:
    """Parse a user query.

    Raises:
        NoMatchError: If the text is not a version or version prefix.
    """
    text = strip_tag_prefix(query)
    match = _QUERY_RE.match(text)
    if not match:
        raise NoMatchError(query, "not a PHP version")

    major, minor, patch, kind, number = match.groups()
    if kind and patch is None:
        raise NoMatchError(query, "a prerelease needs a full major.minor.patch version")

    return VersionQuery(
        raw=query,
        major=int(major),
        minor=int(minor) if minor is not None else None,
        patch=int(patch) if patch is not None else None,
        pre_kind=canonical_prerelease(kind),
        pre_number=int(number) if number else 0,
    )


def _select(
    query: str,
    items: Iterable[T],
    version_of: Callable[[T], Version],
    name_of: Callable[[T], str],
) -> T:
    q = parse_query(query)
    pool = list(items)

    if q.is_exact:
        target = q.as_version()
        exact = [item for item in pool if version_of(item) == target]
        if not exact:
            raise NoMatchError(query)
        return max(exact, key=name_of)

    candidates = [item for item in pool if q.covers(version_of(item))]
    if not candidates:
        raise NoMatchError(query)

    stable = [item for item in candidates if version_of(item).is_stable]
    candidates = stable or candidates

    if q.minor is None:
        lines = sorted({version_of(item).line for item in candidates})
        if len(lines) > 1:
            raise AmbiguousQueryError(query, [f"{major}.{minor}" for major, minor in lines])

    return max(candidates, key=lambda item: (version_of(item).sort_key, name_of(item)))


def resolve(query: str, catalog: Iterable[ReleaseTag]) -> ReleaseTag:
    """Resolve ``query`` against a catalog snapshot.

    Exact full-version matches always win, even when a higher version
    exists elsewhere.  Ties are broken by highest patch, then by the
    lexicographically highest tag name.

    Raises:
        NoMatchError: Nothing matches.
        AmbiguousQueryError: A major-only query spans several minor lines.
    """
    return _select(query, catalog, lambda tag: tag.version, lambda tag: tag.name)


def resolve_version(query: str, versions: Iterable[Version]) -> Version:
    """Same rules as ``resolve``, over bare versions (e.g. installed ones)."""
    return _select(query, versions, lambda v: v, str)


def filter_channels(
    tags: Iterable[ReleaseTag],
    *,
    stable: bool = True,
    alpha: bool = False,
    beta: bool = False,
    rc: bool = False,
) -> list[ReleaseTag]:
    """Keep tags of the selected channels, newest first."""
    wanted = {
        "stable": stable,
        "alpha": alpha,
        "beta": beta,
        "RC": rc,
    }
    kept = [tag for tag in tags if wanted.get(tag.channel, False)]
    return sorted(kept, key=lambda tag: tag.version.sort_key, reverse=True)
