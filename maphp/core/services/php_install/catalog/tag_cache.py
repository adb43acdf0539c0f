"""
L3 Catalog — cached list of php-src release tags.

Fetches tags page by page from the GitHub API and persists them to
``<workdir>/tags.json``.  The cache is only ever written by a
successful fetch; install and remove never touch it.

Offline behaviour: when a refresh fails but a cache exists, the stale
cache is served and a warning is recorded in ``last_warning``.  Only a
failed first fetch is an error.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

from maphp.adapters.base import Transport
from maphp.core.errors import FetchError
from maphp.core.models.tag import TAG_PREFIX, ReleaseTag, TagCatalog
from maphp.core.persistence.state_file import load_catalog, save_catalog

logger = logging.getLogger(__name__)

GITHUB_TAGS_URL = "https://api.github.com/repos/php/php-src/tags"
GITHUB_TARBALL_URL = "https://api.github.com/repos/php/php-src/tarball/refs/tags/"
PER_PAGE = 100
MAX_PAGES = 100  # php-src has ~15 pages of tags; guards against a looping API

DEFAULT_STALENESS = timedelta(hours=24)


def tags_page_url(page: int) -> str:
    return f"{GITHUB_TAGS_URL}?page={page}&per_page={PER_PAGE}"


def tarball_url(name: str) -> str:
    """Source tarball URL for a tag name without prefix (``8.3.0``)."""
    return f"{GITHUB_TARBALL_URL}{TAG_PREFIX}{name}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TagCache:
    """Tag catalog backed by a single JSON file.

    Args:
        path: The ``tags.json`` file.
        transport: Used for every network request.
        staleness: Age after which the cache is refreshed on demand.
        clock: Returns "now" as an aware datetime (tests override it).
    """

    def __init__(
        self,
        path: Path,
        transport: Transport,
        *,
        staleness: timedelta = DEFAULT_STALENESS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._path = path
        self._transport = transport
        self._staleness = staleness
        self._clock = clock
        self.last_warning: str | None = None

    @property
    def path(self) -> Path:
        return self._path

    # ── Reads ───────────────────────────────────────────────────

    def list_cached(self) -> set[ReleaseTag]:
        """Tags currently on disk.  Empty before the first fetch."""
        catalog = load_catalog(self._path)
        return catalog.tag_set() if catalog else set()

    def fetched_at(self) -> datetime | None:
        catalog = load_catalog(self._path)
        return catalog.fetched_at_datetime() if catalog else None

    def is_stale(self) -> bool:
        """True when the cache is absent or older than the threshold."""
        return self._is_stale(load_catalog(self._path))

    def _is_stale(self, catalog: TagCatalog | None) -> bool:
        if catalog is None:
            return True
        fetched = catalog.fetched_at_datetime()
        if fetched is None:
            return True
        return self._clock() - fetched > self._staleness

    def snapshot(self, *, refresh_if_stale: bool = True) -> set[ReleaseTag]:
        """The catalog to resolve against, refreshed first when stale."""
        if refresh_if_stale and self.is_stale():
            return self.refresh()
        return self.list_cached()

    # ── Refresh ─────────────────────────────────────────────────

    def refresh(self, force: bool = False) -> set[ReleaseTag]:
        """Bring the cache up to date.

        A fresh cache is returned as-is unless ``force`` is set.  A
        non-forced refresh stops paging at the first already-known tag;
        a forced one re-reads every page and replaces the cache.

        Raises:
            FetchError: If the fetch fails and there is no cache to fall
                back on.
        """
        self.last_warning = None
        existing = load_catalog(self._path)

        if not force and existing is not None and not self._is_stale(existing):
            logger.debug("Tag cache is fresh, skipping fetch")
            return existing.tag_set()

        known = set() if force or existing is None else existing.tag_set()

        try:
            fetched = self._fetch_all(known)
        except FetchError as e:
            if existing is None:
                raise
            self.last_warning = f"Could not refresh tag catalog, using cached copy: {e}"
            logger.warning(self.last_warning)
            return existing.tag_set()

        tags = fetched if force or existing is None else existing.tag_set() | fetched
        catalog = TagCatalog(
            fetched_at=self._clock().isoformat(),
            tags=sorted(tags, key=lambda t: t.version.sort_key, reverse=True),
        )
        save_catalog(catalog, self._path)
        logger.info("Tag catalog updated: %d tags (%d fetched)", len(tags), len(fetched))
        return set(catalog.tags)

    def _fetch_all(self, known: set[ReleaseTag]) -> set[ReleaseTag]:
        fetched: set[ReleaseTag] = set()

        for page in range(1, MAX_PAGES + 1):
            tags = self._fetch_page(page)
            if tags is None:
                break

            reached_known = False
            for tag in tags:
                if tag in known:
                    reached_known = True
                    break
                fetched.add(tag)

            if reached_known:
                logger.debug("Reached known tags on page %d", page)
                break
            # A page with at most one php-* tag ends the release listing.
            if len(tags) <= 1:
                break

        return fetched

    def _fetch_page(self, page: int) -> list[ReleaseTag] | None:
        """Release tags on one page, or None past the end."""
        url = tags_page_url(page)
        try:
            body = self._transport.fetch_text(url)
        except FetchError as e:
            if e.status == 404:
                return None
            raise

        try:
            items = json.loads(body)
        except json.JSONDecodeError as e:
            raise FetchError(url, f"malformed catalog response: {e}") from e

        if not isinstance(items, list):
            raise FetchError(url, "malformed catalog response: expected a list")
        if not items:
            return None

        tags: list[ReleaseTag] = []
        for item in items:
            name = item.get("name") if isinstance(item, dict) else None
            if not isinstance(name, str) or not name.startswith(TAG_PREFIX):
                continue
            try:
                tag = ReleaseTag.from_upstream(name, tarball_url(name[len(TAG_PREFIX):]))
            except ValueError:
                logger.debug("Skipping unversioned tag %r", name)
                continue
            tags.append(tag)

        logger.debug("Page %d: %d release tags", page, len(tags))
        return tags
