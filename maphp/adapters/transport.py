"""
HTTP transport — urllib-backed implementation of ``Transport``.

Talks to the GitHub API for the tag catalog and source tarballs.
Set ``GITHUB_TOKEN`` to lift the anonymous rate limit.
"""

from __future__ import annotations

import logging
import os
import urllib.error
import urllib.request
from collections.abc import Iterator

from maphp import __version__
from maphp.adapters.base import ByteStream, Transport
from maphp.core.errors import FetchError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class UrllibTransport(Transport):
    """Plain urllib client with GitHub-friendly headers."""

    def __init__(self, *, timeout: int = 30, token: str | None = None):
        self._timeout = timeout
        self._token = token if token is not None else os.environ.get("GITHUB_TOKEN", "")

    def _request(self, url: str, accept: str) -> urllib.request.Request:
        headers = {
            "Accept": accept,
            "User-Agent": f"maphp/{__version__}",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return urllib.request.Request(url, headers=headers)

    def _open(self, url: str, accept: str):
        logger.debug("GET %s", url)
        try:
            return urllib.request.urlopen(self._request(url, accept), timeout=self._timeout)
        except urllib.error.HTTPError as e:
            raise FetchError(url, f"HTTP {e.code} {e.reason}", status=e.code) from e
        except (urllib.error.URLError, OSError) as e:
            reason = getattr(e, "reason", e)
            raise FetchError(url, str(reason)) from e

    def fetch_text(self, url: str) -> str:
        with self._open(url, "application/vnd.github+json") as resp:
            try:
                body = resp.read()
            except OSError as e:
                raise FetchError(url, f"connection dropped: {e}") from e
            charset = resp.headers.get_content_charset() or "utf-8"
        return body.decode(charset, errors="replace")

    def fetch_bytes(self, url: str) -> ByteStream:
        resp = self._open(url, "application/octet-stream")
        length = resp.headers.get("Content-Length")
        total = int(length) if length and length.isdigit() else None
        return ByteStream(chunks=self._iter_body(url, resp), total=total)

    @staticmethod
    def _iter_body(url: str, resp) -> Iterator[bytes]:
        try:
            while True:
                try:
                    chunk = resp.read(CHUNK_SIZE)
                except OSError as e:
                    raise FetchError(url, f"connection dropped: {e}") from e
                if not chunk:
                    return
                yield chunk
        finally:
            resp.close()
