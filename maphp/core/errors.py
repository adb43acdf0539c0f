"""
Error taxonomy — every failure that reaches the CLI.

Components raise these; only the CLI layer catches them and renders a
single message.  Each error carries the context (version, stage,
underlying cause) needed to make that message actionable.
"""

from __future__ import annotations


class MaphpError(Exception):
    """Base class for all maphp errors."""


# ── Catalog / transport ─────────────────────────────────────────


class FetchError(MaphpError):
    """Network or catalog endpoint unreachable."""

    def __init__(self, url: str, reason: str, *, status: int | None = None):
        self.url = url
        self.reason = reason
        self.status = status
        super().__init__(f"Cannot fetch {url}: {reason}")


# ── User input ──────────────────────────────────────────────────


class NoMatchError(MaphpError):
    """No release tag matches the query."""

    def __init__(self, query: str, reason: str = ""):
        self.query = query
        message = f"No version matching '{query}'"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class AmbiguousQueryError(MaphpError):
    """A partial query matches several release lines."""

    def __init__(self, query: str, candidates: list[str]):
        self.query = query
        self.candidates = candidates
        super().__init__(
            f"'{query}' is ambiguous, it matches: {', '.join(candidates)}. "
            "Be more specific."
        )


class UserCancelled(MaphpError):
    """The user declined a prompt."""

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


# ── Build pipeline ──────────────────────────────────────────────


class DownloadError(MaphpError):
    """Source archive could not be downloaded or failed its integrity check."""

    def __init__(self, version: str, reason: str):
        self.version = version
        self.reason = reason
        super().__init__(f"Download of PHP {version} failed: {reason}")


class ExtractError(MaphpError):
    """Source archive could not be unpacked."""

    def __init__(self, version: str, reason: str):
        self.version = version
        self.reason = reason
        super().__init__(f"Extracting PHP {version} failed: {reason}")


class BuildError(MaphpError):
    """A configure/compile step exited unsuccessfully."""

    def __init__(
        self,
        version: str,
        stage: str,
        reason: str,
        *,
        exit_code: int | None = None,
        output: str = "",
    ):
        self.version = version
        self.stage = stage
        self.reason = reason
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"Building PHP {version} failed while {stage}: {reason}")


# ── State consistency ───────────────────────────────────────────


class DuplicateVersionError(MaphpError):
    def __init__(self, version: str):
        self.version = version
        super().__init__(f"PHP {version} is already installed")


class NotInstalledError(MaphpError):
    def __init__(self, version: str, message: str = ""):
        self.version = version
        super().__init__(message or f"PHP {version} is not installed")


class AlreadyInstallingError(MaphpError):
    def __init__(self, version: str, lock_path: str = ""):
        self.version = version
        self.lock_path = lock_path
        super().__init__(
            f"Another process is already installing PHP {version}"
            + (f" (lock: {lock_path})" if lock_path else "")
        )


class CorruptionError(MaphpError):
    """On-disk state is inconsistent or unreadable.

    Never repaired automatically; the user is asked to inspect the
    work directory.
    """

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt state in {path}: {reason}")
