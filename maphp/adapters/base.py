"""
Adapter base — the contracts between the core and the outside world.

The core never talks to the network or the terminal directly.  It
depends on three narrow collaborators:

    Transport         fetch text / stream bytes for a URL
    Chooser           ask the user to pick one of N strings
    ProgressReporter  receive stage and tick notifications

The CLI wires in real implementations; tests use the doubles in
``maphp.adapters.mock``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from maphp.core.models.state import InstallStage


@dataclass
class ByteStream:
    """A streamed response body.

    ``total`` is the announced length in bytes, when the server sent one.
    Iterating ``chunks`` may raise ``FetchError`` mid-stream.
    """

    chunks: Iterator[bytes]
    total: int | None = None

    def close(self) -> None:
        close = getattr(self.chunks, "close", None)
        if close is not None:
            close()


class Transport(ABC):
    """Fetches catalog text and archive bytes.

    Implementations raise ``FetchError`` on any transport failure; an
    HTTP status, when there was one, is carried in ``FetchError.status``.
    """

    @abstractmethod
    def fetch_text(self, url: str) -> str:
        """Return the body of ``url`` decoded as text."""

    @abstractmethod
    def fetch_bytes(self, url: str) -> ByteStream:
        """Open ``url`` for streaming."""


class Chooser(ABC):
    """Interactive single selection."""

    @abstractmethod
    def choose_one(self, prompt: str, options: Sequence[str]) -> str:
        """Return one of ``options``.

        Raises:
            UserCancelled: If the user backs out.
        """


class ProgressReporter(ABC):
    """Fire-and-forget progress sink.  Return values are ignored."""

    @abstractmethod
    def report(self, stage: InstallStage, current: int = 0, total: int | None = None) -> None:
        """``total=None`` means indeterminate."""

    def log(self, line: str) -> None:
        """A line of build output.  Ignored unless the reporter shows it."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class NullProgress(ProgressReporter):
    def report(self, stage: InstallStage, current: int = 0, total: int | None = None) -> None:
        pass
