"""
Mock collaborators — test doubles for Transport, Chooser, ProgressReporter.

Used by the test suite to exercise the core without a network or a
terminal.  Each double keeps a call log for assertions.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence

from maphp.adapters.base import ByteStream, Chooser, ProgressReporter, Transport
from maphp.core.errors import FetchError, UserCancelled
from maphp.core.models.state import InstallStage


class MockTransport(Transport):
    """Serves canned responses keyed by URL.

    Unknown URLs answer like a 404.  A response may be an exception
    instance, which is raised instead.
    """

    def __init__(
        self,
        texts: dict[str, str | Exception] | None = None,
        blobs: dict[str, bytes | Exception] | None = None,
        chunk_size: int = 4096,
    ):
        self.texts: dict[str, str | Exception] = dict(texts or {})
        self.blobs: dict[str, bytes | Exception] = dict(blobs or {})
        self.chunk_size = chunk_size
        self.announce_length = True
        self.fail_after_bytes: int | None = None
        self.offline = False
        self.call_log: list[str] = []

    @property
    def call_count(self) -> int:
        return len(self.call_log)

    def set_offline(self) -> None:
        """Make every request fail like an unreachable host."""
        self.offline = True

    def fetch_text(self, url: str) -> str:
        self.call_log.append(url)
        if self.offline:
            raise FetchError(url, "network unreachable")
        response = self.texts.get(url)
        if response is None:
            raise FetchError(url, "HTTP 404 Not Found", status=404)
        if isinstance(response, Exception):
            raise response
        return response

    def fetch_bytes(self, url: str) -> ByteStream:
        self.call_log.append(url)
        if self.offline:
            raise FetchError(url, "network unreachable")
        response = self.blobs.get(url)
        if response is None:
            raise FetchError(url, "HTTP 404 Not Found", status=404)
        if isinstance(response, Exception):
            raise response
        total = len(response) if self.announce_length else None
        return ByteStream(chunks=self._chunks(url, response), total=total)

    def _chunks(self, url: str, data: bytes) -> Iterator[bytes]:
        for offset in range(0, len(data), self.chunk_size):
            if self.fail_after_bytes is not None and offset >= self.fail_after_bytes:
                raise FetchError(url, "connection reset")
            yield data[offset:offset + self.chunk_size]


class ScriptedChooser(Chooser):
    """Answers prompts from a script.

    ``answers`` entries are picked in order; ``None`` cancels.
    """

    def __init__(self, answers: Sequence[str | None] = ()):
        self._answers = list(answers)
        self.prompts: list[tuple[str, list[str]]] = []

    def choose_one(self, prompt: str, options: Sequence[str]) -> str:
        self.prompts.append((prompt, list(options)))
        if not self._answers:
            raise UserCancelled()
        answer = self._answers.pop(0)
        if answer is None:
            raise UserCancelled()
        if answer not in options:
            raise AssertionError(f"scripted answer {answer!r} not among {list(options)}")
        return answer


class RecordingProgress(ProgressReporter):
    """Records every report for later inspection."""

    def __init__(self) -> None:
        self.events: list[tuple[InstallStage, int, int | None]] = []
        self.lines: list[str] = []

    @property
    def stages(self) -> list[InstallStage]:
        """Distinct stages in the order they were first reported."""
        seen: list[InstallStage] = []
        for stage, _, _ in self.events:
            if stage not in seen:
                seen.append(stage)
        return seen

    def report(self, stage: InstallStage, current: int = 0, total: int | None = None) -> None:
        self.events.append((stage, current, total))

    def log(self, line: str) -> None:
        self.lines.append(line)
