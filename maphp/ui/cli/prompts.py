"""
Terminal collaborators — click-based Chooser and ProgressReporter.

A numbered list for picking a version and one line per pipeline
stage, plus byte counts while the source tarball downloads.
"""

from __future__ import annotations

from collections.abc import Sequence

import click

from maphp.adapters.base import Chooser, ProgressReporter
from maphp.core.errors import UserCancelled
from maphp.core.models.state import InstallStage

_STAGE_LABELS = {
    InstallStage.RESOLVED: ("🔎", "Resolved"),
    InstallStage.DOWNLOADING: ("⬇️ ", "Downloading source"),
    InstallStage.EXTRACTING: ("📦", "Extracting"),
    InstallStage.CONFIGURING: ("⚙️ ", "Configuring"),
    InstallStage.COMPILING: ("🔨", "Compiling"),
    InstallStage.INSTALLED: ("✅", "Installed"),
    InstallStage.FAILED: ("❌", "Failed"),
}

_MIB = 1024 * 1024


def human_bytes(n: int) -> str:
    size = float(n)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if size < 1024 or unit == "GiB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{n} B"


class ClickChooser(Chooser):
    """Numbered-list picker on the terminal."""

    def choose_one(self, prompt: str, options: Sequence[str]) -> str:
        if not options:
            raise UserCancelled("Nothing to choose from")

        click.secho(prompt, fg="cyan", bold=True)
        for i, option in enumerate(options, start=1):
            click.echo(f"  {i}) {option}")

        try:
            index = click.prompt("Number", type=click.IntRange(1, len(options)))
        except click.Abort:
            raise UserCancelled() from None
        return options[index - 1]


class EchoProgress(ProgressReporter):
    """Prints stage changes, download size, and build step lines."""

    def __init__(self) -> None:
        self._stage: InstallStage | None = None
        self._next_tick = _MIB
        self._in_progress_line = False

    def report(self, stage: InstallStage, current: int = 0, total: int | None = None) -> None:
        if stage != self._stage:
            self._end_line()
            self._stage = stage
            self._next_tick = _MIB
            icon, label = _STAGE_LABELS.get(stage, ("•", stage.value))
            color = {"failed": "red", "installed": "green"}.get(stage.value)
            click.secho(f"{icon} {label}", fg=color, bold=color is not None)

        if stage == InstallStage.DOWNLOADING and current >= self._next_tick:
            self._next_tick = current + _MIB
            done = human_bytes(current)
            suffix = f" / {human_bytes(total)}" if total else ""
            click.echo(f"\r   {done}{suffix}", nl=False)
            self._in_progress_line = True

    def log(self, line: str) -> None:
        self._end_line()
        click.echo(f"   {line}")

    def _end_line(self) -> None:
        if self._in_progress_line:
            click.echo()
            self._in_progress_line = False
