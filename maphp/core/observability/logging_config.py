"""
Logging configuration — set up once by the ``maphp`` entrypoint.

Modules log through ``logging.getLogger(__name__)`` and never attach
handlers themselves. Console output goes to stderr so that ``--json``
output on stdout stays parseable.

Console level: ``--debug`` / ``-v`` / ``-q``, else MAPHP_LOG_LEVEL, else WARNING.
A second, usually more detailed, sink can be added with MAPHP_LOG_FILE
(level from MAPHP_LOG_FILE_LEVEL).
"""

from __future__ import annotations

import logging
import sys

_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s %(name)s: %(message)s", "%H:%M:%S"),
}
_CONSOLE_DEFAULT = ("%(message)s", None)

_FILE_FORMAT = "%(asctime)s %(process)d %(levelname)-5s %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# One record per tar member; php-src has several thousand.
_PER_FILE_LOGGERS = ("maphp.core.services.php_install.execution.extract",)


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_per_file: bool = True,
) -> None:
    """Install the console handler, and the file handler when asked.

    Replaces any handlers already on the root logger, so calling it a
    second time (as the CLI tests do) does not duplicate output.
    ``quiet_per_file`` caps per-archive-member loggers at INFO.
    """
    console_level = _parse_level(level)
    fmt, datefmt = _console_format(console_level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        root.addHandler(handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)

    for name in _PER_FILE_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO if quiet_per_file else logging.NOTSET)


def _console_format(level: int) -> tuple[str, str | None]:
    for threshold in sorted(_CONSOLE_FORMATS):
        if level <= threshold:
            return _CONSOLE_FORMATS[threshold]
    return _CONSOLE_DEFAULT


def _parse_level(level: str | None) -> int:
    """``"debug"`` → ``logging.DEBUG``; unknown or empty names fall back to WARNING."""
    numeric = logging.getLevelName(level.upper()) if level else None
    return numeric if isinstance(numeric, int) else logging.WARNING
