"""Adapters — collaborator contracts and their implementations.

Public re-exports for convenient access.
"""

from maphp.adapters.base import ByteStream, Chooser, NullProgress, ProgressReporter, Transport
from maphp.adapters.mock import MockTransport, RecordingProgress, ScriptedChooser
from maphp.adapters.transport import UrllibTransport

__all__ = [
    "ByteStream",
    "Chooser",
    "MockTransport",
    "NullProgress",
    "ProgressReporter",
    "RecordingProgress",
    "ScriptedChooser",
    "Transport",
    "UrllibTransport",
]
