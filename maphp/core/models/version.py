"""
Version — a normalized PHP release version.

PHP tags are ``major.minor.patch`` with an optional prerelease suffix
(``8.3.0RC1``, ``8.4.0alpha2``, ``7.4.0beta4``).  Versions serialize to
that string form so state files stay human-readable.
"""

from __future__ import annotations

import re
from functools import total_ordering
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, model_serializer, model_validator

PreKind = Literal["alpha", "beta", "RC"]

# alpha < beta < RC < final release
PRERELEASE_RANK: dict[str, int] = {"alpha": 0, "beta": 1, "RC": 2}

_CANONICAL_KIND: dict[str, PreKind] = {"alpha": "alpha", "beta": "beta", "rc": "RC"}

_VERSION_RE = re.compile(
    r"^(\d+)\.(\d+)\.(\d+)(?:[-.]?(alpha|beta|rc)(\d*))?$",
    re.IGNORECASE,
)


def canonical_prerelease(kind: str | None) -> PreKind | None:
    """Normalize a prerelease label (``rc`` → ``RC``, ``ALPHA`` → ``alpha``)."""
    if not kind:
        return None
    return _CANONICAL_KIND[kind.lower()]


def _split_version(text: str) -> dict[str, Any]:
    match = _VERSION_RE.match(text.strip())
    if not match:
        raise ValueError(f"not a PHP version: {text!r}")
    major, minor, patch, kind, number = match.groups()
    return {
        "major": int(major),
        "minor": int(minor),
        "patch": int(patch),
        "pre_kind": canonical_prerelease(kind),
        "pre_number": int(number) if number else 0,
    }


@total_ordering
class Version(BaseModel):
    """A full ``major.minor.patch`` version, optionally a prerelease."""

    model_config = ConfigDict(frozen=True)

    major: int
    minor: int
    patch: int
    pre_kind: PreKind | None = None
    pre_number: int = 0

    @model_validator(mode="before")
    @classmethod
    def _coerce_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return _split_version(data)
        return data

    @model_serializer
    def _as_string(self) -> str:
        return str(self)

    @classmethod
    def parse(cls, text: str) -> Version:
        """Parse ``"8.3.0"`` / ``"8.3.0RC1"``.  Raises ``ValueError``."""
        return cls.model_validate(text)

    @property
    def is_stable(self) -> bool:
        return self.pre_kind is None

    @property
    def channel(self) -> str:
        """``stable``, ``alpha``, ``beta`` or ``RC``."""
        return self.pre_kind or "stable"

    @property
    def line(self) -> tuple[int, int]:
        """The ``(major, minor)`` release line."""
        return (self.major, self.minor)

    @property
    def sort_key(self) -> tuple[int, ...]:
        if self.pre_kind is None:
            return (self.major, self.minor, self.patch, 1, 0, 0)
        return (
            self.major,
            self.minor,
            self.patch,
            0,
            PRERELEASE_RANK[self.pre_kind],
            self.pre_number,
        )

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.sort_key < other.sort_key

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre_kind is None:
            return base
        return f"{base}{self.pre_kind}{self.pre_number or ''}"
