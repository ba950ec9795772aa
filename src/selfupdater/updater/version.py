"""Semantic version parsing and ordering.

Versions look like ``[v]MAJOR.MINOR.PATCH[-PRERELEASE][+METADATA]``.
Build metadata never takes part in ordering or equality. Two different
prerelease tags are ordered by plain string comparison, so ``1.0.0-beta.10``
sorts *before* ``1.0.0-beta.2``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from selfupdater.updater.errors import ParseError

_CORE_NAMES = ("major", "minor", "patch")
_LABEL_RE = re.compile(r"[0-9A-Za-z.-]+")


def _cmp(a: int | str, b: int | str) -> int:
    return (a > b) - (a < b)  # type: ignore[operator]


@dataclass(frozen=True, eq=False)
class Version:
    """An immutable semantic version."""

    major: int
    minor: int
    patch: int
    prerelease: str = ""
    metadata: str = ""

    @classmethod
    def parse(cls, text: str) -> Version:
        """Parse a version string.

        Raises:
            ParseError: If the string is empty, the core is not exactly
                three dot-separated decimal integers, or the prerelease or
                metadata use characters outside ``[0-9A-Za-z.-]``.
        """
        if not text:
            raise ParseError("version string cannot be empty")

        rest = text.removeprefix("v")
        rest, _, metadata = rest.partition("+")
        rest, _, prerelease = rest.partition("-")

        parts = rest.split(".")
        if len(parts) != 3:
            raise ParseError(f"invalid version format: expected major.minor.patch, got {rest!r}")

        numbers: list[int] = []
        for name, part in zip(_CORE_NAMES, parts, strict=True):
            if not (part.isascii() and part.isdigit()):
                raise ParseError(f"invalid {name} version: {part!r}")
            numbers.append(int(part))

        for name, label in (("prerelease", prerelease), ("metadata", metadata)):
            if label and not _LABEL_RE.fullmatch(label):
                raise ParseError(f"invalid {name}: {label!r}")

        return cls(numbers[0], numbers[1], numbers[2], prerelease, metadata)

    def __str__(self) -> str:
        s = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            s += f"-{self.prerelease}"
        if self.metadata:
            s += f"+{self.metadata}"
        return s

    def compare(self, other: Version) -> int:
        """Return -1, 0 or 1 as this version is older, equal or newer."""
        for mine, theirs in (
            (self.major, other.major),
            (self.minor, other.minor),
            (self.patch, other.patch),
        ):
            if mine != theirs:
                return _cmp(mine, theirs)

        # A release outranks any of its prereleases
        if not self.prerelease and other.prerelease:
            return 1
        if self.prerelease and not other.prerelease:
            return -1
        return _cmp(self.prerelease, other.prerelease)

    def is_newer(self, other: Version) -> bool:
        return self.compare(other) > 0

    def is_older(self, other: Version) -> bool:
        return self.compare(other) < 0

    def equal(self, other: Version) -> bool:
        return self.compare(other) == 0

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    @property
    def is_stable(self) -> bool:
        return not self.prerelease

    # Rich comparisons follow compare(), so metadata is ignored here too.

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) < 0

    def __le__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) <= 0

    def __gt__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) > 0

    def __ge__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) >= 0

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.prerelease))


def parse_version(text: str) -> Version:
    """Parse *text* into a :class:`Version` (see :meth:`Version.parse`)."""
    return Version.parse(text)
