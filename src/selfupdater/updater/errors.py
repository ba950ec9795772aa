"""Exceptions raised by the update pipeline."""

from __future__ import annotations


class UpdateError(Exception):
    """Base class for update failures."""


class ParseError(UpdateError, ValueError):
    """A version string is not valid ``MAJOR.MINOR.PATCH[-PRE][+META]``."""


class FetchError(UpdateError):
    """The update server could not be reached or returned a non-2xx status."""


class ManifestError(FetchError):
    """The update server returned a malformed release manifest."""


class ChecksumError(UpdateError):
    """A downloaded payload failed integrity verification."""

    def __init__(self, message: str, expected: str = "", actual: str = "") -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class UnsupportedAlgorithmError(UpdateError, ValueError):
    """The manifest names a checksum algorithm other than sha256/sha512."""


class StateError(UpdateError):
    """Persisted update state is unavailable, unreadable or corrupt."""


class ConfigurationError(UpdateError):
    """A setting required by the requested operation is missing."""


class InstallError(UpdateError):
    """Replacing the running executable failed."""
