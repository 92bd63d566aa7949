"""Error taxonomy.

Fatal conditions (bad configuration, missing connection, programming errors)
are raised as subclasses of :class:`DirectoryError`.  Routine directory
failures such as bad credentials or a failed search are *not* raised; they
travel as :class:`DirectoryOperationError` values on the object that
experienced them so batch or UI code can inspect them without ``try``.
"""
from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "DirectoryError",
    "ConfigurationError",
    "DirectoryConnectionError",
    "DiscoveryError",
    "IdentifierFormatError",
    "ImmutabilityViolation",
    "AccessViolation",
    "FormatFlagError",
    "DirectoryOperationError",
]


class DirectoryError(Exception):
    """Base class of every fatal error raised by this package."""


class ConfigurationError(DirectoryError):
    """The configuration cannot support the requested operation."""


class DirectoryConnectionError(DirectoryError, ConnectionError):
    """An operation needed a connection or binding and none could be made."""


class DiscoveryError(DirectoryError):
    """Both root DSE probes failed at the transport level."""


class IdentifierFormatError(DirectoryError, ValueError):
    """A principal identifier is malformed."""


class ImmutabilityViolation(DirectoryError, TypeError):
    """Attempt to write into a loaded result."""


class AccessViolation(DirectoryError, PermissionError):
    """A restricted method was called by someone other than its owner."""


class FormatFlagError(DirectoryError, ValueError):
    """A formatter flag is not a single known power of two."""


@dataclass(frozen=True, slots=True)
class DirectoryOperationError:
    """Non-fatal directory error reported as data."""

    number: int
    message: str

    def __str__(self) -> str:
        return f"[{self.number}] {self.message}"
