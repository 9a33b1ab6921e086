"""
edlink errors.

    EdlinkError
      TransportError      one connection attempt failed; try the next one
      NoTransportError    every attempt failed and no daemon may be launched
      ProtocolViolation   the server configuration cannot be understood
      FatalLocalError     nothing left to try on this machine

Errors reported by the server (`-error` lines) are not exceptions: they
only decide the exit status.
"""

from __future__ import annotations

from enum import Enum


class EdlinkError(Exception):
    """Base class for client failures."""


class TransportKind(Enum):
    REFUSED = "refused"
    UNREACHABLE = "unreachable"
    AUTH_REJECTED = "auth-rejected"
    NAME_TOO_LONG = "name-too-long"


class TransportError(EdlinkError):
    """A single transport could not be used."""

    def __init__(self, kind: TransportKind, message: str):
        super().__init__(message)
        self.kind = kind


class NoTransportError(EdlinkError):
    """No candidate transport accepted a connection."""


class ProtocolViolation(EdlinkError):
    """Malformed server file or similar configuration data."""


class FatalLocalError(EdlinkError):
    """The client cannot continue."""
