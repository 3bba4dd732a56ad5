"""Exception hierarchy for the journal tool.

Read-side faults (NotFound, DecodeError) are normally captured into a scan
report; write-side faults and argument errors abort the operation.
"""

from __future__ import annotations


class JournalToolError(Exception):
    """Base class for all journal tool errors."""

    exit_code = 1


class NotFound(JournalToolError):
    """Raised when an object does not exist in the store."""

    def __init__(self, name: str):
        super().__init__(f"Object not found: {name}")
        self.name = name


class DecodeError(JournalToolError):
    """Raised when a header, envelope, payload or container is malformed."""


class StoreIOError(JournalToolError):
    """Raised on transport or storage failures."""

    def __init__(self, message: str, name: str = ""):
        super().__init__(message)
        self.name = name


class InvalidArgument(JournalToolError, ValueError):
    """Raised for malformed arguments, always before any I/O."""

    exit_code = 2
