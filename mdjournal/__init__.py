"""mdjournal - Inspection and repair of damaged metadata journals."""

from __future__ import annotations

from .config import ToolConfig
from .context import ToolContext
from .errors import DecodeError, InvalidArgument, JournalToolError, NotFound, StoreIOError
from .filter import JournalFilter, parse_filter
from .scanner import JournalScanner, ScanResult

__all__ = [
    "ToolConfig",
    "ToolContext",
    "JournalFilter",
    "parse_filter",
    "JournalScanner",
    "ScanResult",
    "JournalToolError",
    "NotFound",
    "DecodeError",
    "StoreIOError",
    "InvalidArgument",
]
