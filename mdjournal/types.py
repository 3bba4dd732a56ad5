"""Common type aliases for the project to reduce repetition and improve readability.

Add new aliases here when you spot repeated typing patterns across modules.
"""
from __future__ import annotations

from typing import Any, Literal

# Basic JSON types
JSONDict = dict[str, Any]

# String-based types
StrList = list[str]

# Journal geometry
Range = tuple[int, int]
RangeList = list[Range]
IntList = list[int]
DirFrag = tuple[int, int]

# Byte sizes
BYTES_PER_MB = 1024 * 1024

# Output formats understood by the event outputter
OutputFormat = Literal["summary", "list", "json", "binary"]

__all__ = [
    # Basic JSON types
    "JSONDict",

    # String-based types
    "StrList",

    # Journal geometry
    "Range",
    "RangeList",
    "IntList",
    "DirFrag",

    # Byte sizes
    "BYTES_PER_MB",

    # Literals
    "OutputFormat",
]
