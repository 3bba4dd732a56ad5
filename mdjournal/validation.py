"""Argument validation for journal tool commands.

Every function here raises InvalidArgument and performs no store I/O, so a
malformed command line is rejected before the journal is touched.
"""

from __future__ import annotations
import os
import re
from pathlib import Path

from mdjournal.errors import InvalidArgument

MAX_RANK = 4096
CLIENT_NAME_PATTERN = re.compile(r'^client\.(\d+)$')


def parse_offset(value: str, name: str = "offset") -> int:
    """Parse a non-negative journal offset (decimal or 0x-prefixed hex).

    Args:
        value: String value to parse
        name: Name of the value for error messages

    Returns:
        int: Parsed offset

    Raises:
        InvalidArgument: If the value is not a non-negative integer
    """
    if not value or not value.strip():
        raise InvalidArgument(f"{name} must be a non-empty string")

    try:
        offset = int(value.strip(), 0)
    except ValueError as e:
        raise InvalidArgument(f"{name} must be a valid integer: {value}") from e

    if offset < 0:
        raise InvalidArgument(f"{name} must not be negative: {offset}")

    return offset


def validate_rank(rank: int) -> int:
    """Validate a metadata-service rank number."""
    if not isinstance(rank, int) or isinstance(rank, bool):
        raise InvalidArgument(f"Rank must be an integer: {rank!r}")
    if not 0 <= rank < MAX_RANK:
        raise InvalidArgument(f"Rank must be between 0 and {MAX_RANK - 1}: {rank}")
    return rank


def validate_client_name(name: str) -> str:
    """Validate a client identity of the form ``client.<id>``."""
    if not CLIENT_NAME_PATTERN.match(name or ""):
        raise InvalidArgument(f"Invalid client name '{name}' (expected client.<id>)")
    return name


def validate_filesystem_path(path: str, must_exist: bool = False, check_writable: bool = False) -> None:
    """Validate filesystem path with extended checks.

    Args:
        path: Path to validate
        must_exist: If True, path must exist
        check_writable: If True, path (or its parent) must be writable

    Raises:
        InvalidArgument: If validation fails
    """
    if not path:
        raise InvalidArgument("Path must be a non-empty string")

    try:
        Path(path)
    except (ValueError, TypeError) as e:
        raise InvalidArgument(f"Invalid path format: {path}") from e

    if must_exist and not os.path.exists(path):
        raise InvalidArgument(f"Path does not exist: {path}")

    if check_writable:
        if os.path.exists(path):
            if not os.access(path, os.W_OK):
                raise InvalidArgument(f"Path is not writable: {path}")
        else:
            parent = os.path.dirname(os.path.abspath(path))
            if not os.path.exists(parent):
                raise InvalidArgument(f"Parent directory does not exist: {parent}")
            if not os.access(parent, os.W_OK):
                raise InvalidArgument(f"Parent directory is not writable: {parent}")
