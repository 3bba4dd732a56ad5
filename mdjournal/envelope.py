"""Entry envelope: the self-delimiting wrapper around one journal entry.

Layout (little-endian)::

    u64 sentinel | u32 entry_size | payload[entry_size] | u64 start_ptr

``start_ptr`` repeats the absolute stream offset of the envelope, which
lets a reader tell a real envelope from a sentinel pattern that happens to
appear inside another entry's payload.
"""

from __future__ import annotations

import struct
from typing import Optional, Union

from mdjournal.errors import DecodeError
from mdjournal.types import BYTES_PER_MB

SENTINEL = 0x3141592653589793
SENTINEL_BYTES = struct.pack("<Q", SENTINEL)

_PREFIX = struct.Struct("<QI")
_SUFFIX = struct.Struct("<Q")

PREFIX_SIZE = _PREFIX.size
ENVELOPE_OVERHEAD = _PREFIX.size + _SUFFIX.size
MAX_ENTRY_SIZE = 16 * BYTES_PER_MB

Buffer = Union[bytes, bytearray]


def encode_envelope(payload: bytes, start_ptr: int) -> bytes:
    """Wrap a payload for writing at absolute stream offset start_ptr."""
    if not 0 < len(payload) <= MAX_ENTRY_SIZE:
        raise ValueError(f"Entry size {len(payload)} outside 1..{MAX_ENTRY_SIZE}")
    return _PREFIX.pack(SENTINEL, len(payload)) + payload + _SUFFIX.pack(start_ptr)


def envelope_size(payload_size: int) -> int:
    return payload_size + ENVELOPE_OVERHEAD


def parse_envelope(
    buf: Buffer,
    pos: int,
    offset: int,
    limit: Optional[int] = None
) -> Optional[tuple[bytes, int]]:
    """Parse the envelope starting at buf[pos], which sits at stream offset.

    When limit is given, an envelope claiming to extend past that stream
    offset is rejected instead of waiting for more data.

    Returns:
        (payload, raw_size) for a well-formed envelope, or None when buf
        ends before the envelope does and more data is needed.

    Raises:
        DecodeError: bad sentinel, implausible length, overrun of limit or
            start pointer mismatch.
    """
    available = len(buf) - pos
    if available < PREFIX_SIZE:
        return None

    sentinel, entry_size = _PREFIX.unpack_from(buf, pos)
    if sentinel != SENTINEL:
        raise DecodeError(f"Bad sentinel 0x{sentinel:016x} at 0x{offset:x}")
    if entry_size == 0 or entry_size > MAX_ENTRY_SIZE:
        raise DecodeError(f"Implausible entry size {entry_size} at 0x{offset:x}")

    raw_size = envelope_size(entry_size)
    if limit is not None and offset + raw_size > limit:
        raise DecodeError(f"Entry at 0x{offset:x} of size {raw_size} runs past end of stream 0x{limit:x}")
    if available < raw_size:
        return None

    payload_start = pos + PREFIX_SIZE
    (start_ptr,) = _SUFFIX.unpack_from(buf, payload_start + entry_size)
    if start_ptr != offset:
        raise DecodeError(f"Start pointer 0x{start_ptr:x} does not match offset 0x{offset:x}")

    return bytes(buf[payload_start:payload_start + entry_size]), raw_size


def find_sentinel(buf: Buffer, start: int) -> int:
    """Index of the next sentinel at or after start, or -1."""
    return buf.find(SENTINEL_BYTES, start)
