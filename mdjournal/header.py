"""Journal header record.

The header object holds the trim/expire/write pointers and the stream
layout. Encoding (little-endian)::

    u16 version | u16 magic_len | magic | u64 trimmed_pos | u64 expire_pos |
    u64 write_pos | u32 stripe_unit | u32 stripe_count | u32 object_size |
    i64 pool_id | u8 stream_format
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, asdict

from mdjournal.errors import DecodeError
from mdjournal.types import JSONDict, StrList

JOURNAL_MAGIC = "fs journal v011"
HEADER_VERSION = 2
SUPPORTED_HEADER_VERSIONS = (2,)

STREAM_FORMAT_LEGACY = 0
STREAM_FORMAT_RESILIENT = 1

_PREFIX = struct.Struct("<HH")
_BODY = struct.Struct("<QQQIIIqB")

# Fields an operator may edit with `header set`
EDITABLE_FIELDS = ("trimmed_pos", "expire_pos", "write_pos")


@dataclass
class JournalHeader:
    trimmed_pos: int
    expire_pos: int
    write_pos: int
    object_size: int
    stripe_unit: int = 0
    stripe_count: int = 1
    pool_id: int = -1
    stream_format: int = STREAM_FORMAT_RESILIENT
    magic: str = JOURNAL_MAGIC
    version: int = HEADER_VERSION

    def __post_init__(self) -> None:
        if not self.stripe_unit:
            self.stripe_unit = self.object_size

    @property
    def stride(self) -> int:
        """Size of the stream chunk stored in each object."""
        return self.object_size

    @classmethod
    def fresh(cls, position: int, object_size: int, pool_id: int = -1) -> 'JournalHeader':
        """Header for an empty journal whose stream starts at position."""
        return cls(
            trimmed_pos=position,
            expire_pos=position,
            write_pos=position,
            object_size=object_size,
            pool_id=pool_id,
        )

    def problems(self) -> StrList:
        """Return self-consistency problems; an empty list means valid."""
        problems = []
        if self.magic != JOURNAL_MAGIC:
            problems.append(f"bad magic '{self.magic}'")
        if self.version not in SUPPORTED_HEADER_VERSIONS:
            problems.append(f"unsupported header version {self.version}")
        if self.stream_format != STREAM_FORMAT_RESILIENT:
            problems.append(f"unsupported stream format {self.stream_format}")
        if self.object_size <= 0:
            problems.append(f"invalid object size {self.object_size}")
        elif self.trimmed_pos < self.stride:
            problems.append(f"trimmed_pos 0x{self.trimmed_pos:x} lies inside the header object")
        if self.stripe_count < 1:
            problems.append(f"invalid stripe count {self.stripe_count}")
        if not self.trimmed_pos <= self.expire_pos <= self.write_pos:
            problems.append(
                f"pointers out of order: trimmed 0x{self.trimmed_pos:x}, "
                f"expire 0x{self.expire_pos:x}, write 0x{self.write_pos:x}"
            )
        return problems

    def is_valid(self) -> bool:
        return not self.problems()

    def encode(self) -> bytes:
        magic = self.magic.encode("utf-8")
        return (
            _PREFIX.pack(self.version, len(magic))
            + magic
            + _BODY.pack(
                self.trimmed_pos, self.expire_pos, self.write_pos,
                self.stripe_unit, self.stripe_count, self.object_size,
                self.pool_id, self.stream_format,
            )
        )

    @classmethod
    def decode(cls, data: bytes) -> 'JournalHeader':
        """Decode a header; raises DecodeError on truncated or garbled input.

        A decoded header is not necessarily valid: check problems().
        """
        if len(data) < _PREFIX.size:
            raise DecodeError(f"Header too short ({len(data)} bytes)")
        version, magic_len = _PREFIX.unpack_from(data, 0)
        body_start = _PREFIX.size + magic_len
        if len(data) < body_start + _BODY.size:
            raise DecodeError(f"Header truncated ({len(data)} bytes, need {body_start + _BODY.size})")
        try:
            magic = data[_PREFIX.size:body_start].decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Header magic is not text: {e}") from e

        (trimmed, expire, write, stripe_unit, stripe_count,
         object_size, pool_id, stream_format) = _BODY.unpack_from(data, body_start)
        return cls(
            trimmed_pos=trimmed,
            expire_pos=expire,
            write_pos=write,
            object_size=object_size,
            stripe_unit=stripe_unit,
            stripe_count=stripe_count,
            pool_id=pool_id,
            stream_format=stream_format,
            magic=magic,
            version=version,
        )

    def to_dict(self) -> JSONDict:
        data = asdict(self)
        data["layout"] = {
            "stripe_unit": data.pop("stripe_unit"),
            "stripe_count": data.pop("stripe_count"),
            "object_size": data.pop("object_size"),
            "pool_id": data.pop("pool_id"),
        }
        return data
