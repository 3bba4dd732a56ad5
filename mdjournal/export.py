"""Portable export container for journal entries.

Container layout (little-endian)::

    b"MDJX" | u16 version | u32 header_len | header
    then until EOF, one record per entry:
    u32 record_len | u64 offset | u32 raw_size | raw[raw_size]

``record_len`` counts everything after itself. Records are in ascending,
non-overlapping offset order and ``raw`` is the entry's envelope exactly as
it was found in the journal.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Optional

from mdjournal.context import ToolContext
from mdjournal.envelope import parse_envelope
from mdjournal.errors import DecodeError, JournalToolError
from mdjournal.filter import JournalFilter
from mdjournal.header import JournalHeader
from mdjournal.repair import recover_journal, warn_if_unhealthy, write_stream
from mdjournal.store import header_object_name

CONTAINER_MAGIC = b"MDJX"
CONTAINER_VERSION = 1

_PREAMBLE = struct.Struct("<4sHI")
_RECORD_LEN = struct.Struct("<I")
_RECORD_HEAD = struct.Struct("<QI")


@dataclass
class ExportRecord:
    offset: int
    raw: bytes


@dataclass
class Container:
    header: JournalHeader
    records: list[ExportRecord] = field(default_factory=list)

    def encode(self) -> bytes:
        header = self.header.encode()
        parts = [_PREAMBLE.pack(CONTAINER_MAGIC, CONTAINER_VERSION, len(header)), header]
        for record in self.records:
            parts.append(_RECORD_LEN.pack(_RECORD_HEAD.size + len(record.raw)))
            parts.append(_RECORD_HEAD.pack(record.offset, len(record.raw)))
            parts.append(record.raw)
        return b"".join(parts)

    @classmethod
    def decode(cls, data: bytes) -> 'Container':
        """Decode and fully validate a container.

        Raises:
            DecodeError: on any structural problem, before anything is written
        """
        if len(data) < _PREAMBLE.size:
            raise DecodeError("Container too short for preamble")
        magic, version, header_len = _PREAMBLE.unpack_from(data, 0)
        if magic != CONTAINER_MAGIC:
            raise DecodeError(f"Not an export container (magic {magic!r})")
        if version != CONTAINER_VERSION:
            raise DecodeError(f"Unsupported container version {version}")

        pos = _PREAMBLE.size
        if len(data) < pos + header_len:
            raise DecodeError("Container header truncated")
        header = JournalHeader.decode(data[pos:pos + header_len])
        problems = header.problems()
        if problems:
            raise DecodeError(f"Container header is invalid: {'; '.join(problems)}")
        pos += header_len

        container = cls(header)
        next_free = header.trimmed_pos
        while pos < len(data):
            if len(data) < pos + _RECORD_LEN.size:
                raise DecodeError(f"Truncated record length at container byte {pos}")
            (record_len,) = _RECORD_LEN.unpack_from(data, pos)
            pos += _RECORD_LEN.size
            if record_len < _RECORD_HEAD.size or len(data) < pos + record_len:
                raise DecodeError(f"Truncated or malformed record at container byte {pos}")
            offset, raw_size = _RECORD_HEAD.unpack_from(data, pos)
            raw = data[pos + _RECORD_HEAD.size:pos + record_len]
            pos += record_len

            if raw_size != len(raw):
                raise DecodeError(f"Record at 0x{offset:x} claims {raw_size} bytes but holds {len(raw)}")
            if offset < next_free:
                raise DecodeError(f"Record at 0x{offset:x} overlaps or precedes the previous one")
            if offset + raw_size > header.write_pos:
                raise DecodeError(f"Record at 0x{offset:x} extends past write position 0x{header.write_pos:x}")
            parsed = parse_envelope(raw, 0, offset)
            if parsed is None or parsed[1] != raw_size:
                raise DecodeError(f"Record at 0x{offset:x} is not a single complete entry")
            container.records.append(ExportRecord(offset, raw))
            next_free = offset + raw_size
        return container


def journal_export(ctx: ToolContext, path: str, journal_filter: Optional[JournalFilter] = None) -> int:
    """Write the header and every matching entry to a container file.

    Returns:
        Number of entries exported

    Raises:
        DecodeError: no header could be read or inferred
        JournalToolError: the output file could not be written
    """
    result = recover_journal(ctx, journal_filter)
    if result.header is None:
        raise DecodeError(f"No header could be read or inferred for rank {ctx.rank}")
    if not result.is_healthy():
        ctx.logger.warning("Exporting from a damaged journal: only intact entries are included")

    container = Container(
        result.header,
        [ExportRecord(offset, record.raw) for offset, record in sorted(result.events.items())],
    )
    try:
        with open(path, 'wb') as f:
            f.write(container.encode())
    except OSError as e:
        raise JournalToolError(f"Cannot write export file {path}: {e}") from e

    ctx.logger.info(f"Exported {len(container.records)} entries to {path}")
    return len(container.records)


def journal_import(ctx: ToolContext, path: str) -> int:
    """Restore a container into the live journal.

    The container is validated completely before the first write. The
    header object is replaced and every entry is written verbatim at its
    original offset, creating objects as needed.

    Returns:
        Number of entries imported
    """
    try:
        with open(path, 'rb') as f:
            data = f.read()
    except OSError as e:
        raise JournalToolError(f"Cannot read export file {path}: {e}") from e
    container = Container.decode(data)

    op_log = ctx.operation_logger("import", path=path, entries=len(container.records))
    try:
        existing = ctx.scanner().scan()
        op_log.log_scan(existing)
        if existing.header_present or existing.objects_valid:
            warn_if_unhealthy(ctx, existing, op_log)

        stride = container.header.stride
        ctx.store.write_full(header_object_name(ctx.rank), container.header.encode())
        op_log.log_step("write_header", "completed")
        for record in container.records:
            write_stream(ctx.store, ctx.rank, stride, record.offset, record.raw)
        op_log.log_step("write_entries", "completed", f"{len(container.records)} entries")
    except JournalToolError as e:
        op_log.fail(e)
        raise

    op_log.complete(summary=f"Imported {len(container.records)} entries from {path}")
    ctx.logger.info(f"Imported {len(container.records)} entries from {path}")
    return len(container.records)
