"""Mutating repair operations: splice, reset, header edits and recovery.

Every operation here scans before it writes and warns when the journal it
is about to modify is unhealthy. Write failures are never retried: a
StoreIOError aborts the operation and is recorded in its audit trail.
"""

from __future__ import annotations

from typing import Iterator, Optional

from mdjournal.context import ToolContext
from mdjournal.errors import DecodeError, InvalidArgument, JournalToolError, NotFound
from mdjournal.filter import JournalFilter
from mdjournal.header import EDITABLE_FIELDS, JournalHeader
from mdjournal.operation_log import OperationLogger
from mdjournal.scanner import ScanResult
from mdjournal.store import (
    HEADER_OBJECT_INDEX, ObjectStore, header_object_name, journal_object_name,
    journal_prefix, parse_object_index,
)
from mdjournal.types import IntList


def round_up(value: int, multiple: int) -> int:
    return -(-value // multiple) * multiple


def stream_extents(pos: int, length: int, stride: int) -> Iterator[tuple[int, int, int, int]]:
    """Split a stream byte range into per-object pieces.

    Yields (object_index, offset_in_object, start, end) where start/end
    index into the range's own bytes.
    """
    end = pos + length
    cursor = pos
    while cursor < end:
        index = cursor // stride
        obj_offset = cursor - index * stride
        piece_end = min(end, (index + 1) * stride)
        yield index, obj_offset, cursor - pos, piece_end - pos
        cursor = piece_end


def write_stream(store: ObjectStore, rank: int, stride: int, pos: int, data: bytes) -> IntList:
    """Write bytes at an absolute stream offset, creating objects as needed.

    Returns the indices of the objects written.
    """
    written = []
    for index, obj_offset, start, end in stream_extents(pos, len(data), stride):
        if index == HEADER_OBJECT_INDEX:
            raise InvalidArgument(f"Stream write at 0x{pos:x} would overwrite the header object")
        store.write(journal_object_name(rank, index), obj_offset, data[start:end])
        written.append(index)
    return written


def warn_if_unhealthy(ctx: ToolContext, result: ScanResult, op_log: Optional[OperationLogger] = None) -> None:
    if result.is_healthy():
        return
    message = (
        f"Journal for rank {ctx.rank} is damaged: header present={result.header_present} "
        f"valid={result.header_valid}, {len(result.objects_missing)} missing objects, "
        f"{len(result.ranges_invalid)} invalid ranges"
    )
    ctx.logger.warning(message)
    if op_log:
        op_log.log_warning(message, {
            "objects_missing": result.objects_missing,
            "ranges_invalid": result.ranges_invalid,
        })


def erase_region(ctx: ToolContext, pos: int, length: int, stride: Optional[int] = None) -> int:
    """Zero-fill [pos, pos + length) in place across the objects it spans.

    Offsets of every other entry are unchanged. Objects that do not exist
    are left absent, and bytes past the end of a short object already read
    as zeros so the object is not extended.

    Args:
        ctx: Tool context
        pos: Absolute stream offset of the region
        length: Number of bytes to blank
        stride: Stream stride; read from the header when not given

    Returns:
        Number of bytes actually overwritten

    Raises:
        InvalidArgument: negative length or a region inside the header object
        StoreIOError: a write failed
    """
    if length < 0:
        raise InvalidArgument(f"Erase length must not be negative: {length}")

    if stride is None:
        result = ctx.scanner().scan(full=False)
        stride = result.header.stride if result.header_valid else ctx.config.default_stride

    if length and pos < stride:
        raise InvalidArgument(f"Region at 0x{pos:x} overlaps the header object")

    erased = 0
    for index, obj_offset, start, end in stream_extents(pos, length, stride):
        name = journal_object_name(ctx.rank, index)
        try:
            size = ctx.store.stat(name)
        except NotFound:
            ctx.logger.debug(f"Skipping absent object {name}")
            continue
        count = min(end - start, size - obj_offset)
        if count <= 0:
            continue
        ctx.store.write(name, obj_offset, bytes(count))
        erased += count

    ctx.logger.info(f"Erased 0x{erased:x} bytes in region 0x{pos:x}~0x{length:x}")
    return erased


def splice_events(ctx: ToolContext, journal_filter: JournalFilter, dry_run: bool = False) -> IntList:
    """Blank every entry matching the filter, returning the offsets erased.

    With dry_run the matching offsets are returned and nothing is written.
    """
    result = recover_journal(ctx, journal_filter)
    if dry_run:
        warn_if_unhealthy(ctx, result)
        return list(result.events)

    op_log = ctx.operation_logger("splice", filter=repr(journal_filter))
    op_log.log_scan(result)
    warn_if_unhealthy(ctx, result, op_log)
    if journal_filter.is_unset():
        op_log.log_warning("No filter given: every entry in the journal will be erased")

    erased = []
    try:
        for offset, record in result.events.items():
            erase_region(ctx, offset, record.raw_size, result.stride)
            op_log.log_step(f"erase_0x{offset:x}", "completed",
                            f"{record.log_event.type.name} 0x{record.raw_size:x} bytes")
            erased.append(offset)
    except JournalToolError as e:
        op_log.fail(e, {"erased": erased})
        raise

    op_log.log_metric("entries_erased", len(erased), "events")
    op_log.complete(summary=f"Erased {len(erased)} entries")
    return erased


def list_journal_objects(ctx: ToolContext) -> dict[int, str]:
    """Map stride index to object name for every object under the journal prefix."""
    objects = {}
    for name in ctx.store.list(journal_prefix(ctx.rank)):
        index = parse_object_index(ctx.rank, name)
        if index is not None:
            objects[index] = name
    return objects


def synthesize_header(ctx: ToolContext) -> Optional[JournalHeader]:
    """Infer a header from the data objects present, using the default stride.

    Returns None when there are no data objects to infer anything from.
    """
    stride = ctx.config.default_stride
    indices = sorted(i for i in list_journal_objects(ctx) if i != HEADER_OBJECT_INDEX)
    if not indices:
        return None

    last = indices[-1]
    last_size = min(ctx.store.stat(journal_object_name(ctx.rank, last)), stride)
    start = indices[0] * stride
    header = JournalHeader.fresh(start, stride)
    header.write_pos = last * stride + last_size
    ctx.logger.info(
        f"Synthesized header: trimmed 0x{header.trimmed_pos:x} write 0x{header.write_pos:x} "
        f"stride 0x{stride:x} from {len(indices)} objects"
    )
    return header


def recover_journal(ctx: ToolContext, journal_filter: Optional[JournalFilter] = None) -> ScanResult:
    """Scan, and when the header is missing or invalid rescan with an inferred one.

    The synthesized header is reported on the result and never written.
    """
    result = ctx.scanner(journal_filter).scan()
    if result.header_valid:
        return result

    ctx.logger.warning(f"Header for rank {ctx.rank} is unusable, inferring layout from objects")
    hint = synthesize_header(ctx)
    if hint is None:
        ctx.logger.warning("No journal data objects found, nothing to infer a header from")
        return result

    rescanned = ctx.scanner(journal_filter, layout_hint=hint).scan()
    rescanned.header = hint
    rescanned.header_synthesized = True
    return rescanned


def journal_reset(ctx: ToolContext, force: bool = False) -> JournalHeader:
    """Discard all journal content and write a fresh, empty header.

    The new journal starts at the old write position rounded up to the
    stride, so stale readers never see reused offsets. Without a usable
    header the start can only be inferred with force, from the end of the
    highest existing object.

    Raises:
        DecodeError: header unusable and force not given
        StoreIOError: a remove or write failed
    """
    op_log = ctx.operation_logger("reset", force=force)
    try:
        result = ctx.scanner().scan()
        op_log.log_scan(result)
        warn_if_unhealthy(ctx, result, op_log)

        objects = list_journal_objects(ctx)
        pool_id = -1
        if result.header_valid:
            header = result.header
            stride = header.stride
            pool_id = header.pool_id
            new_start = round_up(header.write_pos, stride)
        elif force:
            stride = ctx.config.default_stride
            data_indices = [i for i in objects if i != HEADER_OBJECT_INDEX]
            new_start = (max(data_indices) + 1) * stride if data_indices else stride
            op_log.log_warning(f"Header unusable, forcing reset with default stride 0x{stride:x}")
        else:
            raise DecodeError(
                f"Header for rank {ctx.rank} is missing or invalid; use --force to reset with default layout"
            )
        new_start = max(new_start, stride)

        op_log.log_step("remove_objects", "started", f"{len(objects)} objects")
        for name in objects.values():
            ctx.store.remove(name)
        op_log.log_metric("objects_removed", len(objects), "objects")
        op_log.log_step("remove_objects", "completed")

        new_header = JournalHeader.fresh(new_start, stride, pool_id)
        ctx.store.write_full(header_object_name(ctx.rank), new_header.encode())
        op_log.log_step("write_header", "completed", f"trim=expire=write=0x{new_start:x}")
    except JournalToolError as e:
        op_log.fail(e)
        raise

    op_log.complete(summary=f"Journal reset to 0x{new_start:x}")
    ctx.logger.info(f"Reset journal for rank {ctx.rank}, new write position 0x{new_start:x}")
    return new_header


def header_set(ctx: ToolContext, field_name: str, value: int) -> JournalHeader:
    """Overwrite one pointer in a decodable header and write it back.

    The header need not be valid beforehand, since fixing its pointers is
    the point. A result that is still invalid is written with a warning.

    Raises:
        InvalidArgument: field not editable or value negative
        NotFound: no header object
        DecodeError: header cannot be decoded
    """
    if field_name not in EDITABLE_FIELDS:
        raise InvalidArgument(f"Invalid header field '{field_name}' (expected one of: {', '.join(EDITABLE_FIELDS)})")
    if value < 0:
        raise InvalidArgument(f"Header value must not be negative: {value}")

    result = ctx.scanner().scan(full=False)
    if not result.header_present:
        raise NotFound(header_object_name(ctx.rank))
    if result.header is None:
        raise DecodeError(f"Header for rank {ctx.rank} cannot be decoded: {'; '.join(result.header_problems)}")

    header = result.header
    old_value = getattr(header, field_name)
    op_log = ctx.operation_logger("header_set", field=field_name, old_value=old_value, new_value=value)
    try:
        setattr(header, field_name, value)
        for problem in header.problems():
            op_log.log_warning(f"Header still invalid after update: {problem}")
            ctx.logger.warning(f"Header still invalid after update: {problem}")
        ctx.store.write_full(header_object_name(ctx.rank), header.encode())
    except JournalToolError as e:
        op_log.fail(e)
        raise

    op_log.complete(summary=f"{field_name}: 0x{old_value:x} -> 0x{value:x}")
    ctx.logger.info(f"Updated header {field_name}: 0x{old_value:x} -> 0x{value:x}")
    return header
