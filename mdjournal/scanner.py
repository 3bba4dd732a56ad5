"""Sequential, corruption-tolerant journal reader.

Unlike a normal journal reader this walks the stream object by object and
records what it finds instead of stopping at the first problem: missing
objects become gaps, undecodable bytes become invalid ranges, and every
well-formed entry is kept with its absolute offset. It is slower than a
production reader but a scan of an arbitrarily damaged journal always
completes with a report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from logging import Logger, getLogger
from typing import Optional

from mdjournal.config import DEFAULT_READ_RETRIES, DEFAULT_STRIDE
from mdjournal.envelope import SENTINEL_BYTES, find_sentinel, parse_envelope
from mdjournal.errors import DecodeError, NotFound
from mdjournal.events import LogEvent, decode_event
from mdjournal.filter import JournalFilter
from mdjournal.header import JournalHeader
from mdjournal.store import (
    READ_BACKOFF_SECONDS, ObjectStore, header_object_name,
    journal_object_name, read_with_retry,
)
from mdjournal.types import IntList, RangeList, StrList

# With no usable header there is no write pointer to stop at: the walk ends
# after this many consecutive missing strides, which are then treated as
# lying past the end of the journal rather than as gaps.
END_OF_JOURNAL_MISSING_STRIDES = 2


class ScanState(Enum):
    NOT_SCANNED = "not_scanned"
    HEADER_SCANNED = "header_scanned"
    EVENTS_SCANNED = "events_scanned"


@dataclass
class EventRecord:
    log_event: LogEvent
    raw_size: int  # size from the start offset including envelope overhead
    raw: bytes


@dataclass
class ScanResult:
    """Everything one scan learned about a journal."""
    rank: int
    header_present: bool = False
    header_valid: bool = False
    header: Optional[JournalHeader] = None
    header_problems: StrList = field(default_factory=list)
    header_synthesized: bool = False
    stride: int = DEFAULT_STRIDE
    first_object: int = 1
    objects_valid: StrList = field(default_factory=list)
    objects_missing: IntList = field(default_factory=list)
    ranges_invalid: RangeList = field(default_factory=list)
    events_valid: IntList = field(default_factory=list)
    events: dict[int, EventRecord] = field(default_factory=dict)

    def is_healthy(self) -> bool:
        return (self.header_present and self.header_valid
                and not self.objects_missing and not self.ranges_invalid)

    def is_readable(self) -> bool:
        """Header usable and the first stride present: replay can be attempted."""
        return self.header_valid and self.first_object not in self.objects_missing


class JournalScanner:
    """Single-use scanner for one rank's journal.

    A scanner moves through NOT_SCANNED -> HEADER_SCANNED -> EVENTS_SCANNED
    exactly once and cannot be copied; build a new one to scan again.
    """

    def __init__(
        self,
        store: ObjectStore,
        rank: int,
        journal_filter: Optional[JournalFilter] = None,
        default_stride: int = DEFAULT_STRIDE,
        read_retries: int = DEFAULT_READ_RETRIES,
        layout_hint: Optional[JournalHeader] = None,
        logger: Optional[Logger] = None,
        read_backoff: float = READ_BACKOFF_SECONDS,
    ):
        self.store = store
        self.rank = rank
        self.filter = journal_filter or JournalFilter()
        self.default_stride = default_stride
        self.read_retries = read_retries
        self.layout_hint = layout_hint
        self.logger = logger or getLogger("journal_tool")
        self.read_backoff = read_backoff
        self.state = ScanState.NOT_SCANNED
        self.result = ScanResult(rank=rank, stride=default_stride)

    def __copy__(self):
        raise TypeError("JournalScanner cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("JournalScanner cannot be copied")

    def is_healthy(self) -> bool:
        return self.result.is_healthy()

    def is_readable(self) -> bool:
        return self.result.is_readable()

    def scan(self, full: bool = True) -> ScanResult:
        """Scan the header and, if full, the events."""
        self.scan_header()
        if full:
            self.scan_events()
        return self.result

    def _read(self, name: str) -> bytes:
        return read_with_retry(self.store, name, self.read_retries, self.logger, self.read_backoff)

    def scan_header(self) -> None:
        if self.state is not ScanState.NOT_SCANNED:
            raise RuntimeError("Header already scanned; scanners are single-use")

        result = self.result
        name = header_object_name(self.rank)
        try:
            data = self._read(name)
        except NotFound:
            self.logger.warning(f"Header object {name} not found")
            self.state = ScanState.HEADER_SCANNED
            return

        result.header_present = True
        try:
            header = JournalHeader.decode(data)
        except DecodeError as e:
            result.header_problems.append(str(e))
            self.logger.warning(f"Header object {name} could not be decoded: {e}")
        else:
            result.header = header
            result.header_problems = header.problems()
            result.header_valid = not result.header_problems
            if result.header_valid:
                self.logger.debug(
                    f"Header: trimmed 0x{header.trimmed_pos:x} expire 0x{header.expire_pos:x} "
                    f"write 0x{header.write_pos:x} stride 0x{header.stride:x}"
                )
            else:
                self.logger.warning(f"Header is invalid: {'; '.join(result.header_problems)}")

        self.state = ScanState.HEADER_SCANNED

    def _walk_layout(self) -> Optional[JournalHeader]:
        if self.result.header_valid:
            return self.result.header
        return self.layout_hint

    def scan_events(self) -> None:
        if self.state is ScanState.NOT_SCANNED:
            raise RuntimeError("scan_header must run before scan_events")
        if self.state is ScanState.EVENTS_SCANNED:
            raise RuntimeError("Events already scanned; scanners are single-use")

        result = self.result
        layout = self._walk_layout()
        if layout is not None:
            stride = layout.stride
            start = layout.trimmed_pos
            end: Optional[int] = layout.write_pos
        else:
            stride = self.default_stride
            start = stride
            end = None
            self.logger.info(f"No usable header, scanning from 0x{start:x} with default stride 0x{stride:x}")

        result.stride = stride
        result.first_object = start // stride

        buf = bytearray()
        cursor = start          # stream offset of buf[0]
        data_end = start        # stream offset just past the last byte read
        gap_start: Optional[int] = None
        missing_run: IntList = []
        index = start // stride

        while True:
            obj_start = index * stride
            if end is not None and max(obj_start, start) >= end:
                break

            name = journal_object_name(self.rank, index)
            try:
                data = self._read(name)
            except NotFound:
                missing_run.append(index)
                result.objects_missing.append(index)
                if end is None and len(missing_run) >= END_OF_JOURNAL_MISSING_STRIDES:
                    del result.objects_missing[-len(missing_run):]
                    self.logger.debug(f"Reached end of journal objects at {name}")
                    break
                if end is not None:
                    self.logger.warning(f"Missing object {name}")
                if gap_start is None:
                    gap_start = cursor
                buf.clear()
                cursor = obj_start + stride
                index += 1
                continue

            if missing_run and end is None:
                for missing in missing_run:
                    self.logger.warning(f"Missing object {journal_object_name(self.rank, missing)}")
            missing_run = []
            result.objects_valid.append(name)

            skip = max(start - obj_start, 0)
            limit = stride if end is None else min(stride, end - obj_start)
            chunk = data[skip:limit]
            chunk_pos = obj_start + skip
            if cursor + len(buf) < chunk_pos:
                # Short previous object: the hole reads as zeros.
                buf.extend(bytes(chunk_pos - (cursor + len(buf))))
            buf.extend(chunk)
            data_end = max(data_end, cursor + len(buf))
            self.logger.debug(f"Read 0x{len(chunk):x} bytes from {name}")

            consumed, gap_start = self._parse(buf, cursor, gap_start, end)
            del buf[:consumed]
            cursor += consumed
            index += 1

        stream_end = end if end is not None else data_end
        tail_start = gap_start if gap_start is not None else cursor
        if tail_start < stream_end:
            self.logger.warning(f"Invalid data from 0x{tail_start:x} to end of journal at 0x{stream_end:x}")
            result.ranges_invalid.append((tail_start, stream_end))

        self.state = ScanState.EVENTS_SCANNED
        self.logger.info(
            f"Scanned {len(result.objects_valid)} objects: {len(result.events_valid)} valid entries, "
            f"{len(result.events)} matched, {len(result.objects_missing)} missing objects, "
            f"{len(result.ranges_invalid)} invalid ranges"
        )

    def _parse(
        self,
        buf: bytearray,
        cursor: int,
        gap_start: Optional[int],
        end: Optional[int]
    ) -> tuple[int, Optional[int]]:
        """Consume as many envelopes from buf as possible.

        Returns the number of bytes consumed and the (possibly updated)
        start of the open invalid range.
        """
        result = self.result
        pos = 0
        while True:
            if gap_start is not None:
                found = find_sentinel(buf, pos)
                if found < 0:
                    # Keep a partial sentinel that may continue in the next object.
                    keep = min(len(buf) - pos, len(SENTINEL_BYTES) - 1)
                    return len(buf) - keep, gap_start
                pos = found

            offset = cursor + pos
            try:
                parsed = parse_envelope(buf, pos, offset, end)
            except DecodeError as e:
                if gap_start is None:
                    self.logger.warning(f"Invalid envelope: {e}")
                    gap_start = offset
                pos += 1
                continue

            if parsed is None:
                return pos, gap_start

            payload, raw_size = parsed
            event = decode_event(payload)
            if event is None:
                if gap_start is None:
                    self.logger.warning(f"Undecodable entry at 0x{offset:x}")
                    gap_start = offset
                pos += raw_size
                continue

            if gap_start is not None:
                self.logger.warning(f"Invalid data from 0x{gap_start:x} to 0x{offset:x}")
                result.ranges_invalid.append((gap_start, offset))
                gap_start = None

            result.events_valid.append(offset)
            if self.filter.apply(offset, event):
                result.events[offset] = EventRecord(
                    log_event=event,
                    raw_size=raw_size,
                    raw=bytes(buf[pos:pos + raw_size]),
                )
            pos += raw_size
