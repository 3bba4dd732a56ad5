"""Read-only rendering of a ScanResult."""

from __future__ import annotations

import json
import os
import sys
from collections import Counter
from typing import Optional, TextIO

from mdjournal.errors import InvalidArgument, JournalToolError
from mdjournal.scanner import ScanResult
from mdjournal.types import JSONDict, OutputFormat

OUTPUT_FORMATS = ("summary", "list", "json", "binary")
DEFAULT_BINARY_DIR = "dump"


class EventOutputter:
    """Render the matched entries of a scan in one of OUTPUT_FORMATS.

    Text formats go to ``out`` (stdout by default); ``json`` goes to
    ``path`` when one is given and ``binary`` always writes into a
    directory.
    """

    def __init__(self, result: ScanResult, path: Optional[str] = None, out: Optional[TextIO] = None):
        self.result = result
        self.path = path
        self.out = out or sys.stdout

    def render(self, output_format: OutputFormat) -> None:
        if output_format not in OUTPUT_FORMATS:
            raise InvalidArgument(f"Unknown output format '{output_format}' (expected one of: {', '.join(OUTPUT_FORMATS)})")
        getattr(self, output_format)()

    def _write(self, line: str = "") -> None:
        print(line, file=self.out)

    def summary(self) -> None:
        result = self.result
        self._write(f"Rank {result.rank} journal summary")
        self._write(f"  header present: {result.header_present}")
        self._write(f"  header valid: {result.header_valid}")
        if result.header_synthesized:
            self._write("  header synthesized from objects")
        self._write(f"  healthy: {result.is_healthy()}")
        self._write(f"  readable: {result.is_readable()}")
        self._write(f"  objects valid: {len(result.objects_valid)}")
        self._write(f"  objects missing: {len(result.objects_missing)}")
        self._write(f"  invalid ranges: {len(result.ranges_invalid)}")
        self._write(f"  valid entries: {len(result.events_valid)}")
        self._write(f"  matched entries: {len(result.events)}")

        by_type = Counter(record.log_event.type.name for record in result.events.values())
        if by_type:
            self._write("  events by type:")
            for name, count in sorted(by_type.items()):
                self._write(f"    {name}: {count}")

    def list(self) -> None:
        for offset, record in self.result.events.items():
            event = record.log_event
            line = f"0x{offset:x} {event.type.name}: {event.describe()}".rstrip()
            self._write(line)
            metablob = event.get_metablob()
            if metablob is not None:
                for path in metablob.get_paths():
                    self._write(f"  {path}")

    def to_dict(self) -> JSONDict:
        result = self.result
        return {
            "rank": result.rank,
            "header_present": result.header_present,
            "header_valid": result.header_valid,
            "header_synthesized": result.header_synthesized,
            "header": result.header.to_dict() if result.header else None,
            "header_problems": list(result.header_problems),
            "objects_valid": list(result.objects_valid),
            "objects_missing": list(result.objects_missing),
            "ranges_invalid": [{"start": start, "end": end} for start, end in result.ranges_invalid],
            "events": [
                {
                    "offset": offset,
                    "raw_size": record.raw_size,
                    "type": record.log_event.type.name,
                    "event": record.log_event.to_dict(),
                }
                for offset, record in result.events.items()
            ],
        }

    def json(self) -> None:
        text = json.dumps(self.to_dict(), indent=2, sort_keys=True)
        if not self.path:
            self._write(text)
            return
        try:
            with open(self.path, 'w') as f:
                f.write(text + "\n")
        except OSError as e:
            raise JournalToolError(f"Cannot write {self.path}: {e}") from e
        self._write(f"Wrote JSON for {len(self.result.events)} entries to {self.path}")

    def binary(self) -> None:
        directory = self.path or DEFAULT_BINARY_DIR
        try:
            os.makedirs(directory, exist_ok=True)
            for offset, record in self.result.events.items():
                name = f"0x{offset:x}_{record.log_event.type.name}.bin"
                with open(os.path.join(directory, name), 'wb') as f:
                    f.write(record.raw)
        except OSError as e:
            raise JournalToolError(f"Cannot write binary dump to {directory}: {e}") from e
        self._write(f"Wrote {len(self.result.events)} entries to {directory}")
