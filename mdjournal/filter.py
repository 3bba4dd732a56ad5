"""Conditions for narrowing down a search through the journal."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from mdjournal.errors import InvalidArgument
from mdjournal.events import EventType, LogEvent
from mdjournal.types import DirFrag, StrList
from mdjournal.validation import parse_offset, validate_client_name

RANGE_END_UNSET = 2 ** 64 - 1
RANGE_SEPARATOR = ".."

FILTER_FLAGS = ("--range", "--path", "--inode", "--type", "--frag", "--client")


@dataclass
class JournalFilter:
    """Conjunction of optional predicates over (offset, event).

    Every predicate left at its unset value matches everything, so a
    default-constructed filter accepts every entry.
    """
    range_start: int = 0
    range_end: int = RANGE_END_UNSET
    path_expr: str = ""
    inode: int = 0
    event_type: Optional[EventType] = None
    frag: Optional[DirFrag] = None
    frag_dentry: str = ""
    client_name: str = ""

    def get_range(self) -> tuple[bool, int, int]:
        """Return (bounded, start, end) for the configured offset range."""
        bounded = self.range_start != 0 or self.range_end != RANGE_END_UNSET
        return bounded, self.range_start, self.range_end

    def is_unset(self) -> bool:
        return self == JournalFilter()

    def apply(self, offset: int, event: LogEvent) -> bool:
        if offset < self.range_start or offset >= self.range_end:
            return False

        metablob = event.get_metablob()

        if self.path_expr:
            if metablob is None:
                return False
            if not any(self.path_expr in path for path in metablob.get_paths()):
                return False

        if self.inode:
            if metablob is None or self.inode not in metablob.get_inodes():
                return False

        if self.event_type is not None and event.type != self.event_type:
            return False

        if self.frag is not None:
            if metablob is None:
                return False
            if self.frag_dentry:
                if self.frag_dentry not in metablob.get_dentries(self.frag):
                    return False
            elif self.frag not in metablob.get_dirfrags():
                return False

        if self.client_name:
            if metablob is not None:
                if metablob.client_name != self.client_name:
                    return False
            elif event.type == EventType.SESSION:
                if event.get_client_name() != self.client_name:
                    return False
            else:
                return False

        return True

    def parse_args(self, tokens: StrList) -> StrList:
        """Consume filter flags from tokens and return the tokens left over.

        Raises:
            InvalidArgument: malformed value, missing value or unknown flag
        """
        remaining: StrList = []
        i = 0
        while i < len(tokens):
            token = tokens[i]
            if not token.startswith("--"):
                remaining.append(token)
                i += 1
                continue
            if token not in FILTER_FLAGS:
                raise InvalidArgument(f"Unknown filter argument '{token}'")
            if i + 1 >= len(tokens):
                raise InvalidArgument(f"Missing value for '{token}'")
            self._parse_flag(token, tokens[i + 1])
            i += 2
        return remaining

    def _parse_flag(self, flag: str, value: str) -> None:
        if flag == "--range":
            self._parse_range(value)
        elif flag == "--path":
            if not value:
                raise InvalidArgument("Path expression must not be empty")
            self.path_expr = value
        elif flag == "--inode":
            inode = parse_offset(value, "inode")
            if inode == 0:
                raise InvalidArgument("Inode must be non-zero")
            self.inode = inode
        elif flag == "--type":
            try:
                self.event_type = EventType.from_name(value)
            except KeyError:
                names = ", ".join(t.name for t in EventType)
                raise InvalidArgument(f"Invalid event type '{value}' (expected one of: {names})") from None
        elif flag == "--frag":
            self._parse_frag(value)
        elif flag == "--client":
            self.client_name = validate_client_name(value)

    def _parse_range(self, value: str) -> None:
        sep = value.find(RANGE_SEPARATOR)
        if sep < 0 or len(value) <= len(RANGE_SEPARATOR):
            raise InvalidArgument(f"Invalid range '{value}' (expected start..end)")

        start_str = value[:sep]
        end_str = value[sep + len(RANGE_SEPARATOR):]
        start = parse_offset(start_str, "range start") if start_str else 0
        end = parse_offset(end_str, "range end") if end_str else RANGE_END_UNSET
        if start > end:
            raise InvalidArgument(f"Invalid range '{value}': start is after end")
        self.range_start = start
        self.range_end = end

    def _parse_frag(self, value: str) -> None:
        frag_str, _, dentry = value.partition("/")
        ino_str, dot, fragno_str = frag_str.partition(".")
        if not dot or not ino_str or not fragno_str:
            raise InvalidArgument(f"Invalid dirfrag '{value}' (expected ino.frag[/dentry])")
        ino = parse_offset(ino_str, "dirfrag inode")
        try:
            fragno = int(fragno_str, 16)
        except ValueError:
            raise InvalidArgument(f"Invalid fragment '{fragno_str}' in dirfrag '{value}'") from None
        self.frag = (ino, fragno)
        self.frag_dentry = dentry


def parse_filter(tokens: StrList) -> tuple[JournalFilter, StrList]:
    """Build a filter from tokens, returning it with the unconsumed tokens."""
    journal_filter = JournalFilter()
    remaining = journal_filter.parse_args(tokens)
    return journal_filter, remaining
