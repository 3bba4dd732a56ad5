"""Subcommand entry points: journal, header and event.

Each entry point receives an explicit ToolContext and the parsed argparse
namespace, validates every argument before touching the store, and returns
a process exit status.
"""

from __future__ import annotations

import argparse
import json
from typing import Optional

from mdjournal.context import ToolContext
from mdjournal.errors import DecodeError, InvalidArgument, NotFound
from mdjournal.export import journal_export, journal_import
from mdjournal.filter import parse_filter
from mdjournal.outputter import OUTPUT_FORMATS, EventOutputter
from mdjournal.repair import header_set, journal_reset, recover_journal, splice_events
from mdjournal.replay import apply_events
from mdjournal.scanner import ScanResult
from mdjournal.store import header_object_name
from mdjournal.types import StrList
from mdjournal.validation import parse_offset, validate_filesystem_path

EVENT_ACTIONS = ("get", "splice", "apply")


def print_inspect(result: ScanResult) -> None:
    print(f"Overall journal integrity: {'OK' if result.is_healthy() else 'DAMAGED'}")
    if not result.header_present:
        print("No header object found")
    elif not result.header_valid:
        print(f"Header is invalid: {'; '.join(result.header_problems)}")
    if result.header_synthesized:
        print("Scanned using a header inferred from the journal objects")
    if result.objects_missing:
        print("Objects missing:")
        for index in result.objects_missing:
            print(f"  0x{index:x}")
    if result.ranges_invalid:
        print("Corrupt regions:")
        for start, end in result.ranges_invalid:
            print(f"  0x{start:x}-0x{end:x}")


def main_journal(ctx: ToolContext, args: argparse.Namespace) -> int:
    command = args.journal_command
    if command == "inspect":
        print_inspect(recover_journal(ctx))
    elif command == "export":
        validate_filesystem_path(args.path, check_writable=True)
        count = journal_export(ctx, args.path)
        print(f"Exported {count} entries to {args.path}")
    elif command == "import":
        validate_filesystem_path(args.path, must_exist=True)
        count = journal_import(ctx, args.path)
        print(f"Imported {count} entries from {args.path}")
    elif command == "reset":
        header = journal_reset(ctx, force=args.force)
        print(f"Journal reset, write position 0x{header.write_pos:x}")
    else:
        raise InvalidArgument(f"Unknown journal command '{command}'")
    return 0


def main_header(ctx: ToolContext, args: argparse.Namespace) -> int:
    command = args.header_command
    if command == "get":
        result = ctx.scanner().scan(full=False)
        if not result.header_present:
            raise NotFound(header_object_name(ctx.rank))
        if result.header is None:
            raise DecodeError(f"Header cannot be decoded: {'; '.join(result.header_problems)}")
        print(json.dumps(result.header.to_dict(), indent=2, sort_keys=True))
        for problem in result.header_problems:
            ctx.logger.warning(f"Header problem: {problem}")
    elif command == "set":
        value = parse_offset(args.value, args.field)
        header = header_set(ctx, args.field, value)
        print(f"Header {args.field} set to 0x{getattr(header, args.field):x}")
    else:
        raise InvalidArgument(f"Unknown header command '{command}'")
    return 0


def split_event_tokens(tokens: StrList) -> tuple[StrList, StrList, bool]:
    """Separate filter flags from the output arguments that follow them.

    Returns (filter_tokens, rest, dry_run). Filter flags always take a
    value; ``--dry-run`` may appear anywhere.
    """
    dry_run = "--dry-run" in tokens
    tokens = [t for t in tokens if t != "--dry-run"]
    i = 0
    while i < len(tokens) and tokens[i].startswith("--"):
        i += 2
    return tokens[:i], tokens[i:], dry_run


def parse_output_args(rest: StrList) -> tuple[str, Optional[str]]:
    """Parse ``<format> [--path P]`` after the filter flags."""
    if not rest:
        raise InvalidArgument(f"Missing output format (expected one of: {', '.join(OUTPUT_FORMATS)})")
    output_format, extra = rest[0], rest[1:]
    if output_format not in OUTPUT_FORMATS:
        raise InvalidArgument(f"Unknown output format '{output_format}' (expected one of: {', '.join(OUTPUT_FORMATS)})")

    path = None
    while extra:
        if extra[0] == "--path" and len(extra) >= 2:
            path = extra[1]
            extra = extra[2:]
        else:
            raise InvalidArgument(f"Unexpected argument '{extra[0]}'")
    return output_format, path


def main_event(ctx: ToolContext, args: argparse.Namespace) -> int:
    action = args.event_action
    if action not in EVENT_ACTIONS:
        raise InvalidArgument(f"Unknown event action '{action}'")

    filter_tokens, rest, dry_run = split_event_tokens(args.tokens or [])
    journal_filter, leftover = parse_filter(filter_tokens)
    if leftover:
        raise InvalidArgument(f"Unexpected arguments: {' '.join(leftover)}")

    if dry_run and action == "get":
        raise InvalidArgument("--dry-run is not valid for event get")

    if action == "get":
        output_format, path = parse_output_args(rest)
        if output_format == "json" and path:
            validate_filesystem_path(path, check_writable=True)
        result = recover_journal(ctx, journal_filter)
        EventOutputter(result, path).render(output_format)
        return 0

    if rest:
        raise InvalidArgument(f"Unexpected arguments: {' '.join(rest)}")

    if action == "splice":
        dry_run = dry_run or ctx.dry_run
        offsets = splice_events(ctx, journal_filter, dry_run)
        if dry_run:
            for offset in offsets:
                print(f"Would erase 0x{offset:x}")
            print(f"Would erase {len(offsets)} entries")
        else:
            print(f"Erased {len(offsets)} entries")
    else:
        reports = apply_events(ctx, journal_filter, dry_run or ctx.dry_run)
        for offset, report in reports.items():
            prefix = "Would apply" if report.dry_run else "Applied"
            print(f"{prefix} 0x{offset:x}: {len(report.actions)} actions, "
                  f"{len(report.objects_written)} objects written")
            for action_record in report.actions:
                print(f"  {action_record.action} {action_record.object} {action_record.key}".rstrip())
        print(f"{len(reports)} entries replayed")
    return 0
