"""Command line front end for the journal tool.

Usage:
    journal-tool [--rank N] [--store DIR] [--pool P] [--config FILE] [-v] journal inspect
    journal-tool journal export PATH | import PATH | reset [--force]
    journal-tool header get | set FIELD VALUE
    journal-tool event get [filter] (summary|list|json|binary) [--path P]
    journal-tool event splice [filter] [--dry-run]
    journal-tool event apply [filter] [--dry-run]

Filter flags: --range A..B --path EXPR --inode N --type TYPE
              --frag INO.FRAG[/DENTRY] --client client.N
"""

from __future__ import annotations

import argparse
import sys
from logging import ERROR
from typing import Optional

import argcomplete

from mdjournal.commands import EVENT_ACTIONS, main_event, main_header, main_journal
from mdjournal.config import ToolConfig
from mdjournal.context import ToolContext
from mdjournal.errors import InvalidArgument, JournalToolError
from mdjournal.header import EDITABLE_FIELDS
from mdjournal.logging_utils import log_message

EXIT_INVALID_ARGUMENT = 2

COMMANDS = {
    'journal': main_journal,
    'header': main_header,
    'event': main_event,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="journal-tool",
        description="Inspect and repair metadata journals",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--rank', type=int, help='Metadata service rank (default: 0)')
    parser.add_argument('--store', help='Object store root directory')
    parser.add_argument('--pool', help='Metadata pool name')
    parser.add_argument('--config', help='JSON configuration file')
    parser.add_argument('--log-dir', dest='log_dir', help='Directory for tool and operation logs')
    parser.add_argument('--timezone', help='Timezone for operation log timestamps')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    journal_parser = subparsers.add_parser('journal', help='Whole-journal operations')
    journal_sub = journal_parser.add_subparsers(dest='journal_command')
    journal_sub.add_parser('inspect', help='Report journal integrity')
    export_parser = journal_sub.add_parser('export', help='Export the journal to a file')
    export_parser.add_argument('path', help='Output container path')
    import_parser = journal_sub.add_parser('import', help='Import a previously exported file')
    import_parser.add_argument('path', help='Input container path')
    reset_parser = journal_sub.add_parser('reset', help='Discard all journal content')
    reset_parser.add_argument('--force', action='store_true',
                              help='Reset even when the header is unusable')

    header_parser = subparsers.add_parser('header', help='Journal header operations')
    header_sub = header_parser.add_subparsers(dest='header_command')
    header_sub.add_parser('get', help='Print the header')
    set_parser = header_sub.add_parser('set', help='Set a header pointer')
    set_parser.add_argument('field', choices=EDITABLE_FIELDS)
    set_parser.add_argument('value', help='New value (decimal or 0x hex)')

    event_parser = subparsers.add_parser('event', help='Per-entry operations')
    event_parser.add_argument('event_action', choices=EVENT_ACTIONS)
    event_parser.add_argument('tokens', nargs=argparse.REMAINDER,
                              help='Filter flags followed by output arguments')

    return parser


def load_config(args: argparse.Namespace) -> ToolConfig:
    base = ToolConfig.load(args.config) if args.config else None
    return ToolConfig.from_args(args, base)


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    argcomplete.autocomplete(parser)
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_INVALID_ARGUMENT
    if args.command == 'journal' and not args.journal_command:
        print(f"Usage: {parser.prog} journal {{inspect,export,import,reset}}", file=sys.stderr)
        return EXIT_INVALID_ARGUMENT
    if args.command == 'header' and not args.header_command:
        print(f"Usage: {parser.prog} header {{get,set}}", file=sys.stderr)
        return EXIT_INVALID_ARGUMENT

    try:
        config = load_config(args)
    except InvalidArgument as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INVALID_ARGUMENT

    ctx = ToolContext.from_config(config)
    try:
        return COMMANDS[args.command](ctx, args)
    except InvalidArgument as e:
        log_message(ctx.logger, f"Invalid argument: {e}", level=ERROR)
        return e.exit_code
    except JournalToolError as e:
        log_message(ctx.logger, f"{args.command} failed: {e}", level=ERROR)
        return e.exit_code


if __name__ == "__main__":
    sys.exit(main())
