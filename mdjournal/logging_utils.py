"""Logging for the journal tool.

Two kinds of log are written:

- the service log, ``<log_dir>/journal_tool.log``, where every record is
  tagged with the MDS rank it concerns, plus terse console output on stderr
  (stdout is reserved for reports and exports)
- one audit file per destructive operation, see ``operation_log``

File logs rotate by size. When a log file cannot be opened the logger
falls back to stderr rather than failing the repair it is recording.
"""

from __future__ import annotations

from logging import (
    Filter, Formatter, Handler, Logger, LogRecord, StreamHandler, getLogger, INFO
)
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional
import sys
from mdjournal.types import BYTES_PER_MB

DEFAULT_LOG_MAX_BYTES = 5 * BYTES_PER_MB
DEFAULT_LOG_BACKUP_COUNT = 5
DEFAULT_LOG_LEVEL = INFO
DEFAULT_LOG_DIR = "/var/log/journal_tool"
SERVICE_NAME = "journal_tool"

# timestamp - severity - logger - message; operation logs parse on " - "
STANDARD_LOG_FORMAT = "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s"
SERVICE_LOG_FORMAT = "%(asctime)s - %(levelname)-8s - mds.%(rank)s - %(message)s"
CONSOLE_LOG_FORMAT = "%(levelname)s: %(message)s"
STANDARD_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class RankFilter(Filter):
    """Stamp each record with the MDS rank being worked on."""

    def __init__(self, rank: Optional[int] = None):
        super().__init__()
        self.rank = rank

    def filter(self, record: LogRecord) -> bool:
        record.rank = "?" if self.rank is None else self.rank
        return True


def get_standard_formatter() -> Formatter:
    return Formatter(STANDARD_LOG_FORMAT, STANDARD_DATE_FORMAT)


def _stderr_handler(level: int, formatter: Formatter) -> StreamHandler:
    handler = StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _file_handler(log_file: Path, formatter: Formatter, level: int,
                  max_bytes: int, backup_count: int) -> Optional[Handler]:
    """Open a rotating handler on log_file, or None if it cannot be created."""
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(str(log_file), maxBytes=max_bytes, backupCount=backup_count)
    except OSError as e:
        print(f"Cannot log to {log_file}: {e}", file=sys.stderr)
        return None
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def get_rotating_logger(
    name: str,
    log_file: str,
    max_bytes: int = DEFAULT_LOG_MAX_BYTES,
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
    level: int = DEFAULT_LOG_LEVEL,
    formatter: Optional[Formatter] = None
) -> Logger:
    """Return a non-propagating logger writing to a rotating log_file.

    Calling this again with the same name and file does not add a second
    handler. If the file cannot be opened, records go to stderr instead.

    Args:
        name: Logger name
        log_file: Path to log file, parent directories are created
        max_bytes: Size at which the file is rotated
        backup_count: Number of rotated files kept
        level: Logging level
        formatter: Record format (default: STANDARD_LOG_FORMAT)

    Returns:
        Configured Logger instance
    """
    logger = getLogger(name)
    if not logger.handlers:
        logger.setLevel(level)
        logger.propagate = False

    log_path = Path(log_file).resolve()
    if any(isinstance(h, RotatingFileHandler) and h.baseFilename == str(log_path) for h in logger.handlers):
        return logger

    formatter = formatter or get_standard_formatter()
    handler = _file_handler(log_path, formatter, level, max_bytes, backup_count)
    if handler is not None:
        logger.addHandler(handler)
    elif not logger.handlers:
        logger.addHandler(_stderr_handler(level, formatter))
    return logger


def get_service_logger(
    service_name: str = SERVICE_NAME,
    log_dir: Optional[str] = None,
    level: int = DEFAULT_LOG_LEVEL,
    console_output: bool = True,
    rank: Optional[int] = None
) -> Logger:
    """Get the tool's main logger, tagged with the rank being repaired.

    The logger is shared across calls, so the rank tag is updated in place
    rather than stacking filters. Tags are applied per handler so records
    propagated from child loggers (journal_tool.events) carry them too.

    Example:
        logger = get_service_logger('journal_tool', '/tmp/jt-logs', rank=0)
        logger.warning('Journal is damaged')
    """
    log_file = Path(log_dir or DEFAULT_LOG_DIR) / f"{service_name}.log"
    logger = get_rotating_logger(service_name, str(log_file), level=level,
                                 formatter=Formatter(SERVICE_LOG_FORMAT, STANDARD_DATE_FORMAT))
    logger.setLevel(level)

    if console_output:
        # Match on the stream, a redirected sys.stderr gets its own handler
        if not any(type(h) is StreamHandler and h.stream is sys.stderr for h in logger.handlers):
            logger.addHandler(_stderr_handler(level, Formatter(CONSOLE_LOG_FORMAT)))

    for handler in logger.handlers:
        rank_filter = next((f for f in handler.filters if isinstance(f, RankFilter)), None)
        if rank_filter is None:
            handler.addFilter(RankFilter(rank))
        else:
            rank_filter.rank = rank

    return logger


def close_logger(logger: Logger) -> None:
    """Detach and close every handler, releasing the files they hold."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def log_message(logger: Logger, message: str, level: int = INFO) -> None:
    """Log a message, reporting on stderr if the log itself cannot be written."""
    try:
        logger.log(level, message)
    except OSError as e:
        targets = [h.baseFilename for h in logger.handlers if isinstance(h, RotatingFileHandler)]
        print(f"Error writing to log {targets[0] if targets else 'unknown log'}: {e}", file=sys.stderr)
