"""Audit trail for destructive journal operations.

Each reset, splice, import, header edit or replay gets its own log file
under ``<log_dir>/operations/`` with one JSON object per line::

    {"event_type": "step", "operation": "splice", "operation_id": "1a2b3c4d",
     "timestamp": "2024-05-01T10:00:00+00:00", "step": "erase_0x400000", ...}

Event types: operation_start, scan, step, warning, error, metric,
operation_complete.
"""

from __future__ import annotations
import json
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pytz

from mdjournal.logging_utils import close_logger, get_rotating_logger, log_message


def resolve_timezone(name: Optional[str]) -> Any:
    """Return a pytz timezone, falling back to UTC for unknown names."""
    if not name:
        return pytz.UTC
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        return pytz.UTC


class OperationLogger:
    """JSON-lines audit log for one destructive operation."""

    def __init__(
        self,
        operation_id: str,
        operation_type: str,
        log_file: str,
        timezone: Optional[str] = None,
        context: Optional[dict[str, Any]] = None
    ):
        """Open the log and record operation_start.

        Args:
            operation_id: Unique identifier for the operation
            operation_type: Kind of operation ('reset', 'splice', ...)
            log_file: Path to log file
            timezone: Timezone name used for event timestamps (default UTC)
            context: Parameters of the operation (rank, pool, filter, ...)
        """
        self.operation_id = operation_id
        self.operation_type = operation_type
        self.log_file = log_file
        self.tz = resolve_timezone(timezone)
        self.logger = get_rotating_logger(f"operation_{operation_id}", log_file)
        self.start_time = time.time()
        self.current_step: Optional[str] = None
        self.status = "running"
        self.warnings: list[str] = []

        self._event("operation_start", log_file=log_file, context=context or {})

    def _isoformat(self, timestamp: Optional[float] = None) -> str:
        if timestamp is None:
            timestamp = time.time()
        return datetime.fromtimestamp(timestamp, self.tz).isoformat()

    def _event(self, event_type: str, **data: Any) -> None:
        entry: dict[str, Any] = {
            "event_type": event_type,
            "operation": self.operation_type,
            "operation_id": self.operation_id,
            "timestamp": self._isoformat(),
        }
        entry.update((key, value) for key, value in data.items() if value is not None)
        log_message(self.logger, json.dumps(entry, default=str))

    def log_scan(self, result: Any) -> None:
        """Record the state of the journal as a scan found it."""
        self._event(
            "scan",
            healthy=result.is_healthy(),
            header_present=result.header_present,
            header_valid=result.header_valid,
            header_synthesized=result.header_synthesized,
            objects_missing=list(result.objects_missing),
            ranges_invalid=[list(r) for r in result.ranges_invalid],
            entries=len(result.events_valid),
            matched=len(result.events),
        )

    def log_step(self, step: str, status: str, details: Optional[str] = None, duration: Optional[float] = None) -> None:
        """Log a step in the operation.

        Args:
            step: Step name, e.g. 'remove_objects' or 'erase_0x400000'
            status: 'started', 'completed', 'failed' or 'skipped'
            details: Optional details about the step
            duration: Optional duration in seconds
        """
        self.current_step = step
        self._event(
            "step",
            step=step,
            status=status,
            details=details or None,
            duration_seconds=None if duration is None else round(duration, 2),
        )

    def log_warning(self, warning_message: str, context: Optional[dict[str, Any]] = None) -> None:
        self.warnings.append(warning_message)
        self._event("warning", warning_message=warning_message,
                    current_step=self.current_step, context=context)

    def log_error(self, error_type: str, error_message: str, context: Optional[dict[str, Any]] = None) -> None:
        self._event("error", error_type=error_type, error_message=error_message,
                    current_step=self.current_step, context=context)

    def log_metric(self, metric_name: str, value: Any, unit: Optional[str] = None) -> None:
        """Log a count or size, e.g. ('objects_removed', 4, 'objects')."""
        self._event("metric", metric_name=metric_name, value=value, unit=unit)

    def fail(self, error: Exception, context: Optional[dict[str, Any]] = None) -> None:
        """Record the exception that aborted the operation and close it as failed."""
        self.log_error(type(error).__name__, str(error), context)
        self.complete("failed")

    def complete(self, status: str = "completed", summary: Optional[str] = None) -> None:
        """Record the final status and release the log file."""
        self.status = status
        end_time = time.time()
        self._event(
            "operation_complete",
            status=status,
            duration_seconds=round(end_time - self.start_time, 2),
            warnings=len(self.warnings),
            summary=summary,
        )
        close_logger(self.logger)


def create_operation_logger(
    base_log_dir: str,
    operation_type: str,
    timezone: Optional[str] = None,
    **context: Any
) -> OperationLogger:
    """Create an operation logger with its own file in base_log_dir.

    Files are named ``<operation_type>_<YYYYmmdd_HHMMSS>_<id>.log`` so the
    trail of a given repair is easy to find.

    Args:
        base_log_dir: Directory holding operation logs
        operation_type: Type of operation (e.g., 'reset', 'splice', 'import')
        timezone: Timezone name for timestamps and the file name
        **context: Parameters recorded in the operation_start event

    Returns:
        New OperationLogger instance
    """
    operation_id = str(uuid.uuid4())[:8]
    timestamp = datetime.now(resolve_timezone(timezone)).strftime("%Y%m%d_%H%M%S")
    log_file = Path(base_log_dir) / f"{operation_type}_{timestamp}_{operation_id}.log"
    return OperationLogger(operation_id, operation_type, str(log_file), timezone=timezone, context=context)
