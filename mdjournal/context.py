"""Per-invocation state shared by the journal tool subcommands."""

from __future__ import annotations

from dataclasses import dataclass
from logging import Logger
from typing import Any, Optional

from mdjournal.config import ToolConfig
from mdjournal.filter import JournalFilter
from mdjournal.header import JournalHeader
from mdjournal.logging_utils import SERVICE_NAME, get_service_logger
from mdjournal.operation_log import OperationLogger, create_operation_logger
from mdjournal.scanner import JournalScanner
from mdjournal.store import DirectoryObjectStore, ObjectStore


@dataclass
class ToolContext:
    """Explicit handle on the store, configuration and logger for one run.

    The store is owned by the context for the whole invocation and is never
    shared between subcommands.
    """
    config: ToolConfig
    store: ObjectStore
    logger: Logger

    @property
    def rank(self) -> int:
        return self.config.rank

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    def scanner(
        self,
        journal_filter: Optional[JournalFilter] = None,
        layout_hint: Optional[JournalHeader] = None
    ) -> JournalScanner:
        """Build a fresh single-use scanner for this rank."""
        return JournalScanner(
            self.store,
            self.rank,
            journal_filter,
            default_stride=self.config.default_stride,
            read_retries=self.config.read_retries,
            layout_hint=layout_hint,
            logger=self.logger,
        )

    def operation_logger(self, operation_type: str, **kwargs: Any) -> OperationLogger:
        """Start an audit trail for a destructive operation."""
        return create_operation_logger(
            self.config.operation_log_dir,
            operation_type,
            timezone=self.config.timezone,
            rank=self.rank,
            pool=self.config.metadata_pool,
            **kwargs
        )

    @classmethod
    def from_config(
        cls,
        config: ToolConfig,
        store: Optional[ObjectStore] = None,
        logger: Optional[Logger] = None,
        console_output: bool = True
    ) -> 'ToolContext':
        if store is None:
            store = DirectoryObjectStore(config.store_root, config.metadata_pool)
        if logger is None:
            logger = get_service_logger(SERVICE_NAME, config.log_dir, config.log_level, console_output, rank=config.rank)
        return cls(config=config, store=store, logger=logger)
