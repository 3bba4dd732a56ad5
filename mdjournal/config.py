"""Configuration for journal tool runs.

Settings come from three layers: built-in defaults, an optional JSON config
file (``--config``), and command line arguments, later layers winning.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, asdict, fields
from logging import INFO, getLevelName
from typing import Optional, Any

from mdjournal.errors import InvalidArgument
from mdjournal.logging_utils import DEFAULT_LOG_DIR
from mdjournal.types import BYTES_PER_MB, JSONDict
from mdjournal.validation import validate_rank

DEFAULT_STORE_ROOT = "/var/lib/journal_tool/store"
DEFAULT_METADATA_POOL = "metadata"
DEFAULT_STRIDE = 4 * BYTES_PER_MB
DEFAULT_READ_RETRIES = 3


@dataclass
class ToolConfig:
    rank: int = 0
    store_root: str = DEFAULT_STORE_ROOT
    metadata_pool: str = DEFAULT_METADATA_POOL
    default_stride: int = DEFAULT_STRIDE
    read_retries: int = DEFAULT_READ_RETRIES
    log_dir: str = DEFAULT_LOG_DIR
    log_level: int = INFO
    timezone: str = "UTC"
    dry_run: bool = False

    def __post_init__(self) -> None:
        validate_rank(self.rank)
        if self.default_stride <= 0:
            raise InvalidArgument(f"default_stride must be positive: {self.default_stride}")
        if self.read_retries < 1:
            raise InvalidArgument(f"read_retries must be at least 1: {self.read_retries}")

    @property
    def operation_log_dir(self) -> str:
        return f"{self.log_dir}/operations"

    def to_dict(self) -> JSONDict:
        data = asdict(self)
        data['log_level'] = getLevelName(self.log_level)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'ToolConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidArgument(f"Unknown configuration keys: {', '.join(unknown)}")

        data = dict(data)
        level = data.get('log_level')
        if isinstance(level, str):
            resolved = getLevelName(level.upper())
            if not isinstance(resolved, int):
                raise InvalidArgument(f"Unknown log level: {level}")
            data['log_level'] = resolved

        try:
            return cls(**data)
        except TypeError as e:
            raise InvalidArgument(f"Invalid configuration: {e}") from e

    @classmethod
    def load(cls, path: str) -> 'ToolConfig':
        """Load configuration from a JSON file."""
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except OSError as e:
            raise InvalidArgument(f"Cannot read config file {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise InvalidArgument(f"Config file {path} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise InvalidArgument(f"Config file {path} must contain a JSON object")
        return cls.from_dict(data)

    @classmethod
    def from_args(cls, args: argparse.Namespace, base: Optional['ToolConfig'] = None) -> 'ToolConfig':
        """Overlay command line arguments on a base configuration.

        Arguments left at None keep the base (or default) value.
        """
        data = asdict(base) if base else {}

        overrides = {
            'rank': getattr(args, 'rank', None),
            'store_root': getattr(args, 'store', None),
            'metadata_pool': getattr(args, 'pool', None),
            'log_dir': getattr(args, 'log_dir', None),
            'timezone': getattr(args, 'timezone', None),
        }
        for key, value in overrides.items():
            if value is not None:
                data[key] = value

        if getattr(args, 'verbose', False):
            data['log_level'] = getLevelName('DEBUG')
        if getattr(args, 'dry_run', False):
            data['dry_run'] = True

        return cls.from_dict(data)
