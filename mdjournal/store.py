"""Object store access for journal inspection and repair.

The store holds one pool of named objects. Journal objects are named from
the rank's journal inode and a stride index; the header is object 0 and
the data stream begins at object 1.

Two backends are provided: DirectoryObjectStore keeps one file per object
under ``<root>/<pool>/`` and MemoryObjectStore keeps objects in a dict.
"""

from __future__ import annotations

import os
import time
from abc import ABC, abstractmethod
from logging import Logger
from pathlib import Path
from typing import Optional

from mdjournal.errors import NotFound, StoreIOError

JOURNAL_INO_BASE = 0x200
HEADER_OBJECT_INDEX = 0

READ_BACKOFF_SECONDS = 0.5
READ_MAX_BACKOFF_SECONDS = 8.0


def journal_ino(rank: int) -> int:
    """Inode number of the journal for a metadata-service rank."""
    return JOURNAL_INO_BASE + rank


def object_name(ino: int, index: int) -> str:
    return f"{ino:x}.{index:08x}"


def journal_prefix(rank: int) -> str:
    return f"{journal_ino(rank):x}."


def journal_object_name(rank: int, index: int) -> str:
    return object_name(journal_ino(rank), index)


def header_object_name(rank: int) -> str:
    return journal_object_name(rank, HEADER_OBJECT_INDEX)


def parse_object_index(rank: int, name: str) -> Optional[int]:
    """Return the stride index encoded in a journal object name, or None."""
    prefix = journal_prefix(rank)
    if not name.startswith(prefix):
        return None
    suffix = name[len(prefix):]
    if len(suffix) != 8:
        return None
    try:
        return int(suffix, 16)
    except ValueError:
        return None


class ObjectStore(ABC):
    """Blocking object store interface."""

    @abstractmethod
    def read(self, name: str, offset: int = 0, length: Optional[int] = None) -> bytes:
        """Read bytes from an object; raises NotFound if it does not exist."""

    @abstractmethod
    def write(self, name: str, offset: int, data: bytes) -> None:
        """Write bytes at an offset, creating the object if needed."""

    @abstractmethod
    def stat(self, name: str) -> int:
        """Return the object size; raises NotFound if it does not exist."""

    @abstractmethod
    def remove(self, name: str) -> None:
        """Remove an object; raises NotFound if it does not exist."""

    @abstractmethod
    def list(self, prefix: str = "") -> list[str]:
        """Return the sorted names of objects starting with prefix."""

    def exists(self, name: str) -> bool:
        try:
            self.stat(name)
        except NotFound:
            return False
        return True

    def write_full(self, name: str, data: bytes) -> None:
        """Replace the whole content of an object."""
        if self.exists(name):
            self.remove(name)
        self.write(name, 0, data)


class DirectoryObjectStore(ObjectStore):
    """Object store backed by one file per object in a pool directory."""

    def __init__(self, root: str, pool: str):
        self.root = Path(root)
        self.pool = pool
        self.pool_dir = self.root / pool

    def _path(self, name: str) -> Path:
        if not name or '/' in name or name in ('.', '..'):
            raise StoreIOError(f"Invalid object name: {name!r}", name)
        return self.pool_dir / name

    def read(self, name: str, offset: int = 0, length: Optional[int] = None) -> bytes:
        path = self._path(name)
        try:
            with open(path, 'rb') as f:
                f.seek(offset)
                return f.read() if length is None else f.read(length)
        except FileNotFoundError:
            raise NotFound(name) from None
        except OSError as e:
            raise StoreIOError(f"Error reading {name}: {e}", name) from e

    def write(self, name: str, offset: int, data: bytes) -> None:
        path = self._path(name)
        try:
            self.pool_dir.mkdir(parents=True, exist_ok=True)
            mode = 'r+b' if path.exists() else 'wb'
            with open(path, mode) as f:
                f.seek(offset)
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise StoreIOError(f"Error writing {name}: {e}", name) from e

    def stat(self, name: str) -> int:
        try:
            return self._path(name).stat().st_size
        except FileNotFoundError:
            raise NotFound(name) from None
        except OSError as e:
            raise StoreIOError(f"Error checking {name}: {e}", name) from e

    def remove(self, name: str) -> None:
        try:
            self._path(name).unlink()
        except FileNotFoundError:
            raise NotFound(name) from None
        except OSError as e:
            raise StoreIOError(f"Error removing {name}: {e}", name) from e

    def list(self, prefix: str = "") -> list[str]:
        if not self.pool_dir.exists():
            return []
        try:
            return sorted(
                entry.name for entry in self.pool_dir.iterdir()
                if entry.is_file() and entry.name.startswith(prefix)
            )
        except OSError as e:
            raise StoreIOError(f"Error listing pool {self.pool}: {e}") from e


class MemoryObjectStore(ObjectStore):
    """In-memory object store, used for tests and dry runs."""

    def __init__(self) -> None:
        self.objects: dict[str, bytearray] = {}

    def read(self, name: str, offset: int = 0, length: Optional[int] = None) -> bytes:
        if name not in self.objects:
            raise NotFound(name)
        data = self.objects[name]
        end = len(data) if length is None else offset + length
        return bytes(data[offset:end])

    def write(self, name: str, offset: int, data: bytes) -> None:
        obj = self.objects.setdefault(name, bytearray())
        if len(obj) < offset:
            obj.extend(b"\0" * (offset - len(obj)))
        obj[offset:offset + len(data)] = data

    def stat(self, name: str) -> int:
        if name not in self.objects:
            raise NotFound(name)
        return len(self.objects[name])

    def remove(self, name: str) -> None:
        if name not in self.objects:
            raise NotFound(name)
        del self.objects[name]

    def list(self, prefix: str = "") -> list[str]:
        return sorted(name for name in self.objects if name.startswith(prefix))


def read_with_retry(
    store: ObjectStore,
    name: str,
    retries: int,
    logger: Optional[Logger] = None,
    backoff_seconds: float = READ_BACKOFF_SECONDS
) -> bytes:
    """Read a whole object, retrying transport errors with exponential backoff.

    NotFound is never retried. The last StoreIOError propagates once the
    attempts are exhausted.
    """
    for attempt in range(retries):
        try:
            return store.read(name)
        except StoreIOError as e:
            if attempt == retries - 1:
                raise
            delay = min(backoff_seconds * (2 ** attempt), READ_MAX_BACKOFF_SECONDS)
            if logger:
                logger.warning(f"Read of {name} failed (attempt {attempt + 1}): {e}, retrying in {delay}s")
            time.sleep(delay)
    raise StoreIOError(f"Error reading {name}: no attempts made", name)
