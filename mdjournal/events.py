"""Journal entry payloads: the closed set of event kinds and the MetaBlob.

Payload encoding (little-endian)::

    u16 encoding_version | u32 event_type | UTF-8 JSON object

Each event kind has a fixed schema in EVENT_SCHEMAS. decode_event() is total
over arbitrary bytes: malformed input yields None, never an exception.
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from logging import getLogger
from typing import Any, Optional

from mdjournal.errors import DecodeError
from mdjournal.types import DirFrag, JSONDict, StrList

PAYLOAD_ENCODING_VERSION = 1
_PAYLOAD_PREFIX = struct.Struct("<HI")

logger = getLogger("journal_tool.events")


class EventType(IntEnum):
    SUBTREEMAP = 2
    RESETJOURNAL = 9
    SESSION = 10
    SESSIONS = 12
    UPDATE = 20
    SLAVEUPDATE = 21
    OPEN = 22
    COMMITTED = 23
    EXPORT = 30
    IMPORTSTART = 31
    IMPORTFINISH = 32
    FRAGMENT = 33
    TABLECLIENT = 42
    TABLESERVER = 43
    SUBTREEMAP_TEST = 50
    NOOP = 51

    @classmethod
    def from_name(cls, name: str) -> 'EventType':
        """Look up an event type by name; raises KeyError if unknown."""
        return cls[name.strip().upper()]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require(data: JSONDict, key: str, kind: type, default: Any = None) -> Any:
    """Fetch a typed field from a decoded JSON object, or raise DecodeError."""
    if key not in data:
        if default is not None:
            return default
        raise DecodeError(f"missing field '{key}'")
    value = data[key]
    if kind is int:
        ok = _is_int(value)
    elif kind is float:
        ok = _is_int(value) or isinstance(value, float)
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise DecodeError(f"field '{key}' should be {kind.__name__}, got {type(value).__name__}")
    if kind is float:
        try:
            return float(value)
        except OverflowError:
            raise DecodeError(f"field '{key}' is out of range for a float") from None
    return value


def _require_object(value: Any, what: str) -> JSONDict:
    if not isinstance(value, dict):
        raise DecodeError(f"{what} should be an object")
    return value


@dataclass
class InodeRecord:
    ino: int
    mode: int = 0o100644
    size: int = 0
    nlink: int = 1
    mtime: float = 0.0
    version: int = 0
    symlink: str = ""

    def is_dir(self) -> bool:
        return (self.mode & 0o170000) == 0o040000

    def to_dict(self) -> JSONDict:
        return {
            "ino": self.ino, "mode": self.mode, "size": self.size, "nlink": self.nlink,
            "mtime": self.mtime, "version": self.version, "symlink": self.symlink,
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'InodeRecord':
        data = _require_object(data, "inode")
        return cls(
            ino=_require(data, "ino", int),
            mode=_require(data, "mode", int, 0o100644),
            size=_require(data, "size", int, 0),
            nlink=_require(data, "nlink", int, 1),
            mtime=_require(data, "mtime", float, 0.0),
            version=_require(data, "version", int, 0),
            symlink=_require(data, "symlink", str, ""),
        )


@dataclass
class FullBit:
    """Primary dentry with its embedded inode."""
    dn: str
    version: int
    inode: InodeRecord

    def to_dict(self) -> JSONDict:
        return {"dn": self.dn, "version": self.version, "inode": self.inode.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> 'FullBit':
        data = _require_object(data, "full dentry")
        return cls(
            dn=_require(data, "dn", str),
            version=_require(data, "version", int),
            inode=InodeRecord.from_dict(_require(data, "inode", dict)),
        )


@dataclass
class RemoteBit:
    """Hard link dentry pointing at an inode elsewhere."""
    dn: str
    version: int
    remote_ino: int
    d_type: int = 0

    def to_dict(self) -> JSONDict:
        return {"dn": self.dn, "version": self.version, "remote_ino": self.remote_ino, "d_type": self.d_type}

    @classmethod
    def from_dict(cls, data: Any) -> 'RemoteBit':
        data = _require_object(data, "remote dentry")
        return cls(
            dn=_require(data, "dn", str),
            version=_require(data, "version", int),
            remote_ino=_require(data, "remote_ino", int),
            d_type=_require(data, "d_type", int, 0),
        )


@dataclass
class NullBit:
    """Negative dentry: the name was removed."""
    dn: str
    version: int

    def to_dict(self) -> JSONDict:
        return {"dn": self.dn, "version": self.version}

    @classmethod
    def from_dict(cls, data: Any) -> 'NullBit':
        data = _require_object(data, "null dentry")
        return cls(dn=_require(data, "dn", str), version=_require(data, "version", int))


@dataclass
class DirLump:
    """Changes to one directory fragment."""
    ino: int
    frag: int = 0
    fnode: JSONDict = field(default_factory=lambda: {"version": 0})
    full_bits: list[FullBit] = field(default_factory=list)
    remote_bits: list[RemoteBit] = field(default_factory=list)
    null_bits: list[NullBit] = field(default_factory=list)

    @property
    def dirfrag(self) -> DirFrag:
        return (self.ino, self.frag)

    @property
    def fnode_version(self) -> int:
        return self.fnode.get("version", 0)

    def dentry_names(self) -> StrList:
        return ([b.dn for b in self.full_bits]
                + [b.dn for b in self.remote_bits]
                + [b.dn for b in self.null_bits])

    def to_dict(self) -> JSONDict:
        return {
            "ino": self.ino,
            "frag": self.frag,
            "fnode": self.fnode,
            "full": [b.to_dict() for b in self.full_bits],
            "remote": [b.to_dict() for b in self.remote_bits],
            "null": [b.to_dict() for b in self.null_bits],
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'DirLump':
        data = _require_object(data, "dir lump")
        fnode = _require(data, "fnode", dict, {"version": 0})
        if not _is_int(fnode.get("version", 0)):
            raise DecodeError("fnode version should be int")
        return cls(
            ino=_require(data, "ino", int),
            frag=_require(data, "frag", int, 0),
            fnode=fnode,
            full_bits=[FullBit.from_dict(b) for b in _require(data, "full", list, [])],
            remote_bits=[RemoteBit.from_dict(b) for b in _require(data, "remote", list, [])],
            null_bits=[NullBit.from_dict(b) for b in _require(data, "null", list, [])],
        )


@dataclass
class MetaBlob:
    """A set of metadata mutations carried by one journal event."""
    lumps: list[DirLump] = field(default_factory=list)
    roots: list[InodeRecord] = field(default_factory=list)
    client_name: str = ""
    destroyed_inodes: list[int] = field(default_factory=list)

    def get_paths(self) -> StrList:
        """Reconstruct the paths touched by this blob.

        Paths are built from the dentries the blob itself carries, so they
        are relative to the shallowest directory it mentions.
        """
        if not self.lumps and self.roots:
            return ["/"]

        children: dict[int, StrList] = {}
        ino_locations: dict[int, tuple[int, str]] = {}
        for lump in self.lumps:
            for bit in lump.full_bits:
                children.setdefault(lump.ino, []).append(bit.dn)
                ino_locations[bit.inode.ino] = (lump.ino, bit.dn)
            for name in [b.dn for b in lump.remote_bits] + [b.dn for b in lump.null_bits]:
                children.setdefault(lump.ino, []).append(name)

        leaves: list[tuple[int, str]] = []
        for lump in self.lumps:
            for bit in lump.full_bits:
                if bit.inode.ino not in children:
                    leaves.append((lump.ino, bit.dn))
            for name in [b.dn for b in lump.remote_bits] + [b.dn for b in lump.null_bits]:
                leaves.append((lump.ino, name))

        paths = []
        for parent, path in leaves:
            seen = set()
            while parent in ino_locations and parent not in seen:
                seen.add(parent)
                parent, name = ino_locations[parent]
                path = f"{name}/{path}" if path else name
            paths.append(path)
        return paths

    def get_inodes(self) -> set[int]:
        inodes = {root.ino for root in self.roots}
        for lump in self.lumps:
            inodes.add(lump.ino)
            inodes.update(bit.inode.ino for bit in lump.full_bits)
            inodes.update(bit.remote_ino for bit in lump.remote_bits)
        return inodes

    def get_dirfrags(self) -> set[DirFrag]:
        return {lump.dirfrag for lump in self.lumps}

    def get_dentries(self, dirfrag: DirFrag) -> set[str]:
        names: set[str] = set()
        for lump in self.lumps:
            if lump.dirfrag == dirfrag:
                names.update(lump.dentry_names())
        return names

    def to_dict(self) -> JSONDict:
        return {
            "lumps": [lump.to_dict() for lump in self.lumps],
            "roots": [root.to_dict() for root in self.roots],
            "client_name": self.client_name,
            "destroyed_inodes": list(self.destroyed_inodes),
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'MetaBlob':
        data = _require_object(data, "metablob")
        destroyed = _require(data, "destroyed_inodes", list, [])
        if not all(_is_int(ino) for ino in destroyed):
            raise DecodeError("destroyed_inodes should hold integers")
        return cls(
            lumps=[DirLump.from_dict(lump) for lump in _require(data, "lumps", list, [])],
            roots=[InodeRecord.from_dict(root) for root in _require(data, "roots", list, [])],
            client_name=_require(data, "client_name", str, ""),
            destroyed_inodes=destroyed,
        )


@dataclass(frozen=True)
class EventSchema:
    """Shape of one event kind: whether it carries a metablob, and its fields."""
    has_metablob: bool
    fields: dict[str, type]


EVENT_SCHEMAS: dict[EventType, EventSchema] = {
    EventType.SUBTREEMAP: EventSchema(True, {"subtrees": list, "event_seq": int}),
    EventType.SUBTREEMAP_TEST: EventSchema(True, {"subtrees": list, "event_seq": int}),
    EventType.RESETJOURNAL: EventSchema(False, {}),
    EventType.SESSION: EventSchema(False, {"client_name": str, "open": bool, "cmapv": int}),
    EventType.SESSIONS: EventSchema(False, {"clients": list, "cmapv": int}),
    EventType.UPDATE: EventSchema(True, {"op": str, "cmapv": int}),
    EventType.SLAVEUPDATE: EventSchema(True, {"op": str, "master": int}),
    EventType.OPEN: EventSchema(True, {"inos": list}),
    EventType.COMMITTED: EventSchema(False, {"reqid": str}),
    EventType.EXPORT: EventSchema(True, {"base": list, "bounds": list}),
    EventType.IMPORTSTART: EventSchema(True, {"base": list, "bounds": list}),
    EventType.IMPORTFINISH: EventSchema(False, {"base": list, "success": bool}),
    EventType.FRAGMENT: EventSchema(True, {"op": int, "ino": int, "basefrag": int, "bits": int}),
    EventType.TABLECLIENT: EventSchema(False, {"table": int, "op": int, "tid": int}),
    EventType.TABLESERVER: EventSchema(False, {"table": int, "op": int, "reqid": int, "tid": int, "version": int}),
    EventType.NOOP: EventSchema(False, {"pad_size": int}),
}


@dataclass
class LogEvent:
    type: EventType
    stamp: float = 0.0
    metablob: Optional[MetaBlob] = None
    fields: JSONDict = field(default_factory=dict)

    def get_metablob(self) -> Optional[MetaBlob]:
        return self.metablob

    def get_client_name(self) -> str:
        """Client identity attached to the event, or '' if none."""
        if self.metablob is not None and self.metablob.client_name:
            return self.metablob.client_name
        if self.type == EventType.SESSION:
            return self.fields.get("client_name", "")
        return ""

    def describe(self) -> str:
        details = [f"{key}={value}" for key, value in sorted(self.fields.items())
                   if not isinstance(value, list)]
        if self.metablob is not None:
            details.append(f"{len(self.metablob.lumps)} dirlumps")
        return " ".join(details)

    def to_dict(self) -> JSONDict:
        body: JSONDict = {"stamp": self.stamp, **self.fields}
        if self.metablob is not None:
            body["metablob"] = self.metablob.to_dict()
        return body

    def encode(self) -> bytes:
        body = json.dumps(self.to_dict(), sort_keys=True).encode("utf-8")
        return _PAYLOAD_PREFIX.pack(PAYLOAD_ENCODING_VERSION, int(self.type)) + body


def _decode_variant(event_type: EventType, body: JSONDict) -> LogEvent:
    schema = EVENT_SCHEMAS[event_type]
    values = {name: _require(body, name, kind) for name, kind in schema.fields.items()}
    metablob = None
    if schema.has_metablob:
        metablob = MetaBlob.from_dict(_require(body, "metablob", dict))
    return LogEvent(
        type=event_type,
        stamp=_require(body, "stamp", float, 0.0),
        metablob=metablob,
        fields=values,
    )


def _decode(payload: bytes) -> LogEvent:
    if len(payload) < _PAYLOAD_PREFIX.size:
        raise DecodeError(f"payload too short ({len(payload)} bytes)")
    version, type_code = _PAYLOAD_PREFIX.unpack_from(payload, 0)
    if version != PAYLOAD_ENCODING_VERSION:
        raise DecodeError(f"unknown payload encoding {version}")
    try:
        event_type = EventType(type_code)
    except ValueError:
        raise DecodeError(f"unknown event type {type_code}") from None
    try:
        body = json.loads(payload[_PAYLOAD_PREFIX.size:].decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        raise DecodeError(f"payload body is not JSON: {e}") from e
    return _decode_variant(event_type, _require_object(body, "payload body"))


def decode_event(payload: bytes) -> Optional[LogEvent]:
    """Decode an entry payload, returning None if it is malformed."""
    try:
        return _decode(payload)
    except DecodeError as e:
        logger.debug(f"Undecodable payload: {e}")
        return None
