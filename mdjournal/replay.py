"""Offline replay of a single MetaBlob into the metadata pool.

Dirfrag objects are named ``{ino:x}.{frag:08x}`` and hold a JSON document
``{"fnode": {...}, "dentries": {"<name>_head": {...}}}``. Root inodes are
written to ``{ino:x}.00000000.inode``. Nothing already in the store is
replaced by something older: versions are compared for fnodes, dentries
and root inodes alike.

This bypasses the metadata service's locking entirely and is only safe
while the filesystem is offline.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from mdjournal.context import ToolContext
from mdjournal.errors import DecodeError, JournalToolError, NotFound
from mdjournal.events import DirLump, InodeRecord, MetaBlob
from mdjournal.filter import JournalFilter
from mdjournal.repair import recover_journal, warn_if_unhealthy
from mdjournal.store import object_name
from mdjournal.types import JSONDict

DENTRY_SUFFIX = "_head"


def dirfrag_object_name(ino: int, frag: int) -> str:
    return object_name(ino, frag)


def root_inode_object_name(ino: int) -> str:
    return f"{object_name(ino, 0)}.inode"


@dataclass
class ReplayAction:
    action: str
    object: str
    key: str = ""
    version: int = 0
    detail: str = ""

    def to_dict(self) -> JSONDict:
        return {
            "action": self.action, "object": self.object, "key": self.key,
            "version": self.version, "detail": self.detail,
        }


@dataclass
class ReplayReport:
    dry_run: bool
    actions: list[ReplayAction] = field(default_factory=list)
    objects_written: list[str] = field(default_factory=list)

    def record(self, action: str, obj: str, key: str = "", version: int = 0, detail: str = "") -> None:
        self.actions.append(ReplayAction(action, obj, key, version, detail))

    def count(self, action: str) -> int:
        return sum(1 for a in self.actions if a.action == action)

    def to_dict(self) -> JSONDict:
        return {
            "dry_run": self.dry_run,
            "actions": [a.to_dict() for a in self.actions],
            "objects_written": list(self.objects_written),
        }


def _load_document(ctx: ToolContext, name: str) -> Optional[JSONDict]:
    try:
        data = ctx.store.read(name)
    except NotFound:
        return None
    try:
        doc = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"Object {name} is not a valid metadata document: {e}") from e
    if not isinstance(doc, dict):
        raise DecodeError(f"Object {name} is not a valid metadata document")
    return doc


def _store_document(ctx: ToolContext, name: str, doc: JSONDict) -> None:
    ctx.store.write_full(name, json.dumps(doc, sort_keys=True).encode("utf-8"))


def _dentry_version(entry: Any) -> int:
    if isinstance(entry, dict) and isinstance(entry.get("version"), int):
        return entry["version"]
    return 0


def _replay_lump(ctx: ToolContext, lump: DirLump, report: ReplayReport) -> None:
    name = dirfrag_object_name(lump.ino, lump.frag)
    doc = _load_document(ctx, name)
    if doc is None:
        report.record("create_dirfrag", name)
        doc = {"fnode": None, "dentries": {}}
    dentries = doc.setdefault("dentries", {})
    if not isinstance(dentries, dict):
        raise DecodeError(f"Object {name} has malformed dentries")
    changed = False

    stored_fnode = doc.get("fnode")
    if stored_fnode is not None and _dentry_version(stored_fnode) > lump.fnode_version:
        report.record("skip_fnode", name, version=lump.fnode_version,
                      detail=f"stored version {_dentry_version(stored_fnode)} is newer")
    else:
        doc["fnode"] = lump.fnode
        report.record("write_fnode", name, version=lump.fnode_version)
        changed = True

    for bit in lump.full_bits:
        key = bit.dn + DENTRY_SUFFIX
        existing = dentries.get(key)
        if existing is not None and _dentry_version(existing) > bit.version:
            report.record("skip_dentry", name, key, bit.version, f"stored version {_dentry_version(existing)} is newer")
            continue
        dentries[key] = {"type": "primary", "version": bit.version, "inode": bit.inode.to_dict()}
        report.record("write_dentry", name, key, bit.version, f"inode 0x{bit.inode.ino:x}")
        changed = True

    for bit in lump.remote_bits:
        key = bit.dn + DENTRY_SUFFIX
        existing = dentries.get(key)
        if existing is not None and _dentry_version(existing) > bit.version:
            report.record("skip_dentry", name, key, bit.version, f"stored version {_dentry_version(existing)} is newer")
            continue
        dentries[key] = {"type": "remote", "version": bit.version,
                         "remote_ino": bit.remote_ino, "d_type": bit.d_type}
        report.record("write_dentry", name, key, bit.version, f"remote 0x{bit.remote_ino:x}")
        changed = True

    for bit in lump.null_bits:
        key = bit.dn + DENTRY_SUFFIX
        existing = dentries.get(key)
        if existing is None:
            continue
        if _dentry_version(existing) < bit.version:
            del dentries[key]
            report.record("remove_dentry", name, key, bit.version)
            changed = True
        else:
            report.record("skip_dentry", name, key, bit.version, "stored dentry is not older than removal")

    if changed and not report.dry_run:
        _store_document(ctx, name, doc)
        report.objects_written.append(name)


def _replay_root(ctx: ToolContext, root: InodeRecord, report: ReplayReport) -> None:
    name = root_inode_object_name(root.ino)
    existing = _load_document(ctx, name)
    if existing is not None and _dentry_version(existing) > root.version:
        report.record("skip_root", name, version=root.version,
                      detail=f"stored version {_dentry_version(existing)} is newer")
        return
    report.record("write_root", name, version=root.version)
    if not report.dry_run:
        _store_document(ctx, name, root.to_dict())
        report.objects_written.append(name)


def replay_offline(ctx: ToolContext, metablob: MetaBlob, dry_run: bool = False) -> ReplayReport:
    """Apply one metablob's dirfrag and root inode updates to the metadata pool.

    With dry_run the same decisions are made and reported, but nothing is
    written. Write failures propagate immediately.
    """
    report = ReplayReport(dry_run=dry_run)
    for lump in metablob.lumps:
        _replay_lump(ctx, lump, report)
    for root in metablob.roots:
        _replay_root(ctx, root, report)

    ctx.logger.info(
        f"{'Dry run: ' if dry_run else ''}replayed {len(metablob.lumps)} dirfrags and "
        f"{len(metablob.roots)} roots, {len(report.objects_written)} objects written"
    )
    return report


def apply_events(ctx: ToolContext, journal_filter: JournalFilter, dry_run: bool = False) -> dict[int, ReplayReport]:
    """Replay every matching entry that carries a metablob, in offset order."""
    result = recover_journal(ctx, journal_filter)
    warn_if_unhealthy(ctx, result)

    reports: dict[int, ReplayReport] = {}
    op_log = None if dry_run else ctx.operation_logger("apply", filter=repr(journal_filter))
    if op_log:
        op_log.log_scan(result)
    try:
        for offset, record in result.events.items():
            metablob = record.log_event.get_metablob()
            if metablob is None:
                continue
            reports[offset] = replay_offline(ctx, metablob, dry_run)
            if op_log:
                op_log.log_step(f"replay_0x{offset:x}", "completed",
                                f"{len(reports[offset].objects_written)} objects written")
    except JournalToolError as e:
        if op_log:
            op_log.fail(e)
        raise

    if op_log:
        op_log.complete(summary=f"Applied {len(reports)} entries")
    return reports
