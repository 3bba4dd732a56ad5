"""Tests for mdjournal/export.py: container format, export and import."""

from __future__ import annotations

import os
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, os.path.dirname(__file__))

from journal_fixtures import STRIDE, JournalBuilder, make_context, noop_event, session_event, update_event
from mdjournal.errors import DecodeError, JournalToolError
from mdjournal.events import EventType
from mdjournal.export import CONTAINER_MAGIC, Container, ExportRecord, journal_export, journal_import
from mdjournal.filter import JournalFilter
from mdjournal.repair import recover_journal
from mdjournal.store import DirectoryObjectStore, MemoryObjectStore, journal_object_name


def build_journal(store):
    builder = JournalBuilder()
    builder.append(session_event())
    for i in range(8):
        builder.append(update_event(0x1, f"file{i}", 0x100 + i))
    builder.append(session_event(is_open=False))
    builder.write(store)
    return builder


class TestRoundTrip(unittest.TestCase):
    def test_export_then_import_into_empty_store(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = make_context(tmpdir)
            build_journal(source.store)
            path = os.path.join(tmpdir, "journal.bin")

            count = journal_export(source, path)
            target = make_context(tmpdir)
            imported = journal_import(target, path)

            self.assertEqual(count, imported)
            original = recover_journal(source)
            restored = recover_journal(target)
            self.assertEqual(restored.header, original.header)
            self.assertEqual(list(restored.events), list(original.events))
            for offset, record in original.events.items():
                self.assertEqual(restored.events[offset].raw, record.raw)
            self.assertTrue(restored.is_healthy())

    def test_filtered_subset(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = make_context(tmpdir)
            builder = build_journal(source.store)
            path = os.path.join(tmpdir, "sessions.bin")

            count = journal_export(source, path, JournalFilter(event_type=EventType.SESSION))
            self.assertEqual(count, 2)

            target = make_context(tmpdir)
            journal_import(target, path)
            restored = recover_journal(target, JournalFilter(event_type=EventType.SESSION))
            self.assertEqual(list(restored.events), [builder.offsets[0], builder.offsets[-1]])

    def test_directory_store(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = DirectoryObjectStore(os.path.join(tmpdir, "store"), "metadata")
            source = make_context(tmpdir, store=store)
            build_journal(store)
            path = os.path.join(tmpdir, "journal.bin")
            journal_export(source, path)

            target_store = DirectoryObjectStore(os.path.join(tmpdir, "restored"), "metadata")
            target = make_context(tmpdir, store=target_store)
            journal_import(target, path)
            self.assertEqual(target_store.list(), store.list())

    def test_export_from_headerless_journal(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = make_context(tmpdir)
            builder = JournalBuilder()
            builder.fill_objects(2)
            builder.write(source.store, with_header=False)
            path = os.path.join(tmpdir, "journal.bin")

            self.assertEqual(journal_export(source, path), len(builder.offsets))
            target = make_context(tmpdir)
            journal_import(target, path)
            restored = recover_journal(target)
            self.assertTrue(restored.header_valid)
            self.assertEqual(list(restored.events), builder.offsets)

    def test_export_empty_store_fails(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            ctx = make_context(tmpdir)
            with self.assertRaises(DecodeError):
                journal_export(ctx, os.path.join(tmpdir, "out.bin"))

    def test_import_merges_into_damaged_journal(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = make_context(tmpdir)
            builder = build_journal(source.store)
            path = os.path.join(tmpdir, "journal.bin")
            journal_export(source, path)

            source.store.remove(journal_object_name(0, 2))
            self.assertFalse(recover_journal(source).is_healthy())
            journal_import(source, path)
            self.assertEqual(list(recover_journal(source).events), builder.offsets)


class TestContainerValidation(unittest.TestCase):
    def setUp(self):
        builder = JournalBuilder()
        self.first = builder.append(noop_event())
        self.second = builder.append(noop_event())
        self.builder = builder
        self.container = Container(builder.header(), [
            ExportRecord(self.first, builder.raw(self.first)),
            ExportRecord(self.second, builder.raw(self.second)),
        ])

    def test_decode_encoded(self):
        decoded = Container.decode(self.container.encode())
        self.assertEqual(decoded.header, self.container.header)
        self.assertEqual(decoded.records, self.container.records)

    def test_header_only(self):
        container = Container(JournalBuilder().header())
        self.assertEqual(Container.decode(container.encode()).records, [])

    def test_bad_magic(self):
        data = b"XXXX" + self.container.encode()[len(CONTAINER_MAGIC):]
        with self.assertRaises(DecodeError):
            Container.decode(data)

    def test_truncated(self):
        data = self.container.encode()
        for cut in (3, 10, len(data) - 1):
            with self.assertRaises(DecodeError):
                Container.decode(data[:cut])

    def test_out_of_order(self):
        self.container.records.reverse()
        with self.assertRaises(DecodeError):
            Container.decode(self.container.encode())

    def test_record_not_an_envelope(self):
        self.container.records[1] = ExportRecord(self.second, b"\x00" * 20)
        with self.assertRaises(DecodeError):
            Container.decode(self.container.encode())

    def test_record_wrong_offset(self):
        self.container.records[1] = ExportRecord(self.second + 1, self.builder.raw(self.second))
        with self.assertRaises(DecodeError):
            Container.decode(self.container.encode())

    def test_record_past_write_pos(self):
        self.container.header.write_pos = self.second
        with self.assertRaises(DecodeError):
            Container.decode(self.container.encode())

    def test_invalid_header(self):
        self.container.header.expire_pos = self.container.header.write_pos + STRIDE
        with self.assertRaises(DecodeError):
            Container.decode(self.container.encode())

    def test_import_validates_before_writing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            self.container.records.reverse()
            path = os.path.join(tmpdir, "bad.bin")
            with open(path, 'wb') as f:
                f.write(self.container.encode())
            store = MemoryObjectStore()
            ctx = make_context(tmpdir, store=store)
            with self.assertRaises(DecodeError):
                journal_import(ctx, path)
            self.assertEqual(store.list(), [])

    def test_missing_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            ctx = make_context(tmpdir)
            with self.assertRaises(JournalToolError):
                journal_import(ctx, os.path.join(tmpdir, "nope.bin"))


if __name__ == '__main__':
    unittest.main()
