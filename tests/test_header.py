"""Tests for mdjournal/header.py and mdjournal/envelope.py."""

from __future__ import annotations

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from mdjournal.envelope import (
    ENVELOPE_OVERHEAD, MAX_ENTRY_SIZE, SENTINEL_BYTES, encode_envelope, find_sentinel, parse_envelope,
)
from mdjournal.errors import DecodeError
from mdjournal.header import STREAM_FORMAT_LEGACY, JournalHeader

STRIDE = 4096


class TestJournalHeader(unittest.TestCase):
    def test_fresh_is_valid(self):
        header = JournalHeader.fresh(STRIDE, STRIDE)
        self.assertTrue(header.is_valid())
        self.assertEqual(header.stride, STRIDE)
        self.assertEqual(header.stripe_unit, STRIDE)

    def test_decode_encoded(self):
        header = JournalHeader(trimmed_pos=STRIDE, expire_pos=STRIDE * 2, write_pos=STRIDE * 3,
                               object_size=STRIDE, pool_id=7)
        decoded = JournalHeader.decode(header.encode())
        self.assertEqual(decoded, header)

    def test_pointer_order(self):
        header = JournalHeader(trimmed_pos=STRIDE * 2, expire_pos=STRIDE, write_pos=STRIDE * 3, object_size=STRIDE)
        self.assertFalse(header.is_valid())
        self.assertIn("pointers out of order", header.problems()[0])

    def test_bad_magic_and_version(self):
        header = JournalHeader.fresh(STRIDE, STRIDE)
        header.magic = "something else"
        header.version = 99
        self.assertEqual(len(header.problems()), 2)

    def test_legacy_stream_format_rejected(self):
        header = JournalHeader.fresh(STRIDE, STRIDE)
        header.stream_format = STREAM_FORMAT_LEGACY
        self.assertFalse(header.is_valid())

    def test_trim_inside_header_object(self):
        self.assertFalse(JournalHeader.fresh(0, STRIDE).is_valid())

    def test_truncated(self):
        data = JournalHeader.fresh(STRIDE, STRIDE).encode()
        for cut in (0, 3, len(data) - 1):
            with self.assertRaises(DecodeError):
                JournalHeader.decode(data[:cut])

    def test_non_text_magic(self):
        data = bytearray(JournalHeader.fresh(STRIDE, STRIDE).encode())
        data[4] = 0xff
        with self.assertRaises(DecodeError):
            JournalHeader.decode(bytes(data))

    def test_to_dict_layout(self):
        data = JournalHeader.fresh(STRIDE, STRIDE, pool_id=3).to_dict()
        self.assertEqual(data["layout"]["object_size"], STRIDE)
        self.assertEqual(data["layout"]["pool_id"], 3)
        self.assertEqual(data["write_pos"], STRIDE)


class TestEnvelope(unittest.TestCase):
    def test_parse_complete(self):
        raw = encode_envelope(b"payload", 0x1234)
        self.assertEqual(len(raw), 7 + ENVELOPE_OVERHEAD)
        self.assertEqual(parse_envelope(raw, 0, 0x1234), (b"payload", len(raw)))

    def test_parse_at_position(self):
        buf = b"junk" + encode_envelope(b"abc", 0x2004)
        self.assertEqual(parse_envelope(buf, 4, 0x2004)[0], b"abc")

    def test_needs_more_data(self):
        raw = encode_envelope(b"payload", 100)
        self.assertIsNone(parse_envelope(raw[:5], 0, 100))
        self.assertIsNone(parse_envelope(raw[:-1], 0, 100))

    def test_limit_rejects_overrun(self):
        raw = encode_envelope(b"payload", 100)
        with self.assertRaises(DecodeError):
            parse_envelope(raw[:-1], 0, 100, limit=100 + len(raw) - 1)

    def test_bad_sentinel(self):
        raw = bytearray(encode_envelope(b"payload", 100))
        raw[0] ^= 1
        with self.assertRaises(DecodeError):
            parse_envelope(raw, 0, 100)

    def test_start_pointer_mismatch(self):
        raw = encode_envelope(b"payload", 100)
        with self.assertRaises(DecodeError):
            parse_envelope(raw, 0, 101)

    def test_implausible_size(self):
        raw = SENTINEL_BYTES + (MAX_ENTRY_SIZE + 1).to_bytes(4, "little")
        with self.assertRaises(DecodeError):
            parse_envelope(raw, 0, 0)
        raw = SENTINEL_BYTES + (0).to_bytes(4, "little")
        with self.assertRaises(DecodeError):
            parse_envelope(raw, 0, 0)

    def test_encode_rejects_empty(self):
        with self.assertRaises(ValueError):
            encode_envelope(b"", 0)

    def test_find_sentinel(self):
        buf = b"xx" + encode_envelope(b"p", 2)
        self.assertEqual(find_sentinel(buf, 0), 2)
        self.assertEqual(find_sentinel(buf, 3), -1)


if __name__ == '__main__':
    unittest.main()
