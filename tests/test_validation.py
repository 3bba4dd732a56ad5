"""Tests for mdjournal/validation.py: offsets, ranks, client names and paths."""

from __future__ import annotations

import os
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from mdjournal.errors import InvalidArgument
from mdjournal.validation import (
    parse_offset,
    validate_client_name,
    validate_filesystem_path,
    validate_rank,
)


class TestParseOffset(unittest.TestCase):
    def test_decimal_and_hex(self):
        self.assertEqual(parse_offset('4096'), 4096)
        self.assertEqual(parse_offset('0x1000'), 4096)
        self.assertEqual(parse_offset(' 0 '), 0)

    def test_invalid(self):
        for value in ('', '   ', 'abc', '-5', '0xzz'):
            with self.assertRaises(InvalidArgument):
                parse_offset(value)

    def test_error_names_value(self):
        with self.assertRaises(InvalidArgument) as cm:
            parse_offset('nope', 'write_pos')
        self.assertIn('write_pos', str(cm.exception))

    def test_invalid_argument_is_value_error(self):
        with self.assertRaises(ValueError):
            parse_offset('x')


class TestValidateRank(unittest.TestCase):
    def test_valid(self):
        self.assertEqual(validate_rank(0), 0)
        self.assertEqual(validate_rank(4095), 4095)

    def test_invalid(self):
        for rank in (-1, 4096, True, '0'):
            with self.assertRaises(InvalidArgument):
                validate_rank(rank)


class TestValidateClientName(unittest.TestCase):
    def test_valid(self):
        self.assertEqual(validate_client_name('client.4107'), 'client.4107')

    def test_invalid(self):
        for name in ('', 'client.', 'client.abc', 'mds.0', '4107'):
            with self.assertRaises(InvalidArgument):
                validate_client_name(name)


class TestValidateFilesystemPath(unittest.TestCase):
    def test_must_exist(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            validate_filesystem_path(tmpdir, must_exist=True)
            with self.assertRaises(InvalidArgument):
                validate_filesystem_path(os.path.join(tmpdir, 'missing'), must_exist=True)

    def test_writable_new_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            validate_filesystem_path(os.path.join(tmpdir, 'out.bin'), check_writable=True)

    def test_missing_parent(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(InvalidArgument):
                validate_filesystem_path(os.path.join(tmpdir, 'a', 'out.bin'), check_writable=True)

    def test_empty(self):
        with self.assertRaises(InvalidArgument):
            validate_filesystem_path('')


if __name__ == '__main__':
    unittest.main()
