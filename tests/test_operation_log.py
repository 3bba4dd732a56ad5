"""Tests for mdjournal/operation_log.py: the JSON-lines audit trail of destructive operations."""

from __future__ import annotations

import glob
import json
import os
import sys
import tempfile
import unittest

import pytz

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from mdjournal.errors import StoreIOError
from mdjournal.operation_log import OperationLogger, create_operation_logger, resolve_timezone
from mdjournal.scanner import ScanResult


def read_events(log_file):
    with open(log_file) as f:
        return [json.loads(line.split(" - ", 3)[3]) for line in f]


def open_logger(tmpdir, timezone=None, context=None):
    return OperationLogger('abcd1234', 'reset', os.path.join(tmpdir, 'reset.log'),
                           timezone=timezone, context=context)


class TestOperationLogger(unittest.TestCase):
    def test_start_event_carries_context(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = open_logger(tmpdir, context={'rank': 2, 'force': True})
            self.assertEqual(logger.status, 'running')
            self.assertIsNone(logger.current_step)
            start = read_events(logger.log_file)[0]
            self.assertEqual(start['event_type'], 'operation_start')
            self.assertEqual(start['operation'], 'reset')
            self.assertEqual(start['operation_id'], 'abcd1234')
            self.assertEqual(start['context'], {'rank': 2, 'force': True})

    def test_every_event_is_stamped(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = open_logger(tmpdir)
            logger.log_step('remove_objects', 'started')
            logger.log_metric('objects_removed', 4, 'objects')
            logger.complete()
            for event in read_events(logger.log_file):
                self.assertIn('timestamp', event)
                self.assertEqual(event['operation_id'], 'abcd1234')

    def test_log_step(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = open_logger(tmpdir)
            logger.log_step('erase_0x1000', 'completed', '120 bytes', duration=0.123)
            self.assertEqual(logger.current_step, 'erase_0x1000')
            step = read_events(logger.log_file)[-1]
            self.assertEqual(step['status'], 'completed')
            self.assertEqual(step['details'], '120 bytes')
            self.assertEqual(step['duration_seconds'], 0.12)

    def test_unset_fields_omitted(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = open_logger(tmpdir)
            logger.log_step('write_header', 'completed')
            step = read_events(logger.log_file)[-1]
            self.assertNotIn('details', step)
            self.assertNotIn('duration_seconds', step)

    def test_log_scan(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = open_logger(tmpdir)
            result = ScanResult(rank=0, header_present=True, header_valid=True,
                                objects_missing=[3], ranges_invalid=[(0x1000, 0x1400)],
                                events_valid=[0x400, 0x480])
            logger.log_scan(result)
            scan = read_events(logger.log_file)[-1]
            self.assertEqual(scan['event_type'], 'scan')
            self.assertFalse(scan['healthy'])
            self.assertEqual(scan['objects_missing'], [3])
            self.assertEqual(scan['ranges_invalid'], [[0x1000, 0x1400]])
            self.assertEqual(scan['entries'], 2)
            self.assertEqual(scan['matched'], 0)

    def test_warnings_counted(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = open_logger(tmpdir)
            logger.log_step('write_header', 'started')
            logger.log_warning('header invalid', {'rank': 0})
            logger.complete('completed', 'reset anyway')
            events = read_events(logger.log_file)
            self.assertEqual(events[-2]['current_step'], 'write_header')
            self.assertEqual(events[-1]['warnings'], 1)
            self.assertEqual(events[-1]['summary'], 'reset anyway')

    def test_fail(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = open_logger(tmpdir)
            logger.fail(StoreIOError('write 200.00000001 failed'), {'erased': [0x400]})
            error, complete = read_events(logger.log_file)[-2:]
            self.assertEqual(logger.status, 'failed')
            self.assertEqual(error['error_type'], 'StoreIOError')
            self.assertEqual(error['context'], {'erased': [0x400]})
            self.assertEqual(complete['event_type'], 'operation_complete')
            self.assertEqual(complete['status'], 'failed')

    def test_log_metric(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = open_logger(tmpdir)
            logger.log_metric('entries_erased', 4, 'events')
            metric = read_events(logger.log_file)[-1]
            self.assertEqual(metric['metric_name'], 'entries_erased')
            self.assertEqual(metric['value'], 4)
            self.assertEqual(metric['unit'], 'events')

    def test_timezone(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = open_logger(tmpdir, timezone='Asia/Tokyo')
            start = read_events(logger.log_file)[0]
            self.assertTrue(start['timestamp'].endswith('+09:00'))


class TestResolveTimezone(unittest.TestCase):
    def test_known(self):
        self.assertEqual(resolve_timezone('Europe/Berlin').zone, 'Europe/Berlin')

    def test_unknown_or_empty_falls_back(self):
        self.assertIs(resolve_timezone('Mars/Olympus'), pytz.UTC)
        self.assertIs(resolve_timezone(None), pytz.UTC)


class TestCreateOperationLogger(unittest.TestCase):
    def test_file_named_by_type(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = create_operation_logger(tmpdir, 'splice', rank=0, filter='--type SESSION')
            files = glob.glob(os.path.join(tmpdir, 'splice_*.log'))
            self.assertEqual(files, [logger.log_file])
            self.assertTrue(logger.log_file.endswith(f'_{logger.operation_id}.log'))
            start = read_events(logger.log_file)[0]
            self.assertEqual(start['operation'], 'splice')
            self.assertEqual(start['context']['filter'], '--type SESSION')


if __name__ == '__main__':
    unittest.main()
