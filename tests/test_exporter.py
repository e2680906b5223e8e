import csv
import json
import os
import sys
import tempfile
import unittest
from unittest import mock

import requests

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
SRC = os.path.join(ROOT, 'src')
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from exporter import (  # noqa: E402
    DatasetAssembler,
    Exporter,
    ResultsWriter,
    SheetsExporter,
    export_session,
)


def sample_payload():
    return {
        'experiment': 'memory',
        'participant_id': 'abc123xyz0',
        'timestamp': '2026-01-01T00:00:00.000Z',
        'demographics': {'age': '30'},
        'zoom_tracking': {
            'zoom_check_bypassed': False,
            'zoom_check_attempts': 1,
            'approved_dpr': 1.0,
            'initial_dpr': 1.0,
            'zoom_changes_count': 0,
            'zoom_changes': [],
            'terminated_due_to_zoom': False,
        },
        'rounds': [
            {'round_number': 1, 'asian_response': 2},
            {'round_number': 2, 'white_response': 1},
        ],
    }


class FakeOutcome:
    def __init__(self, row):
        self.row = row

    def as_dict(self):
        return dict(self.row)


class FakeSession:
    id = 'abc123xyz0'
    demographics = {}
    outcomes = [FakeOutcome({'trial_number': 1})]


class FakeMonitor:
    def tracking_data(self):
        return {'zoom_changes': [], 'zoom_changes_count': 0}


class FakeDesign:
    tag = 'subj_traits'
    dataset_key = 'trials'


class TestDatasetAssembler(unittest.TestCase):
    def test_build(self):
        payload = DatasetAssembler(timestamp=lambda: 'T').build(FakeSession(), FakeMonitor(), FakeDesign())
        self.assertEqual(payload['experiment'], 'subj_traits')
        self.assertEqual(payload['participant_id'], 'abc123xyz0')
        self.assertEqual(payload['timestamp'], 'T')
        self.assertEqual(payload['demographics'], {})
        self.assertEqual(payload['trials'], [{'trial_number': 1}])
        self.assertIn('zoom_tracking', payload)

    def test_default_timestamp_is_iso_utc(self):
        payload = DatasetAssembler().build(FakeSession(), FakeMonitor(), FakeDesign())
        self.assertTrue(payload['timestamp'].endswith('Z'))
        self.assertIn('T', payload['timestamp'])


class TestSheetsExporter(unittest.TestCase):
    def test_posts_json_in_data_field(self):
        with mock.patch('exporter.requests.post') as post:
            post.return_value.status_code = 200
            self.assertTrue(SheetsExporter('https://sink.example/exec', 5).send(sample_payload()))
        args, kwargs = post.call_args
        self.assertEqual(args[0], 'https://sink.example/exec')
        self.assertEqual(json.loads(kwargs['data']['data']), sample_payload())
        self.assertEqual(kwargs['timeout'], 5)

    def test_two_sends_are_two_submissions(self):
        sender = SheetsExporter('https://sink.example/exec')
        payload = sample_payload()
        with mock.patch('exporter.requests.post') as post:
            post.return_value.status_code = 200
            self.assertTrue(sender.send(payload))
            self.assertTrue(sender.send(payload))
        self.assertEqual(post.call_count, 2)

    def test_request_failure_returns_false(self):
        with mock.patch('exporter.requests.post', side_effect=requests.exceptions.ConnectionError('down')):
            self.assertFalse(SheetsExporter('https://sink.example/exec').send(sample_payload()))

    def test_unserializable_payload_returns_false(self):
        payload = sample_payload()
        payload['demographics'] = {'bad': object()}
        with mock.patch('exporter.requests.post') as post:
            self.assertFalse(SheetsExporter('https://sink.example/exec').send(payload))
        post.assert_not_called()


class TestResultsWriter(unittest.TestCase):
    def test_save_creates_csv_and_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            csv_path, json_path = ResultsWriter(output_dir=tmpdir).save(sample_payload(), 'rounds')
            self.assertTrue(os.path.exists(csv_path))
            with open(csv_path, newline='', encoding='utf-8') as f:
                rows = list(csv.DictReader(f))
            self.assertEqual(len(rows), 2)
            self.assertEqual(rows[0]['participant_id'], 'abc123xyz0')
            self.assertEqual(rows[0]['asian_response'], '2')
            self.assertEqual(rows[0]['white_response'], '')
            with open(json_path, encoding='utf-8') as f:
                self.assertEqual(json.load(f), sample_payload())

    def test_two_saves_keep_separate_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            writer = ResultsWriter(output_dir=tmpdir)
            first = writer.save(sample_payload(), 'rounds')
            second = writer.save(sample_payload(), 'rounds')
            self.assertNotEqual(first, second)
            self.assertEqual(len(os.listdir(tmpdir)), 4)


class TestExportSession(unittest.TestCase):
    def test_failure_falls_back_to_local_copy(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            writer = ResultsWriter(output_dir=tmpdir)
            sender = SheetsExporter('https://sink.example/exec')
            with mock.patch('exporter.requests.post', side_effect=requests.exceptions.Timeout()):
                result = export_session(sample_payload(), 'rounds', sender, writer, keep_local_copy=False)
            self.assertFalse(result.sent)
            self.assertIsNotNone(result.local_paths)
            self.assertTrue(os.path.exists(result.local_paths[1]))

    def test_success_without_local_copy(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            writer = ResultsWriter(output_dir=tmpdir)
            sender = SheetsExporter('https://sink.example/exec')
            with mock.patch('exporter.requests.post') as post:
                post.return_value.status_code = 200
                result = export_session(sample_payload(), 'rounds', sender, writer, keep_local_copy=False)
            self.assertTrue(result.sent)
            self.assertIsNone(result.local_paths)
            self.assertEqual(os.listdir(tmpdir), [])

    def test_exporter_called_twice_submits_twice(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            exporter = Exporter(
                {'endpoint': 'https://sink.example/exec', 'keep_local_copy': False},
                writer=ResultsWriter(output_dir=tmpdir),
            )
            with mock.patch('exporter.requests.post') as post:
                post.return_value.status_code = 200
                first = exporter.export(FakeSession(), FakeMonitor(), FakeDesign())
                second = exporter.export(FakeSession(), FakeMonitor(), FakeDesign())
            self.assertTrue(first.sent and second.sent)
            self.assertEqual(post.call_count, 2)

    def test_no_endpoint_saves_locally(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            exporter = Exporter({'endpoint': ''}, writer=ResultsWriter(output_dir=tmpdir))
            result = exporter.export(FakeSession(), FakeMonitor(), FakeDesign())
            self.assertFalse(result.sent)
            self.assertEqual(len(os.listdir(tmpdir)), 2)


if __name__ == '__main__':
    unittest.main()
