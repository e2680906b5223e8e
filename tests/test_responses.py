import os
import sys
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
SRC = os.path.join(ROOT, 'src')
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from responses import PresentationRecord, PromptSlot  # noqa: E402


class TestPromptSlot(unittest.TestCase):
    def test_timeout_after_submit_keeps_submission(self):
        slot = PromptSlot('race', 10000)
        slot.start(1.0)
        self.assertTrue(slot.submit({'choice': 'Asian'}, 2.5))
        self.assertFalse(slot.expire())
        self.assertFalse(slot.poll_timeout(20.0))
        self.assertEqual(slot.outcome.values, {'choice': 'Asian'})
        self.assertEqual(slot.outcome.elapsed_ms, 1500.0)
        self.assertFalse(slot.outcome.timed_out)

    def test_submit_after_timeout_is_ignored(self):
        slot = PromptSlot('race', 10000)
        slot.start(0.0)
        self.assertTrue(slot.poll_timeout(10.0))
        self.assertFalse(slot.submit({'choice': 'Black'}, 10.2))
        slot.touch('choice', 'Black')
        self.assertIsNone(slot.outcome.values)
        self.assertIsNone(slot.outcome.elapsed_ms)
        self.assertTrue(slot.outcome.timed_out)
        self.assertEqual(slot.response_order, [])

    def test_deadline_not_reached(self):
        slot = PromptSlot('race', 10000)
        slot.start(0.0)
        self.assertFalse(slot.poll_timeout(9.99))
        self.assertFalse(slot.settled)

    def test_timeout_keeps_partial_when_asked(self):
        slot = PromptSlot('race', 30000)
        slot.start(0.0)
        slot.touch('white', 3)
        slot.touch('asian', 1)
        slot.touch('white', 4)
        self.assertTrue(slot.expire(keep_partial=True))
        self.assertEqual(slot.outcome.values, {'white': 4, 'asian': 1})
        self.assertIsNone(slot.outcome.elapsed_ms)
        self.assertEqual(slot.response_order, ['white', 'asian'])

    def test_timeout_without_input_is_null(self):
        slot = PromptSlot('race', 30000)
        slot.expire(keep_partial=True)
        self.assertIsNone(slot.outcome.values)

    def test_unsettled_slot_reads_as_timeout(self):
        slot = PromptSlot('race', 1000)
        self.assertTrue(slot.outcome.timed_out)


class TestPresentationRecord(unittest.TestCase):
    def test_results_read_back_by_name_regardless_of_resolution_order(self):
        record = PresentationRecord()
        first = record.open_slot('smile', 1000)
        second = record.open_slot('race', 1000)
        first.start(0.0)
        second.start(0.0)
        second.submit({'choice': 'White'}, 0.5)
        first.expire()
        self.assertEqual(record.outcome('race').values, {'choice': 'White'})
        self.assertTrue(record.outcome('smile').timed_out)
        self.assertEqual(record.prompt_order, ['smile', 'race'])

    def test_missing_prompt_reads_as_timeout(self):
        record = PresentationRecord()
        self.assertTrue(record.outcome('nope').timed_out)
        self.assertEqual(record.response_order('nope'), [])

    def test_duplicate_prompt_rejected(self):
        record = PresentationRecord()
        record.open_slot('race', 1000)
        with self.assertRaises(ValueError):
            record.open_slot('race', 1000)


if __name__ == '__main__':
    unittest.main()
