#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tests for the per-tool circuit breaker and the tool error taxonomy.
"""

import unittest

from conftest import FakeClock
from taskpilot.tools.errors import (
    ToolErrorType,
    classify_tool_error,
    detect_soft_failure,
    is_unrecoverable_error,
)
from taskpilot.tools.failure_tracker import ToolFailureTracker


class TestErrorClassification(unittest.TestCase):
    """Classification of tool failure messages."""

    def test_non_retryable_wins_over_input_dependent(self):
        self.assertEqual(classify_tool_error("File not found: quota exceeded"), ToolErrorType.NON_RETRYABLE)

    def test_input_dependent_messages(self):
        for message in ("ENOENT: no such file or directory", "Parameter 'path' is required",
                        "Permission denied: /etc/shadow"):
            self.assertEqual(classify_tool_error(message), ToolErrorType.INPUT_DEPENDENT, message)

    def test_everything_else_is_systemic(self):
        self.assertEqual(classify_tool_error("Segmentation fault"), ToolErrorType.SYSTEMIC)

    def test_unrecoverable_patterns(self):
        self.assertTrue(is_unrecoverable_error("Skill 'pdf' is not currently executable"))
        self.assertTrue(is_unrecoverable_error("Rate limit reached"))
        self.assertFalse(is_unrecoverable_error("exit code 1"))

    def test_soft_failure_detection(self):
        self.assertIsNone(detect_soft_failure({"success": True}))
        self.assertIsNone(detect_soft_failure("plain text"))
        soft = detect_soft_failure({"success": False, "exitCode": 1})
        self.assertEqual(soft.message, "exit code 1")
        soft = detect_soft_failure({"success": False, "error": "boom"})
        self.assertEqual(soft.message, "boom")


class TestToolFailureTracker(unittest.TestCase):
    """Circuit breaker thresholds and cooldown."""

    def setUp(self):
        self.clock = FakeClock()
        self.tracker = ToolFailureTracker(cooldown_ms=300_000, systemic_threshold=2, input_threshold=4,
                                          clock=self.clock)

    def test_non_retryable_disables_after_one_failure(self):
        self.assertTrue(self.tracker.record_failure("web_search", "Quota exceeded for this month"))
        self.assertTrue(self.tracker.is_disabled("web_search"))
        self.assertIn("Quota exceeded", self.tracker.get_last_error("web_search"))

    def test_systemic_disables_after_two_failures(self):
        self.assertFalse(self.tracker.record_failure("browser", "crashed"))
        self.assertFalse(self.tracker.is_disabled("browser"))
        self.assertTrue(self.tracker.record_failure("browser", "crashed again"))
        self.assertTrue(self.tracker.is_disabled("browser"))

    def test_input_dependent_disables_after_four_failures(self):
        for _ in range(3):
            self.assertFalse(self.tracker.record_failure("read_file", "File not found: a.txt"))
        self.assertFalse(self.tracker.is_disabled("read_file"))
        self.assertTrue(self.tracker.record_failure("read_file", "File not found: a.txt"))
        self.assertIn("Model failed to provide correct parameters 4 times",
                      self.tracker.get_last_error("read_file"))

    def test_input_threshold_override(self):
        for _ in range(7):
            self.tracker.record_failure("run_applescript", "syntax error at line 1")
        self.assertFalse(self.tracker.is_disabled("run_applescript"))
        self.tracker.record_failure("run_applescript", "syntax error at line 1")
        self.assertTrue(self.tracker.is_disabled("run_applescript"))

    def test_success_resets_consecutive_counters(self):
        self.tracker.record_failure("browser", "crashed")
        self.tracker.record_success("browser")
        self.assertFalse(self.tracker.record_failure("browser", "crashed"))
        self.assertFalse(self.tracker.is_disabled("browser"))

    def test_cooldown_reenables_and_clears_counters(self):
        self.tracker.record_failure("web_search", "429 Too Many Requests")
        self.clock.advance(299_999)
        self.assertTrue(self.tracker.is_disabled("web_search"))
        self.clock.advance(1)
        self.assertFalse(self.tracker.is_disabled("web_search"))
        self.assertIsNone(self.tracker.get_state("web_search"))
        self.assertFalse(self.tracker.record_failure("web_search", "crashed"))

    def test_disabled_tools_and_reset(self):
        self.tracker.record_failure("a", "billing problem")
        self.tracker.record_failure("b", "flaky")
        self.assertEqual(self.tracker.disabled_tools(), ["a"])
        self.tracker.reset()
        self.assertEqual(self.tracker.disabled_tools(), [])

    def test_guidance_is_appended_to_last_error(self):
        for _ in range(4):
            self.tracker.record_failure("read_file", "no such file: notes.md")
        self.assertIn("List the directory first", self.tracker.get_last_error("read_file"))


if __name__ == "__main__":
    unittest.main()
