from __future__ import annotations

import contextlib
import io
import unittest

import log_helpers
from db_brain.graph import GraphStats


class LogLevelTests(unittest.TestCase):
    def setUp(self) -> None:
        self._previous = log_helpers.set_log_level(1)

    def tearDown(self) -> None:
        log_helpers.set_log_level(self._previous)

    def test_parse_log_level(self) -> None:
        self.assertEqual(log_helpers.parse_log_level(None), 1)
        self.assertEqual(log_helpers.parse_log_level(" 3 "), 3)
        self.assertEqual(log_helpers.parse_log_level("-2"), 0)
        self.assertEqual(log_helpers.parse_log_level("DEBUG"), 3)
        self.assertEqual(log_helpers.parse_log_level("quiet"), 0)
        self.assertEqual(log_helpers.parse_log_level("loud", default=2), 2)

    def test_verbose_lines_follow_the_level(self) -> None:
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            log_helpers.log_verbose(2, "[test] hidden")
            log_helpers.apply_verbosity(1)
            log_helpers.log_verbose(2, "[test] shown")
        self.assertNotIn("hidden", out.getvalue())
        self.assertIn("[test] shown", out.getvalue())
        self.assertTrue(out.getvalue().startswith("+["))

    def test_errors_go_to_stderr(self) -> None:
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            log_helpers.log_error("[test] failed")
        self.assertEqual(out.getvalue(), "")
        self.assertIn("[test] failed", err.getvalue())

    def test_format_store_stats(self) -> None:
        stats = GraphStats(order=2, tokens=10, nodes=7, edges=9)
        self.assertEqual(log_helpers.format_store_stats(stats), "order=2 tokens=10 nodes=7 edges=9")


if __name__ == "__main__":
    unittest.main()
