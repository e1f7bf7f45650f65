import json
import shutil
import tempfile
import unittest
from pathlib import Path

from typer.testing import CliRunner

from raiz.__main__ import app, load_suppressions
from raiz.core.suppression import SuppressionState
from raiz.errors import SuppressionError


class TestSuppressionCommands(unittest.TestCase):

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.log_path = self.tmp / "suppressions.json"
        self.runner = CliRunner()

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def invoke(self, *args):
        return self.runner.invoke(app, [*args, "--suppressions", str(self.log_path)])

    def test_suppress_then_history(self):
        result = self.invoke("suppress", "abc123", "--reason", "test only", "--justification", "fixture jar")
        self.assertEqual(result.exit_code, 0, result.output)

        log = load_suppressions(self.log_path)
        self.assertEqual(log.state("abc123"), SuppressionState.SUPPRESSED)

        result = self.invoke("history", "abc123")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("SUPPRESSED", result.output)

    def test_invalid_json_log_is_reported(self):
        self.log_path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(SuppressionError):
            load_suppressions(self.log_path)

        for args in (("history", "abc123"),
                     ("suppress", "abc123", "--reason", "r", "--justification", "j"),
                     ("unsuppress", "abc123")):
            result = self.invoke(*args)
            self.assertEqual(result.exit_code, 2, args)
            self.assertIn("Error", result.output)
            self.assertNotIsInstance(result.exception, json.JSONDecodeError)

    def test_log_must_be_a_list(self):
        self.log_path.write_text('{"finding_id": "abc123"}', encoding="utf-8")
        with self.assertRaises(SuppressionError):
            load_suppressions(self.log_path)

    def test_missing_log_starts_empty(self):
        self.assertEqual(load_suppressions(self.log_path).events, [])


if __name__ == "__main__":
    unittest.main()
