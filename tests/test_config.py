import logging
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from raiz.config import Settings
from raiz.core.model import ResolutionMode
from raiz.errors import ConfigurationError
from raiz.logs import CorrelationIdFilter, correlation_scope, current_correlation_id


class TestSettings(unittest.TestCase):

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def write(self, content):
        path = self.tmp / "raiz.toml"
        path.write_text(content, encoding="utf-8")
        return path

    @patch("raiz.config.load_dotenv")
    def test_defaults(self, _):
        with patch("raiz.config.DEFAULT_CONFIG_FILE", str(self.tmp / "raiz.toml")):
            settings = Settings.load(env={})
        self.assertEqual(settings.mode, ResolutionMode.SAFE)
        self.assertEqual(settings.gradle_timeout, 30)
        self.assertEqual(settings.providers, ["osv", "nvd", "ghsa", "maven_central"])
        self.assertEqual(settings.depth_scores, (100, 80, 60, 40))

    @patch("raiz.config.load_dotenv")
    def test_toml_file(self, _):
        path = self.write('[raiz]\nmode = "full"\ngradle_timeout = 90\nproviders = ["osv"]\n'
                          'depth_scores = [100, 75, 50]\n')
        settings = Settings.load(path, env={})
        self.assertEqual(settings.mode, ResolutionMode.FULL)
        self.assertEqual(settings.gradle_timeout, 90)
        self.assertEqual(settings.providers, ["osv"])
        self.assertEqual(settings.depth_scores, (100, 75, 50))

    @patch("raiz.config.load_dotenv")
    def test_environment_overrides_file(self, _):
        path = self.write('mode = "full"\nmax_workers = 2\n')
        env = {"RAIZ_MODE": "safe", "RAIZ_PROVIDERS": "osv, ghsa", "NVD_API_KEY": "abc"}
        settings = Settings.load(path, env=env)
        self.assertEqual(settings.mode, ResolutionMode.SAFE)
        self.assertEqual(settings.max_workers, 2)
        self.assertEqual(settings.providers, ["osv", "ghsa"])
        self.assertEqual(settings.nvd_api_key, "abc")

    @patch("raiz.config.load_dotenv")
    def test_invalid_values(self, _):
        with self.assertRaises(ConfigurationError):
            Settings.load(self.write("gradle_timeout = -1\n"), env={})
        with self.assertRaises(ConfigurationError):
            Settings.load(self.write('mode = "turbo"\n'), env={})
        with self.assertRaises(ConfigurationError):
            Settings.load(self.write("depth_scores = [100, 180]\n"), env={})

    @patch("raiz.config.load_dotenv")
    def test_missing_or_malformed_file(self, _):
        with self.assertRaises(ConfigurationError):
            Settings.load(self.tmp / "missing.toml", env={})
        with self.assertRaises(ConfigurationError):
            Settings.load(self.write("mode = \n"), env={})


class TestCorrelationIds(unittest.TestCase):

    def test_scope_sets_and_restores_id(self):
        self.assertEqual(current_correlation_id(), "-")
        with correlation_scope("run-1") as run_id:
            self.assertEqual(run_id, "run-1")
            self.assertEqual(current_correlation_id(), "run-1")
            with correlation_scope() as inner:
                self.assertEqual(len(inner), 12)
            self.assertEqual(current_correlation_id(), "run-1")
        self.assertEqual(current_correlation_id(), "-")

    def test_filter_stamps_records(self):
        record = logging.LogRecord("raiz", logging.INFO, __file__, 1, "hello", None, None)
        with correlation_scope("abc123"):
            CorrelationIdFilter().filter(record)
        self.assertEqual(record.correlation_id, "abc123")


if __name__ == "__main__":
    unittest.main()
