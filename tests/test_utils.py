# ========================
# tests/test_utils.py
# ========================

import unittest
import logging
import tempfile
import os
import sys
from unittest import mock

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.utils.config import Config
from src.utils.logging_setup import StructuredLogger
from src.utils.performance_monitor import (
    MemorySample, NullMemorySampler, ProcessMemorySampler, StaticMemorySampler,
    default_memory_sampler,
)


class TestConfig(unittest.TestCase):
    """Test runtime settings."""

    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            config = Config()
        self.assertEqual(config.CSV_CHUNK_SIZE, 1000)
        self.assertEqual(config.NA_VALUES, ['', 'NA', 'NaN', 'null'])
        self.assertIsNone(config.timeout)
        self.assertTrue(all(config.validate_config().values()))

    def test_environment_and_overrides(self):
        with mock.patch.dict(os.environ, {'PIPELINE_TIMEOUT_SECONDS': '2.5', 'PIPELINE_MEMORY_SAMPLING': 'off'}):
            config = Config({'csv_chunk_size': 10})
        self.assertEqual(config.timeout, 2.5)
        self.assertFalse(config.ENABLE_MEMORY_SAMPLING)
        self.assertEqual(config.CSV_CHUNK_SIZE, 10)

    def test_invalid_values_are_reported(self):
        config = Config({'cancel_poll_rows': 0, 'log_level': 'LOUD'})
        validations = config.validate_config()
        self.assertFalse(validations['cancel_poll_rows'])
        self.assertFalse(validations['log_level'])

    def test_save_and_load(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'settings.json')
            Config({'preview_rows': 3}).save_to_file(path)
            self.assertEqual(Config.load_from_file(path).PREVIEW_ROWS, 3)

    def test_ensure_directories(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config = Config({
                'default_output_dir': os.path.join(temp_dir, 'processed'),
                'upload_dir': os.path.join(temp_dir, 'uploaded'),
                'log_dir': os.path.join(temp_dir, 'logs'),
            })
            config.ensure_directories()
            for path in config.get_data_paths().values():
                self.assertTrue(path.is_dir())

    def test_str_lists_settings(self):
        text = str(Config({'preview_rows': 4}))
        self.assertTrue(text.startswith("Configuration Settings:"))
        self.assertIn("  PREVIEW_ROWS: 4", text)


class TestStructuredLogger(unittest.TestCase):
    """Test key/value log formatting."""

    def test_fields_are_sorted(self):
        logger = logging.getLogger('tests.structured')
        with self.assertLogs(logger, level='INFO') as captured:
            StructuredLogger(logger).info("Stage completed", {'step': 'filter', 'rows': 3})
        self.assertEqual(captured.records[0].getMessage(), "Stage completed rows=3 step='filter'")

    def test_levels(self):
        logger = logging.getLogger('tests.structured.levels')
        with self.assertLogs(logger, level='DEBUG') as captured:
            structured = StructuredLogger(logger)
            structured.debug("d")
            structured.warn("w")
            structured.error("e", {'code': 1})
        self.assertEqual([r.levelname for r in captured.records], ['DEBUG', 'WARNING', 'ERROR'])


class TestMemorySamplers(unittest.TestCase):
    """Test memory sampling capabilities."""

    def test_static_sampler_repeats_last(self):
        sampler = StaticMemorySampler([MemorySample(1), MemorySample(2)])
        self.assertEqual([sampler.sample().alloc_bytes for _ in range(4)], [1, 2, 2, 2])

    def test_null_sampler(self):
        self.assertEqual(NullMemorySampler().sample().to_dict()['alloc_bytes'], 0)
        self.assertIsInstance(default_memory_sampler(False), NullMemorySampler)

    def test_process_sampler(self):
        sample = ProcessMemorySampler().sample()
        self.assertGreater(sample.alloc_bytes, 0)
        self.assertGreaterEqual(sample.total_alloc_bytes, sample.alloc_bytes)


if __name__ == '__main__':
    unittest.main()
