"""
Tests for model configuration and pipeline settings.

Run with:
    python3 -m pytest tests/test_model_config.py -v
"""

import os
import sys
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.exceptions import ValidationError
from utils.model_config import (
    DEFAULT_GENERATION_MODEL,
    DEFAULT_GRADING_MODEL,
    ModelConfig,
    ModelProvider,
    PipelineSettings,
)


class TestModelConfig(unittest.TestCase):
    def test_defaults(self):
        self.assertIn(DEFAULT_GENERATION_MODEL, ModelConfig.get_available_models())
        self.assertIn(DEFAULT_GRADING_MODEL, ModelConfig.get_available_models())
        self.assertEqual(ModelConfig.get_config()["provider"], ModelProvider.OPENAI)

    def test_unknown_model(self):
        with self.assertRaises(ValidationError) as ctx:
            ModelConfig.get_config("gpt-99")
        self.assertEqual(ctx.exception.error_code, "INVALID_MODEL")

    def test_grading_model_is_low_temperature(self):
        with patch.dict(os.environ, {"ASSESSMENT_GRADING_MODEL": "llama-4-scout-grader"}):
            config = ModelConfig.get_grading_config()
        self.assertEqual(config["provider"], ModelProvider.GROQ)
        self.assertEqual(config["temperature"], 0.1)

    def test_estimate_cost(self):
        self.assertEqual(ModelConfig.estimate_cost("gpt-4o", 1000, 1000), 0.0125)


class TestPipelineSettings(unittest.TestCase):
    def test_defaults(self):
        settings = PipelineSettings()
        self.assertEqual(settings.content_retry_attempts, 5)
        self.assertEqual(settings.content_retry_delay_seconds, 3.0)
        self.assertEqual(settings.generation_attempts, 3)
        self.assertEqual(settings.acceptance_ratio, 0.8)
        self.assertEqual(settings.default_passing_score, 70)
        self.assertFalse(settings.allow_partial_batch)

    def test_partial_batch_flag_from_env(self):
        with patch.dict(os.environ, {"ASSESSMENT_ALLOW_PARTIAL_BATCH": "true"}):
            self.assertTrue(PipelineSettings.from_env().allow_partial_batch)
        with patch.dict(os.environ, {"ASSESSMENT_ALLOW_PARTIAL_BATCH": "0"}):
            self.assertFalse(PipelineSettings.from_env().allow_partial_batch)

    def test_invalid_ratio_rejected(self):
        with self.assertRaises(Exception):
            PipelineSettings(acceptance_ratio=1.5)


if __name__ == "__main__":
    unittest.main()
