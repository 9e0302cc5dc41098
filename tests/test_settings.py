"""
Tests for configuration validation
"""

import pytest
from unittest.mock import patch
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from config.validators import get_config_summary, validate_settings
from utils.exceptions import ConfigurationError


class TestValidateSettings:

    def test_valid(self, mock_settings):
        assert validate_settings() is True

    def test_missing_values_are_reported_together(self, mock_settings):
        with patch.multiple(settings, GOOGLE_AI_API_KEY=None, DB_PASSWORD=""):
            with pytest.raises(ConfigurationError) as exc_info:
                validate_settings()

        message = str(exc_info.value)
        assert "GOOGLE_AI_API_KEY" in message
        assert "DB_PASSWORD" in message

    def test_database_optional_for_memory_store(self, mock_settings):
        with patch.multiple(settings, DB_SERVER=None, DB_CONNECTION_STRING=None):
            assert validate_settings(require_database=False) is True

    def test_weights_must_sum_to_one(self, mock_settings):
        with patch.object(settings, "RECENCY_WEIGHT", 0.5):
            with pytest.raises(ConfigurationError, match="Score weights"):
                validate_settings()


class TestConfigSummary:

    def test_summary_has_no_secrets(self, mock_settings):
        summary = get_config_summary()

        assert "test-password" not in str(summary)
        assert "test-bsky-password" not in str(summary)
        assert summary["discovery_settings"]["weights"] == "70/30"
        assert summary["platforms"]["bluesky"]["configured"] is True
