"""
Tests for engine configuration, API settings and identifier helpers.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from deal_pipeline.api.config import Settings
from deal_pipeline.config import Config
from deal_pipeline.utils import new_correlation_id, new_deal_id, uuid7


class TestEngineConfig:
    """Test the dotenv-backed Config."""

    def test_validate_reports_missing_keys(self):
        with patch.object(Config, 'OPENAI_API_KEY', ''), patch.object(Config, 'DATABASE_URL', ''):
            assert Config.validate() == ['OPENAI_API_KEY', 'DATABASE_URL']

    def test_validate_passes_when_configured(self):
        with patch.object(Config, 'OPENAI_API_KEY', 'sk-test'), patch.object(
            Config, 'DATABASE_URL', 'postgresql://host/db'
        ):
            assert Config.validate() == []

    def test_defaults(self):
        assert Config.PERSIST_MAX_ATTEMPTS >= 1
        assert Config.UNKNOWN_CONTACT_ID


class TestApiSettings:
    """Test the pydantic-settings service config."""

    def test_settings_load_from_env(self):
        env = {
            'PIPELINE_API_KEY': 'board-secret',
            'DATABASE_URL': 'postgresql://host/db',
            'OPENAI_API_KEY': 'sk-test',
        }
        with patch.dict(os.environ, env, clear=False):
            settings = Settings()

        assert settings.PIPELINE_API_KEY == 'board-secret'
        assert settings.DATABASE_URL == 'postgresql://host/db'
        assert settings.OPENAI_CHAT_MODEL == 'gpt-4.1-mini'

    def test_optional_backends(self):
        with patch.dict(os.environ, {'PIPELINE_API_KEY': 'k'}, clear=True):
            settings = Settings()

        assert settings.DATABASE_URL is None
        assert settings.OPENAI_API_KEY is None
        assert settings.LOG_JSON is True

    def test_api_key_required(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError):
                Settings()


class TestIdentifiers:
    """Test UUIDv7 helpers."""

    def test_uuid7_version(self):
        assert uuid7().version == 7

    def test_deal_ids_unique(self):
        assert len({new_deal_id() for _ in range(100)}) == 100

    def test_correlation_id_format(self):
        correlation_id = new_correlation_id()
        assert correlation_id.startswith('cmd_')
        assert len(correlation_id) == 36
