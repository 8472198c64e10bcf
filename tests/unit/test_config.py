"""Test configuration module."""

import os
from unittest.mock import patch

from trip_assistant.config import Settings, get_settings


def setup_module():
    get_settings.cache_clear()


def teardown_module():
    get_settings.cache_clear()


class TestSettings:
    """Test Settings class."""

    def setup_method(self):
        get_settings.cache_clear()

    def teardown_method(self):
        get_settings.cache_clear()

    def test_default_settings(self):
        """Defaults apply when only the secret is provided."""
        with patch.dict(os.environ, {"SECRET_KEY": "test-secret-key-min16", "ENVIRONMENT": "test"}, clear=True):
            settings = Settings()

        assert settings.app_name == "Trip Assistant"
        assert settings.debug is False
        assert settings.port == 8000
        assert settings.chat_daily_limit == 50
        assert settings.chat_minute_limit == 10
        assert settings.chat_global_daily_limit == 10000
        assert settings.chat_max_message_length == 2000
        assert settings.chat_history_window == 10
        assert settings.chatbot_enabled is False
        assert settings.chatbot_rollout_percent == 0
        assert settings.chatbot_function_calling_enabled is False
        assert settings.gemini_model == "gemini-2.5-flash"
        assert settings.place_cache_max_size == 100
        assert settings.place_cache_ttl_seconds == 300.0
        assert settings.google_maps_api_key is None

    def test_settings_from_env(self):
        env_vars = {
            "DEBUG": "true",
            "PORT": "9000",
            "CHATBOT_ENABLED": "true",
            "CHATBOT_BETA_USERS": "u1, u2,,",
            "CHATBOT_ROLLOUT_PERCENT": "25",
            "CHAT_DAILY_LIMIT": "5",
            "GEMINI_API_KEY": "gemini-key",
        }

        with patch.dict(os.environ, env_vars):
            settings = Settings()

        assert settings.debug is True
        assert settings.port == 9000
        assert settings.chatbot_enabled is True
        assert settings.get_beta_users() == ["u1", "u2"]
        assert settings.chatbot_rollout_percent == 25
        assert settings.chat_daily_limit == 5
        assert settings.gemini_api_key == "gemini-key"

    def test_secret_key_generated_when_empty(self):
        settings = Settings(secret_key="")
        assert len(settings.secret_key) >= 16

        settings = Settings(secret_key="my-secret-key-for-testing")
        assert settings.secret_key == "my-secret-key-for-testing"

    def test_rollout_percent_clamped(self):
        assert Settings(chatbot_rollout_percent=150).chatbot_rollout_percent == 100
        assert Settings(chatbot_rollout_percent=-5).chatbot_rollout_percent == 0

    def test_beta_users_empty(self):
        assert Settings(chatbot_beta_users=None).get_beta_users() == []

    def test_cors_origins(self):
        assert Settings(cors_allowed_origins="https://a.com, https://b.com").get_cors_origins() == [
            "https://a.com",
            "https://b.com",
        ]
        assert Settings(environment="development").get_cors_origins() == ["*"]
        assert Settings(environment="production").get_cors_origins() == []


class TestGetSettings:
    """Test get_settings function."""

    def test_settings_caching(self):
        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2
