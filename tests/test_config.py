"""Tests for settings loading."""

import warnings

import pytest

from donjed_assistant.core.config import PLACEHOLDER_API_KEY, Settings, get_settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("LLM_API_KEY", "GOOGLE_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


class TestSettings:
    def test_defaults(self, clean_env):
        settings = Settings(_env_file=None)

        assert settings.llm_model == "gemini-2.5-flash"
        assert settings.llm_max_retries == 3
        assert settings.retrieval_mode == "keyword"
        assert not settings.has_llm_credentials

    def test_google_api_key_alias(self, clean_env):
        """Test GOOGLE_API_KEY is accepted for the LLM key."""
        clean_env.setenv("GOOGLE_API_KEY", "from-google-env")

        settings = Settings(_env_file=None)

        assert settings.llm_api_key == "from-google-env"
        assert settings.has_llm_credentials

    def test_placeholder_key_is_not_a_credential(self, clean_env):
        settings = Settings(_env_file=None, llm_api_key=PLACEHOLDER_API_KEY)

        assert not settings.has_llm_credentials

    def test_get_settings_warns_without_key(self, clean_env, tmp_path):
        """Test a missing key is reported at startup."""
        clean_env.chdir(tmp_path)

        with pytest.warns(UserWarning, match="LLM API key"):
            get_settings()

    def test_get_settings_quiet_with_key(self, clean_env, tmp_path):
        clean_env.chdir(tmp_path)
        clean_env.setenv("LLM_API_KEY", "real-key")

        with warnings.catch_warnings():
            warnings.simplefilter("error")
            settings = get_settings()

        assert settings.has_llm_credentials
