"""
Tests for Configuration Validation
"""

import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from config.validators import validate_settings
from utils.exceptions import ConfigurationError


@pytest.fixture
def valid_settings(monkeypatch):
    """Point the settings module at a complete test configuration."""
    monkeypatch.setattr(settings, "SUPABASE_URL", "https://test.supabase.co")
    monkeypatch.setattr(settings, "SUPABASE_KEY", "test-anon-key")
    monkeypatch.setattr(settings, "CHIRPNEST_EMAIL", None)
    monkeypatch.setattr(settings, "CHIRPNEST_PASSWORD", None)
    monkeypatch.setattr(settings, "FEED_PAGE_SIZE", 10)
    return settings


class TestValidateSettings:

    def test_valid(self, valid_settings):
        """A complete configuration passes."""
        assert validate_settings() is True

    def test_missing_url_and_key(self, valid_settings, monkeypatch):
        """All missing values are reported together."""
        monkeypatch.setattr(settings, "SUPABASE_URL", "")
        monkeypatch.setattr(settings, "SUPABASE_KEY", "")

        with pytest.raises(ConfigurationError) as exc_info:
            validate_settings()

        message = str(exc_info.value)
        assert "SUPABASE_URL" in message
        assert "SUPABASE_KEY" in message

    def test_url_scheme(self, valid_settings, monkeypatch):
        """The project URL must be http(s)."""
        monkeypatch.setattr(settings, "SUPABASE_URL", "test.supabase.co")

        with pytest.raises(ConfigurationError, match="http"):
            validate_settings()

    def test_credentials_must_be_paired(self, valid_settings, monkeypatch):
        """Email without password is rejected."""
        monkeypatch.setattr(settings, "CHIRPNEST_EMAIL", "alice@example.com")

        with pytest.raises(ConfigurationError, match="set together"):
            validate_settings()

    def test_page_size_bounds(self, valid_settings, monkeypatch):
        """Page sizes out of bounds are rejected."""
        monkeypatch.setattr(settings, "FEED_PAGE_SIZE", 0)

        with pytest.raises(ConfigurationError, match="FEED_PAGE_SIZE"):
            validate_settings()

    def test_config_summary_hides_key(self, valid_settings):
        """The summary never contains the key."""
        summary = settings.get_config_summary()

        assert "test-anon-key" not in str(summary)
