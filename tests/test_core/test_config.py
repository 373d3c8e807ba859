"""Tests for settings and logging setup."""

import structlog

from wayfarer.config import Settings, get_settings
from wayfarer.logging_config import configure_logging


class TestSettings:
    """Test configuration loading."""

    def test_defaults(self):
        """Test the documented defaults."""
        settings = Settings()
        assert settings.arrival_threshold_meters == 50.0
        assert settings.location_poll_interval_seconds == 5.0
        assert settings.rpc_timeout_seconds == 10.0
        assert settings.route_profile == "walking"
        assert settings.mapbox_access_token is None
        assert settings.nakama_base_url == "http://localhost:7350"

    def test_env_override(self, monkeypatch):
        """Test WAYFARER_ variables override defaults."""
        monkeypatch.setenv("WAYFARER_ARRIVAL_THRESHOLD_METERS", "25")
        monkeypatch.setenv("WAYFARER_NAKAMA_HOST", "quests.example.com")
        monkeypatch.setenv("WAYFARER_NAKAMA_USE_SSL", "true")

        settings = Settings()

        assert settings.arrival_threshold_meters == 25.0
        assert settings.nakama_base_url == "https://quests.example.com:7350"

    def test_dotenv_file(self, tmp_path):
        """Test values are read from a .env file in the working directory."""
        (tmp_path / ".env").write_text("WAYFARER_ROUTE_PROFILE=cycling\n")
        assert Settings().route_profile == "cycling"

    def test_cached(self):
        """Test get_settings returns the same instance."""
        assert get_settings() is get_settings()


class TestConfigureLogging:
    """Test structlog configuration."""

    def test_console(self):
        """Test the console renderer is the default."""
        configure_logging()
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)

    def test_json(self):
        """Test JSON output can be selected."""
        configure_logging(level="debug", log_format="json")
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_json_from_settings(self, monkeypatch):
        """Test the format falls back to LOG_FORMAT."""
        monkeypatch.setenv("LOG_FORMAT", "json")
        get_settings.cache_clear()

        configure_logging()

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
