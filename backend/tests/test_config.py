"""
Test suite for application settings.
"""

import pytest
from pydantic import ValidationError

from lifebank.core.config import Settings, get_settings


class TestSettings:
    """Settings defaults, environment overrides and validation."""

    def test_defaults(self, monkeypatch) -> None:
        """Test default inventory and channel settings."""
        monkeypatch.delenv("LIFEBANK_LOW_STOCK_THRESHOLD", raising=False)
        monkeypatch.delenv("LIFEBANK_DATABASE_URL", raising=False)
        settings = Settings(_env_file=None)

        assert settings.low_stock_threshold == 10
        assert settings.orders_channel == "orders"
        assert settings.database_url.startswith("postgresql+asyncpg://")

    def test_environment_override(self, monkeypatch) -> None:
        """Test LIFEBANK_ prefixed variables override defaults."""
        monkeypatch.setenv("LIFEBANK_LOW_STOCK_THRESHOLD", "3")
        monkeypatch.setenv("LIFEBANK_ENVIRONMENT", "staging")

        settings = Settings(_env_file=None)

        assert settings.low_stock_threshold == 3
        assert settings.environment == "staging"
        assert not settings.is_development

    @pytest.mark.parametrize(
        "url",
        [
            "postgresql://u:p@db/lifebank",
            "postgresql+asyncpg://u:p@db/lifebank",
            "sqlite+aiosqlite:///./lifebank.db",
        ],
    )
    def test_supported_database_urls(self, url: str) -> None:
        """Test supported database schemes are accepted."""
        assert Settings(_env_file=None, database_url=url).database_url == url

    def test_unsupported_database_url(self) -> None:
        """Test an unsupported scheme is rejected."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, database_url="mysql://u:p@db/lifebank")

    def test_sqlite_detection(self) -> None:
        """Test SQLite URLs are recognised."""
        settings = Settings(_env_file=None, database_url="sqlite+aiosqlite:///x.db")
        assert settings.is_sqlite

    def test_get_settings_is_cached(self) -> None:
        """Test get_settings returns one shared instance."""
        assert get_settings() is get_settings()
