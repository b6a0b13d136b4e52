"""
Unit tests for database URL handling.
"""

from slidecast.db import engine_options, get_database_url


class TestDatabaseUrl:
    """Tests for get_database_url."""

    def test_default(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert get_database_url() == "sqlite:////data/db/slidecast.db"

    def test_async_drivers_become_sync(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:////tmp/app.db")
        assert get_database_url() == "sqlite:////tmp/app.db"
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://u:p@db/app")
        assert get_database_url() == "postgresql+psycopg://u:p@db/app"


class TestEngineOptions:
    """Tests for engine_options."""

    def test_sqlite(self, monkeypatch):
        monkeypatch.delenv("SQL_ECHO", raising=False)
        options = engine_options("sqlite:////tmp/app.db")
        assert options["connect_args"] == {"check_same_thread": False}
        assert options["echo"] is False

    def test_server_database(self, monkeypatch):
        monkeypatch.setenv("SQL_ECHO", "true")
        options = engine_options("postgresql+psycopg://u:p@db/app")
        assert options["pool_pre_ping"] is True
        assert options["echo"] is True
