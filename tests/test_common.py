"""Tests of settings and engine helpers."""

import sqlite3
from datetime import datetime, timezone
from unittest.mock import MagicMock

from sqlalchemy import text

from ha_event_services.common import db
from ha_event_services.common.config import get_settings
from ha_event_services.common.schema import as_datetime


class TestSettings:

    def test_settings_are_read_once(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://first:6379/0")
        first = get_settings()

        monkeypatch.setenv("REDIS_URL", "redis://second:6379/0")

        assert get_settings() is first
        assert get_settings().redis_url == "redis://first:6379/0"

    def test_cache_clear_rereads_environment(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://first:6379/0")
        get_settings()
        monkeypatch.setenv("REDIS_URL", "redis://second:6379/0")

        get_settings.cache_clear()

        assert get_settings().redis_url == "redis://second:6379/0"


class TestSqliteEngine:

    def test_adapter_is_registered_once(self, monkeypatch):
        register = MagicMock()
        monkeypatch.setattr(sqlite3, "register_adapter", register)
        monkeypatch.setattr(db, "_sqlite_adapters_registered", False)

        db.register_sqlite_adapters()
        db.build_engine("sqlite://").dispose()
        db.build_engine("sqlite://").dispose()

        register.assert_called_once_with(datetime, db._adapt_datetime)

    def test_datetimes_round_trip_through_text_binds(self, tmp_path):
        engine = db.build_engine(f"sqlite:///{tmp_path / 'dt.db'}")
        stamp = datetime(2026, 3, 10, 12, 30, tzinfo=timezone.utc)
        try:
            with engine.begin() as conn:
                conn.execute(text("CREATE TABLE t (at TIMESTAMP)"))
                conn.execute(text("INSERT INTO t (at) VALUES (:at)"), {"at": stamp})
                raw = conn.execute(text("SELECT at FROM t")).scalar()
        finally:
            engine.dispose()

        assert isinstance(raw, str)
        assert as_datetime(raw) == stamp
