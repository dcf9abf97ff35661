from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from .config import get_settings


logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_engine_lock = threading.Lock()
_sqlite_adapters_lock = threading.Lock()
_sqlite_adapters_registered = False


def _adapt_datetime(value: datetime) -> str:
    return value.isoformat(" ")


def register_sqlite_adapters() -> None:
    """Store datetimes as ISO-8601 strings in SQLite.

    Raw ``text()`` binds reach the driver untyped. ``sqlite3`` adapters are
    process-wide, so this registers once and affects every sqlite3
    connection in the process, including ones opened outside SQLAlchemy.
    """
    global _sqlite_adapters_registered
    with _sqlite_adapters_lock:
        if _sqlite_adapters_registered:
            return
        sqlite3.register_adapter(datetime, _adapt_datetime)
        _sqlite_adapters_registered = True
        logger.debug("[DB] Registered sqlite3 datetime adapter")


def build_engine(url: str) -> Engine:
    kwargs: dict = {"pool_pre_ping": True, "future": True}
    if url.startswith("sqlite"):
        register_sqlite_adapters()
        # Worker threads of the batch runner share the engine.
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_recycle"] = 300
    return create_engine(url, **kwargs)


def get_engine() -> Engine:
    """Engine singleton built from DATABASE_URL."""
    global _engine

    if _engine is not None:
        return _engine

    with _engine_lock:
        if _engine is not None:
            return _engine

        settings = get_settings()
        # Never log credentials, only the backend and host part.
        logger.info("[DB] Creating engine url=%s", settings.database_url.split("@")[-1])
        engine = build_engine(settings.database_url)

        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("[DB] Connection test OK")
        except Exception:
            logger.exception("[DB] Connection test FAILED")

        _engine = engine
        return _engine


def reset_engine() -> None:
    """Dispose the cached engine (for testing)."""
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None
