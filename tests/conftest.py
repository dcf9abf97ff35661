"""Shared fixtures."""

import pytest

from ha_event_services.common.config import get_settings
from ha_event_services.common.db import build_engine
from ha_event_services.common.schema import ensure_schema
from ha_event_services.event_api.metrics.service import EventMetricsService

from factories import FakeClock


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine with the full schema."""
    eng = build_engine(f"sqlite:///{tmp_path / 'ha_test.db'}")
    ensure_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture(autouse=True)
def reset_singletons():
    EventMetricsService.reset_instance()
    get_settings.cache_clear()
    yield
    EventMetricsService.reset_instance()
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
