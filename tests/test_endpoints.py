"""Tests of the HTTP API."""

import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from ha_event_services.common.db import get_engine
from ha_event_services.event_api.filtering import EventFilterEngine
from ha_event_services.event_api.main import app
from ha_event_services.event_api.metrics import EventMetricsService, get_event_metrics
from ha_event_services.event_api.pipeline import EventIngestionPipeline
from ha_event_services.event_api.wiring import get_pipeline
from ha_event_services.jobs.batch.factory import get_orchestrator
from ha_event_services.jobs.batch.runner import BatchOrchestrator, TriggerResult


@pytest.fixture
def metrics(clock):
    return EventMetricsService(clock=clock)


@pytest.fixture
def client(engine, clock, metrics):
    pipeline = EventIngestionPipeline(EventFilterEngine(clock=clock), metrics)
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_event_metrics] = lambda: metrics
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    # Lifespan is not entered without a ``with`` block.
    yield TestClient(app)
    app.dependency_overrides.clear()


def _event(entity_id="light.kitchen", old="off", new="on"):
    return json.dumps({
        "event_type": "state_changed",
        "data": {
            "entity_id": entity_id,
            "old_state": {"state": old},
            "new_state": {"state": new},
        },
    })


class TestHealth:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_ready(self, client):
        response = client.get("/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    def test_not_ready_when_db_unreachable(self, client):
        broken = MagicMock()
        broken.connect.side_effect = RuntimeError("connection refused")
        app.dependency_overrides[get_engine] = lambda: broken

        assert client.get("/ready").status_code == 503


class TestIngest:

    def test_kept_event(self, client):
        response = client.post("/api/events/ingest", params={"connection_id": "conn-1"}, content=_event())

        assert response.status_code == 200
        assert response.json() == {"accepted": True, "kept": True, "published": False, "ruleId": "default"}

    def test_malformed_payload(self, client, metrics):
        response = client.post("/api/events/ingest", params={"connection_id": "conn-1"}, content="{oops")

        assert response.status_code == 422
        assert response.json()["detail"] == "malformed event payload"
        assert metrics.get_processing_stats().malformed_events == 1

    def test_connection_id_required(self, client):
        assert client.post("/api/events/ingest", content=_event()).status_code == 422


class TestMetrics:

    def test_processing_stats(self, client):
        client.post("/api/events/ingest", params={"connection_id": "conn-1"}, content=_event(old="off", new="on"))
        client.post("/api/events/ingest", params={"connection_id": "conn-1"}, content=_event(old="on", new="off"))

        data = client.get("/api/events/metrics").json()

        assert data["totalEventsProcessed"] == 2
        assert data["keptEvents"] == 1
        assert data["filterRate"] == 0.5
        assert data["avgProcessingTime"] >= 0.0

    def test_empty_stats(self, client):
        data = client.get("/api/events/metrics").json()
        assert data["totalEventsProcessed"] == 0
        assert data["filterRate"] == 0.0

    def test_prometheus_exposition(self, client):
        response = client.get("/api/events/metrics/prometheus")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")


class TestBatchEndpoints:

    @pytest.fixture
    def orchestrator(self):
        orch = MagicMock(spec=BatchOrchestrator)
        app.dependency_overrides[get_orchestrator] = lambda: orch
        return orch

    def test_trigger_accepted(self, client, orchestrator):
        orchestrator.trigger_manual.return_value = TriggerResult(accepted=True, batch_id="b-1")

        response = client.post("/api/ai/batch/trigger")

        assert response.status_code == 202
        assert response.json() == {"accepted": True, "batchId": "b-1", "reason": None}

    def test_trigger_rejected_at_capacity(self, client, orchestrator):
        orchestrator.trigger_manual.return_value = TriggerResult(
            accepted=False, reason="3 batches already running"
        )

        response = client.post("/api/ai/batch/trigger")

        assert response.status_code == 409
        assert response.json()["accepted"] is False

    def test_status(self, client, orchestrator):
        orchestrator.status.return_value = {"maxConcurrent": 3, "running": [], "recent": [], "leases": {}}
        assert client.get("/api/ai/batch/status").json()["maxConcurrent"] == 3
