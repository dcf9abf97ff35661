"""Tests of payload parsing and the ingestion pipeline."""

import json
from unittest.mock import MagicMock

import pytest

from ha_event_services.event_api.filtering import EventFilterEngine
from ha_event_services.event_api.metrics import EventMetricsService
from ha_event_services.event_api.pipeline import EventIngestionPipeline
from ha_event_services.event_api.streaming import EventStreamPublisher
from ha_event_services.event_api.validation import parse_event_payload
from ha_event_services.event_api.validation.payload_validator import MAX_PAYLOAD_BYTES


def _envelope(entity_id="light.kitchen", old="off", new="on", **extra):
    payload = {
        "event_type": "state_changed",
        "time_fired": "2026-01-31T08:00:00.123456+00:00",
        "data": {
            "entity_id": entity_id,
            "old_state": {"state": old, "attributes": {}},
            "new_state": {"state": new, "attributes": {"friendly_name": "Kitchen"}},
        },
        "context": {"id": "01HQCTX"},
    }
    payload.update(extra)
    return json.dumps(payload)


def _flat(**overrides):
    payload = {
        "id": "evt-1",
        "connectionId": "conn-7",
        "timestamp": "2026-01-31T08:00:00Z",
        "type": "state_changed",
        "entityId": "switch.pump",
        "oldState": "off",
        "newState": "on",
        "attributes": {"power": 12},
    }
    payload.update(overrides)
    return json.dumps(payload)


# =============================================================================
# PAYLOAD PARSING
# =============================================================================

class TestPayloadParsing:

    def test_hub_envelope(self):
        result = parse_event_payload(_envelope(), "conn-1")

        assert result.valid is True
        event = result.event
        assert event.id != "01HQCTX"
        assert event.context_id == "01HQCTX"
        assert event.connection_id == "conn-1"
        assert event.entity_id == "light.kitchen"
        assert (event.old_state, event.new_state) == ("off", "on")
        assert event.attributes == {"friendly_name": "Kitchen"}
        assert event.timestamp.tzinfo is not None

    def test_envelopes_sharing_a_context_get_distinct_ids(self):
        first = parse_event_payload(_envelope("light.kitchen"), "conn-1").event
        second = parse_event_payload(_envelope("light.hallway"), "conn-1").event

        assert first.context_id == second.context_id == "01HQCTX"
        assert first.id != second.id
        assert first.to_dict()["contextId"] == "01HQCTX"

    @pytest.mark.parametrize("event_type", ["time_changed", "call_service", "component_loaded"])
    def test_envelope_without_entity_gets_pseudo_entity(self, event_type):
        raw = json.dumps({"event_type": event_type, "data": {"now": "2026-01-31T08:00:00+00:00"}})

        result = parse_event_payload(raw, "conn-1")

        assert result.valid is True
        assert result.event.entity_id == f"event.{event_type}"
        assert result.event.domain == "event"
        assert result.event.type == event_type

    def test_flat_form(self):
        result = parse_event_payload(_flat().encode(), "conn-1")

        assert result.valid is True
        assert result.event.id == "evt-1"
        assert result.event.connection_id == "conn-7"
        assert result.event.attributes == {"power": 12}

    def test_entity_id_is_normalized(self):
        result = parse_event_payload(_flat(entityId="  Switch.Pump "), "conn-1")
        assert result.event.entity_id == "switch.pump"

    def test_new_entity_has_no_old_state(self):
        raw = json.dumps({
            "event_type": "state_changed",
            "data": {"entity_id": "light.new", "old_state": None, "new_state": {"state": "on"}},
        })
        result = parse_event_payload(raw, "conn-1")

        assert result.valid is True
        assert result.event.old_state is None

    @pytest.mark.parametrize("raw", [
        "",
        b"",
        "not json",
        "[1, 2, 3]",
        "42",
        json.dumps({"event_type": "state_changed", "data": "oops"}),
        json.dumps({"event_type": "state_changed", "data": {"new_state": {"state": "on"}}}),
        json.dumps({"type": "state_changed", "entityId": "nodot"}),
        json.dumps({"type": "", "entityId": "light.a"}),
    ])
    def test_malformed_payloads_are_rejected(self, raw):
        result = parse_event_payload(raw, "conn-1")
        assert result.valid is False
        assert result.error

    def test_oversized_payload(self):
        result = parse_event_payload("x" * (MAX_PAYLOAD_BYTES + 1), "conn-1")
        assert result.valid is False
        assert "too large" in result.error

    def test_unsupported_type(self):
        result = parse_event_payload(12345, "conn-1")
        assert result.valid is False


# =============================================================================
# PIPELINE
# =============================================================================

@pytest.fixture
def publisher():
    pub = MagicMock(spec=EventStreamPublisher)
    pub.publish.return_value = True
    return pub


@pytest.fixture
def pipeline(clock, publisher):
    return EventIngestionPipeline(
        EventFilterEngine(clock=clock),
        EventMetricsService(clock=clock),
        publisher,
    )


class TestIngestionPipeline:

    def test_kept_event_is_published(self, pipeline, publisher):
        result = pipeline.ingest(_envelope(), "conn-1")

        assert result.accepted is True
        assert result.decision.kept is True
        assert result.published is True
        publisher.publish.assert_called_once()

    def test_discarded_event_is_not_published(self, pipeline, publisher):
        pipeline.ingest(_envelope(old="off", new="on"), "conn-1")
        result = pipeline.ingest(_envelope(old="on", new="off"), "conn-1")

        assert result.decision.kept is False
        assert publisher.publish.call_count == 1

    def test_malformed_payload_never_raises(self, pipeline, publisher):
        for raw in ("{", "null", "[]", b"\xff\xfe", _flat(entityId="bad")):
            result = pipeline.ingest(raw, "conn-1")
            assert result.accepted is False

        assert pipeline.malformed_count == 5
        publisher.publish.assert_not_called()

    def test_metrics_count_every_accepted_event(self, clock, publisher):
        metrics = EventMetricsService(clock=clock)
        pipeline = EventIngestionPipeline(EventFilterEngine(clock=clock), metrics, publisher)

        for i in range(10):
            pipeline.ingest(_envelope(old=str(i), new=str(i + 100)), "conn-1")
        pipeline.ingest("garbage", "conn-1")

        stats = metrics.get_processing_stats()
        assert stats.total_events_processed == 10
        assert stats.malformed_events == 1
        assert publisher.publish.call_count == stats.kept_events

    def test_publisher_error_does_not_break_ingestion(self, clock, publisher):
        publisher.publish.side_effect = RuntimeError("queue exploded")
        pipeline = EventIngestionPipeline(EventFilterEngine(clock=clock), EventMetricsService(clock=clock), publisher)

        result = pipeline.ingest(_envelope(), "conn-1")

        assert result.accepted is True
        assert result.decision.kept is True
        assert result.published is False

    def test_without_publisher(self, clock):
        pipeline = EventIngestionPipeline(EventFilterEngine(clock=clock), EventMetricsService(clock=clock))
        result = pipeline.ingest(_envelope(), "conn-1")

        assert result.decision.kept is True
        assert result.published is False

    def test_entityless_envelopes_reach_the_filter(self, clock, publisher):
        metrics = EventMetricsService(clock=clock)
        pipeline = EventIngestionPipeline(EventFilterEngine(clock=clock), metrics, publisher)

        for _ in range(3):
            result = pipeline.ingest(json.dumps({"event_type": "time_changed", "data": {}}), "conn-1")
            assert result.accepted is True
            assert result.decision.kept is False
            assert result.decision.rule_id == "noise"

        stats = metrics.get_processing_stats()
        assert stats.total_events_processed == 3
        assert stats.malformed_events == 0
        assert pipeline.malformed_count == 0
        publisher.publish.assert_not_called()
