"""Tests of the automation context aggregator and the pattern source."""

from datetime import datetime, timedelta, timezone

import orjson
from sqlalchemy import text

from ha_event_services.ai_service.context import (
    AggregatorConfig,
    AutomationContextAggregator,
    DbPatternDataSource,
    PatternDataSource,
    PatternRecord,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class ListSource(PatternDataSource):
    name = "in-memory"

    def __init__(self, records):
        self.records = records
        self.calls = []

    def fetch_patterns(self, connection_id, since):
        self.calls.append((connection_id, since))
        return [r for r in self.records if r.connection_id == connection_id]


def _pattern(pid, entity_id="light.hall", pattern_type="time_of_day", confidence=0.8,
             occurrences=3, days_ago=1, related=(), connection_id="conn-1"):
    return PatternRecord(
        pattern_id=pid,
        connection_id=connection_id,
        pattern_type=pattern_type,
        entity_id=entity_id,
        occurrences=occurrences,
        confidence=confidence,
        observed_at=NOW - timedelta(days=days_ago),
        related_entities=tuple(related),
        details={"hour": 19},
    )


class TestAutomationContextAggregator:

    def test_no_pattern_data_gives_empty_list(self):
        aggregator = AutomationContextAggregator(ListSource([]))
        assert aggregator.build_contexts("conn-1", now=NOW) == []

    def test_patterns_grouped_by_type_and_entity(self):
        source = ListSource([
            _pattern("p1", confidence=0.6, occurrences=2, days_ago=3, related=("binary_sensor.door",)),
            _pattern("p2", confidence=0.9, occurrences=5, days_ago=1, related=("binary_sensor.door", "light.porch")),
            _pattern("p3", entity_id="switch.heater", pattern_type="co_occurrence", confidence=0.7),
        ])
        contexts = AutomationContextAggregator(source).build_contexts("conn-1", now=NOW)

        assert [c.context_id for c in contexts] == [
            "conn-1:time_of_day:light.hall",
            "conn-1:co_occurrence:switch.heater",
        ]
        hall = contexts[0]
        assert hall.confidence == 0.9
        assert hall.entity_ids == ("light.hall", "binary_sensor.door", "light.porch")
        assert hall.primary_entity == "light.hall"
        assert hall.pattern_summary["occurrences"] == 7
        assert hall.pattern_summary["observations"] == 2
        assert hall.window_end == NOW
        assert hall.window_start == NOW - timedelta(days=7)

    def test_low_confidence_patterns_dropped(self):
        source = ListSource([_pattern("p1", confidence=0.2)])
        assert AutomationContextAggregator(source).build_contexts("conn-1", now=NOW) == []

    def test_contexts_capped_per_connection(self):
        source = ListSource([_pattern(f"p{i}", entity_id=f"light.l{i}") for i in range(10)])
        config = AggregatorConfig(max_contexts_per_connection=4)

        contexts = AutomationContextAggregator(source, config).build_contexts("conn-1", now=NOW)

        assert len(contexts) == 4

    def test_lookback_passed_to_source(self):
        source = ListSource([])
        AutomationContextAggregator(source, AggregatorConfig(lookback_days=2)).build_contexts("conn-1", now=NOW)
        assert source.calls == [("conn-1", NOW - timedelta(days=2))]


class TestDbPatternDataSource:

    def _insert(self, engine, pid, observed_at, connection_id="conn-1", related=None, details=None):
        with engine.begin() as conn:
            conn.execute(
                text("""
                    INSERT INTO behavioral_patterns
                        (pattern_id, connection_id, pattern_type, entity_id, related_entities,
                         occurrences, confidence, details, observed_at)
                    VALUES (:pid, :cid, 'time_of_day', 'light.hall', :related, 4, 0.8, :details, :observed_at)
                """),
                {
                    "pid": pid,
                    "cid": connection_id,
                    "related": related,
                    "details": details,
                    "observed_at": observed_at,
                },
            )

    def test_reads_recent_patterns_of_connection(self, engine):
        self._insert(engine, "recent", NOW - timedelta(days=1),
                     related=orjson.dumps(["binary_sensor.door"]).decode(),
                     details=orjson.dumps({"hour": 19}).decode())
        self._insert(engine, "old", NOW - timedelta(days=30))
        self._insert(engine, "other", NOW - timedelta(days=1), connection_id="conn-2")

        records = DbPatternDataSource(engine).fetch_patterns("conn-1", NOW - timedelta(days=7))

        assert [r.pattern_id for r in records] == ["recent"]
        assert records[0].related_entities == ("binary_sensor.door",)
        assert records[0].details == {"hour": 19}
        assert records[0].observed_at.tzinfo is not None

    def test_corrupt_json_columns_fall_back(self, engine):
        self._insert(engine, "p1", NOW, related="{not json", details="[1,2]")

        record = DbPatternDataSource(engine).fetch_patterns("conn-1", NOW - timedelta(days=1))[0]

        assert record.related_entities == ()
        assert record.details == {}
