"""Tests of suggestion and batch persistence."""

import copy
from datetime import datetime, timedelta, timezone

import pytest

from ha_event_services.ai_service.exceptions import InvalidSuggestionTransition, SuggestionNotApprovable
from ha_event_services.ai_service.models import (
    BatchRecord,
    BatchStatus,
    BatchTrigger,
    ChangeType,
    Suggestion,
    SuggestionStatus,
)
from ha_event_services.ai_service.repository import BatchRepository, SuggestionRepository
from ha_event_services.ai_service.validation import SuggestionValidator

from factories import VALID_AUTOMATION

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _suggestion(suggestion_id="s-1", config=None, created_at=NOW, batch_id="b-1", connection_id="conn-1"):
    s = Suggestion(
        suggestion_id=suggestion_id,
        context_id="conn-1:co_occurrence:light.kitchen",
        connection_id=connection_id,
        title="Kitchen light on motion",
        description="Turn on the kitchen light when motion is detected after sunset.",
        suggestion_type="new_automation",
        config=copy.deepcopy(VALID_AUTOMATION) if config is None else config,
        batch_id=batch_id,
        source="cloud:gpt-4o-mini",
        created_at=created_at,
    )
    s.apply_validation(SuggestionValidator().validate(s))
    return s


@pytest.fixture
def repo(engine):
    return SuggestionRepository(engine)


class TestSuggestionRepository:

    def test_insert_and_get(self, repo):
        original = _suggestion()
        repo.insert(original)

        loaded = repo.get("s-1")

        assert loaded.config == VALID_AUTOMATION
        assert loaded.status is SuggestionStatus.PENDING
        assert loaded.approval_required is True
        assert loaded.is_valid is True
        assert loaded.confidence == pytest.approx(original.confidence)
        assert loaded.validation == original.validation
        assert loaded.created_at == NOW
        assert loaded.decided_at is None

    def test_change_type_and_source_are_persisted(self, repo):
        original = _suggestion()
        original.change_type = ChangeType.MODIFY
        original.source = "local:llama3.1:8b"
        repo.insert(original)

        loaded = repo.get("s-1")

        assert loaded.change_type is ChangeType.MODIFY
        assert loaded.source == "local:llama3.1:8b"
        assert repo.list_by_batch("b-1")[0].source == "local:llama3.1:8b"

    def test_get_missing(self, repo):
        assert repo.get("nope") is None

    def test_approve_and_reject(self, repo):
        repo.insert(_suggestion("s-1"))
        repo.insert(_suggestion("s-2"))

        approved = repo.approve("s-1")
        rejected = repo.reject("s-2")

        assert approved.status is SuggestionStatus.APPROVED
        assert approved.decided_at is not None
        assert rejected.status is SuggestionStatus.REJECTED

    @pytest.mark.parametrize("first, second", [
        (SuggestionStatus.APPROVED, SuggestionStatus.REJECTED),
        (SuggestionStatus.REJECTED, SuggestionStatus.APPROVED),
        (SuggestionStatus.EXPIRED, SuggestionStatus.APPROVED),
        (SuggestionStatus.APPROVED, SuggestionStatus.APPROVED),
    ])
    def test_terminal_states_are_final(self, repo, first, second):
        repo.insert(_suggestion())
        repo.transition("s-1", first)

        with pytest.raises(InvalidSuggestionTransition) as exc:
            repo.transition("s-1", second)

        assert exc.value.current == first.value
        assert repo.get("s-1").status is first

    def test_cannot_move_back_to_pending(self, repo):
        repo.insert(_suggestion())
        with pytest.raises(InvalidSuggestionTransition):
            repo.transition("s-1", SuggestionStatus.PENDING)

    def test_unknown_suggestion(self, repo):
        with pytest.raises(InvalidSuggestionTransition) as exc:
            repo.reject("missing")
        assert exc.value.current is None

    def test_invalid_suggestion_cannot_be_approved(self, repo):
        config = copy.deepcopy(VALID_AUTOMATION)
        config["action"] = [{"service": "shell_command.run"}]
        repo.insert(_suggestion(config=config))

        with pytest.raises(SuggestionNotApprovable):
            repo.approve("s-1")

        assert repo.get("s-1").status is SuggestionStatus.PENDING
        assert repo.reject("s-1").status is SuggestionStatus.REJECTED

    def test_update_approval(self, repo):
        repo.insert(_suggestion())
        repo.update_approval("s-1", False, None)
        assert repo.get("s-1").approval_required is False

        repo.update_approval("s-1", True, "create requires approval (owner)")
        assert repo.get("s-1").approval_reason == "create requires approval (owner)"

    def test_expire_pending(self, repo):
        repo.insert(_suggestion("old", created_at=NOW - timedelta(days=5)))
        repo.insert(_suggestion("fresh", created_at=NOW - timedelta(hours=1)))
        repo.insert(_suggestion("decided", created_at=NOW - timedelta(days=5)))
        repo.approve("decided")

        expired = repo.expire_pending(timedelta(hours=72), now=NOW)

        assert expired == 1
        assert repo.get("old").status is SuggestionStatus.EXPIRED
        assert repo.get("fresh").status is SuggestionStatus.PENDING
        assert repo.get("decided").status is SuggestionStatus.APPROVED

    def test_listing(self, repo):
        repo.insert(_suggestion("a", batch_id="b-1"))
        repo.insert(_suggestion("b", batch_id="b-1", created_at=NOW + timedelta(minutes=1)))
        repo.insert(_suggestion("c", batch_id="b-2", connection_id="conn-2"))
        repo.reject("b")

        assert [s.suggestion_id for s in repo.list_by_batch("b-1")] == ["a", "b"]
        assert [s.suggestion_id for s in repo.list_by_connection("conn-1")] == ["b", "a"]
        assert [s.suggestion_id for s in repo.list_by_connection("conn-1", SuggestionStatus.PENDING)] == ["a"]


class TestBatchRepository:

    def _record(self, batch_id="b-1", start=NOW):
        return BatchRecord(
            batch_id=batch_id,
            status=BatchStatus.RUNNING,
            trigger=BatchTrigger.MANUAL,
            start_time=start,
            data_source="behavioral_patterns",
        )

    def test_create_and_finalize(self, engine):
        repo = BatchRepository(engine)
        record = self._record()
        repo.create(record)

        record.status = BatchStatus.COMPLETED
        record.generated_count, record.error_count, record.skipped_count = 3, 1, 2
        repo.finalize(record)

        loaded = repo.get("b-1")
        assert loaded.status is BatchStatus.COMPLETED
        assert (loaded.generated_count, loaded.error_count, loaded.skipped_count) == (3, 1, 2)
        assert loaded.end_time is not None
        assert loaded.end_time >= loaded.start_time

    def test_finalized_record_is_not_rewritten(self, engine):
        repo = BatchRepository(engine)
        record = self._record()
        repo.create(record)
        record.status = BatchStatus.FAILED
        record.error_message = "boom"
        repo.finalize(record)

        record.status = BatchStatus.COMPLETED
        repo.finalize(record)

        assert repo.get("b-1").status is BatchStatus.FAILED

    def test_recent_and_count(self, engine):
        repo = BatchRepository(engine)
        for i in range(3):
            repo.create(self._record(f"b-{i}", start=NOW + timedelta(minutes=i)))

        assert [r.batch_id for r in repo.recent(limit=2)] == ["b-2", "b-1"]
        assert repo.count() == 3
        assert repo.count(BatchStatus.RUNNING) == 3
        assert repo.count(BatchStatus.COMPLETED) == 0
