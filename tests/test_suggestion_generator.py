"""Tests of the suggestion generator and its AI backends."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from ha_event_services.ai_service.exceptions import AIBackendError
from ha_event_services.ai_service.generation import (
    AIBackend,
    BackendResult,
    CloudModelBackend,
    GeneratorConfig,
    LocalModelBackend,
    SuggestionCache,
    SuggestionGenerator,
)
from ha_event_services.ai_service.generation.prompt import build_prompt, parse_suggestion_payload
from ha_event_services.ai_service.models import AutomationContext, UserPreferences

from factories import VALID_AUTOMATION

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _context(context_id="conn-1:time_of_day:light.hall", entities=("light.hall", "binary_sensor.door")):
    return AutomationContext(
        context_id=context_id,
        connection_id="conn-1",
        pattern_type="time_of_day",
        entity_ids=tuple(entities),
        pattern_summary={"occurrences": 12, "details": {"hour": 19}},
        window_start=NOW - timedelta(days=7),
        window_end=NOW,
        confidence=0.8,
    )


def _payload(confidence=0.9, title="Hall light at dusk"):
    return {
        "title": title,
        "description": "Turn on the hall light when the door opens after sunset.",
        "suggestion_type": "new_automation",
        "confidence": confidence,
        "config": VALID_AUTOMATION,
    }


class FakeBackend(AIBackend):
    def __init__(self, name, payload=None, error=None, delay=0.0):
        self.name = name
        self.payload = payload or _payload()
        self.error = error
        self.delay = delay
        self.calls = 0

    async def generate(self, context, preferences):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return BackendResult(payload=self.payload, backend=self.name, model=f"{self.name}-model")


class DictRedis:
    """Minimal get/set store standing in for a Redis client."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex


# =============================================================================
# GENERATOR
# =============================================================================

class TestSuggestionGenerator:

    def test_requires_a_backend(self):
        with pytest.raises(ValueError):
            SuggestionGenerator()

    @pytest.mark.asyncio
    async def test_timeout_returns_empty_result(self):
        cloud = FakeBackend("cloud", delay=1.0)
        generator = SuggestionGenerator(cloud=cloud, config=GeneratorConfig(timeout_seconds=0.05))

        result = await generator.generate(_context(), UserPreferences())

        assert result is None
        assert generator.stats["timeouts"] == 1
        assert generator.stats["errors"] == 0

    @pytest.mark.asyncio
    async def test_confident_local_result_skips_cloud(self):
        local = FakeBackend("local", payload=_payload(confidence=0.85))
        cloud = FakeBackend("cloud")
        generator = SuggestionGenerator(cloud=cloud, local=local)

        suggestion = await generator.generate(_context(), UserPreferences())

        assert suggestion.source == "local:local-model"
        assert cloud.calls == 0
        assert suggestion.connection_id == "conn-1"
        assert suggestion.context_id == "conn-1:time_of_day:light.hall"
        assert suggestion.config == VALID_AUTOMATION

    @pytest.mark.asyncio
    async def test_low_confidence_local_falls_back_to_cloud(self):
        local = FakeBackend("local", payload=_payload(confidence=0.3))
        cloud = FakeBackend("cloud")
        generator = SuggestionGenerator(cloud=cloud, local=local)

        suggestion = await generator.generate(_context(), UserPreferences())

        assert suggestion.source == "cloud:cloud-model"
        assert (local.calls, cloud.calls) == (1, 1)

    @pytest.mark.asyncio
    async def test_local_error_falls_back_to_cloud(self):
        local = FakeBackend("local", error=AIBackendError("ollama down"))
        cloud = FakeBackend("cloud")
        generator = SuggestionGenerator(cloud=cloud, local=local)

        suggestion = await generator.generate(_context(), UserPreferences())

        assert suggestion is not None
        assert generator.stats["cloud"] == 1

    @pytest.mark.asyncio
    async def test_local_processing_disabled_by_preferences(self):
        local = FakeBackend("local")
        cloud = FakeBackend("cloud")
        generator = SuggestionGenerator(cloud=cloud, local=local)

        await generator.generate(_context(), UserPreferences(local_processing=False))

        assert local.calls == 0
        assert cloud.calls == 1

    @pytest.mark.asyncio
    async def test_backend_error_returns_empty_result(self):
        generator = SuggestionGenerator(cloud=FakeBackend("cloud", error=AIBackendError("quota")))

        assert await generator.generate(_context(), UserPreferences()) is None
        assert generator.stats["errors"] == 1

    @pytest.mark.asyncio
    async def test_excluded_entities_skip_generation(self):
        cloud = FakeBackend("cloud")
        generator = SuggestionGenerator(cloud=cloud)
        prefs = UserPreferences(excluded_entities=("light.hall", "binary_sensor.door"))

        assert await generator.generate(_context(), prefs) is None
        assert cloud.calls == 0

    @pytest.mark.asyncio
    async def test_cache_hit_skips_backend(self):
        cloud = FakeBackend("cloud")
        store = DictRedis()
        generator = SuggestionGenerator(cloud=cloud, cache=SuggestionCache(store, ttl_seconds=600))

        first = await generator.generate(_context(), UserPreferences())
        second = await generator.generate(_context(), UserPreferences())

        assert cloud.calls == 1
        assert generator.stats["cache_hits"] == 1
        assert first.suggestion_id != second.suggestion_id
        assert second.config == first.config
        assert list(store.ttls.values()) == [600]

    def test_generate_sync_from_worker_thread(self):
        generator = SuggestionGenerator(cloud=FakeBackend("cloud"))
        suggestion = generator.generate_sync(_context(), UserPreferences())
        assert suggestion.title == "Hall light at dusk"


# =============================================================================
# BACKENDS
# =============================================================================

def _chat_response(payload):
    return {"choices": [{"message": {"content": json.dumps(payload)}}]}


class TestCloudModelBackend:

    @pytest.mark.asyncio
    async def test_primary_failure_uses_fallback_model(self):
        seen_models = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen_models.append(body["model"])
            if body["model"] == "primary":
                return httpx.Response(500, json={"error": "overloaded"})
            return httpx.Response(200, json=_chat_response(_payload()))

        backend = CloudModelBackend(
            base_url="https://ai.test", api_key="k", primary_model="primary",
            fallback_model="fallback", transport=httpx.MockTransport(handler),
        )

        result = await backend.generate(_context(), UserPreferences())

        assert seen_models == ["primary", "fallback"]
        assert result.model == "fallback"
        assert result.payload["config"] == VALID_AUTOMATION

    @pytest.mark.asyncio
    async def test_preferred_model_replaces_primary(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content)["model"])
            assert request.headers["Authorization"] == "Bearer k"
            return httpx.Response(200, json=_chat_response(_payload()))

        backend = CloudModelBackend(base_url="https://ai.test", api_key="k",
                                    transport=httpx.MockTransport(handler))
        await backend.generate(_context(), UserPreferences(preferred_model="custom-model"))

        assert seen == ["custom-model"]

    @pytest.mark.asyncio
    async def test_both_models_failing_raises(self):
        backend = CloudModelBackend(
            base_url="https://ai.test", api_key="k", primary_model="a", fallback_model="b",
            transport=httpx.MockTransport(lambda r: httpx.Response(503)),
        )
        with pytest.raises(AIBackendError):
            await backend.generate(_context(), UserPreferences())


class TestLocalModelBackend:

    @pytest.mark.asyncio
    async def test_generate(self):
        def handler(request):
            assert request.url.path == "/api/generate"
            body = json.loads(request.content)
            assert body["stream"] is False
            return httpx.Response(200, json={"response": json.dumps(_payload(confidence=0.75))})

        backend = LocalModelBackend(base_url="http://ollama.test", model="llama3.1:8b",
                                    transport=httpx.MockTransport(handler))
        result = await backend.generate(_context(), UserPreferences())

        assert result.backend == "local"
        assert result.payload["confidence"] == 0.75

    @pytest.mark.asyncio
    async def test_garbage_response_raises(self):
        backend = LocalModelBackend(
            base_url="http://ollama.test",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"response": "no idea"})),
        )
        with pytest.raises(AIBackendError):
            await backend.generate(_context(), UserPreferences())


# =============================================================================
# PROMPT / PARSING
# =============================================================================

class TestPromptParsing:

    def test_fenced_json(self):
        content = "Here you go:\n```json\n" + json.dumps(_payload()) + "\n```"
        assert parse_suggestion_payload(content)["title"] == "Hall light at dusk"

    def test_json_embedded_in_text(self):
        content = "Sure! " + json.dumps(_payload()) + " Hope it helps."
        assert parse_suggestion_payload(content)["config"] == VALID_AUTOMATION

    def test_confidence_is_clamped(self):
        assert parse_suggestion_payload(json.dumps(_payload(confidence=7)))["confidence"] == 1.0

    @pytest.mark.parametrize("content", ["", "   ", "[1]", '{"title": "x"}', '{"config": "nope"}'])
    def test_unusable_output_raises(self, content):
        with pytest.raises(AIBackendError):
            parse_suggestion_payload(content)

    def test_prompt_mentions_context_entities(self):
        prompt = build_prompt(_context(), UserPreferences())
        assert "light.hall" in prompt
        assert "binary_sensor.door" in prompt
