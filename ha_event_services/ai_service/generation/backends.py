"""AI backends used by the suggestion generator.

- LocalModelBackend: Ollama-style ``/api/generate`` on the local network
- CloudModelBackend: OpenAI-compatible ``/v1/chat/completions`` with a
  primary and a fallback model

A new ``httpx.AsyncClient`` is opened per call because batch workers run each
generation on its own event loop.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..exceptions import AIBackendError
from ..models import AutomationContext, UserPreferences
from .prompt import build_prompt, build_system_prompt, build_user_prompt, parse_suggestion_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackendResult:
    payload: dict[str, Any]
    backend: str
    model: str


class AIBackend(ABC):
    name: str = "backend"

    @abstractmethod
    async def generate(self, context: AutomationContext, preferences: UserPreferences) -> BackendResult:
        """Return a parsed suggestion payload or raise ``AIBackendError``."""


class LocalModelBackend(AIBackend):
    name = "local"

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = (base_url or os.getenv("AI_LOCAL_URL", "http://localhost:11434")).rstrip("/")
        self._model = model or os.getenv("AI_LOCAL_MODEL", "llama3.1:8b")
        self._timeout = timeout
        self._transport = transport

    async def generate(self, context: AutomationContext, preferences: UserPreferences) -> BackendResult:
        body = {
            "model": self._model,
            "prompt": build_prompt(context, preferences),
            "stream": False,
            "format": "json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(f"{self._base_url}/api/generate", json=body)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            raise AIBackendError(f"local backend request failed: {e}") from e
        except ValueError as e:
            raise AIBackendError(f"local backend returned invalid JSON: {e}") from e

        content = data.get("response") if isinstance(data, dict) else None
        payload = parse_suggestion_payload(content or "")
        return BackendResult(payload=payload, backend=self.name, model=self._model)


class CloudModelBackend(AIBackend):
    name = "cloud"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        primary_model: Optional[str] = None,
        fallback_model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1200,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = (base_url or os.getenv("AI_CLOUD_URL", "https://api.openai.com")).rstrip("/")
        self._api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY", "")
        self._primary = primary_model or os.getenv("AI_CLOUD_PRIMARY_MODEL", "gpt-4o-mini")
        self._fallback = fallback_model or os.getenv("AI_CLOUD_FALLBACK_MODEL", "gpt-3.5-turbo")
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._transport = transport

    async def generate(self, context: AutomationContext, preferences: UserPreferences) -> BackendResult:
        primary = preferences.preferred_model or self._primary
        try:
            return await self._generate_with(primary, context, preferences)
        except AIBackendError as primary_error:
            if not self._fallback or self._fallback == primary:
                raise
            logger.warning(
                "[AI] Primary model failed, trying fallback primary=%s fallback=%s err=%s",
                primary, self._fallback, primary_error,
            )
            try:
                return await self._generate_with(self._fallback, context, preferences)
            except AIBackendError as fallback_error:
                raise AIBackendError(
                    f"all cloud models failed (primary: {primary_error}; fallback: {fallback_error})"
                ) from fallback_error

    async def _generate_with(
        self, model: str, context: AutomationContext, preferences: UserPreferences
    ) -> BackendResult:
        body = {
            "model": model,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": build_system_prompt(preferences)},
                {"role": "user", "content": build_user_prompt(context)},
            ],
        }
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(f"{self._base_url}/v1/chat/completions", json=body, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            raise AIBackendError(f"cloud model {model} request failed: {e}") from e
        except ValueError as e:
            raise AIBackendError(f"cloud model {model} returned invalid JSON: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise AIBackendError(f"cloud model {model} returned an unexpected body") from e

        payload = parse_suggestion_payload(content or "")
        return BackendResult(payload=payload, backend=self.name, model=model)
