"""Prompt construction and response parsing for suggestion generation.

Backends are asked to answer with one JSON object::

    {
      "title": "Turn on hallway light at sunset",
      "description": "...",
      "suggestion_type": "new_automation",
      "confidence": 0.82,
      "config": {"alias": "...", "trigger": [...], "condition": [...], "action": [...]}
    }
"""

from __future__ import annotations

import re
from typing import Any

import orjson

from ..exceptions import AIBackendError
from ..models import AutomationContext, UserPreferences

_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)

SUGGESTION_TYPES = (
    "new_automation",
    "improvement",
    "energy_optimization",
    "comfort",
    "security",
)


def build_system_prompt(preferences: UserPreferences) -> str:
    return (
        "You are an assistant that proposes Home Assistant automations from observed "
        "household behaviour. Answer with ONE JSON object with the keys title, "
        "description, suggestion_type, confidence (0.0-1.0) and config. config must be "
        "a valid Home Assistant automation with trigger, optional condition and action "
        "lists. Never use shell_command, python_script or services that restart, stop "
        "or reconfigure the hub. "
        f"Safety level: {preferences.safety_level}."
    )


def build_user_prompt(context: AutomationContext) -> str:
    summary = context.pattern_summary
    lines = [
        "Observed behaviour:",
        f"- Pattern type: {context.pattern_type}",
        f"- Primary entity: {context.primary_entity}",
        f"- Related entities: {', '.join(context.entity_ids[1:]) or 'none'}",
        f"- Occurrences: {summary.get('occurrences', 0)}",
        f"- Pattern confidence: {context.confidence:.2f}",
        f"- Window: {context.window_start.isoformat()} .. {context.window_end.isoformat()}",
    ]
    details = summary.get("details") or {}
    if details:
        lines.append(f"- Details: {orjson.dumps(details, default=str).decode()}")
    lines.append(
        f"Suggestion type must be one of: {', '.join(SUGGESTION_TYPES)}."
    )
    return "\n".join(lines)


def build_prompt(context: AutomationContext, preferences: UserPreferences) -> str:
    """Single-string prompt for completion-style backends."""
    return build_system_prompt(preferences) + "\n\n" + build_user_prompt(context)


def parse_suggestion_payload(content: str) -> dict[str, Any]:
    """Extract the suggestion object from model output.

    Accepts bare JSON or JSON inside a markdown fence.

    Raises:
        AIBackendError: no usable object in the output
    """
    if not content or not content.strip():
        raise AIBackendError("empty model response")

    text = content.strip()
    match = _FENCE_RE.search(text)
    if match:
        text = match.group(1)
    elif not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise AIBackendError("model response contains no JSON object")
        text = text[start:end + 1]

    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError as e:
        raise AIBackendError(f"model response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise AIBackendError("model response is not a JSON object")
    if not isinstance(data.get("config"), dict):
        raise AIBackendError("model response has no config object")

    try:
        confidence = float(data.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0

    return {
        "title": str(data.get("title") or "").strip(),
        "description": str(data.get("description") or "").strip(),
        "suggestion_type": str(data.get("suggestion_type") or "new_automation"),
        "confidence": min(1.0, max(0.0, confidence)),
        "config": data["config"],
    }
