"""Four-stage validation of generated automations.

Stages run independently on the suggestion config:

- syntax: automation structure, entity id and service formats
- logic: contradictions between trigger, condition and action
- security: forbidden domains and services, privilege patterns
- performance: estimated load against ``performance_threshold``

The suggestion is valid only when all four pass. The confidence score is
the weighted sum of the stage scores, forced to 0 on a syntax or security
failure. Validation is pure: the same input always gives the same result.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional

from ...common.config import env_list
from ..models import AutomationContext, Suggestion, ValidationResult

logger = logging.getLogger(__name__)

WEIGHTS = {"syntax": 0.25, "logic": 0.25, "security": 0.30, "performance": 0.20}

ENTITY_ID_RE = re.compile(r"^[a-z_][a-z0-9_]*\.[a-z0-9_]+$")
SERVICE_RE = re.compile(r"^[a-z_][a-z0-9_]*\.[a-z0-9_]+$")

TRIGGER_PLATFORMS = (
    "state", "numeric_state", "time", "time_pattern", "sun", "zone",
    "event", "homeassistant", "template", "device", "mqtt", "webhook",
)
CONDITION_TYPES = ("state", "numeric_state", "time", "sun", "zone", "template", "and", "or", "not", "device")
ACTION_KEYS = ("service", "action", "delay", "wait_template", "scene", "event", "choose", "repeat", "condition")

DEFAULT_FORBIDDEN_DOMAINS = ("shell_command", "python_script", "hassio", "recorder", "pyscript", "command_line")
DEFAULT_FORBIDDEN_SERVICES = (
    "homeassistant.stop",
    "homeassistant.restart",
    "homeassistant.reload_core_config",
    "homeassistant.set_location",
    "system_log.clear",
    "logger.set_default_level",
)
PRIVILEGE_PATTERNS = (
    re.compile(r"!secret\b"),
    re.compile(r"\b(sudo|rm\s+-rf|chmod|chown)\b"),
    re.compile(r"\b(password|api_key|access_token|auth_token)\b", re.IGNORECASE),
    re.compile(r"__import__|\beval\s*\(|\bexec\s*\("),
)

SAFETY_CRITICAL_DOMAINS = ("lock", "alarm_control_panel", "siren")
SAFETY_CRITICAL_SERVICES = ("cover.open_cover", "climate.turn_off", "water_heater.turn_off", "switch.turn_off")
ON_OFF_PAIRS = (("turn_on", "turn_off"), ("open_cover", "close_cover"), ("lock", "unlock"))


@dataclass
class ValidatorConfig:
    performance_threshold: float = 0.7
    max_actions: int = 20
    forbidden_domains: tuple[str, ...] = DEFAULT_FORBIDDEN_DOMAINS
    forbidden_services: tuple[str, ...] = DEFAULT_FORBIDDEN_SERVICES

    @classmethod
    def from_env(cls) -> "ValidatorConfig":
        return cls(
            performance_threshold=float(os.getenv("AI_VALIDATION_PERFORMANCE_THRESHOLD", "0.7")),
            max_actions=int(os.getenv("AI_VALIDATION_MAX_ACTIONS", "20")),
            forbidden_domains=tuple(
                env_list("AI_VALIDATION_FORBIDDEN_DOMAINS", ",".join(DEFAULT_FORBIDDEN_DOMAINS))
            ),
            forbidden_services=tuple(
                env_list("AI_VALIDATION_FORBIDDEN_SERVICES", ",".join(DEFAULT_FORBIDDEN_SERVICES))
            ),
        )


@dataclass(frozen=True)
class CheckOutcome:
    passed: bool
    score: float
    issues: tuple[str, ...] = ()


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _entity_ids(node: dict) -> list[str]:
    """entity_id of a trigger/condition/action, including ``target``."""
    ids: list[str] = []
    for holder in (node, node.get("target"), node.get("data")):
        if not isinstance(holder, dict):
            continue
        for e in _as_list(holder.get("entity_id")):
            if isinstance(e, str):
                ids.append(e)
    return ids


def _service_of(action: dict) -> Optional[str]:
    service = action.get("service", action.get("action"))
    return service if isinstance(service, str) else None


def _walk_strings(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for k, v in value.items():
            yield str(k)
            yield from _walk_strings(v)
    elif isinstance(value, list):
        for v in value:
            yield from _walk_strings(v)


def _iter_actions(actions: Iterable[Any]) -> Iterator[dict]:
    """Flatten nested choose, if, repeat, parallel and sequence blocks."""
    for action in actions:
        if not isinstance(action, dict):
            continue
        yield action
        for option in _as_list(action.get("choose")):
            if isinstance(option, dict):
                yield from _iter_actions(_as_list(option.get("sequence")))
        yield from _iter_actions(_as_list(action.get("default")))
        repeat = action.get("repeat")
        if isinstance(repeat, dict):
            yield from _iter_actions(_as_list(repeat.get("sequence")))
        for key in ("then", "else", "sequence", "parallel"):
            yield from _iter_actions(_as_list(action.get(key)))


def iter_config_actions(config: dict) -> Iterator[dict]:
    """Every action of an automation config, nested blocks included."""
    return _iter_actions(_as_list(config.get("action", config.get("actions"))))


def action_domains(action: dict) -> set[str]:
    """Service domain plus the domains of the entities the action targets."""
    domains = set()
    service = _service_of(action)
    if service and "." in service:
        domains.add(service.split(".", 1)[0].lower())
    for entity_id in _entity_ids(action):
        if "." in entity_id:
            domains.add(entity_id.split(".", 1)[0].strip().lower())
    return domains


def _trigger_key(trigger: dict) -> str:
    return str(trigger.get("platform", trigger.get("trigger", "")))


def _condition_key(condition: dict) -> str:
    return str(condition.get("condition", ""))


class SuggestionValidator:
    def __init__(self, config: Optional[ValidatorConfig] = None):
        self._config = config or ValidatorConfig()

    @property
    def config(self) -> ValidatorConfig:
        return self._config

    def validate(self, suggestion: Suggestion, context: Optional[AutomationContext] = None) -> ValidationResult:
        config = suggestion.config if isinstance(suggestion.config, dict) else None

        syntax = self.check_syntax(config)
        logic = self.check_logic(config)
        security = self.check_security(config, suggestion)
        impact = self.estimate_performance_impact(config)
        performance = self.check_performance(impact)

        valid = syntax.passed and logic.passed and security.passed and performance.passed
        if not syntax.passed or not security.passed:
            score = 0.0
        else:
            score = round(
                syntax.score * WEIGHTS["syntax"]
                + logic.score * WEIGHTS["logic"]
                + security.score * WEIGHTS["security"]
                + performance.score * WEIGHTS["performance"],
                2,
            )

        result = ValidationResult(
            valid=valid,
            confidence_score=score,
            issues=syntax.issues + logic.issues + security.issues + performance.issues,
            syntax_score=syntax.score,
            logic_score=logic.score,
            security_score=security.score,
            performance_score=performance.score,
            performance_impact=impact,
            safety_critical=self.is_safety_critical(config),
        )

        logger.debug(
            "[VALIDATION] suggestion_id=%s context_id=%s valid=%s score=%.2f issues=%d",
            suggestion.suggestion_id,
            context.context_id if context else suggestion.context_id,
            result.valid, result.confidence_score, len(result.issues),
        )
        return result

    # -- syntax -------------------------------------------------------------

    def check_syntax(self, config: Optional[dict]) -> CheckOutcome:
        if config is None:
            return CheckOutcome(False, 0.0, ("config is not a JSON object",))

        issues: list[str] = []
        penalty = 0.0

        triggers = _as_list(config.get("trigger", config.get("triggers")))
        actions = _as_list(config.get("action", config.get("actions")))
        conditions = _as_list(config.get("condition", config.get("conditions")))

        if not triggers:
            issues.append("automation has no trigger")
            penalty += 0.4
        if not actions:
            issues.append("automation has no action")
            penalty += 0.4

        for i, trigger in enumerate(triggers):
            if not isinstance(trigger, dict):
                issues.append(f"trigger {i} is not an object")
                penalty += 0.2
                continue
            platform = _trigger_key(trigger)
            if platform not in TRIGGER_PLATFORMS:
                issues.append(f"trigger {i} has unknown platform '{platform}'")
                penalty += 0.2
            if platform in ("state", "numeric_state") and not _entity_ids(trigger):
                issues.append(f"trigger {i} ({platform}) has no entity_id")
                penalty += 0.2

        for i, condition in enumerate(conditions):
            if isinstance(condition, str):
                continue  # template shorthand
            if not isinstance(condition, dict) or _condition_key(condition) not in CONDITION_TYPES:
                issues.append(f"condition {i} is not a known condition")
                penalty += 0.1

        for i, action in enumerate(actions):
            if not isinstance(action, dict) or not any(k in action for k in ACTION_KEYS):
                issues.append(f"action {i} has no service or step")
                penalty += 0.2
                continue
            service = _service_of(action)
            if service is not None and not SERVICE_RE.match(service):
                issues.append(f"action {i} has invalid service '{service}'")
                penalty += 0.3

        for node in [t for t in triggers if isinstance(t, dict)] + [
            a for a in _iter_actions(actions)
        ]:
            for entity_id in _entity_ids(node):
                if not ENTITY_ID_RE.match(entity_id):
                    issues.append(f"invalid entity id '{entity_id}'")
                    penalty += 0.2

        score = round(max(0.0, 1.0 - penalty), 4)
        return CheckOutcome(not issues, score, tuple(issues))

    # -- logic --------------------------------------------------------------

    def check_logic(self, config: Optional[dict]) -> CheckOutcome:
        if config is None:
            return CheckOutcome(False, 0.0, ("config is not a JSON object",))

        issues: list[str] = []
        triggers = [t for t in _as_list(config.get("trigger", config.get("triggers"))) if isinstance(t, dict)]
        conditions = [c for c in _as_list(config.get("condition", config.get("conditions"))) if isinstance(c, dict)]
        actions = list(iter_config_actions(config))

        # Trigger fires on E -> X while a condition requires E == Y.
        trigger_states: dict[str, str] = {}
        for t in triggers:
            if _trigger_key(t) == "state" and t.get("to") is not None:
                for e in _entity_ids(t):
                    trigger_states[e] = str(t["to"])
        for c in conditions:
            if _condition_key(c) == "state" and c.get("state") is not None:
                for e in _entity_ids(c):
                    expected = trigger_states.get(e)
                    if expected is not None and expected != str(c["state"]):
                        issues.append(
                            f"condition requires {e} == {c['state']} but trigger fires on {e} -> {expected}"
                        )

        # numeric_state with an empty range.
        for node in triggers + conditions:
            if _trigger_key(node) == "numeric_state" or _condition_key(node) == "numeric_state":
                above, below = node.get("above"), node.get("below")
                if isinstance(above, (int, float)) and isinstance(below, (int, float)) and above >= below:
                    issues.append(f"numeric_state range is empty (above {above} >= below {below})")

        # The same entity switched both ways in one run.
        calls: dict[str, set[str]] = {}
        for a in actions:
            service = _service_of(a)
            if not service or "." not in service:
                continue
            verb = service.split(".", 1)[1]
            for e in _entity_ids(a):
                calls.setdefault(e, set()).add(verb)
        for e, verbs in sorted(calls.items()):
            for on, off in ON_OFF_PAIRS:
                if on in verbs and off in verbs:
                    issues.append(f"actions both {on} and {off} {e}")

        score = round(max(0.0, 1.0 - 0.5 * len(issues)), 4)
        return CheckOutcome(not issues, score, tuple(issues))

    # -- security -----------------------------------------------------------

    def check_security(self, config: Optional[dict], suggestion: Optional[Suggestion] = None) -> CheckOutcome:
        if config is None:
            return CheckOutcome(False, 0.0, ("config is not a JSON object",))

        issues: list[str] = []
        actions = list(iter_config_actions(config))

        for a in actions:
            service = _service_of(a)
            if service:
                domain = service.split(".", 1)[0]
                if domain in self._config.forbidden_domains:
                    issues.append(f"forbidden service domain '{domain}'")
                elif service in self._config.forbidden_services:
                    issues.append(f"forbidden service '{service}'")
            for e in _entity_ids(a):
                if e.split(".", 1)[0] in self._config.forbidden_domains:
                    issues.append(f"forbidden entity '{e}'")

        texts = list(_walk_strings(config))
        if suggestion is not None:
            texts.extend([suggestion.title or "", suggestion.description or ""])
        for pattern in PRIVILEGE_PATTERNS:
            if any(pattern.search(t) for t in texts):
                issues.append(f"privileged pattern '{pattern.pattern}'")

        score = 0.0 if issues else 1.0
        return CheckOutcome(not issues, score, tuple(issues))

    # -- performance --------------------------------------------------------

    def estimate_performance_impact(self, config: Optional[dict]) -> float:
        """Rough load estimate in [0, 1]."""
        if config is None:
            return 0.0

        impact = 0.0
        triggers = [t for t in _as_list(config.get("trigger", config.get("triggers"))) if isinstance(t, dict)]
        actions = list(iter_config_actions(config))

        for t in triggers:
            platform = _trigger_key(t)
            if platform == "time_pattern":
                seconds = str(t.get("seconds", ""))
                minutes = str(t.get("minutes", ""))
                if seconds:
                    impact += 0.5
                elif minutes in ("*", "/1"):
                    impact += 0.3
                else:
                    impact += 0.1
            elif platform == "state" and not _entity_ids(t):
                impact += 0.5
            elif platform == "template":
                impact += 0.2
            elif platform == "event" and not t.get("event_type"):
                impact += 0.4

        impact += 0.03 * len(actions)
        if len(actions) > self._config.max_actions:
            impact += 0.3

        for a in actions:
            repeat = a.get("repeat")
            if isinstance(repeat, dict):
                count = repeat.get("count")
                if "while" in repeat or "until" in repeat:
                    impact += 0.3
                elif isinstance(count, int) and count > 10:
                    impact += 0.2

        return round(min(1.0, impact), 4)

    def check_performance(self, impact: float) -> CheckOutcome:
        threshold = self._config.performance_threshold
        if impact > threshold:
            return CheckOutcome(
                False,
                round(1.0 - impact, 4),
                (f"estimated performance impact {impact:.2f} exceeds {threshold:.2f}",),
            )
        return CheckOutcome(True, round(1.0 - impact, 4))

    # -- safety classification ---------------------------------------------

    def is_safety_critical(self, config: Optional[dict]) -> bool:
        if config is None:
            return False
        for a in iter_config_actions(config):
            service = _service_of(a)
            if service:
                if service.split(".", 1)[0] in SAFETY_CRITICAL_DOMAINS or service in SAFETY_CRITICAL_SERVICES:
                    return True
            for e in _entity_ids(a):
                if e.split(".", 1)[0] in SAFETY_CRITICAL_DOMAINS:
                    return True
        return False
