"""Tier 2: delegated-model adjudication.

The adjudicator sees a system prompt (the resolved constitution plus a strict
output directive) and a user prompt describing the call. Its free-text answer
is parsed into a decision. Every failure path (timeout, call error, unparseable
answer) resolves to ``escalate``; this tier never allows by default and never
raises to the caller.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Mapping

from .config import GuardianConfig
from .constitution import DEFAULT_CONSTITUTION, OUTPUT_DIRECTIVE
from .protocols import Adjudicator
from .types import RiskLevel, RuleAction, TrustLevel

DEFAULT_ADJUDICATOR_TIMEOUT_MS: int = 5_000
DEFAULT_MAX_TOKENS: int = 256
MAX_PARAMS_CHARS: int = 2_000
TRUNCATION_MARKER = "\n... (truncated)"
UNSERIALIZABLE_PARAMS = "(unable to serialize params)"

_logger = logging.getLogger(__name__)

FailureKind = Literal["timeout", "error", "parse"]


@dataclass(frozen=True)
class AdjudicationResult:
    """Outcome of Tier 2. ``failure`` is set whenever the call degraded to escalate."""

    decision: RuleAction
    reason: str | None = None
    failure: FailureKind | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def adjudicator_timeout_ms(config: GuardianConfig) -> int:
    if config.timeout_ms is None:
        return DEFAULT_ADJUDICATOR_TIMEOUT_MS
    return min(config.timeout_ms, DEFAULT_ADJUDICATOR_TIMEOUT_MS)


def resolve_constitution(config: GuardianConfig, agent_id: str | None = None) -> str:
    """Agent-specific text, then the file at constitution_path, then inline, then default."""
    override = config.agent(agent_id)
    if override is not None and override.constitution:
        return override.constitution

    if config.constitution_path:
        try:
            return Path(config.constitution_path).read_text(encoding="utf-8")
        except OSError as exc:
            _logger.warning(
                "Failed to load constitution from %s: %s", config.constitution_path, exc
            )

    if config.constitution:
        return config.constitution

    return DEFAULT_CONSTITUTION


def build_system_prompt(constitution: str | None) -> str:
    base = (constitution or "").strip() or DEFAULT_CONSTITUTION
    return f"{base}\n\n{OUTPUT_DIRECTIVE}"


def _render_params(params: Mapping[str, Any]) -> str:
    try:
        rendered = json.dumps(dict(params), indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return UNSERIALIZABLE_PARAMS
    if len(rendered) > MAX_PARAMS_CHARS:
        rendered = rendered[:MAX_PARAMS_CHARS] + TRUNCATION_MARKER
    return rendered


def build_user_message(
    *,
    tool_name: str,
    params: Mapping[str, Any],
    risk_level: RiskLevel,
    trust_level: TrustLevel,
    agent_id: str | None = None,
) -> str:
    lines = [
        "An agent wants to execute the following tool call:",
        f"Tool: {tool_name}",
        f"Parameters: {_render_params(params)}",
        f"Risk Level: {risk_level.value}",
        f"Trust Level: {trust_level.value}",
    ]
    if agent_id:
        lines.append(f"Agent: {agent_id}")
    lines.extend(["", "Based on the policies, should this be allowed?"])
    return "\n".join(lines)


def _decision_from(obj: Any) -> AdjudicationResult | None:
    if not isinstance(obj, dict):
        return None
    raw = obj.get("decision")
    if not isinstance(raw, str):
        return None
    try:
        decision = RuleAction(raw.strip().lower())
    except ValueError:
        return None
    reason = obj.get("reason")
    return AdjudicationResult(decision=decision, reason=reason if isinstance(reason, str) else None)


def _balanced_spans(text: str):
    """Yield each balanced ``{...}`` span in order of its opening brace."""
    for start, char in enumerate(text):
        if char != "{":
            continue
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            current = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif current == "\\":
                    escaped = True
                elif current == '"':
                    in_string = False
                continue
            if current == '"':
                in_string = True
            elif current == "{":
                depth += 1
            elif current == "}":
                depth -= 1
                if depth == 0:
                    yield text[start : index + 1]
                    break


def parse_decision(text: str) -> AdjudicationResult:
    """Extract ``{"decision", "reason"}`` from a free-text answer."""
    cleaned = text.strip()
    try:
        result = _decision_from(json.loads(cleaned))
    except json.JSONDecodeError:
        result = None
    if result is not None:
        return result

    for span in _balanced_spans(cleaned):
        if '"decision"' not in span:
            continue
        try:
            parsed = json.loads(span)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict) and "decision" in parsed:
            result = _decision_from(parsed)
            if result is not None:
                return result
            break

    return AdjudicationResult(
        decision=RuleAction.ESCALATE,
        reason="Could not parse adjudicator response",
        failure="parse",
    )


async def _invoke(adjudicator: Adjudicator, system: str, user: str, max_tokens: int) -> str:
    response = adjudicator(system=system, user=user, max_tokens=max_tokens)
    if inspect.isawaitable(response):
        response = await response
    if not isinstance(response, str):
        raise TypeError(f"adjudicator returned {type(response).__name__}, expected str")
    return response


async def adjudicate(
    adjudicator: Adjudicator,
    *,
    tool_name: str,
    params: Mapping[str, Any],
    risk_level: RiskLevel,
    trust_level: TrustLevel,
    constitution: str | None = None,
    agent_id: str | None = None,
    timeout_ms: int = DEFAULT_ADJUDICATOR_TIMEOUT_MS,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> AdjudicationResult:
    """Ask the delegated model about one call, bounded by ``timeout_ms``."""
    system = build_system_prompt(constitution)
    user = build_user_message(
        tool_name=tool_name,
        params=params,
        risk_level=risk_level,
        trust_level=trust_level,
        agent_id=agent_id,
    )
    try:
        text = await asyncio.wait_for(
            _invoke(adjudicator, system, user, max_tokens), timeout=timeout_ms / 1000
        )
    except asyncio.TimeoutError:
        _logger.warning("Adjudicator timed out after %sms for %s", timeout_ms, tool_name)
        return AdjudicationResult(
            decision=RuleAction.ESCALATE,
            reason=f"Adjudicator evaluation failed: timed out after {timeout_ms}ms",
            failure="timeout",
        )
    except Exception as exc:
        _logger.warning("Adjudicator evaluation failed for %s: %s", tool_name, exc)
        return AdjudicationResult(
            decision=RuleAction.ESCALATE,
            reason=f"Adjudicator evaluation failed: {exc}",
            failure="error",
        )

    result = parse_decision(text)
    if result.failure is not None:
        _logger.warning("Adjudicator response for %s could not be parsed", tool_name)
    return result
