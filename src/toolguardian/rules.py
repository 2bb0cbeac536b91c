"""Tier 1: declarative rule matching and the trust-adjusted threshold policy.

Rules are compiled once (tool glob and parameter regexes) and evaluated in
order, agent rules before global rules. The first matching rule decides. When
no rule matches, the classified risk is compared against the approval
threshold, adjusted for the caller's trust level.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from .risk import (
    classify,
    lower_risk,
    max_risk,
    normalize_tool_name,
    risk_at_least,
    stringify_param,
    trust_at_least,
)
from .types import EvaluationResult, RiskLevel, Rule, RuleAction, TrustLevel


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a tool glob (``*`` any run, ``?`` one char) into an anchored regex."""
    parts: list[str] = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


@dataclass(frozen=True)
class ParamMatcher:
    key: str
    raw: str
    regex: re.Pattern[str] | None

    def matches(self, params: Mapping[str, Any]) -> bool:
        value = params.get(self.key)
        if value is None:
            return False
        text = stringify_param(value)
        if self.regex is None:
            # Malformed pattern: literal substring containment.
            return self.raw in text
        return self.regex.search(text) is not None


@dataclass(frozen=True)
class CompiledRule:
    rule: Rule
    tool_regex: re.Pattern[str] | None
    param_matchers: tuple[ParamMatcher, ...]

    @classmethod
    def compile(cls, rule: Rule) -> "CompiledRule":
        tool_regex = None
        if rule.tool:
            tool_regex = glob_to_regex(normalize_tool_name(rule.tool))
        matchers: list[ParamMatcher] = []
        for key, raw in rule.param_matches.items():
            try:
                regex: re.Pattern[str] | None = re.compile(raw, re.IGNORECASE)
            except re.error:
                regex = None
            matchers.append(ParamMatcher(key=key, raw=raw, regex=regex))
        return cls(rule=rule, tool_regex=tool_regex, param_matchers=tuple(matchers))

    def matches(self, tool_name: str, params: Mapping[str, Any], trust_level: TrustLevel) -> bool:
        if self.tool_regex is not None and self.tool_regex.fullmatch(tool_name) is None:
            return False
        if self.rule.min_trust is not None and not trust_at_least(trust_level, self.rule.min_trust):
            return False
        return all(matcher.matches(params) for matcher in self.param_matchers)


def compile_rules(rules: Iterable[Rule]) -> tuple[CompiledRule, ...]:
    return tuple(CompiledRule.compile(rule) for rule in rules)


def first_match(
    rules: Iterable[CompiledRule],
    tool_name: str,
    params: Mapping[str, Any],
    trust_level: TrustLevel,
) -> CompiledRule | None:
    for compiled in rules:
        if compiled.matches(tool_name, params, trust_level):
            return compiled
    return None


def apply_threshold(
    *,
    risk_level: RiskLevel,
    threshold: RiskLevel,
    trust_level: TrustLevel,
    escalation_label: str | None = None,
) -> EvaluationResult:
    """Decide a call that matched no rule."""
    if trust_level is TrustLevel.OWNER and not risk_at_least(risk_level, RiskLevel.CRITICAL):
        return EvaluationResult(
            decision=RuleAction.ALLOW,
            risk_level=risk_level,
            trust_level=trust_level,
            reason="owner bypass (risk below critical)",
        )

    adjusted = threshold
    if trust_level is TrustLevel.SUBAGENT:
        adjusted = lower_risk(threshold)

    if risk_at_least(risk_level, adjusted):
        return EvaluationResult(
            decision=RuleAction.ESCALATE,
            risk_level=risk_level,
            trust_level=trust_level,
            reason=escalation_label or f"risk {risk_level.value} >= threshold {adjusted.value}",
        )
    return EvaluationResult(
        decision=RuleAction.ALLOW,
        risk_level=risk_level,
        trust_level=trust_level,
        reason=f"risk {risk_level.value} < threshold {adjusted.value}",
    )


def evaluate_rules(
    *,
    tool_name: str,
    params: Mapping[str, Any],
    threshold: RiskLevel,
    trust_level: TrustLevel,
    agent_rules: Sequence[CompiledRule] = (),
    global_rules: Sequence[CompiledRule] = (),
) -> EvaluationResult:
    """Run Tier 1 for one call. Never raises on malformed input."""
    tool = normalize_tool_name(tool_name)
    classification = classify(tool, params)
    risk = classification.risk_level
    label = classification.escalation_label

    matched = first_match((*agent_rules, *global_rules), tool, params, trust_level)
    if matched is not None:
        rule = matched.rule
        if rule.risk_level is not None:
            risk = max_risk(risk, rule.risk_level)
        return EvaluationResult(
            decision=rule.action,
            risk_level=risk,
            trust_level=trust_level,
            reason=label or rule.label or f"matched rule: {rule.id or rule.tool or '*'}",
            rule_label=rule.label or rule.id,
        )

    return apply_threshold(
        risk_level=risk,
        threshold=threshold,
        trust_level=trust_level,
        escalation_label=label,
    )


class RuleBook:
    """Compiled global rules plus per-agent rule lists, built once per guardian."""

    def __init__(
        self,
        global_rules: Iterable[Rule] = (),
        agent_rules: Mapping[str, Iterable[Rule]] | None = None,
    ) -> None:
        self._global = compile_rules(global_rules)
        self._agents = {
            agent_id: compile_rules(rules) for agent_id, rules in (agent_rules or {}).items()
        }

    @property
    def global_rules(self) -> tuple[CompiledRule, ...]:
        return self._global

    def for_agent(self, agent_id: str | None) -> tuple[CompiledRule, ...]:
        if not agent_id:
            return ()
        return self._agents.get(agent_id, ())
