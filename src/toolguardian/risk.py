"""Risk classification and trust resolution for tool calls."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Mapping

from .types import RiskLevel, TrustLevel

RISK_ORDER: dict[RiskLevel, int] = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}

TRUST_ORDER: dict[TrustLevel, int] = {
    TrustLevel.OWNER: 3,
    TrustLevel.ALLOWED: 2,
    TrustLevel.UNKNOWN: 1,
    TrustLevel.SUBAGENT: 0,
}

_RISK_BY_RANK: tuple[RiskLevel, ...] = tuple(sorted(RISK_ORDER, key=RISK_ORDER.__getitem__))

DEFAULT_TOOL_RISK: RiskLevel = RiskLevel.MEDIUM

TOOL_RISK_DEFAULTS: dict[str, RiskLevel] = {
    # read-only
    "read": RiskLevel.LOW,
    "memory_search": RiskLevel.LOW,
    "memory_get": RiskLevel.LOW,
    "web_search": RiskLevel.LOW,
    "web_fetch": RiskLevel.LOW,
    "session_status": RiskLevel.LOW,
    "sessions_list": RiskLevel.LOW,
    "sessions_history": RiskLevel.LOW,
    "agents_list": RiskLevel.LOW,
    "image": RiskLevel.LOW,
    # mutating
    "write": RiskLevel.MEDIUM,
    "edit": RiskLevel.MEDIUM,
    "apply_patch": RiskLevel.MEDIUM,
    "message": RiskLevel.MEDIUM,
    "browser": RiskLevel.MEDIUM,
    "canvas": RiskLevel.MEDIUM,
    "cron": RiskLevel.MEDIUM,
    "nodes": RiskLevel.MEDIUM,
    # execution and control
    "exec": RiskLevel.HIGH,
    "process": RiskLevel.HIGH,
    "sessions_send": RiskLevel.HIGH,
    "sessions_spawn": RiskLevel.HIGH,
    # system level
    "gateway": RiskLevel.CRITICAL,
    "whatsapp_login": RiskLevel.CRITICAL,
}


@dataclass(frozen=True)
class ParamEscalation:
    """Raise the risk of a tool call when a parameter matches a pattern."""

    tool: str | re.Pattern[str]
    param_key: str
    pattern: re.Pattern[str]
    escalate_to: RiskLevel
    label: str

    def matches_tool(self, tool_name: str) -> bool:
        if isinstance(self.tool, str):
            return self.tool == tool_name
        return self.tool.search(tool_name) is not None


_SENSITIVE_PATH = re.compile(r"(?:config|\.env|secret|credential|\.ssh|\.gnupg)", re.IGNORECASE)

PARAM_ESCALATIONS: tuple[ParamEscalation, ...] = (
    ParamEscalation(
        tool="write",
        param_key="path",
        pattern=_SENSITIVE_PATH,
        escalate_to=RiskLevel.CRITICAL,
        label="write to sensitive path",
    ),
    ParamEscalation(
        tool="edit",
        param_key="path",
        pattern=_SENSITIVE_PATH,
        escalate_to=RiskLevel.CRITICAL,
        label="edit sensitive path",
    ),
    ParamEscalation(
        tool="exec",
        param_key="command",
        pattern=re.compile(
            r"(?:rm\s+-rf|DROP\s+TABLE|DELETE\s+FROM|TRUNCATE\s+TABLE|mkfs|dd\s+if="
            r"|format\s+[a-z]:|shutdown|reboot)",
            re.IGNORECASE,
        ),
        escalate_to=RiskLevel.CRITICAL,
        label="destructive command",
    ),
    ParamEscalation(
        tool="message",
        param_key="action",
        pattern=re.compile(r"broadcast", re.IGNORECASE),
        escalate_to=RiskLevel.CRITICAL,
        label="broadcast message",
    ),
)


@dataclass(frozen=True)
class Classification:
    risk_level: RiskLevel
    escalation_label: str | None = None


def normalize_tool_name(name: str) -> str:
    return name.strip().lower()


def risk_at_least(level: RiskLevel, threshold: RiskLevel) -> bool:
    return RISK_ORDER[level] >= RISK_ORDER[threshold]


def max_risk(a: RiskLevel, b: RiskLevel) -> RiskLevel:
    return a if RISK_ORDER[a] >= RISK_ORDER[b] else b


def lower_risk(level: RiskLevel) -> RiskLevel:
    """Return the next lower risk level, floored at low."""
    rank = RISK_ORDER[level]
    return _RISK_BY_RANK[rank - 1] if rank > 0 else level


def trust_at_least(level: TrustLevel, minimum: TrustLevel) -> bool:
    return TRUST_ORDER[level] >= TRUST_ORDER[minimum]


def stringify_param(value: Any) -> str:
    """Render a parameter value for pattern matching. Never raises."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        try:
            return str(value)
        except Exception:
            return f"<{type(value).__name__}>"


def base_risk(tool_name: str) -> RiskLevel:
    return TOOL_RISK_DEFAULTS.get(tool_name, DEFAULT_TOOL_RISK)


def check_param_escalations(
    tool_name: str, params: Mapping[str, Any]
) -> ParamEscalation | None:
    """Return the first escalation whose tool and parameter pattern match."""
    for escalation in PARAM_ESCALATIONS:
        if not escalation.matches_tool(tool_name):
            continue
        value = params.get(escalation.param_key)
        if value is None:
            continue
        if escalation.pattern.search(stringify_param(value)):
            return escalation
    return None


def classify(tool_name: str, params: Mapping[str, Any]) -> Classification:
    """Classify a normalized tool call. Escalation only ever raises the base risk."""
    risk = base_risk(tool_name)
    escalation = check_param_escalations(tool_name, params)
    if escalation is None:
        return Classification(risk_level=risk)
    return Classification(
        risk_level=max_risk(risk, escalation.escalate_to),
        escalation_label=escalation.label,
    )


def resolve_trust_level(
    *,
    sender_is_owner: bool = False,
    is_subagent: bool = False,
    is_allowed: bool = False,
) -> TrustLevel:
    if sender_is_owner:
        return TrustLevel.OWNER
    if is_subagent:
        return TrustLevel.SUBAGENT
    if is_allowed:
        return TrustLevel.ALLOWED
    return TrustLevel.UNKNOWN
