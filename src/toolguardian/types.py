"""Typed models shared across the guardian tiers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class RiskLevel(str, Enum):
    """Derived severity of a tool call, ordered low to critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TrustLevel(str, Enum):
    """Provenance-derived confidence in the origin of a call."""

    OWNER = "owner"
    ALLOWED = "allowed"
    UNKNOWN = "unknown"
    SUBAGENT = "subagent"


class RuleAction(str, Enum):
    """Outcome of a Tier 1 rule or of the delegated adjudicator."""

    ALLOW = "allow"
    DENY = "deny"
    ESCALATE = "escalate"


class ApprovalDecision(str, Enum):
    """Decision returned by a human operator."""

    ALLOW_ONCE = "allow-once"
    ALLOW_SESSION = "allow-session"
    ALLOW_ALWAYS = "allow-always"
    DENY = "deny"


class Tier(str, Enum):
    RULES = "rules"
    ADJUDICATOR = "adjudicator"
    HUMAN = "human"


class ConfigModel(BaseModel):
    """Base for models loaded from plain config values (snake_case or camelCase)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )


class Rule(ConfigModel):
    """Declarative Tier 1 rule. Rules are ordered and the first match wins."""

    id: str | None = None
    tool: str | None = None
    param_matches: dict[str, str] = Field(default_factory=dict)
    min_trust: TrustLevel | None = None
    risk_level: RiskLevel | None = None
    action: RuleAction = RuleAction.ESCALATE
    label: str | None = None


class EvaluationResult(BaseModel):
    """Result of Tier 1 evaluation. Never persisted."""

    model_config = {"frozen": True}

    decision: RuleAction
    risk_level: RiskLevel
    trust_level: TrustLevel
    reason: str
    rule_label: str | None = None

    @field_validator("reason")
    @classmethod
    def _reason_non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("reason must be a non-empty string")
        return value


class EvaluationContext(BaseModel):
    """Per-call provenance supplied by the host. Unset fields use guardian defaults."""

    agent_id: str | None = None
    session_key: str | None = None
    sender_is_owner: bool | None = None
    is_subagent: bool | None = None
    is_allowed: bool | None = None


class HookResult(BaseModel):
    """Answer returned to the host. ``block=False`` means the call may proceed."""

    model_config = {"frozen": True}

    block: bool = False
    block_reason: str | None = None
    tier: Tier | None = None

    @property
    def proceed(self) -> bool:
        return not self.block


class HumanApprovalRequest(BaseModel):
    """Payload handed to the human approval channel."""

    model_config = {"frozen": True}

    tool_name: str
    params: dict[str, Any] = Field(default_factory=dict)
    risk_level: RiskLevel
    trust_level: TrustLevel
    reason: str | None = None
    agent_id: str | None = None
    session_key: str | None = None
    timeout_ms: int
    approval_id: str | None = None

    @field_validator("tool_name")
    @classmethod
    def _tool_name_non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("tool_name must be a non-empty string")
        return value

    @field_validator("timeout_ms")
    @classmethod
    def _timeout_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("timeout_ms must be positive")
        return value


class ForwardRequest(BaseModel):
    """Pending approval announced to the notification boundary."""

    model_config = {"frozen": True}

    id: str
    tool_name: str
    params: dict[str, Any] = Field(default_factory=dict)
    risk_level: RiskLevel
    trust_level: TrustLevel
    reason: str | None = None
    agent_id: str | None = None
    session_key: str | None = None
    created_at: datetime
    expires_at: datetime


class ForwardResolved(BaseModel):
    """Resolution announced to the notification boundary."""

    model_config = {"frozen": True}

    id: str
    decision: ApprovalDecision
    resolved_by: str | None = None
    resolved_at: datetime
