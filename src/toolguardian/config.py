"""Guardian configuration models and loading.

Configuration is consumed as plain structured values. Both snake_case and the
camelCase keys used by gateway config files are accepted.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal, Mapping

from pydantic import ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .types import ConfigModel, RiskLevel, Rule

DEFAULT_TIMEOUT_MS: int = 120_000
DEFAULT_APPROVAL_THRESHOLD: RiskLevel = RiskLevel.HIGH
DEFAULT_TOOL_COST: float = 0.01


class BudgetConfig(ConfigModel):
    """Cost tracking and limits (USD)."""

    enabled: bool = False
    session_limit: float | None = None
    daily_limit: float | None = None
    per_tool_costs: dict[str, float] = Field(default_factory=dict)
    default_tool_cost: float = DEFAULT_TOOL_COST
    on_exceeded: Literal["deny", "escalate"] = "deny"

    @field_validator("session_limit", "daily_limit", "default_tool_cost")
    @classmethod
    def _non_negative(cls, value: float | None) -> float | None:
        if value is not None and value < 0:
            raise ValueError("budget amounts must be non-negative")
        return value


class AgentOverride(ConfigModel):
    """Per-agent overrides layered over the global settings."""

    approval_threshold: RiskLevel | None = None
    rules: tuple[Rule, ...] = ()
    constitution: str | None = None
    budget: BudgetConfig | None = None


class GuardianConfig(ConfigModel):
    # Gateway files carry sibling sections (llm, forwarding, ...) owned elsewhere.
    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    approval_threshold: RiskLevel = DEFAULT_APPROVAL_THRESHOLD
    timeout_ms: int | None = None
    rules: tuple[Rule, ...] = ()
    constitution: str | None = None
    constitution_path: str | None = None
    budget: BudgetConfig | None = None
    agents: dict[str, AgentOverride] = Field(default_factory=dict)

    @field_validator("timeout_ms")
    @classmethod
    def _timeout_positive(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("timeout_ms must be positive")
        return value

    @property
    def approval_timeout_ms(self) -> int:
        return self.timeout_ms if self.timeout_ms is not None else DEFAULT_TIMEOUT_MS

    def agent(self, agent_id: str | None) -> AgentOverride | None:
        if not agent_id:
            return None
        return self.agents.get(agent_id)


def effective_threshold(config: GuardianConfig, agent_id: str | None = None) -> RiskLevel:
    override = config.agent(agent_id)
    if override is not None and override.approval_threshold is not None:
        return override.approval_threshold
    return config.approval_threshold


def effective_budget(config: GuardianConfig, agent_id: str | None = None) -> BudgetConfig | None:
    """Merge the agent's explicitly set budget fields over the global budget."""
    override = config.agent(agent_id)
    if override is None or override.budget is None:
        return config.budget
    if config.budget is None:
        return override.budget
    return config.budget.model_copy(update=override.budget.model_dump(exclude_unset=True))


def agent_rules(config: GuardianConfig, agent_id: str | None = None) -> tuple[Rule, ...]:
    override = config.agent(agent_id)
    return override.rules if override is not None else ()


def budget_enabled_anywhere(config: GuardianConfig) -> bool:
    if config.budget is not None and config.budget.enabled:
        return True
    return any(
        override.budget is not None and override.budget.enabled
        for override in config.agents.values()
    )


def parse_config(data: Mapping[str, Any]) -> GuardianConfig:
    """Validate plain config values. Accepts ``{"approvals": {"guardian": {...}}}`` too."""
    approvals = data.get("approvals")
    if isinstance(approvals, Mapping) and isinstance(approvals.get("guardian"), Mapping):
        data = approvals["guardian"]
    try:
        return GuardianConfig.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigError(f"invalid guardian config: {exc}") from exc


def load_config(path: str | Path) -> GuardianConfig:
    """Load and validate a JSON guardian config file."""
    config_path = Path(path)
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"cannot read config {config_path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"config {config_path} is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("config root must be a JSON object")
    return parse_config(raw)
