from __future__ import annotations

import json
from pathlib import Path

import pytest

from toolguardian.config import (
    DEFAULT_TIMEOUT_MS,
    GuardianConfig,
    agent_rules,
    budget_enabled_anywhere,
    effective_budget,
    effective_threshold,
    load_config,
    parse_config,
)
from toolguardian.errors import ConfigError
from toolguardian.types import RiskLevel, RuleAction, TrustLevel


def test_defaults() -> None:
    cfg = GuardianConfig()
    assert cfg.enabled is True
    assert cfg.approval_threshold is RiskLevel.HIGH
    assert cfg.approval_timeout_ms == DEFAULT_TIMEOUT_MS
    assert cfg.rules == ()


def test_camel_case_keys_are_accepted() -> None:
    cfg = parse_config(
        {
            "approvalThreshold": "medium",
            "timeoutMs": 30000,
            "rules": [
                {
                    "tool": "exec",
                    "paramMatches": {"command": "^git"},
                    "minTrust": "allowed",
                    "action": "allow",
                }
            ],
            "budget": {"enabled": True, "sessionLimit": 1.5, "onExceeded": "escalate"},
            "llm": {"model": "ignored"},
        }
    )
    assert cfg.approval_threshold is RiskLevel.MEDIUM
    assert cfg.approval_timeout_ms == 30000
    rule = cfg.rules[0]
    assert rule.param_matches == {"command": "^git"}
    assert rule.min_trust is TrustLevel.ALLOWED
    assert rule.action is RuleAction.ALLOW
    assert cfg.budget is not None and cfg.budget.on_exceeded == "escalate"


def test_nested_gateway_shape_is_unwrapped() -> None:
    cfg = parse_config({"approvals": {"guardian": {"approvalThreshold": "low"}}})
    assert cfg.approval_threshold is RiskLevel.LOW


def test_invalid_values_raise_config_error() -> None:
    with pytest.raises(ConfigError):
        parse_config({"approvalThreshold": "extreme"})
    with pytest.raises(ConfigError):
        parse_config({"timeoutMs": 0})
    with pytest.raises(ConfigError):
        parse_config({"budget": {"sessionLimit": -1}})
    with pytest.raises(ConfigError):
        parse_config({"rules": [{"tool": "exec", "unknownKey": 1}]})


def test_agent_overrides() -> None:
    cfg = parse_config(
        {
            "approvalThreshold": "high",
            "budget": {"enabled": True, "sessionLimit": 5, "dailyLimit": 20},
            "agents": {
                "builder": {
                    "approvalThreshold": "critical",
                    "rules": [{"tool": "exec", "action": "allow"}],
                    "budget": {"sessionLimit": 1},
                }
            },
        }
    )
    assert effective_threshold(cfg, "builder") is RiskLevel.CRITICAL
    assert effective_threshold(cfg, "other") is RiskLevel.HIGH
    assert effective_threshold(cfg) is RiskLevel.HIGH
    assert len(agent_rules(cfg, "builder")) == 1
    assert agent_rules(cfg, "other") == ()

    merged = effective_budget(cfg, "builder")
    assert merged is not None
    assert merged.enabled is True
    assert merged.session_limit == 1
    assert merged.daily_limit == 20
    assert effective_budget(cfg, "other") is cfg.budget


def test_budget_enabled_anywhere() -> None:
    assert budget_enabled_anywhere(GuardianConfig()) is False
    cfg = parse_config({"agents": {"a": {"budget": {"enabled": True}}}})
    assert budget_enabled_anywhere(cfg) is True


def test_load_config_reads_json(tmp_path: Path) -> None:
    path = tmp_path / "guardian.json"
    path.write_text(json.dumps({"approvalThreshold": "medium"}), encoding="utf-8")
    assert load_config(path).approval_threshold is RiskLevel.MEDIUM


def test_load_config_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.json")

    bad = tmp_path / "bad.json"
    bad.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(bad)

    listing = tmp_path / "list.json"
    listing.write_text("[]", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(listing)
