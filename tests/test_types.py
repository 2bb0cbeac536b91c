from __future__ import annotations

import pytest
from pydantic import ValidationError

from toolguardian.types import (
    ApprovalDecision,
    EvaluationResult,
    HookResult,
    HumanApprovalRequest,
    RiskLevel,
    Rule,
    RuleAction,
    TrustLevel,
)


# -----------------------------------------------------------------------------
# HookResult tests
# -----------------------------------------------------------------------------


def test_hook_result_defaults_to_proceed() -> None:
    result = HookResult()
    assert result.proceed is True
    assert result.block_reason is None


def test_hook_result_is_frozen() -> None:
    with pytest.raises(ValidationError):
        HookResult().block = True  # type: ignore[misc]


# -----------------------------------------------------------------------------
# EvaluationResult tests
# -----------------------------------------------------------------------------


def test_evaluation_result_requires_reason() -> None:
    with pytest.raises(ValidationError):
        EvaluationResult(
            decision=RuleAction.DENY,
            risk_level=RiskLevel.LOW,
            trust_level=TrustLevel.OWNER,
            reason="   ",
        )


# -----------------------------------------------------------------------------
# HumanApprovalRequest tests
# -----------------------------------------------------------------------------


def test_approval_request_validates_tool_and_timeout() -> None:
    base = {"risk_level": "high", "trust_level": "unknown"}
    with pytest.raises(ValidationError):
        HumanApprovalRequest(tool_name=" ", timeout_ms=1000, **base)
    with pytest.raises(ValidationError):
        HumanApprovalRequest(tool_name="exec", timeout_ms=0, **base)
    request = HumanApprovalRequest(tool_name="exec", timeout_ms=1000, **base)
    assert request.risk_level is RiskLevel.HIGH
    assert request.params == {}


# -----------------------------------------------------------------------------
# Rule tests
# -----------------------------------------------------------------------------


def test_rule_defaults_to_escalate() -> None:
    assert Rule().action is RuleAction.ESCALATE


def test_rule_accepts_camel_case() -> None:
    rule = Rule.model_validate({"minTrust": "owner", "riskLevel": "critical"})
    assert rule.min_trust is TrustLevel.OWNER
    assert rule.risk_level is RiskLevel.CRITICAL


def test_rule_rejects_unknown_keys() -> None:
    with pytest.raises(ValidationError):
        Rule.model_validate({"tool": "exec", "effect": "allow"})


def test_decision_values_match_wire_names() -> None:
    assert [d.value for d in ApprovalDecision] == [
        "allow-once",
        "allow-session",
        "allow-always",
        "deny",
    ]
