from __future__ import annotations

import pytest

from toolguardian.risk import (
    RISK_ORDER,
    TOOL_RISK_DEFAULTS,
    base_risk,
    check_param_escalations,
    classify,
    lower_risk,
    normalize_tool_name,
    resolve_trust_level,
    stringify_param,
)
from toolguardian.types import RiskLevel, TrustLevel


def test_known_tools_use_their_default_risk() -> None:
    assert base_risk("read") is RiskLevel.LOW
    assert base_risk("write") is RiskLevel.MEDIUM
    assert base_risk("exec") is RiskLevel.HIGH
    assert base_risk("gateway") is RiskLevel.CRITICAL


def test_unknown_tool_defaults_to_medium() -> None:
    assert base_risk("made_up_tool") is RiskLevel.MEDIUM


def test_normalize_tool_name_strips_and_lowercases() -> None:
    assert normalize_tool_name("  Exec ") == "exec"


@pytest.mark.parametrize(
    ("tool", "params"),
    [
        ("read", {"path": "/etc/config"}),
        ("write", {"path": "notes.txt"}),
        ("write", {"path": "/app/.env"}),
        ("exec", {"command": "ls -la"}),
        ("exec", {"command": "rm -rf /data"}),
        ("message", {"action": "broadcast"}),
        ("gateway", {"action": "restart"}),
        ("unknown", {"anything": object()}),
    ],
)
def test_classification_never_lowers_base_risk(tool: str, params: dict) -> None:
    result = classify(tool, params)
    assert RISK_ORDER[result.risk_level] >= RISK_ORDER[base_risk(tool)]


def test_destructive_command_escalates_to_critical() -> None:
    result = classify("exec", {"command": "sudo rm -rf /data"})
    assert result.risk_level is RiskLevel.CRITICAL
    assert result.escalation_label == "destructive command"


def test_sql_keywords_are_case_insensitive() -> None:
    result = classify("exec", {"command": "psql -c 'drop table users'"})
    assert result.risk_level is RiskLevel.CRITICAL


def test_sensitive_write_path_escalates() -> None:
    result = classify("write", {"path": "/app/.env"})
    assert result.risk_level is RiskLevel.CRITICAL
    assert result.escalation_label == "write to sensitive path"


def test_edit_of_ssh_directory_escalates() -> None:
    result = classify("edit", {"path": "/home/me/.ssh/authorized_keys"})
    assert result.escalation_label == "edit sensitive path"


def test_broadcast_message_escalates() -> None:
    result = classify("message", {"action": "broadcast", "text": "hi"})
    assert result.risk_level is RiskLevel.CRITICAL
    assert result.escalation_label == "broadcast message"


def test_escalation_only_applies_to_its_tool() -> None:
    assert check_param_escalations("read", {"path": "/app/.env"}) is None
    assert classify("read", {"path": "/app/.env"}).risk_level is RiskLevel.LOW


def test_missing_param_does_not_escalate() -> None:
    result = classify("exec", {"cwd": "/tmp"})
    assert result.risk_level is RiskLevel.HIGH
    assert result.escalation_label is None


def test_non_string_params_are_stringified() -> None:
    assert stringify_param(["rm -rf", "/"]) == '["rm -rf","/"]'
    assert classify("exec", {"command": ["rm -rf", "/"]}).risk_level is RiskLevel.CRITICAL


def test_stringify_param_falls_back_to_str() -> None:
    class Opaque:
        def __str__(self) -> str:
            return "opaque-value"

    assert stringify_param(Opaque()) == "opaque-value"


def test_lower_risk_floors_at_low() -> None:
    assert lower_risk(RiskLevel.HIGH) is RiskLevel.MEDIUM
    assert lower_risk(RiskLevel.LOW) is RiskLevel.LOW


def test_trust_resolution_precedence() -> None:
    assert resolve_trust_level(sender_is_owner=True, is_subagent=True) is TrustLevel.OWNER
    assert resolve_trust_level(is_subagent=True, is_allowed=True) is TrustLevel.SUBAGENT
    assert resolve_trust_level(is_allowed=True) is TrustLevel.ALLOWED
    assert resolve_trust_level() is TrustLevel.UNKNOWN


def test_default_table_has_no_unknown_levels() -> None:
    assert set(TOOL_RISK_DEFAULTS.values()) <= set(RiskLevel)
