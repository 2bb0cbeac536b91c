"""Shared approval constants and validators."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Mapping

from ..types import ApprovalDecision

DEFAULT_TIMEOUT_MS: int = 120_000  # 2 minutes
VALID_DECISIONS: frozenset[str] = frozenset(decision.value for decision in ApprovalDecision)

EVENT_REQUESTED = "guardian.approval.requested"
EVENT_RESOLVED = "guardian.approval.resolved"


def validate_timeout_ms(timeout_ms: int) -> None:
    if not isinstance(timeout_ms, int) or isinstance(timeout_ms, bool) or timeout_ms <= 0:
        raise ValueError("timeout_ms must be a positive integer")


def coerce_decision(value: str | ApprovalDecision) -> ApprovalDecision:
    """Coerce an operator answer; raises ValueError for anything outside the four decisions."""
    if isinstance(value, ApprovalDecision):
        return value
    if not isinstance(value, str) or value not in VALID_DECISIONS:
        raise ValueError(f"decision must be one of {sorted(VALID_DECISIONS)}")
    return ApprovalDecision(value)


def expires_after(created_at: datetime, timeout_ms: int) -> datetime:
    return created_at + timedelta(milliseconds=timeout_ms)


def json_safe_params(params: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of ``params`` that survives JSON encoding; unknown values become strings."""
    try:
        return json.loads(json.dumps(dict(params), ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        return {str(key): str(value) for key, value in params.items()}
