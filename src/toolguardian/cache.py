"""Decision cache for operator approvals.

Keys carry both parameter names and values, so approving
``exec({"command": "ls"})`` never approves ``exec({"command": "rm -rf /"})``.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from .types import ApprovalDecision


def _canonical_value(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
    except (TypeError, ValueError):
        return str(value)


def cache_key(tool_name: str, params: Mapping[str, Any]) -> str:
    parts = [f"{key}={_canonical_value(params[key])}" for key in sorted(params)]
    return f"{tool_name}:{'&'.join(parts)}"


class DecisionCache:
    """Session-scoped and process-lifetime allow decisions."""

    def __init__(self) -> None:
        self._session: set[str] = set()
        self._forever: set[str] = set()

    def contains(self, key: str) -> bool:
        return key in self._forever or key in self._session

    def remember(self, key: str, decision: ApprovalDecision) -> None:
        """Store an operator allow. ``allow-once`` and ``deny`` are never cached."""
        if decision is ApprovalDecision.ALLOW_SESSION:
            self._session.add(key)
        elif decision is ApprovalDecision.ALLOW_ALWAYS:
            self._forever.add(key)

    def clear_session(self) -> None:
        self._session.clear()

    @property
    def session_size(self) -> int:
        return len(self._session)

    @property
    def forever_size(self) -> int:
        return len(self._forever)
