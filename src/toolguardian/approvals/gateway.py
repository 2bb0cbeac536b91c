"""Human approval channel backed by the in-memory ApprovalManager.

The gateway is what a host passes to the guardian as ``request_human_approval``.
It announces each pending approval to an optional broadcast callback and to an
optional forwarder, then waits for an operator to call ``resolve`` (or for the
approval to expire).

Forwarder calls run as background tasks; their failures are logged and never
affect the decision.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping

from ..errors import ApprovalError
from ..protocols import ApprovalForwarder
from ..types import (
    ApprovalDecision,
    ForwardRequest,
    ForwardResolved,
    HumanApprovalRequest,
)
from .common import EVENT_REQUESTED, EVENT_RESOLVED, coerce_decision, json_safe_params
from .manager import ApprovalManager

_logger = logging.getLogger(__name__)

BroadcastFn = Callable[[str, Mapping[str, Any]], None]


class ApprovalGateway:
    def __init__(
        self,
        manager: ApprovalManager | None = None,
        *,
        forwarder: ApprovalForwarder | None = None,
        broadcast: BroadcastFn | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.manager = manager or ApprovalManager()
        self.forwarder = forwarder
        self._broadcast = broadcast
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._tasks: set[asyncio.Task] = set()

    async def __call__(self, request: HumanApprovalRequest) -> ApprovalDecision | None:
        return await self.request_approval(request)

    async def request_approval(self, request: HumanApprovalRequest) -> ApprovalDecision | None:
        """Register a pending approval, announce it, and wait for the outcome.

        Returns the operator's decision, or None if the approval expired.
        Raises ApprovalError if an explicit ``approval_id`` is already pending.
        """
        explicit = (request.approval_id or "").strip()
        if explicit and self.manager.is_pending(explicit):
            raise ApprovalError(f"approval id already pending: {explicit}")

        record = self.manager.create(request, request.timeout_ms, explicit or None)
        try:
            params = json_safe_params(request.params)
            payload = {
                "id": record.id,
                "request": {
                    **request.model_dump(mode="json", exclude={"params"}),
                    "params": params,
                },
                "created_at": record.created_at.isoformat(),
                "expires_at": record.expires_at.isoformat(),
            }
            decision_future = self.manager.wait_for_decision(record, request.timeout_ms)
        except BaseException:
            self.manager.release(record.id)
            raise

        try:
            self._emit(EVENT_REQUESTED, payload)
            if self.forwarder is not None:
                forward = ForwardRequest(
                    id=record.id,
                    tool_name=request.tool_name,
                    params=params,
                    risk_level=request.risk_level,
                    trust_level=request.trust_level,
                    reason=request.reason,
                    agent_id=request.agent_id,
                    session_key=request.session_key,
                    created_at=record.created_at,
                    expires_at=record.expires_at,
                )
                self._spawn(self.forwarder.handle_requested(forward), "forward request")
            decision = await decision_future
        except BaseException:
            # Nobody will await this approval any more; drop it from the pending set.
            decision_future.cancel()
            raise
        if decision is None:
            _logger.info("Approval %s for %s expired", record.id, request.tool_name)
        return decision

    def resolve(
        self,
        approval_id: str,
        decision: str | ApprovalDecision,
        resolved_by: str | None = None,
    ) -> bool:
        """Apply an operator decision. Returns False for unknown or settled ids."""
        try:
            parsed = coerce_decision(decision)
        except ValueError as exc:
            raise ApprovalError(str(exc)) from exc

        if not self.manager.resolve(approval_id, parsed, resolved_by):
            return False

        resolved_at = self._now()
        self._emit(
            EVENT_RESOLVED,
            {
                "id": approval_id,
                "decision": parsed.value,
                "resolved_by": resolved_by,
                "ts": resolved_at.isoformat(),
            },
        )
        if self.forwarder is not None:
            resolved = ForwardResolved(
                id=approval_id,
                decision=parsed,
                resolved_by=resolved_by,
                resolved_at=resolved_at,
            )
            self._spawn(self.forwarder.handle_resolved(resolved), "forward resolve")
        return True

    def stop(self) -> None:
        if self.forwarder is not None:
            self.forwarder.stop()

    def _emit(self, event: str, payload: Mapping[str, Any]) -> None:
        if self._broadcast is None:
            return
        try:
            self._broadcast(event, payload)
        except Exception as exc:
            _logger.warning("Broadcast of %s failed: %s", event, exc)

    def _spawn(self, coro: Awaitable[None], what: str) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._task_done(t, what))

    def _task_done(self, task: asyncio.Task, what: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Guardian approvals: %s failed: %s", what, exc)
