"""In-memory pending approvals for Tier 3.

Each approval resolves at most once: by an operator through ``resolve`` or by
its timer, which settles the wait with ``None``. Whichever settles first wins;
the loser is a no-op. Resolved and expired records are dropped, so there is no
history.

Usage:
    manager = ApprovalManager()
    record = manager.create(request, timeout_ms=120_000)
    future = manager.wait_for_decision(record)
    ...  # announce record.id to operators
    decision = await future
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable

from ..types import ApprovalDecision, HumanApprovalRequest
from .common import DEFAULT_TIMEOUT_MS, expires_after, validate_timeout_ms

_logger = logging.getLogger(__name__)


@dataclass
class ApprovalRecord:
    id: str
    request: HumanApprovalRequest
    created_at: datetime
    expires_at: datetime
    resolved_at: datetime | None = None
    decision: ApprovalDecision | None = None
    resolved_by: str | None = None

    @property
    def timeout_ms(self) -> int:
        return max(1, int((self.expires_at - self.created_at).total_seconds() * 1000))


@dataclass
class _Pending:
    record: ApprovalRecord
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None


class ApprovalManager:
    """Pending-approval registry with per-record expiry timers."""

    def __init__(
        self,
        *,
        now: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._pending: dict[str, _Pending] = {}
        self._reserved: set[str] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, approval_id: str) -> bool:
        return approval_id in self._pending

    def _fresh_id(self) -> str:
        while True:
            candidate = self._id_factory()
            if candidate not in self._pending and candidate not in self._reserved:
                return candidate

    def create(
        self,
        request: HumanApprovalRequest,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        approval_id: str | None = None,
    ) -> ApprovalRecord:
        """Build a record and reserve its id.

        The wait is registered separately with ``wait_for_decision``; a record
        that will never be waited on must be handed back with ``release``.
        """
        validate_timeout_ms(timeout_ms)
        explicit = approval_id.strip() if isinstance(approval_id, str) else ""
        if explicit and explicit not in self._pending and explicit not in self._reserved:
            record_id = explicit
        else:
            record_id = self._fresh_id()
        self._reserved.add(record_id)

        created_at = self._now()
        return ApprovalRecord(
            id=record_id,
            request=request,
            created_at=created_at,
            expires_at=expires_after(created_at, timeout_ms),
        )

    def wait_for_decision(
        self, record: ApprovalRecord, timeout_ms: int | None = None
    ) -> asyncio.Future:
        """Register ``record`` as pending and return the future that settles it.

        Must be called from a running event loop. The future resolves to the
        operator's decision, or ``None`` once ``timeout_ms`` elapses.
        """
        if record.id in self._pending:
            raise ValueError(f"approval {record.id} is already pending")
        timeout = timeout_ms if timeout_ms is not None else record.timeout_ms
        validate_timeout_ms(timeout)

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        entry = _Pending(record=record, future=future)
        self._reserved.discard(record.id)
        self._pending[record.id] = entry
        entry.timer = loop.call_later(timeout / 1000, self._expire, record.id, entry)
        future.add_done_callback(lambda fut: self._on_done(record.id, entry, fut))
        return future

    def resolve(
        self,
        approval_id: str,
        decision: ApprovalDecision,
        resolved_by: str | None = None,
    ) -> bool:
        """Settle a pending approval. Returns False if it is unknown or already settled."""
        entry = self._pending.pop(approval_id, None)
        if entry is None or entry.future.done():
            return False
        if entry.timer is not None:
            entry.timer.cancel()
        entry.record.resolved_at = self._now()
        entry.record.decision = decision
        entry.record.resolved_by = resolved_by
        entry.future.set_result(decision)
        return True

    def release(self, approval_id: str) -> None:
        """Forget ``approval_id``: free a reserved id and cancel any pending wait."""
        self._reserved.discard(approval_id)
        entry = self._pending.pop(approval_id, None)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
        if not entry.future.done():
            entry.future.cancel()

    def get_snapshot(self, approval_id: str) -> ApprovalRecord | None:
        entry = self._pending.get(approval_id)
        if entry is None:
            return None
        return replace(entry.record)

    def _expire(self, approval_id: str, entry: _Pending) -> None:
        if self._pending.get(approval_id) is entry:
            del self._pending[approval_id]
        if entry.future.done():
            return
        _logger.debug("Approval %s expired", approval_id)
        entry.future.set_result(None)

    def _on_done(self, approval_id: str, entry: _Pending, future: asyncio.Future) -> None:
        if not future.cancelled():
            return
        # Waiter went away; nothing can settle this approval any more.
        if entry.timer is not None:
            entry.timer.cancel()
        if self._pending.get(approval_id) is entry:
            del self._pending[approval_id]
