from __future__ import annotations

import asyncio
from datetime import timedelta
from itertools import count

import pytest

from toolguardian.approvals.manager import ApprovalManager
from toolguardian.types import ApprovalDecision, HumanApprovalRequest, RiskLevel, TrustLevel


def _request(**kwargs) -> HumanApprovalRequest:
    base = {
        "tool_name": "exec",
        "params": {"command": "rm -rf /data"},
        "risk_level": RiskLevel.CRITICAL,
        "trust_level": TrustLevel.ALLOWED,
        "timeout_ms": 1000,
    }
    base.update(kwargs)
    return HumanApprovalRequest(**base)


def _ids():
    counter = count(1)
    return lambda: f"id-{next(counter)}"


def test_create_stamps_times_and_reserves_id(clock) -> None:
    manager = ApprovalManager(now=clock, id_factory=_ids())
    record = manager.create(_request(), timeout_ms=5000)
    assert record.id == "id-1"
    assert record.created_at == clock.current
    assert record.expires_at == clock.current + timedelta(seconds=5)
    assert manager.pending_count == 0

    # A reserved id is never handed out twice.
    again = manager.create(_request(), timeout_ms=5000, approval_id="id-1")
    assert again.id == "id-2"


def test_explicit_id_is_trimmed(clock) -> None:
    manager = ApprovalManager(now=clock)
    assert manager.create(_request(), approval_id="  abc  ").id == "abc"


def test_blank_explicit_id_gets_generated(clock) -> None:
    manager = ApprovalManager(now=clock, id_factory=_ids())
    assert manager.create(_request(), approval_id="   ").id == "id-1"


def test_invalid_timeout_rejected(clock) -> None:
    with pytest.raises(ValueError):
        ApprovalManager(now=clock).create(_request(), timeout_ms=0)


def test_resolve_settles_once(clock) -> None:
    manager = ApprovalManager(now=clock)

    async def _run():
        record = manager.create(_request())
        future = manager.wait_for_decision(record, 1000)
        assert manager.pending_count == 1
        assert manager.resolve(record.id, ApprovalDecision.ALLOW_ONCE, "ops") is True
        assert manager.resolve(record.id, ApprovalDecision.DENY) is False
        return record, await future

    record, decision = asyncio.run(_run())
    assert decision is ApprovalDecision.ALLOW_ONCE
    assert record.decision is ApprovalDecision.ALLOW_ONCE
    assert record.resolved_by == "ops"
    assert record.resolved_at == clock.current
    assert manager.pending_count == 0


def test_resolve_unknown_id_fails(clock) -> None:
    assert ApprovalManager(now=clock).resolve("nope", ApprovalDecision.DENY) is False


def test_timeout_yields_none_after_deadline(clock) -> None:
    manager = ApprovalManager(now=clock)

    async def _run():
        loop = asyncio.get_running_loop()
        record = manager.create(_request(timeout_ms=30))
        started = loop.time()
        decision = await manager.wait_for_decision(record, 30)
        return record, decision, loop.time() - started

    record, decision, elapsed = asyncio.run(_run())
    assert decision is None
    assert elapsed >= 0.03 - 0.005
    assert manager.pending_count == 0
    assert manager.resolve(record.id, ApprovalDecision.ALLOW_ONCE) is False


def test_resolve_after_timeout_is_noop(clock) -> None:
    manager = ApprovalManager(now=clock)

    async def _run():
        record = manager.create(_request())
        future = manager.wait_for_decision(record, 10)
        await asyncio.sleep(0.05)
        late = manager.resolve(record.id, ApprovalDecision.ALLOW_ALWAYS)
        return late, await future

    late, decision = asyncio.run(_run())
    assert late is False
    assert decision is None


def test_snapshot_is_a_copy(clock) -> None:
    manager = ApprovalManager(now=clock)

    async def _run():
        record = manager.create(_request())
        future = manager.wait_for_decision(record)
        snapshot = manager.get_snapshot(record.id)
        assert snapshot is not None and snapshot is not record
        snapshot.decision = ApprovalDecision.DENY
        assert manager.get_snapshot(record.id).decision is None
        manager.resolve(record.id, ApprovalDecision.ALLOW_ONCE)
        await future
        return record.id

    approval_id = asyncio.run(_run())
    assert manager.get_snapshot(approval_id) is None


def test_cancelled_wait_drops_pending_entry(clock) -> None:
    manager = ApprovalManager(now=clock)

    async def _run():
        record = manager.create(_request())
        future = manager.wait_for_decision(record, 1000)
        future.cancel()
        await asyncio.sleep(0)
        return record.id

    approval_id = asyncio.run(_run())
    assert manager.pending_count == 0
    assert manager.resolve(approval_id, ApprovalDecision.DENY) is False


def test_double_registration_rejected(clock) -> None:
    manager = ApprovalManager(now=clock)

    async def _run():
        record = manager.create(_request())
        future = manager.wait_for_decision(record, 1000)
        with pytest.raises(ValueError):
            manager.wait_for_decision(record, 1000)
        manager.resolve(record.id, ApprovalDecision.DENY)
        return await future

    assert asyncio.run(_run()) is ApprovalDecision.DENY


def test_release_frees_an_id_that_was_never_waited_on(clock) -> None:
    manager = ApprovalManager(now=clock, id_factory=_ids())
    abandoned = manager.create(_request(), approval_id="op-1")
    assert manager.create(_request(), approval_id="op-1").id == "id-1"

    manager.release(abandoned.id)
    assert manager.create(_request(), approval_id="op-1").id == "op-1"


def test_release_cancels_a_pending_wait(clock) -> None:
    manager = ApprovalManager(now=clock)

    async def _run():
        record = manager.create(_request())
        future = manager.wait_for_decision(record, 1000)
        manager.release(record.id)
        await asyncio.sleep(0)
        return record.id, future

    approval_id, future = asyncio.run(_run())
    assert future.cancelled()
    assert manager.pending_count == 0
    assert manager.resolve(approval_id, ApprovalDecision.DENY) is False
