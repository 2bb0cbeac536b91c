"""Budget gate and cost ledger.

Session totals live in memory for the lifetime of the ledger. Daily totals are
persisted per UTC calendar date to a small JSON file that keeps a rolling
seven-day window. Persistence failures never abort a call; tracking degrades to
in-memory only and the failure is logged.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Literal

from .config import DEFAULT_TOOL_COST, BudgetConfig
from .errors import BudgetError

RETENTION_DAYS: int = 7

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetCheckResult:
    exceeded: bool
    cost: float = 0.0
    action: Literal["deny", "escalate"] | None = None
    reason: str | None = None


@dataclass(frozen=True)
class PersistOutcome:
    """Result of writing the daily ledger file."""

    ok: bool
    error: str | None = None


@dataclass
class DailyEntry:
    date: str
    total_cost: float = 0.0
    per_agent: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "total_cost": self.total_cost, "per_agent": dict(self.per_agent)}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "DailyEntry":
        per_agent = raw.get("per_agent") or {}
        return cls(
            date=str(raw["date"]),
            total_cost=float(raw.get("total_cost", 0.0)),
            per_agent={str(k): float(v) for k, v in per_agent.items()},
        )


def _format_amount(value: float) -> str:
    return f"{value:g}"


def resolve_tool_cost(tool_name: str, config: BudgetConfig | None) -> float:
    if config is None:
        return DEFAULT_TOOL_COST
    override = config.per_tool_costs.get(tool_name)
    if override is not None:
        return override
    return config.default_tool_cost


class BudgetLedger:
    """Running cost totals, per agent and global."""

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path) if path is not None else None
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._session_total: float = 0.0
        self._session_by_agent: dict[str, float] = {}
        self._daily: DailyEntry | None = None
        self.last_persist: PersistOutcome | None = None

    def _today(self) -> str:
        return self._now().astimezone(timezone.utc).date().isoformat()

    def session_cost(self, agent_id: str | None = None) -> float:
        if agent_id:
            return self._session_by_agent.get(agent_id, 0.0)
        return self._session_total

    def daily_cost(self, agent_id: str | None = None) -> float:
        with self._lock:
            daily = self._load_daily()
        if agent_id:
            return daily.per_agent.get(agent_id, 0.0)
        return daily.total_cost

    def record_cost(self, tool_name: str, cost: float, agent_id: str | None = None) -> PersistOutcome:
        """Add ``cost`` to session and daily totals, then persist the daily entry."""
        self._apply_cost(cost, agent_id)
        return self._report(tool_name, self.persist())

    async def record_cost_async(
        self, tool_name: str, cost: float, agent_id: str | None = None
    ) -> PersistOutcome:
        """Add ``cost`` in memory, then persist in thread pool (file I/O is blocking)."""
        self._apply_cost(cost, agent_id)
        outcome = await asyncio.to_thread(self.persist)
        return self._report(tool_name, outcome)

    def persist(self) -> PersistOutcome:
        """Write the current daily entry. Concurrent writers are serialized."""
        with self._write_lock:
            with self._lock:
                daily = self._load_daily()
                snapshot = DailyEntry(
                    date=daily.date, total_cost=daily.total_cost, per_agent=dict(daily.per_agent)
                )
            return self._save_daily(snapshot)

    def _apply_cost(self, cost: float, agent_id: str | None) -> None:
        if cost < 0:
            raise BudgetError("cost must be non-negative")
        with self._lock:
            self._session_total += cost
            if agent_id:
                self._session_by_agent[agent_id] = self._session_by_agent.get(agent_id, 0.0) + cost
            daily = self._load_daily()
            daily.total_cost += cost
            if agent_id:
                daily.per_agent[agent_id] = daily.per_agent.get(agent_id, 0.0) + cost

    def _report(self, tool_name: str, outcome: PersistOutcome) -> PersistOutcome:
        self.last_persist = outcome
        if not outcome.ok:
            _logger.warning(
                "Budget ledger not persisted (tracking %s in memory only): %s",
                tool_name,
                outcome.error,
            )
        return outcome

    def reset(self) -> None:
        """Clear session totals and drop the cached daily entry."""
        with self._lock:
            self._session_total = 0.0
            self._session_by_agent.clear()
            self._daily = None

    # ----- persistence -----

    def _read_file(self) -> list[dict[str, Any]]:
        if self.path is None or not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            _logger.warning("Budget ledger %s unreadable, starting fresh: %s", self.path, exc)
            return []
        daily = data.get("daily") if isinstance(data, dict) else None
        if not isinstance(daily, list):
            return []
        return [entry for entry in daily if isinstance(entry, dict) and "date" in entry]

    def _load_daily(self) -> DailyEntry:
        today = self._today()
        if self._daily is not None and self._daily.date == today:
            return self._daily
        for raw in self._read_file():
            if raw.get("date") != today:
                continue
            try:
                self._daily = DailyEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                _logger.warning("Ignoring malformed budget entry for %s: %s", today, exc)
                break
            return self._daily
        self._daily = DailyEntry(date=today)
        return self._daily

    def _save_daily(self, entry: DailyEntry) -> PersistOutcome:
        if self.path is None:
            return PersistOutcome(ok=True)
        cutoff = (date.fromisoformat(entry.date) - timedelta(days=RETENTION_DAYS)).isoformat()
        kept = [
            raw
            for raw in self._read_file()
            if str(raw.get("date")) >= cutoff and raw.get("date") != entry.date
        ]
        kept.append(entry.to_dict())
        payload = json.dumps({"daily": kept}, indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            return PersistOutcome(ok=False, error=str(exc))
        return PersistOutcome(ok=True)


def check_budget(
    tool_name: str,
    config: BudgetConfig | None,
    ledger: BudgetLedger,
    agent_id: str | None = None,
) -> BudgetCheckResult:
    """Would this call push session or daily spend over its limit?"""
    if config is None or not config.enabled:
        return BudgetCheckResult(exceeded=False)

    cost = resolve_tool_cost(tool_name, config)

    if config.session_limit is not None:
        projected = ledger.session_cost(agent_id) + cost
        if projected > config.session_limit:
            return BudgetCheckResult(
                exceeded=True,
                cost=cost,
                action=config.on_exceeded,
                reason=(
                    f"Session budget exceeded: ${projected:.4f} > "
                    f"${_format_amount(config.session_limit)} limit"
                ),
            )

    if config.daily_limit is not None:
        projected = ledger.daily_cost(agent_id) + cost
        if projected > config.daily_limit:
            return BudgetCheckResult(
                exceeded=True,
                cost=cost,
                action=config.on_exceeded,
                reason=(
                    f"Daily budget exceeded: ${projected:.4f} > "
                    f"${_format_amount(config.daily_limit)} limit"
                ),
            )

    return BudgetCheckResult(exceeded=False, cost=cost)


def record_tool_cost(
    tool_name: str,
    config: BudgetConfig | None,
    ledger: BudgetLedger,
    agent_id: str | None = None,
) -> PersistOutcome | None:
    """Charge an allowed call. No-op when the effective budget is disabled."""
    if config is None or not config.enabled:
        return None
    cost = resolve_tool_cost(tool_name, config)
    return ledger.record_cost(tool_name, cost, agent_id)


async def record_tool_cost_async(
    tool_name: str,
    config: BudgetConfig | None,
    ledger: BudgetLedger,
    agent_id: str | None = None,
) -> PersistOutcome | None:
    """Like ``record_tool_cost`` but writes the ledger file off the event loop."""
    if config is None or not config.enabled:
        return None
    cost = resolve_tool_cost(tool_name, config)
    return await ledger.record_cost_async(tool_name, cost, agent_id)
