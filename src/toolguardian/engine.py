"""Guardian orchestrator.

Runs one tool call through the tiers in a fixed order:

    cache check -> budget gate -> Tier 1 rules -> Tier 2 adjudicator -> Tier 3 human

Design notes:
- One Guardian per agent/session scope; rules, caches and the ledger are
  instance state so instances never share decisions
- Fail-closed: reaching Tier 3 without a human channel blocks the call
- Cost is charged only for calls that are ultimately allowed (cache hits too)
- Budget persistence is best-effort, runs off the event loop and never blocks a call
- A human channel that raises blocks the call instead of failing evaluate
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .adjudicator import adjudicate, adjudicator_timeout_ms, resolve_constitution
from .budgets import BudgetLedger, check_budget, record_tool_cost_async
from .cache import DecisionCache, cache_key
from .config import (
    BudgetConfig,
    GuardianConfig,
    budget_enabled_anywhere,
    effective_budget,
    effective_threshold,
)
from .protocols import Adjudicator, HumanApprovalFn
from .risk import normalize_tool_name, resolve_trust_level
from .rules import RuleBook, evaluate_rules
from .types import (
    ApprovalDecision,
    EvaluationContext,
    HookResult,
    HumanApprovalRequest,
    RiskLevel,
    RuleAction,
    Tier,
    TrustLevel,
)

DENIED_BY_RULE = "Denied by guardian rule"
DENIED_BY_ADJUDICATOR = "Denied by guardian adjudicator"
DENIED_BY_OPERATOR = "Denied by operator"
NO_HUMAN_CHANNEL = "Escalated but no human approval handler configured"
APPROVAL_FAILED = "Human approval request failed"

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CallState:
    """Everything resolved up front for a single evaluated call."""

    tool_name: str
    params: Mapping[str, Any]
    agent_id: str | None
    session_key: str | None
    trust_level: TrustLevel
    budget: BudgetConfig | None
    key: str


class Guardian:
    """Tiered approval gate for one agent/session scope.

    Example:
        guardian = Guardian(config, agent_id="main", request_human_approval=gateway)
        result = await guardian.evaluate("exec", {"command": "rm -rf /data"})
        if result.block:
            ...
    """

    def __init__(
        self,
        config: GuardianConfig,
        *,
        agent_id: str | None = None,
        session_key: str | None = None,
        sender_is_owner: bool = False,
        is_subagent: bool = False,
        is_allowed: bool = False,
        adjudicator: Adjudicator | None = None,
        request_human_approval: HumanApprovalFn | None = None,
        budget_ledger: BudgetLedger | None = None,
        cache: DecisionCache | None = None,
    ) -> None:
        self.config = config
        self.agent_id = agent_id
        self.session_key = session_key
        self._sender_is_owner = sender_is_owner
        self._is_subagent = is_subagent
        self._is_allowed = is_allowed
        self._adjudicator = adjudicator
        self._request_human_approval = request_human_approval
        self._ledger = budget_ledger
        self.cache = cache or DecisionCache()
        self._rules = RuleBook(
            config.rules,
            {agent: override.rules for agent, override in config.agents.items()},
        )

    @property
    def budget_ledger(self) -> BudgetLedger | None:
        return self._ledger

    def clear_session_cache(self) -> None:
        self.cache.clear_session()

    def _build_state(
        self, tool_name: str, params: Mapping[str, Any], context: EvaluationContext | None
    ) -> CallState:
        ctx = context or EvaluationContext()

        def pick(value: Any, default: Any) -> Any:
            return default if value is None else value

        agent_id = pick(ctx.agent_id, self.agent_id)
        trust = resolve_trust_level(
            sender_is_owner=pick(ctx.sender_is_owner, self._sender_is_owner),
            is_subagent=pick(ctx.is_subagent, self._is_subagent),
            is_allowed=pick(ctx.is_allowed, self._is_allowed),
        )
        tool = normalize_tool_name(tool_name)
        return CallState(
            tool_name=tool,
            params=params,
            agent_id=agent_id,
            session_key=pick(ctx.session_key, self.session_key),
            trust_level=trust,
            budget=effective_budget(self.config, agent_id),
            key=cache_key(tool, params),
        )

    async def _record_cost(self, state: CallState) -> None:
        if self._ledger is None:
            return
        await record_tool_cost_async(state.tool_name, state.budget, self._ledger, state.agent_id)

    async def _allow(self, state: CallState, tier: Tier | None) -> HookResult:
        await self._record_cost(state)
        return HookResult(block=False, tier=tier)

    async def evaluate(
        self,
        tool_name: str,
        params: Mapping[str, Any] | None = None,
        context: EvaluationContext | None = None,
    ) -> HookResult:
        """Decide whether a tool call may proceed."""
        if not self.config.enabled:
            return HookResult(block=False)

        params = params if params is not None else {}
        state = self._build_state(tool_name, params, context)

        if self.cache.contains(state.key):
            _logger.debug("Cache hit for %s", state.tool_name)
            return await self._allow(state, None)

        if self._ledger is not None:
            budget = check_budget(state.tool_name, state.budget, self._ledger, state.agent_id)
            if budget.exceeded:
                reason = budget.reason or "Budget exceeded"
                if budget.action == "deny":
                    _logger.info("Budget gate blocked %s: %s", state.tool_name, reason)
                    return HookResult(block=True, block_reason=reason)
                _logger.debug("Budget exceeded for %s, escalating to human", state.tool_name)
                return await self._human_tier(
                    state, risk_level=RiskLevel.CRITICAL, reason=reason, fallback=reason
                )

        tier1 = evaluate_rules(
            tool_name=state.tool_name,
            params=state.params,
            threshold=effective_threshold(self.config, state.agent_id),
            trust_level=state.trust_level,
            agent_rules=self._rules.for_agent(state.agent_id),
            global_rules=self._rules.global_rules,
        )
        _logger.debug(
            "Tier 1 %s for %s: %s", tier1.decision.value, state.tool_name, tier1.reason
        )
        if tier1.decision is RuleAction.ALLOW:
            return await self._allow(state, Tier.RULES)
        if tier1.decision is RuleAction.DENY:
            return HookResult(
                block=True, block_reason=tier1.reason or DENIED_BY_RULE, tier=Tier.RULES
            )

        escalation_reason = tier1.reason
        if self._adjudicator is not None:
            tier2 = await adjudicate(
                self._adjudicator,
                tool_name=state.tool_name,
                params=state.params,
                risk_level=tier1.risk_level,
                trust_level=state.trust_level,
                constitution=resolve_constitution(self.config, state.agent_id),
                agent_id=state.agent_id,
                timeout_ms=adjudicator_timeout_ms(self.config),
            )
            _logger.debug("Tier 2 %s for %s", tier2.decision.value, state.tool_name)
            if tier2.decision is RuleAction.ALLOW:
                return await self._allow(state, Tier.ADJUDICATOR)
            if tier2.decision is RuleAction.DENY:
                return HookResult(
                    block=True,
                    block_reason=tier2.reason or DENIED_BY_ADJUDICATOR,
                    tier=Tier.ADJUDICATOR,
                )
            escalation_reason = tier2.reason or escalation_reason

        return await self._human_tier(
            state,
            risk_level=tier1.risk_level,
            reason=escalation_reason,
            fallback=tier1.reason or NO_HUMAN_CHANNEL,
        )

    async def _human_tier(
        self,
        state: CallState,
        *,
        risk_level: RiskLevel,
        reason: str | None,
        fallback: str,
    ) -> HookResult:
        if self._request_human_approval is None:
            _logger.warning(
                "Guardian escalated %s but no human approval handler is configured",
                state.tool_name,
            )
            return HookResult(block=True, block_reason=fallback, tier=Tier.HUMAN)

        request = HumanApprovalRequest(
            tool_name=state.tool_name,
            params=dict(state.params),
            risk_level=risk_level,
            trust_level=state.trust_level,
            reason=reason,
            agent_id=state.agent_id,
            session_key=state.session_key,
            timeout_ms=self.config.approval_timeout_ms,
        )
        try:
            raw = await self._request_human_approval(request)
        except Exception as exc:
            _logger.warning("Human approval request for %s failed: %s", state.tool_name, exc)
            return HookResult(block=True, block_reason=APPROVAL_FAILED, tier=Tier.HUMAN)
        try:
            decision = ApprovalDecision(raw) if raw is not None else None
        except ValueError:
            _logger.warning("Unrecognized approval decision %r for %s", raw, state.tool_name)
            return HookResult(block=True, block_reason=DENIED_BY_OPERATOR, tier=Tier.HUMAN)

        if decision is None:
            _logger.info("Approval for %s expired without a decision", state.tool_name)
            return HookResult(block=True, block_reason=DENIED_BY_OPERATOR, tier=Tier.HUMAN)
        if decision is ApprovalDecision.DENY:
            _logger.info("Operator denied %s", state.tool_name)
            return HookResult(block=True, block_reason=DENIED_BY_OPERATOR, tier=Tier.HUMAN)

        _logger.info("Operator approved %s (%s)", state.tool_name, decision.value)
        self.cache.remember(state.key, decision)
        return await self._allow(state, Tier.HUMAN)


def create_guardian(
    config: GuardianConfig,
    *,
    budget_path: str | Path | None = None,
    budget_ledger: BudgetLedger | None = None,
    **kwargs: Any,
) -> Guardian:
    """Build a Guardian, creating a BudgetLedger when any budget is enabled."""
    if budget_ledger is None and budget_enabled_anywhere(config):
        budget_ledger = BudgetLedger(budget_path)
    return Guardian(config, budget_ledger=budget_ledger, **kwargs)
