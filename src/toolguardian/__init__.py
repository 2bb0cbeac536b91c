"""toolguardian public API."""

from .adjudicator import AdjudicationResult, adjudicate, parse_decision, resolve_constitution
from .approvals import ApprovalGateway, ApprovalManager, ApprovalRecord
from .budgets import BudgetCheckResult, BudgetLedger, PersistOutcome, check_budget
from .cache import DecisionCache, cache_key
from .config import (
    AgentOverride,
    BudgetConfig,
    GuardianConfig,
    effective_budget,
    effective_threshold,
    load_config,
    parse_config,
)
from .engine import Guardian, create_guardian
from .errors import ApprovalError, BudgetError, ConfigError, GuardianError
from .protocols import Adjudicator, ApprovalForwarder, HumanApprovalFn
from .risk import classify, resolve_trust_level
from .rules import RuleBook, evaluate_rules
from .types import (
    ApprovalDecision,
    EvaluationContext,
    EvaluationResult,
    ForwardRequest,
    ForwardResolved,
    HookResult,
    HumanApprovalRequest,
    RiskLevel,
    Rule,
    RuleAction,
    Tier,
    TrustLevel,
)

__all__ = (
    # Orchestration
    "Guardian",
    "create_guardian",
    # Types
    "RiskLevel",
    "TrustLevel",
    "RuleAction",
    "ApprovalDecision",
    "Tier",
    "Rule",
    "EvaluationContext",
    "EvaluationResult",
    "HookResult",
    "HumanApprovalRequest",
    "ForwardRequest",
    "ForwardResolved",
    # Tier 1
    "classify",
    "resolve_trust_level",
    "evaluate_rules",
    "RuleBook",
    # Tier 2
    "AdjudicationResult",
    "adjudicate",
    "parse_decision",
    "resolve_constitution",
    # Tier 3
    "ApprovalManager",
    "ApprovalRecord",
    "ApprovalGateway",
    # Budgets and cache
    "BudgetLedger",
    "BudgetCheckResult",
    "PersistOutcome",
    "check_budget",
    "DecisionCache",
    "cache_key",
    # Config
    "GuardianConfig",
    "BudgetConfig",
    "AgentOverride",
    "load_config",
    "parse_config",
    "effective_threshold",
    "effective_budget",
    # Protocols
    "Adjudicator",
    "HumanApprovalFn",
    "ApprovalForwarder",
    # Errors
    "GuardianError",
    "ConfigError",
    "ApprovalError",
    "BudgetError",
)
