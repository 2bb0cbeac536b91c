"""Tier 3 approval bookkeeping and the human approval gateway."""

from .common import DEFAULT_TIMEOUT_MS, EVENT_REQUESTED, EVENT_RESOLVED
from .gateway import ApprovalGateway
from .manager import ApprovalManager, ApprovalRecord

__all__ = [
    "DEFAULT_TIMEOUT_MS",
    "EVENT_REQUESTED",
    "EVENT_RESOLVED",
    "ApprovalGateway",
    "ApprovalManager",
    "ApprovalRecord",
]
