"""Protocol definitions for the guardian's external collaborators.

Design notes:
- The adjudicator is an opaque text-completion callable; its network client is
  not part of this package
- The human approval channel returns ``None`` on timeout
- The forwarder is a notification boundary only; delivery is owned elsewhere
- @runtime_checkable is for debugging/logging convenience only, not dispatch
"""

from __future__ import annotations

from typing import Awaitable, Protocol, runtime_checkable

from .types import ApprovalDecision, ForwardRequest, ForwardResolved, HumanApprovalRequest


@runtime_checkable
class Adjudicator(Protocol):
    """Delegated model used by Tier 2.

    Implementations return the raw completion text. Any exception is treated
    as a Tier 2 failure and escalates.
    """

    def __call__(
        self, *, system: str, user: str, max_tokens: int | None = None
    ) -> Awaitable[str] | str:
        ...


@runtime_checkable
class HumanApprovalFn(Protocol):
    """Tier 3 channel to a human operator."""

    def __call__(self, request: HumanApprovalRequest) -> Awaitable[ApprovalDecision | None]:
        ...


@runtime_checkable
class ApprovalForwarder(Protocol):
    """Relays approval lifecycle events to notification targets."""

    async def handle_requested(self, request: ForwardRequest) -> None:
        """Announce a newly pending approval."""
        ...

    async def handle_resolved(self, resolved: ForwardResolved) -> None:
        """Announce that an approval was resolved."""
        ...

    def stop(self) -> None:
        """Drop pending notifications and timers."""
        ...
