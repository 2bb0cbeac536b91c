"""Exception types for toolguardian."""


class GuardianError(Exception):
    """Base exception for all toolguardian errors."""


class ConfigError(GuardianError):
    """Raised when guardian configuration cannot be loaded or validated."""


class ApprovalError(GuardianError):
    """Raised when a human approval request cannot be registered."""


class BudgetError(GuardianError):
    """Raised when budget inputs are invalid."""
