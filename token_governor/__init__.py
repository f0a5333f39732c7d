"""
token-governor: admission control and token budgets for metered LLM APIs.
"""

from .core.backoff import BackoffConfig
from .core.errors import AdmissionRejected, GovernorDestroyedError, GovernorError, ThrottleError
from .core.governor import GovernorStatus, Priority, RequestGovernor
from .core.ledger import BudgetConfig, UsageLedger
from .core.rate_limits import RateLimitConfig, RateLimitStatus
from .core.token_counter import TokenUsage, estimate_tokens

__all__ = [
    "AdmissionRejected",
    "BackoffConfig",
    "BudgetConfig",
    "GovernorDestroyedError",
    "GovernorError",
    "GovernorStatus",
    "Priority",
    "RateLimitConfig",
    "RateLimitStatus",
    "RequestGovernor",
    "ThrottleError",
    "TokenUsage",
    "UsageLedger",
    "estimate_tokens",
]
