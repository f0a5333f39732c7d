"""
Rolling-window rate limits.

Request and token ceilings per minute, hour and day, evaluated against
the history of dispatched requests at query time.
"""

from dataclasses import dataclass, fields
from typing import List, NamedTuple, Optional, Sequence

MINUTE = 60.0
HOUR = 60 * MINUTE
DAY = 24 * HOUR


class WindowTier(NamedTuple):
    name: str
    size: float


TIERS = (
    WindowTier("minute", MINUTE),
    WindowTier("hour", HOUR),
    WindowTier("day", DAY),
)

# Longest window; records older than this can be pruned
RETENTION = DAY


@dataclass(frozen=True)
class RateLimitConfig:
    """Request and token ceilings for each window.

    0 rejects everything; use a large value for an effectively
    unbounded ceiling.
    """
    requests_per_minute: int = 50
    requests_per_hour: int = 3000
    requests_per_day: int = 10_000
    tokens_per_minute: int = 90_000
    tokens_per_hour: int = 2_000_000
    tokens_per_day: int = 10_000_000

    def __post_init__(self):
        """Validate ceilings are not negative."""
        for f in fields(self):
            if getattr(self, f.name) < 0:
                raise ValueError(f"{f.name} cannot be negative")

    def request_ceiling(self, tier: str) -> int:
        return getattr(self, f"requests_per_{tier}")

    def token_ceiling(self, tier: str) -> int:
        return getattr(self, f"tokens_per_{tier}")


@dataclass(frozen=True)
class RequestRecord:
    """One admitted dispatch."""
    timestamp: float
    token_count: int


@dataclass(frozen=True)
class WindowUsage:
    """Requests and tokens counted in each trailing window."""
    requests_this_minute: int = 0
    requests_this_hour: int = 0
    requests_this_day: int = 0
    tokens_this_minute: int = 0
    tokens_this_hour: int = 0
    tokens_this_day: int = 0

    def requests(self, tier: str) -> int:
        return getattr(self, f"requests_this_{tier}")

    def tokens(self, tier: str) -> int:
        return getattr(self, f"tokens_this_{tier}")


@dataclass(frozen=True)
class RateLimitStatus:
    """Admission decision for one prospective request."""
    can_proceed: bool
    current_usage: WindowUsage
    wait_time: Optional[float] = None
    reason: Optional[str] = None


def _in_window(records: Sequence[RequestRecord], now: float, size: float) -> List[RequestRecord]:
    cutoff = now - size
    return [record for record in records if record.timestamp > cutoff]


def current_usage(records: Sequence[RequestRecord], now: float) -> WindowUsage:
    """Count requests and tokens inside each window ending at ``now``."""
    counts = {}
    for tier in TIERS:
        window = _in_window(records, now, tier.size)
        counts[f"requests_this_{tier.name}"] = len(window)
        counts[f"tokens_this_{tier.name}"] = sum(record.token_count for record in window)
    return WindowUsage(**counts)


def inadmissible_reason(config: RateLimitConfig, token_estimate: int) -> Optional[str]:
    """Explain why a request can never be admitted, or return None.

    A zero request ceiling, or an estimate above a token ceiling, cannot
    be satisfied by waiting for the window to drain.
    """
    for tier in TIERS:
        if config.request_ceiling(tier.name) < 1:
            return f"Requests per {tier.name} ceiling is 0; no request can be admitted"
        if token_estimate > config.token_ceiling(tier.name):
            return (
                f"Request of {token_estimate} tokens exceeds the tokens per {tier.name} "
                f"ceiling of {config.token_ceiling(tier.name)}"
            )
    return None


def evaluate(
    records: Sequence[RequestRecord],
    config: RateLimitConfig,
    token_estimate: int,
    now: float
) -> RateLimitStatus:
    """Decide whether one more request of ``token_estimate`` tokens fits.

    For every violated ceiling the wait is the time until the oldest record
    in that window expires. The smallest wait among violated tiers is
    reported together with its reason.

    Args:
        records: Dispatch history, oldest first
        config: Ceilings to evaluate against
        token_estimate: Tokens the request is expected to consume
        now: Current clock reading in seconds

    Returns:
        RateLimitStatus; wait_time and reason are set only when refused
    """
    if token_estimate < 0:
        raise ValueError("token_estimate cannot be negative")

    usage = current_usage(records, now)
    best_wait: Optional[float] = None
    best_reason: Optional[str] = None

    for tier in TIERS:
        reason = None
        if usage.requests(tier.name) + 1 > config.request_ceiling(tier.name):
            reason = f"Requests per {tier.name} limit exceeded"
        elif usage.tokens(tier.name) + token_estimate > config.token_ceiling(tier.name):
            reason = f"Tokens per {tier.name} limit would be exceeded"
        if reason is None:
            continue

        window = _in_window(records, now, tier.size)
        wait = 0.0
        if window:
            oldest = min(record.timestamp for record in window)
            wait = max(0.0, tier.size - (now - oldest))

        if best_wait is None or wait < best_wait:
            best_wait, best_reason = wait, reason

    if best_reason is None:
        return RateLimitStatus(can_proceed=True, current_usage=usage)
    return RateLimitStatus(
        can_proceed=False,
        current_usage=usage,
        wait_time=best_wait,
        reason=best_reason
    )


def prune(records: Sequence[RequestRecord], now: float, retention: float = RETENTION) -> List[RequestRecord]:
    """Return the records still inside the retention window."""
    return _in_window(records, now, retention)
