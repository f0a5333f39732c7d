"""
Exponential backoff for provider throttling.

Classifies provider errors as throttling, reads retry-after hints and
computes the delay before the next attempt.
"""

import random
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

HTTP_TOO_MANY_REQUESTS = 429

ThrottleClassifier = Callable[[BaseException], bool]
RetryAfterExtractor = Callable[[BaseException], Optional[float]]


@dataclass(frozen=True)
class BackoffConfig:
    """Retry escalation settings (delays in seconds)."""
    initial_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter_fraction: float = 0.1  # 0.1 = +/-10% of the delay
    max_retries: int = 5

    def __post_init__(self):
        """Validate backoff settings."""
        if self.initial_delay < 0:
            raise ValueError("initial_delay cannot be negative")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if not 0 <= self.jitter_fraction <= 1:
            raise ValueError("jitter_fraction must be between 0 and 1")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")


def is_rate_limit_error(error: BaseException) -> bool:
    """Default classifier: HTTP 429 or a "rate limit" message."""
    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if status == HTTP_TOO_MANY_REQUESTS:
        return True
    return "rate limit" in str(error).lower()


def _headers_of(error: BaseException) -> Optional[Mapping[str, Any]]:
    headers = getattr(error, "headers", None)
    if headers is None:
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None)
    return headers


def _parse_seconds(value: Any, scale: float = 1.0) -> Optional[float]:
    try:
        seconds = float(value) * scale
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def extract_retry_after(error: BaseException) -> Optional[float]:
    """Default extractor for the provider's retry hint, in seconds.

    Reads ``retry-after-ms`` or ``retry-after`` from ``error.headers`` or
    ``error.response.headers``. HTTP-date values are ignored.
    """
    headers = _headers_of(error)
    if not headers:
        return None
    lowered = {str(key).lower(): value for key, value in headers.items()}
    if "retry-after-ms" in lowered:
        hint = _parse_seconds(lowered["retry-after-ms"], 0.001)
        if hint is not None:
            return hint
    if "retry-after" in lowered:
        return _parse_seconds(lowered["retry-after"])
    return None


class BackoffController:
    """Computes retry delays from a BackoffConfig."""

    def __init__(self, config: Optional[BackoffConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or BackoffConfig()
        self._rng = rng or random.Random()

    def base_delay(self, consecutive_errors: int) -> float:
        """min(max_delay, initial_delay * multiplier ** consecutive_errors)."""
        cfg = self.config
        try:
            grown = cfg.initial_delay * cfg.multiplier ** consecutive_errors
        except OverflowError:
            return cfg.max_delay
        return min(cfg.max_delay, grown)

    def compute_delay(self, consecutive_errors: int, retry_after: Optional[float] = None) -> float:
        """Delay before the next attempt.

        Jitter keeps the delay within [0, max_delay]; a retry-after hint
        longer than the computed delay wins.

        Args:
            consecutive_errors: Throttle failures since the last success
            retry_after: Provider hint in seconds, if any

        Returns:
            Delay in seconds
        """
        delay = self.base_delay(consecutive_errors)
        if self.config.jitter_fraction:
            spread = delay * self.config.jitter_fraction
            delay += self._rng.uniform(-spread, spread)
            delay = min(self.config.max_delay, max(0.0, delay))
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay
