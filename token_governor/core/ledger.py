"""
Usage ledger and budget checks.

Tracks token consumption per calendar day, aggregates it per month and
answers whether a request of a given size still fits the budget.
Everything is kept in memory for the lifetime of the process.
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, Optional

from .optimization import PromptOptimization, analyze_prompt
from .token_counter import DailyUsage, TokenUsage, estimate_tokens

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetConfig:
    """Token budget limits."""
    daily_limit_tokens: int = 100_000
    monthly_limit_tokens: int = 2_000_000
    warning_threshold_percent: float = 80.0

    def __post_init__(self):
        """Validate limits and threshold."""
        if self.daily_limit_tokens < 0:
            raise ValueError("daily_limit_tokens cannot be negative")
        if self.monthly_limit_tokens < 0:
            raise ValueError("monthly_limit_tokens cannot be negative")
        if not 0 <= self.warning_threshold_percent <= 100:
            raise ValueError("warning_threshold_percent must be between 0 and 100")


@dataclass(frozen=True)
class LimitStatus:
    """Usage against one limit."""
    used: int
    limit: int
    remaining: int
    percent_used: float


@dataclass(frozen=True)
class BudgetStatus:
    """Daily and monthly usage plus the near-limit flag."""
    daily: LimitStatus
    monthly: LimitStatus
    is_near_limit: bool


@dataclass(frozen=True)
class BudgetSnapshot:
    """Remaining headroom reported with every budget check."""
    daily_remaining: int
    monthly_remaining: int
    daily_percent_used: float
    monthly_percent_used: float


@dataclass(frozen=True)
class BudgetCheck:
    """Result of a pre-flight budget check."""
    can_proceed: bool
    budget_status: BudgetSnapshot
    reason: Optional[str] = None


def _percent_used(used: int, limit: int) -> float:
    # A zero limit is exhausted from the start
    if limit <= 0:
        return 100.0
    return (used / limit) * 100


class UsageLedger:
    """In-memory ledger of token usage per day.

    Consulted by callers before submitting work and updated with the
    provider's reported usage afterwards.
    """

    def __init__(
        self,
        budget: Optional[BudgetConfig] = None,
        now: Callable[[], datetime] = datetime.now
    ):
        """Initialize the ledger.

        Args:
            budget: Budget limits (defaults to BudgetConfig())
            now: Clock used to decide the current day and month
        """
        self.budget = budget or BudgetConfig()
        self._now = now
        self._usage: Dict[str, DailyUsage] = {}

    def estimate_tokens(self, text: str) -> int:
        """Estimate tokens for pre-flight checks (ceil(len / 4))."""
        return estimate_tokens(text)

    def check_budget(self, token_estimate: int) -> BudgetCheck:
        """Check whether a request fits the daily and monthly budgets.

        The daily limit is reported first when both would be exceeded.

        Args:
            token_estimate: Tokens the request is expected to consume

        Returns:
            BudgetCheck with the remaining headroom for both periods
        """
        if token_estimate < 0:
            raise ValueError("token_estimate cannot be negative")

        daily_used = self._daily_total()
        monthly_used = self._monthly_total()
        snapshot = BudgetSnapshot(
            daily_remaining=self.budget.daily_limit_tokens - daily_used,
            monthly_remaining=self.budget.monthly_limit_tokens - monthly_used,
            daily_percent_used=_percent_used(daily_used, self.budget.daily_limit_tokens),
            monthly_percent_used=_percent_used(monthly_used, self.budget.monthly_limit_tokens)
        )

        if token_estimate > snapshot.daily_remaining:
            return BudgetCheck(
                can_proceed=False,
                budget_status=snapshot,
                reason=(
                    f"Request would exceed daily token limit. "
                    f"Remaining: {snapshot.daily_remaining}, Requested: {token_estimate}"
                )
            )

        if token_estimate > snapshot.monthly_remaining:
            return BudgetCheck(
                can_proceed=False,
                budget_status=snapshot,
                reason=(
                    f"Request would exceed monthly token limit. "
                    f"Remaining: {snapshot.monthly_remaining}, Requested: {token_estimate}"
                )
            )

        return BudgetCheck(can_proceed=True, budget_status=snapshot)

    def record_usage(self, usage: TokenUsage) -> None:
        """Add a completed call's usage to today's totals.

        Recording is unconditional; no budget check happens here.
        """
        today = self._today_key()
        daily = self._usage.setdefault(today, DailyUsage())
        daily.add(usage)

        logger.info(
            "Token usage recorded: date=%s total=%d cost=%.6f day_total=%d",
            today, usage.total_tokens, usage.estimated_cost, daily.total_tokens
        )
        self._warn_if_near_limit()

    def get_budget_status(self) -> BudgetStatus:
        """Report usage against both limits."""
        daily_used = self._daily_total()
        monthly_used = self._monthly_total()
        daily = LimitStatus(
            used=daily_used,
            limit=self.budget.daily_limit_tokens,
            remaining=self.budget.daily_limit_tokens - daily_used,
            percent_used=_percent_used(daily_used, self.budget.daily_limit_tokens)
        )
        monthly = LimitStatus(
            used=monthly_used,
            limit=self.budget.monthly_limit_tokens,
            remaining=self.budget.monthly_limit_tokens - monthly_used,
            percent_used=_percent_used(monthly_used, self.budget.monthly_limit_tokens)
        )
        threshold = self.budget.warning_threshold_percent
        return BudgetStatus(
            daily=daily,
            monthly=monthly,
            is_near_limit=daily.percent_used >= threshold or monthly.percent_used >= threshold
        )

    def analyze_for_optimization(self, prompt: str) -> PromptOptimization:
        return analyze_prompt(prompt)

    def update_budget(
        self,
        daily_limit: Optional[int] = None,
        monthly_limit: Optional[int] = None,
        warning_threshold_percent: Optional[float] = None
    ) -> None:
        """Update budget limits, keeping fields that are not given.

        Raises:
            ValueError: If the resulting budget is invalid
        """
        changes = {}
        if daily_limit is not None:
            changes["daily_limit_tokens"] = daily_limit
        if monthly_limit is not None:
            changes["monthly_limit_tokens"] = monthly_limit
        if warning_threshold_percent is not None:
            changes["warning_threshold_percent"] = warning_threshold_percent

        self.budget = dataclasses.replace(self.budget, **changes)
        logger.info("Token budget updated: %s", self.budget)

    def get_daily_usage(self, day: Optional[date] = None) -> DailyUsage:
        """Return a copy of the totals for ``day`` (today by default)."""
        key = day.isoformat() if day else self._today_key()
        return dataclasses.replace(self._usage.get(key, DailyUsage()))

    def prune_before(self, day: date) -> int:
        """Drop entries for days before ``day``.

        Returns:
            Number of days removed
        """
        cutoff = day.isoformat()
        stale = [key for key in self._usage if key < cutoff]
        for key in stale:
            del self._usage[key]
        if stale:
            logger.debug("Pruned %d day(s) of usage before %s", len(stale), cutoff)
        return len(stale)

    def _today_key(self) -> str:
        return self._now().date().isoformat()

    def _daily_total(self) -> int:
        daily = self._usage.get(self._today_key())
        return daily.total_tokens if daily else 0

    def _monthly_total(self) -> int:
        month = self._today_key()[:7]
        return sum(
            usage.total_tokens
            for key, usage in self._usage.items()
            if key.startswith(month)
        )

    def _warn_if_near_limit(self) -> None:
        status = self.get_budget_status()
        threshold = self.budget.warning_threshold_percent
        if status.daily.percent_used >= threshold:
            logger.warning(
                "Daily token budget at %.1f%% (threshold %.1f%%, remaining %d)",
                status.daily.percent_used, threshold, status.daily.remaining
            )
        if status.monthly.percent_used >= threshold:
            logger.warning(
                "Monthly token budget at %.1f%% (threshold %.1f%%, remaining %d)",
                status.monthly.percent_used, threshold, status.monthly.remaining
            )
