"""
Unit tests for the usage ledger.

Tests budget checks, usage accumulation, status reporting and updates.
"""

from datetime import date, datetime

import pytest

from token_governor.core.ledger import BudgetConfig, UsageLedger
from token_governor.core.token_counter import TokenUsage


class MutableNow:
    """Settable wall clock for the ledger."""

    def __init__(self, current: datetime):
        self.current = current

    def __call__(self) -> datetime:
        return self.current


def usage(total: int, cost: float = 0.0) -> TokenUsage:
    return TokenUsage(prompt_tokens=total, completion_tokens=0, estimated_cost=cost)


class TestBudgetConfig:
    """Test budget validation."""

    def test_defaults(self):
        """Default budget limits."""
        config = BudgetConfig()
        assert config.daily_limit_tokens == 100_000
        assert config.monthly_limit_tokens == 2_000_000
        assert config.warning_threshold_percent == 80.0

    def test_negative_limits_rejected(self):
        """Negative limits are rejected."""
        with pytest.raises(ValueError, match="daily_limit_tokens"):
            BudgetConfig(daily_limit_tokens=-1)
        with pytest.raises(ValueError, match="monthly_limit_tokens"):
            BudgetConfig(monthly_limit_tokens=-1)

    @pytest.mark.parametrize("threshold", [-1, 100.5])
    def test_threshold_out_of_range(self, threshold):
        """Thresholds outside 0-100 are rejected."""
        with pytest.raises(ValueError, match="warning_threshold_percent"):
            BudgetConfig(warning_threshold_percent=threshold)


class TestCheckBudget:
    """Test pre-flight budget checks."""

    def setup_method(self):
        """Set up a ledger on a fixed day."""
        self.now = MutableNow(datetime(2024, 3, 15, 12, 0, 0))
        self.ledger = UsageLedger(now=self.now)

    def test_allows_requests_within_budget(self):
        """Requests within both limits proceed."""
        result = self.ledger.check_budget(1000)
        assert result.can_proceed is True
        assert result.reason is None
        assert result.budget_status.daily_remaining == 100_000
        assert result.budget_status.monthly_remaining == 2_000_000
        assert result.budget_status.daily_percent_used == 0

    def test_rejects_requests_exceeding_daily_limit(self):
        """Requests over the daily remainder are refused."""
        result = self.ledger.check_budget(200_000)
        assert result.can_proceed is False
        assert "daily" in result.reason
        assert result.budget_status.daily_remaining < 200_000

    def test_rejects_requests_exceeding_monthly_limit(self):
        """Earlier days in the month count toward the monthly limit."""
        for day in range(1, 15):
            self.now.current = datetime(2024, 3, day, 9, 0, 0)
            self.ledger.record_usage(usage(145_000))
        self.now.current = datetime(2024, 3, 15, 12, 0, 0)

        result = self.ledger.check_budget(50_000)
        assert result.can_proceed is False
        assert "monthly" in result.reason
        assert result.budget_status.daily_remaining == 100_000
        assert result.budget_status.monthly_remaining == 2_000_000 - 14 * 145_000

    def test_daily_reason_takes_precedence(self):
        """When both limits would be exceeded, the daily one is reported."""
        self.ledger.update_budget(daily_limit=10, monthly_limit=10)
        result = self.ledger.check_budget(50)
        assert "daily" in result.reason
        assert result.budget_status.monthly_remaining == 10

    def test_previous_month_is_ignored(self):
        """Last month's usage does not count."""
        self.now.current = datetime(2024, 2, 28, 12, 0, 0)
        self.ledger.record_usage(usage(1_999_000))
        self.now.current = datetime(2024, 3, 15, 12, 0, 0)

        assert self.ledger.check_budget(50_000).can_proceed is True

    def test_zero_limits_reject_everything(self):
        """Zero limits refuse any non-empty request."""
        self.ledger.update_budget(0, 0)
        assert self.ledger.check_budget(1).can_proceed is False

    def test_negative_estimate_rejected(self):
        """Negative estimates are rejected."""
        with pytest.raises(ValueError):
            self.ledger.check_budget(-1)


class TestRecordUsage:
    """Test usage accumulation."""

    def setup_method(self):
        self.now = MutableNow(datetime(2024, 3, 15, 12, 0, 0))
        self.ledger = UsageLedger(now=self.now)

    def test_records_usage(self):
        """Recorded tokens show up in today's totals."""
        self.ledger.record_usage(TokenUsage(prompt_tokens=100, completion_tokens=50, estimated_cost=0.01))
        assert self.ledger.get_budget_status().daily.used == 150

    def test_accumulates_across_recordings(self):
        """Recordings on the same day add up."""
        self.ledger.record_usage(TokenUsage(prompt_tokens=100, completion_tokens=50))
        first = self.ledger.get_budget_status().daily.used
        self.ledger.record_usage(TokenUsage(prompt_tokens=200, completion_tokens=100))
        second = self.ledger.get_budget_status().daily.used

        assert second > first
        assert second == 450

    def test_recording_is_additive_regardless_of_timing(self):
        """The reported total is the sum of everything recorded."""
        totals = [1500, 20, 7, 3000, 0, 42]
        for hour, total in enumerate(totals):
            self.now.current = datetime(2024, 3, 15, hour, 30, 0)
            self.ledger.record_usage(usage(total))

        status = self.ledger.get_budget_status()
        assert status.daily.used == sum(totals)
        assert status.monthly.used == sum(totals)

    def test_recording_does_not_check_budget(self):
        """Usage beyond the limit is still recorded."""
        self.ledger.update_budget(daily_limit=100)
        self.ledger.record_usage(usage(500))
        status = self.ledger.get_budget_status()
        assert status.daily.used == 500
        assert status.daily.remaining == -400

    def test_daily_usage_fields(self):
        """Every usage field is accumulated."""
        self.ledger.record_usage(TokenUsage(prompt_tokens=1000, completion_tokens=500, estimated_cost=0.25))
        self.ledger.record_usage(TokenUsage(prompt_tokens=1000, completion_tokens=500, estimated_cost=0.25))

        daily = self.ledger.get_daily_usage()
        assert daily.prompt_tokens == 2000
        assert daily.completion_tokens == 1000
        assert daily.total_tokens == 3000
        assert daily.estimated_cost == pytest.approx(0.5)

    def test_get_daily_usage_returns_copy(self):
        """Mutating the returned totals does not touch the ledger."""
        self.ledger.record_usage(usage(10))
        snapshot = self.ledger.get_daily_usage()
        snapshot.total_tokens = 999
        assert self.ledger.get_daily_usage().total_tokens == 10

    def test_usage_is_tracked_per_day(self):
        """Each calendar day has its own totals."""
        self.ledger.record_usage(usage(100))
        self.now.current = datetime(2024, 3, 16, 8, 0, 0)
        self.ledger.record_usage(usage(40))

        assert self.ledger.get_daily_usage().total_tokens == 40
        assert self.ledger.get_daily_usage(date(2024, 3, 15)).total_tokens == 100
        assert self.ledger.get_budget_status().monthly.used == 140

    def test_near_limit_logs_warning(self, caplog):
        """Crossing the threshold logs a warning."""
        with caplog.at_level("WARNING", logger="token_governor.core.ledger"):
            self.ledger.record_usage(usage(85_000))
        assert "Daily token budget" in caplog.text


class TestBudgetStatus:
    """Test status reporting."""

    def setup_method(self):
        self.now = MutableNow(datetime(2024, 3, 15, 12, 0, 0))
        self.ledger = UsageLedger(
            BudgetConfig(daily_limit_tokens=100_000, warning_threshold_percent=80),
            now=self.now
        )

    def test_fresh_ledger(self):
        """A new ledger reports nothing used."""
        status = self.ledger.get_budget_status()
        assert status.daily.used == 0
        assert status.daily.limit == 100_000
        assert status.daily.remaining == 100_000
        assert status.daily.percent_used == 0
        assert status.is_near_limit is False

    def test_near_limit(self):
        """85,000 of 100,000 tokens is past the 80% threshold."""
        self.ledger.record_usage(TokenUsage(prompt_tokens=80_000, completion_tokens=5_000))
        status = self.ledger.get_budget_status()
        assert status.is_near_limit is True
        assert status.daily.percent_used == 85

    def test_exactly_at_threshold_is_near_limit(self):
        """Reaching the threshold exactly counts as near the limit."""
        self.ledger.record_usage(usage(80_000))
        assert self.ledger.get_budget_status().is_near_limit is True

    def test_monthly_threshold(self):
        """The monthly limit alone can trigger near-limit."""
        self.ledger.update_budget(daily_limit=10_000_000, monthly_limit=100_000)
        self.ledger.record_usage(usage(90_000))
        status = self.ledger.get_budget_status()
        assert status.daily.percent_used < 80
        assert status.is_near_limit is True

    def test_percentages(self):
        """Percent used is reported for both limits."""
        self.ledger.record_usage(usage(25_000))
        status = self.ledger.get_budget_status()
        assert status.daily.percent_used == 25
        assert status.daily.remaining == 75_000

    def test_zero_limit_reports_full(self):
        """A zero limit reports 100 percent used."""
        self.ledger.update_budget(daily_limit=0)
        assert self.ledger.get_budget_status().daily.percent_used == 100.0


class TestUpdateBudget:
    """Test partial budget updates."""

    def setup_method(self):
        self.ledger = UsageLedger(now=lambda: datetime(2024, 3, 15, 12, 0, 0))

    def test_update_daily_limit(self):
        """Only the daily limit changes."""
        self.ledger.update_budget(50_000)
        status = self.ledger.get_budget_status()
        assert status.daily.limit == 50_000
        assert status.monthly.limit == 2_000_000

    def test_update_monthly_limit(self):
        """Only the monthly limit changes."""
        self.ledger.update_budget(monthly_limit=1_000_000)
        status = self.ledger.get_budget_status()
        assert status.monthly.limit == 1_000_000
        assert status.daily.limit == 100_000

    def test_update_warning_threshold(self):
        """A new threshold changes near-limit reporting."""
        self.ledger.update_budget(warning_threshold_percent=90)
        self.ledger.record_usage(usage(85_000))
        assert self.ledger.get_budget_status().is_near_limit is False
        self.ledger.record_usage(usage(10_000))
        assert self.ledger.get_budget_status().is_near_limit is True

    def test_invalid_update_keeps_previous_budget(self):
        """An invalid update leaves the budget unchanged."""
        with pytest.raises(ValueError):
            self.ledger.update_budget(warning_threshold_percent=150)
        assert self.ledger.budget.warning_threshold_percent == 80.0


class TestLedgerHelpers:
    """Test estimation, optimisation and pruning helpers."""

    def setup_method(self):
        self.now = MutableNow(datetime(2024, 3, 15, 12, 0, 0))
        self.ledger = UsageLedger(now=self.now)

    def test_estimate_tokens(self):
        """The ledger estimates tokens like the module function."""
        tokens = self.ledger.estimate_tokens("Hello world")
        assert 0 < tokens < len("Hello world")

    def test_analyze_for_optimization(self):
        """Optimisation analysis is delegated."""
        result = self.ledger.analyze_for_optimization("A" * 3000)
        assert result.should_optimize is True
        assert any("repetitive" in r for r in result.recommendations)

    def test_prune_before(self):
        """Days before the cutoff are removed."""
        for day in (10, 12, 15):
            self.now.current = datetime(2024, 3, day, 9, 0, 0)
            self.ledger.record_usage(usage(100))

        removed = self.ledger.prune_before(date(2024, 3, 12))
        assert removed == 1
        assert self.ledger.get_daily_usage(date(2024, 3, 10)).total_tokens == 0
        assert self.ledger.get_budget_status().monthly.used == 200
