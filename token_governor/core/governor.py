"""
Request governor.

Admission control for calls to a rate-limited provider: a priority queue
drained by a single dispatch loop, rolling-window ceilings on requests and
tokens, and exponential backoff when the provider itself throttles.

Dispatch order:
1. Higher priority first, submission order within a priority
2. The queue head waits until every window has headroom
3. Admitted work runs in its own task; throttled calls retry in place
"""

import asyncio
import heapq
import itertools
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple, TypeVar, Union

from .backoff import (
    BackoffConfig,
    BackoffController,
    RetryAfterExtractor,
    ThrottleClassifier,
    extract_retry_after,
    is_rate_limit_error,
)
from .errors import AdmissionRejected, GovernorDestroyedError, ThrottleError
from .rate_limits import (
    RateLimitConfig,
    RateLimitStatus,
    RequestRecord,
    WindowUsage,
    current_usage,
    evaluate,
    inadmissible_reason,
    prune,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
WorkUnit = Callable[[], Awaitable[T]]

DEFAULT_PRUNE_INTERVAL = 60.0
# Floor for admission waits so a refused head never spins
MIN_WAIT = 0.001


class Priority(Enum):
    """Queue priority; lower rank dispatches first."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


@dataclass
class QueueItem:
    """A submitted unit of work waiting for admission."""
    work_unit: WorkUnit
    token_estimate: int
    priority: Priority
    enqueued_at: float
    sequence: int
    future: asyncio.Future


@dataclass(frozen=True)
class GovernorStatus:
    """Point-in-time view of the governor."""
    queue_length: int
    is_processing: bool
    current_usage: WindowUsage
    consecutive_errors: int


class RequestGovernor:
    """Admission control and retry policy for one governed resource.

    Construct one instance per provider (or per set of shared limits) and
    pass it to the code that makes calls.
    """

    def __init__(
        self,
        rate_limits: Optional[RateLimitConfig] = None,
        backoff: Optional[BackoffConfig] = None,
        *,
        is_throttle_error: Optional[ThrottleClassifier] = None,
        retry_after: Optional[RetryAfterExtractor] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        prune_interval: Optional[float] = DEFAULT_PRUNE_INTERVAL
    ):
        """Initialize the governor.

        Args:
            rate_limits: Window ceilings (defaults to RateLimitConfig())
            backoff: Retry settings (defaults to BackoffConfig())
            is_throttle_error: Classifier for provider throttling errors
            retry_after: Extractor for the provider's retry hint in seconds
            clock: Monotonic clock in seconds
            sleep: Coroutine used for admission and backoff waits
            rng: Random source for backoff jitter
            prune_interval: Seconds between history sweeps, None disables
        """
        self.rate_limits = rate_limits or RateLimitConfig()
        self._backoff = BackoffController(backoff, rng)
        self._is_throttle_error = is_throttle_error or is_rate_limit_error
        self._retry_after = retry_after or extract_retry_after
        self._clock = clock
        self._sleep = sleep
        self._prune_interval = prune_interval

        self._history: List[RequestRecord] = []
        self._queue: List[Tuple[int, int, QueueItem]] = []
        self._sequence = itertools.count()
        self._consecutive_errors = 0
        self._is_processing = False
        self._destroyed = False

        self._lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._dispatch_task: Optional[asyncio.Task] = None
        self._prune_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

        self._start_pruning()

    async def __aenter__(self) -> "RequestGovernor":
        self._start_pruning()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.destroy()

    @property
    def backoff(self) -> BackoffConfig:
        return self._backoff.config

    def check_rate_limit(self, token_estimate: int) -> RateLimitStatus:
        """Check whether a request could be dispatched right now.

        Args:
            token_estimate: Tokens the request is expected to consume

        Returns:
            RateLimitStatus with the wait until the tightest violated
            window frees up; no state is changed

        Raises:
            ValueError: If token_estimate is negative
        """
        return evaluate(self._history, self.rate_limits, token_estimate, self._clock())

    def record_request(self, token_count: int) -> None:
        """Record a completed request and clear the throttle error streak.

        Recording is unconditional; use it for calls made outside
        execute_with_rate_limit so they still count against the windows.
        """
        if token_count < 0:
            raise ValueError("token_count cannot be negative")
        self._history.append(RequestRecord(self._clock(), token_count))
        self._consecutive_errors = 0
        logger.debug("Request recorded: tokens=%d history=%d", token_count, len(self._history))

    def submit(
        self,
        work_unit: WorkUnit,
        token_estimate: int,
        priority: Union[Priority, str] = Priority.MEDIUM
    ) -> asyncio.Future:
        """Queue a unit of work and return a future for its result.

        Must be called from a running event loop. Returns immediately; the
        dispatch loop fulfils the future.

        Args:
            work_unit: Zero-argument callable returning an awaitable
            token_estimate: Tokens the call is expected to consume
            priority: "high", "medium" or "low"

        Returns:
            Future resolved with the work unit's result or failure

        Raises:
            AdmissionRejected: If no amount of waiting can admit the request
            GovernorDestroyedError: If the governor was destroyed
            ValueError: If token_estimate is negative or priority unknown
        """
        if self._destroyed:
            raise GovernorDestroyedError("Governor has been destroyed")
        if token_estimate < 0:
            raise ValueError("token_estimate cannot be negative")
        priority = Priority(priority)

        reason = inadmissible_reason(self.rate_limits, token_estimate)
        if reason:
            raise AdmissionRejected(reason, status=self.check_rate_limit(token_estimate))

        loop = asyncio.get_running_loop()
        item = QueueItem(
            work_unit=work_unit,
            token_estimate=token_estimate,
            priority=priority,
            enqueued_at=self._clock(),
            sequence=next(self._sequence),
            future=loop.create_future()
        )
        heapq.heappush(self._queue, (priority.rank, item.sequence, item))
        item.future.add_done_callback(self._discard_cancelled)
        logger.debug(
            "Request queued: priority=%s tokens=%d queue=%d",
            priority.value, token_estimate, len(self._queue)
        )

        self._start_pruning()
        if self._dispatch_task is None or self._dispatch_task.done():
            self._dispatch_task = loop.create_task(self._drain())
        return item.future

    async def execute_with_rate_limit(
        self,
        work_unit: WorkUnit,
        token_estimate: int,
        priority: Union[Priority, str] = Priority.MEDIUM
    ) -> Any:
        """Run ``work_unit`` once the rate limits admit it.

        Provider throttling is retried with backoff and surfaces as
        ThrottleError when retries run out; any other failure from the
        work unit propagates unchanged.
        """
        return await self.submit(work_unit, token_estimate, priority)

    def reconfigure(
        self,
        rate_limits: Optional[RateLimitConfig] = None,
        backoff: Optional[BackoffConfig] = None
    ) -> None:
        """Replace the rate limits and/or backoff settings.

        A dispatch loop waiting for capacity re-checks immediately.
        """
        if rate_limits is not None:
            self.rate_limits = rate_limits
        if backoff is not None:
            self._backoff.config = backoff
        self._wakeup.set()
        logger.info("Governor reconfigured: limits=%s backoff=%s", self.rate_limits, self._backoff.config)

    def get_status(self) -> GovernorStatus:
        return GovernorStatus(
            queue_length=len(self._queue),
            is_processing=self._is_processing,
            current_usage=current_usage(self._history, self._clock()),
            consecutive_errors=self._consecutive_errors
        )

    def destroy(self) -> None:
        """Stop background tasks and reject everything still queued.

        Work already dispatched keeps running. Safe to call more than once.
        """
        if self._destroyed:
            return
        self._destroyed = True

        for task in (self._prune_task, self._dispatch_task):
            if task is not None and not task.done():
                task.cancel()

        pending = [item for _, _, item in self._queue]
        self._queue.clear()
        for item in pending:
            if not item.future.done():
                item.future.set_exception(
                    GovernorDestroyedError("Governor destroyed before the request was dispatched")
                )
        logger.debug("Governor destroyed: rejected=%d in_flight=%d", len(pending), len(self._inflight))

    def _discard_cancelled(self, future: asyncio.Future) -> None:
        """Drop a request the caller cancelled while it was queued."""
        if not future.cancelled():
            return
        remaining = [entry for entry in self._queue if entry[2].future is not future]
        if len(remaining) != len(self._queue):
            self._queue = remaining
            heapq.heapify(self._queue)
            logger.debug("Cancelled request removed: queue=%d", len(self._queue))
        # The head may have changed, or the queue emptied
        self._wakeup.set()

    async def _drain(self) -> None:
        self._is_processing = True
        try:
            while self._queue and not self._destroyed:
                async with self._lock:
                    status = self._dispatch_head()
                if status is not None:
                    logger.debug("Rate limit hit, waiting %.3fs: %s", status.wait_time, status.reason)
                    await self._wait(max(status.wait_time or 0.0, MIN_WAIT))
        finally:
            self._is_processing = False

    def _dispatch_head(self) -> Optional[RateLimitStatus]:
        """Admit the queue head if possible.

        Returns the refusing status when the head has to wait, None when
        the head was dispatched or discarded.
        """
        _, _, item = self._queue[0]
        if item.future.done():
            # Cancelled by the caller while queued
            heapq.heappop(self._queue)
            return None

        reason = inadmissible_reason(self.rate_limits, item.token_estimate)
        if reason:
            heapq.heappop(self._queue)
            item.future.set_exception(
                AdmissionRejected(reason, status=self.check_rate_limit(item.token_estimate))
            )
            return None

        status = self.check_rate_limit(item.token_estimate)
        if not status.can_proceed:
            return status

        heapq.heappop(self._queue)
        self._history.append(RequestRecord(self._clock(), item.token_estimate))
        task = asyncio.get_running_loop().create_task(self._run(item))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        logger.debug("Request dispatched: priority=%s tokens=%d", item.priority.value, item.token_estimate)
        return None

    async def _wait(self, delay: float) -> None:
        self._wakeup.clear()
        sleeper = asyncio.ensure_future(self._sleep(delay))
        waker = asyncio.ensure_future(self._wakeup.wait())
        try:
            await asyncio.wait({sleeper, waker}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            waker.cancel()

    async def _run(self, item: QueueItem) -> None:
        try:
            result = await self._call_with_backoff(item.work_unit)
        except asyncio.CancelledError:
            item.future.cancel()
            raise
        except Exception as exc:
            # Delivered to the submitter through the future
            if not item.future.done():
                item.future.set_exception(exc)
        else:
            if not item.future.done():
                item.future.set_result(result)

    async def _call_with_backoff(self, work_unit: WorkUnit) -> Any:
        retries = 0
        while True:
            try:
                result = await work_unit()
            except Exception as exc:
                if not self._is_throttle_error(exc):
                    raise
                hint = self._retry_after(exc)
                delay = self._backoff.compute_delay(self._consecutive_errors, hint)
                self._consecutive_errors += 1
                if retries >= self._backoff.config.max_retries:
                    raise ThrottleError(
                        f"Provider throttling persisted after {retries} retries",
                        retries=retries,
                        retry_after=hint
                    ) from exc
                retries += 1
                logger.warning(
                    "Provider throttled request, retry %d/%d in %.2fs (consecutive errors: %d): %s",
                    retries, self._backoff.config.max_retries, delay, self._consecutive_errors, exc
                )
                await self._sleep(delay)
                continue

            self._consecutive_errors = 0
            return result

    def _start_pruning(self) -> None:
        if self._prune_task is not None or self._destroyed or not self._prune_interval:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Started on first submission instead
            return
        self._prune_task = loop.create_task(self._prune_periodically())

    async def _prune_periodically(self) -> None:
        while True:
            await asyncio.sleep(self._prune_interval)
            async with self._lock:
                self._prune_history()

    def _prune_history(self) -> int:
        before = len(self._history)
        self._history = prune(self._history, self._clock())
        removed = before - len(self._history)
        if removed:
            logger.debug("Pruned %d request record(s), %d remaining", removed, len(self._history))
        return removed
