from __future__ import annotations

import asyncio
import time
from typing import Optional

from loguru import logger

from calmeval.core.admission import AdmissionQueue
from calmeval.core.models import PipelineConfig, RateLimitPolicy, StatusTracker
from calmeval.core.pool import WorkerPool
from calmeval.core.rate_limit import RateLimiter
from calmeval.core.request import END_OF_STREAM, Request
from calmeval.core.retry import Backoff
from calmeval.errors import CancelledOnShutdown, RateLimitExceeded


class Dispatcher:
    """
    Control loop moving requests from the admission queue to the worker pool.

    The dispatcher is the only consumer of the queue and the owner of the
    rate limiter. Requests reach the limiter strictly in queue order: a
    denied request under the ``requeue`` policy stays at the head of the line
    and is re-offered after a backoff delay, so nothing overtakes it.

    Args:
        queue (AdmissionQueue): Source of requests, owned by the caller
        pool (WorkerPool): Executors for admitted requests
        config (PipelineConfig): Quota, policy and retry settings
        status (StatusTracker): Shared counters; the service 429 cool-off reads from it
        limiter (Optional[RateLimiter]): Override for the limiter built from the config
    """

    def __init__(
        self,
        queue: AdmissionQueue,
        pool: WorkerPool,
        config: PipelineConfig,
        status: Optional[StatusTracker] = None,
        limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.queue = queue
        self.pool = pool
        self.config = config
        self.status = status or StatusTracker()
        self.limiter = limiter or RateLimiter(capacity=config.external_quota_per_second)
        self.backoff = Backoff.from_config(config.retry)
        self._current: Request | None = None
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def run(self) -> None:
        """
        Dispatch until the end-of-stream marker is dequeued.

        If the task running this loop is cancelled, the request being
        admitted at that moment resolves to ``CancelledOnShutdown``.
        """
        try:
            while True:
                item = await self.queue.dequeue()
                if item is END_OF_STREAM:
                    logger.debug("Dispatcher reached end of stream")
                    break
                assert isinstance(item, Request)
                self._current = item
                await self._admit(item)
                self._current = None
        except asyncio.CancelledError:
            if self._current is not None and not self._current.done():
                self._current.fail(CancelledOnShutdown("admission aborted during shutdown"))
            raise
        finally:
            self._current = None
            self._stopped = True
            self.limiter.log_state()

    async def _admit(self, request: Request) -> None:
        retries = 0
        while True:
            await self._cool_off()
            request.attempts += 1
            if self.limiter.try_acquire():
                logger.debug(f"Request {request.sequence}: admitted (attempt {request.attempts})")
                await self.pool.submit(request)
                return

            if (
                self.config.rate_limit_policy is RateLimitPolicy.DROP
                or retries >= self.config.max_retries_on_rate_limit
            ):
                logger.warning(
                    f"Request {request.sequence}: rate limit exceeded for {request.text!r} "
                    f"after {request.attempts} attempt(s)"
                )
                request.fail(
                    RateLimitExceeded(
                        f"quota of {self.config.external_quota_per_second:g}/s exhausted",
                        attempts=request.attempts,
                    )
                )
                return

            delay = self.backoff.compute_delay(
                retries, minimum=self.limiter.seconds_until_available()
            )
            retries += 1
            logger.debug(
                f"Request {request.sequence}: rate limited, retrying in {delay:.3f}s "
                f"({retries}/{self.config.max_retries_on_rate_limit})"
            )
            await asyncio.sleep(delay)

    async def _cool_off(self) -> None:
        """Pause admissions after the external service itself reported throttling."""
        since = time.monotonic() - self.status.time_of_last_rate_limit_error
        remaining = self.config.rate_limit_cooldown_seconds - since
        if remaining > 0:
            logger.info(f"Service reported rate limiting, pausing admissions for {remaining:.2f}s")
            await asyncio.sleep(remaining)

    def cancel_pending(self) -> int:
        """Resolve every request still in the queue to ``CancelledOnShutdown``."""
        drained = self.queue.drain_nowait()
        for request in drained:
            if not request.done():
                request.fail(CancelledOnShutdown("not admitted before shutdown"))
        if drained:
            logger.warning(f"Cancelled {len(drained)} queued requests on shutdown")
        return len(drained)
