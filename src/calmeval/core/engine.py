from __future__ import annotations

import asyncio
import os
import time
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable
from typing import Any, Optional

import aiohttp
from aiohttp import ClientSession
from loguru import logger
from tqdm import tqdm

from calmeval.core.admission import AdmissionQueue
from calmeval.core.dispatcher import Dispatcher
from calmeval.core.io import read_expressions, write_outcome
from calmeval.core.models import (
    PipelineConfig,
    ProcessingResult,
    ProcessingStats,
    RequestResult,
    StatusTracker,
)
from calmeval.core.pool import WorkerPool
from calmeval.core.request import Request
from calmeval.errors import (
    CancelledOnShutdown,
    RateLimitExceeded,
    ServiceError,
    TransportError,
)
from calmeval.evaluators.base import BaseEvaluator
from calmeval.utils import results_path_for

"""
Pipeline wiring and bulk entry points.

``ExpressionPipeline`` owns one admission queue, one dispatcher (which owns
the rate limiter), one worker pool and one aiohttp session. Nothing is
process-global: two pipelines in the same process do not share quota or
state.
"""


class ExpressionPipeline:
    """
    Admission-controlled evaluation of expressions against a remote evaluator.

    Use as an async context manager. ``submit`` returns as soon as the
    request is queued (waiting only while the queue is full); await
    ``request.wait()`` for its outcome. Leaving the block drains everything
    submitted; leaving it with an exception shuts down immediately.

    Args:
        evaluator (BaseEvaluator): Client for the external service
        config (Optional[PipelineConfig]): Pipeline settings (defaults if None)
        session (Optional[ClientSession]): Session to reuse; created and closed here if None
        progress (Any): Optional tqdm progress bar advanced per finished request

    Example:
        >>> async with ExpressionPipeline(MathJsEvaluator()) as pipeline:
        ...     request = await pipeline.submit("2 * 4 * 4")
        ...     outcome = await request.wait()
        ...     print(outcome.value)
        32
    """

    def __init__(
        self,
        evaluator: BaseEvaluator,
        config: Optional[PipelineConfig] = None,
        session: Optional[ClientSession] = None,
        progress: Any = None,  # tqdm progress bar (no type stubs available)
    ) -> None:
        self.evaluator = evaluator
        self.config = config or PipelineConfig()
        self.status = StatusTracker()
        self.queue = AdmissionQueue(self.config.admission_queue_capacity)
        self.progress = progress
        self._session = session
        self._owns_session = session is None
        self._pool: WorkerPool | None = None
        self._dispatcher: Dispatcher | None = None
        self._dispatch_task: asyncio.Task[None] | None = None
        self._finished = False

    @property
    def dispatcher(self) -> Dispatcher:
        if self._dispatcher is None:
            raise RuntimeError("Pipeline has not been started")
        return self._dispatcher

    @property
    def pool(self) -> WorkerPool:
        if self._pool is None:
            raise RuntimeError("Pipeline has not been started")
        return self._pool

    async def start(self) -> ExpressionPipeline:
        if self._dispatch_task is not None:
            return self
        if self._session is None:
            self._session = ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.call_timeout)
            )
        self._pool = WorkerPool(
            size=self.config.pool_size,
            evaluator=self.evaluator,
            session=self._session,
            call_timeout=self.config.call_timeout,
        )
        self._dispatcher = Dispatcher(
            queue=self.queue, pool=self._pool, config=self.config, status=self.status
        )
        self._pool.start()
        self._dispatch_task = asyncio.create_task(
            self._dispatcher.run(), name="calmeval-dispatcher"
        )
        logger.debug(
            f"Pipeline started: {self.config.external_quota_per_second:g} req/s quota, "
            f"{self.config.pool_size} workers, queue capacity {self.config.admission_queue_capacity}, "
            f"policy={self.config.rate_limit_policy.value}"
        )
        return self

    async def __aenter__(self) -> ExpressionPipeline:
        return await self.start()

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if self._finished:
            return
        if exc_type is None:
            await self.join()
        else:
            await self.shutdown(grace_seconds=0)

    async def submit(self, text: str) -> Request:
        """
        Queue one expression for evaluation.

        Raises:
            RuntimeError: If the pipeline was not started
            QueueClosedError: If end-of-stream was already signalled
        """
        if self._dispatch_task is None:
            raise RuntimeError("Pipeline has not been started")
        request = await self.queue.enqueue(Request(text))
        self.status.num_tasks_started += 1
        self.status.num_tasks_in_progress += 1
        request.add_done_callback(self._record_outcome)
        return request

    def close(self) -> None:
        """Signal end-of-stream; already queued requests are still dispatched."""
        self.queue.close()

    async def join(self) -> None:
        """Close the queue, dispatch everything queued and wait for the workers to finish."""
        if self._finished:
            return
        self.close()
        if self._dispatch_task is not None:
            await self._dispatch_task
        if self._pool is not None:
            await self._pool.close(self.config.shutdown_grace_seconds)
        await self._release()

    async def shutdown(self, grace_seconds: Optional[float] = None) -> None:
        """
        Stop the pipeline within ``grace_seconds`` (config default if None).

        Queued requests keep being admitted until the grace period runs out.
        After that, anything not yet admitted and every call still in flight
        resolves to ``CancelledOnShutdown``. Once this returns, every submitted
        request has an outcome.
        """
        if self._finished:
            return
        if grace_seconds is None:
            grace_seconds = self.config.shutdown_grace_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + grace_seconds
        self.close()

        if self._dispatch_task is not None:
            done, _ = await asyncio.wait({self._dispatch_task}, timeout=grace_seconds)
            if not done:
                logger.warning("Dispatcher still admitting at end of grace period, cancelling")
                self._dispatch_task.cancel()
                await asyncio.gather(self._dispatch_task, return_exceptions=True)
            if self._dispatcher is not None:
                self._dispatcher.cancel_pending()
        else:
            for request in self.queue.drain_nowait():
                request.fail(CancelledOnShutdown("pipeline never started"))

        if self._pool is not None:
            await self._pool.close(max(0.0, deadline - loop.time()))
        await self._release()

    async def _release(self) -> None:
        self._finished = True
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _record_outcome(self, request: Request) -> None:
        status = self.status
        outcome = request.outcome()
        status.num_tasks_in_progress -= 1
        if outcome.ok:
            status.num_tasks_succeeded += 1
            logger.debug(
                f"Request {request.sequence}: {request.text} => {outcome.value} "
                f"({request.latency or 0.0:.3f}s)"
            )
        else:
            status.num_tasks_failed += 1
            error = outcome.error
            if isinstance(error, RateLimitExceeded):
                status.num_rate_limit_rejections += 1
            elif isinstance(error, ServiceError):
                if error.is_rate_limited:
                    status.num_service_rate_limit_errors += 1
                    status.time_of_last_rate_limit_error = time.monotonic()
                else:
                    status.num_service_errors += 1
                logger.warning(f"Request {request.sequence}: {request.text!r} failed: {error}")
            elif isinstance(error, TransportError):
                status.num_transport_errors += 1
                logger.warning(f"Request {request.sequence}: {request.text!r} failed: {error}")
            elif isinstance(error, CancelledOnShutdown):
                status.num_cancelled += 1
                logger.debug(f"Request {request.sequence}: cancelled ({error})")
        if self.progress is not None:
            self.progress.update(1)


def _setup_logger(logging_level: int) -> None:
    """
    Configure logger with clean format.

    Args:
        logging_level (int): Loguru logging level (20=INFO, 10=DEBUG)
    """
    logger.remove()

    # Show module info only at DEBUG level (10 or lower)
    if logging_level <= 10:
        log_format = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )
    else:
        log_format = (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<level>{message}</level>"
        )

    logger.add(
        lambda msg: tqdm.write(msg, end=""),
        format=log_format,
        colorize=True,
        level=logging_level,
    )


def _log_summary(
    status: StatusTracker,
    duration: float,
    output_description: str = "Results written",
) -> None:
    """
    Log processing summary and statistics.

    Args:
        status: Status tracker with metrics
        duration: Processing duration in seconds
        output_description: Description of where results went
    """
    logger.info(f"Evaluation complete. {output_description}")
    logger.info(
        f"Successfully evaluated {status.num_tasks_succeeded:,} / "
        f"{status.num_tasks_started:,} expressions "
        f"in {duration:.1f}s"
    )

    if status.num_tasks_failed > 0:
        logger.warning(
            f"{status.num_tasks_failed:,} / {status.num_tasks_started:,} expressions failed"
        )
    if status.num_rate_limit_rejections > 0:
        logger.warning(
            f"{status.num_rate_limit_rejections:,} expressions rejected by the rate limiter. "
            f"Consider the requeue policy or more retries."
        )
    if status.num_service_rate_limit_errors > 0:
        logger.warning(
            f"{status.num_service_rate_limit_errors:,} rate limit errors received from the service. "
            f"Consider running at lower rate."
        )


async def _aiter(items: Iterable[str]) -> AsyncIterator[str]:
    for item in items:
        yield item


async def evaluate_stream(
    pipeline: ExpressionPipeline,
    expressions: AsyncIterable[str] | Iterable[str],
    emit: Callable[[Request], None],
) -> None:
    """
    Feed expressions through a pipeline and emit results in submission order.

    Submission and result emission run concurrently: a slow expression holds
    back the output behind it but never stops later ones from being admitted.
    Requests waiting to be emitted are bounded by the admission queue
    capacity, so a lagging consumer blocks the producer instead of piling up
    finished requests. Nothing is kept after ``emit`` returns.

    The pipeline is started if needed and joined before returning; if
    anything fails, it is shut down immediately and the error re-raised.

    Args:
        pipeline (ExpressionPipeline): Pipeline to run the expressions through
        expressions (AsyncIterable[str] | Iterable[str]): Expression source
        emit (Callable[[Request], None]): Called with each finished request, in order
    """
    source = expressions if isinstance(expressions, AsyncIterable) else _aiter(expressions)
    submitted: asyncio.Queue[Request | None] = asyncio.Queue(
        maxsize=pipeline.config.admission_queue_capacity
    )

    async def produce() -> None:
        try:
            async for text in source:
                await submitted.put(await pipeline.submit(text))
        finally:
            pipeline.close()
        await submitted.put(None)

    async def consume() -> None:
        while True:
            request = await submitted.get()
            if request is None:
                return
            await request.wait()
            emit(request)

    await pipeline.start()
    producer = asyncio.create_task(produce(), name="calmeval-producer")
    consumer = asyncio.create_task(consume(), name="calmeval-consumer")
    try:
        await asyncio.gather(producer, consumer)
    except BaseException:
        producer.cancel()
        consumer.cancel()
        await asyncio.gather(producer, consumer, return_exceptions=True)
        await pipeline.shutdown(grace_seconds=0)
        raise
    await pipeline.join()


def _to_result(request: Request) -> RequestResult:
    outcome = request.outcome()
    return RequestResult(
        sequence=request.sequence if request.sequence is not None else -1,
        expression=request.text,
        result=outcome.value,
        error=str(outcome.error) if outcome.error is not None else None,
        error_kind=outcome.error.kind if outcome.error is not None else None,
    )


async def evaluate_expressions(
    evaluator: BaseEvaluator,
    expressions: Iterable[str],
    config: PipelineConfig | None = None,
    logging_level: int = 20,
    max_batch_size: int = 10_000,
) -> ProcessingResult:
    """
    Evaluate a list of expressions with in-memory results.

    Entries are handled like command-line input: surrounding whitespace is
    stripped, blank entries are skipped and an ``end`` entry ends the batch.

    For large batches (> 10,000 expressions), use evaluate_expressions_from_file()
    instead to avoid holding every result in memory.

    Args:
        evaluator (BaseEvaluator): Client for the external service
        expressions (Iterable[str]): Expressions to evaluate
        config (Optional[PipelineConfig]): Pipeline settings (defaults if None)
        logging_level (int): Loguru logging level (20=INFO, 10=DEBUG)
        max_batch_size (int): Maximum allowed batch size (default: 10,000)

    Returns:
        ProcessingResult: Successes and failures in submission order, plus statistics

    Raises:
        ValueError: If batch size exceeds max_batch_size

    Example:
        >>> result = await evaluate_expressions(
        ...     MathJsEvaluator(),
        ...     ["2 * 4 * 4", "5 / (7 - 5)", "sqrt(5^2 - 4^2)"],
        ...     config=PipelineConfig(external_quota_per_second=50),
        ... )
        >>> print(f"Evaluated: {result.stats.successful}/{result.stats.total_requests}")
    """
    _setup_logger(logging_level)

    batch = list(read_expressions(expressions))
    if len(batch) > max_batch_size:
        raise ValueError(
            f"Batch size {len(batch)} exceeds maximum {max_batch_size}. "
            f"For large batches, use evaluate_expressions_from_file() instead."
        )

    pbar = tqdm(total=len(batch) or None, desc="Evaluated expressions", unit="expr")
    start_time = time.time()
    pipeline = ExpressionPipeline(evaluator, config, progress=pbar)
    requests: list[Request] = []
    try:
        await evaluate_stream(pipeline, batch, emit=requests.append)
    finally:
        pbar.close()
    duration = time.time() - start_time

    _log_summary(pipeline.status, duration, "Results kept in memory")

    results = [_to_result(request) for request in requests]
    return ProcessingResult(
        successes=[r for r in results if r.ok],
        failures=[r for r in results if not r.ok],
        stats=ProcessingStats.from_status(pipeline.status, duration),
    )


async def evaluate_expressions_from_file(
    evaluator: BaseEvaluator,
    expressions_file: str,
    config: PipelineConfig | None = None,
    output_file: str | None = None,
    logging_level: int = 20,
) -> ProcessingStats:
    """
    Evaluate expressions from a text file, one per line, until ``end``.

    Results are written to ``output_file`` as ``<expression> => <result>``
    lines in input order, as soon as each one and everything before it is
    finished. Finished requests are written and released, so memory stays
    bounded by the admission queue capacity, not the size of the file.

    Args:
        evaluator (BaseEvaluator): Client for the external service
        expressions_file (str): Path to the input file
        config (Optional[PipelineConfig]): Pipeline settings (defaults if None)
        output_file (Optional[str]): Destination (defaults to ``<name>_results.<ext>``)
        logging_level (int): Loguru logging level (20=INFO, 10=DEBUG)

    Returns:
        ProcessingStats: Summary counters for the run

    Raises:
        FileNotFoundError: If expressions_file doesn't exist
    """
    _setup_logger(logging_level)

    if not os.path.exists(expressions_file):
        raise FileNotFoundError(f"Expressions file not found: {expressions_file}")
    output_file = output_file or results_path_for(expressions_file)

    # Count lines for the progress bar
    try:
        with open(expressions_file, encoding="utf-8") as _f:
            total = sum(1 for _ in read_expressions(_f))
    except (OSError, UnicodeDecodeError):
        total = 0

    pbar = tqdm(total=total or None, desc="Evaluated expressions", unit="expr")
    start_time = time.time()
    pipeline = ExpressionPipeline(evaluator, config, progress=pbar)
    try:
        # both files are open before the pipeline starts
        with open(expressions_file, encoding="utf-8") as source, open(
            output_file, mode="w", encoding="utf-8"
        ) as out:
            await evaluate_stream(
                pipeline,
                read_expressions(source),
                emit=lambda request: write_outcome(request, out),
            )
    finally:
        pbar.close()
    duration = time.time() - start_time

    _log_summary(pipeline.status, duration, f"Results saved to {output_file}")
    return ProcessingStats.from_status(pipeline.status, duration)
