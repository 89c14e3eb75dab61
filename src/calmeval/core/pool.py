from __future__ import annotations

import asyncio
from typing import Mapping, Optional

from aiohttp import ClientSession
from loguru import logger

from calmeval.core.request import END_OF_STREAM, Request, _EndOfStream
from calmeval.errors import (
    CancelledOnShutdown,
    EvaluationError,
    TransportError,
)
from calmeval.evaluators.base import BaseEvaluator

"""
Fixed-size pool of worker tasks performing the external calls.

Requests reach the workers through a hand-off queue bounded by the pool
size, so a busy pool pushes back on the dispatcher instead of growing a
second buffer. Each worker completes the outcome of every request it takes,
whatever happens to the call.
"""


class WorkerPool:
    """
    Concurrent executors for admitted requests.

    Args:
        size (int): Number of worker tasks
        evaluator (BaseEvaluator): Client performing the external call
        session (ClientSession): Shared aiohttp session
        call_timeout (float): Seconds allowed per call before it fails with a timeout
        headers (Optional[Mapping[str, str]]): Headers for every call (evaluator defaults if None)
    """

    def __init__(
        self,
        size: int,
        evaluator: BaseEvaluator,
        session: ClientSession,
        call_timeout: float,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        if size < 1:
            raise ValueError("Worker pool size must be at least 1")
        self.size = size
        self.evaluator = evaluator
        self.session = session
        self.call_timeout = call_timeout
        self.headers = dict(headers) if headers is not None else evaluator.build_headers()
        self._handoff: asyncio.Queue[Request | _EndOfStream] = asyncio.Queue(maxsize=size)
        self._workers: list[asyncio.Task[None]] = []
        self._in_flight: dict[int, Request] = {}
        self._closing = False

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"calmeval-worker-{index}")
            for index in range(self.size)
        ]
        logger.debug(f"Started {self.size} workers")

    async def submit(self, request: Request) -> None:
        """Hand a request to the workers, waiting while the hand-off buffer is full."""
        if self._closing:
            raise RuntimeError("Worker pool is shutting down")
        await self._handoff.put(request)

    async def _worker(self, index: int) -> None:
        while True:
            item = await self._handoff.get()
            if item is END_OF_STREAM:
                return
            assert isinstance(item, Request)
            self._in_flight[index] = item
            try:
                await self._execute(item)
            except Exception as e:
                logger.exception(f"Worker {index}: request {item.sequence} escaped error handling")
                if not item.done():
                    item.fail(TransportError(f"{type(e).__name__}: {e}"))
            finally:
                del self._in_flight[index]

    async def _execute(self, request: Request) -> None:
        try:
            value = await asyncio.wait_for(
                self.evaluator.evaluate(self.session, request.text, self.headers),
                timeout=self.call_timeout,
            )
        except asyncio.CancelledError:
            if not request.done():
                request.fail(CancelledOnShutdown("call aborted during shutdown"))
            raise
        except asyncio.TimeoutError:
            request.fail(
                TransportError(f"no response within {self.call_timeout:g}s", timed_out=True)
            )
        except EvaluationError as e:
            request.fail(e)
        except Exception as e:
            # evaluator bug or an exception type it did not translate
            logger.warning(
                f"Request {request.sequence}: unexpected {type(e).__name__} "
                f"from {self.evaluator.name}: {e}"
            )
            request.fail(TransportError(f"{type(e).__name__}: {e}"))
        else:
            request.complete(value)

    async def _send_stop_signals(self) -> None:
        for _ in self._workers:
            await self._handoff.put(END_OF_STREAM)

    async def close(self, grace_seconds: Optional[float] = None) -> None:
        """
        Let workers finish queued and in-flight requests, then stop them.

        Workers still running after ``grace_seconds`` are cancelled; their
        requests, and any still waiting in the hand-off buffer, resolve to
        ``CancelledOnShutdown``.

        Args:
            grace_seconds (Optional[float]): Bound on the wait, None waits indefinitely
        """
        self._closing = True
        if not self._workers:
            self._cancel_handoff()
            return

        feeder = asyncio.create_task(self._send_stop_signals())
        _, pending = await asyncio.wait(self._workers, timeout=grace_seconds)
        if pending:
            logger.warning(
                f"Cancelling {len(pending)} workers still busy after {grace_seconds:g}s grace period"
            )
            feeder.cancel()
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, feeder, return_exceptions=True)
        else:
            await feeder
        self._cancel_handoff()
        self._workers = []

    def _cancel_handoff(self) -> None:
        while True:
            try:
                item = self._handoff.get_nowait()
            except asyncio.QueueEmpty:
                return
            if isinstance(item, Request) and not item.done():
                item.fail(CancelledOnShutdown("not started before shutdown"))
