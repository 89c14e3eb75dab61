from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from loguru import logger

from calmeval.errors import EvaluationError, OutcomeAlreadySetError

"""
Unit of work flowing through the pipeline.

A ``Request`` carries an immutable expression and a write-once outcome cell
backed by an ``asyncio.Future``. The future always holds an ``Outcome`` value,
never an exception.
"""


class _EndOfStream:
    """Marker telling the dispatcher that no more requests will follow."""

    _instance: _EndOfStream | None = None

    def __new__(cls) -> _EndOfStream:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM: Final = _EndOfStream()


@dataclass(frozen=True)
class Outcome:
    """
    Terminal state of a request: exactly one of ``value`` or ``error`` is set.

    Attributes:
        value (str | None): Result text returned by the evaluator
        error (EvaluationError | None): Failure from the error taxonomy
    """

    value: str | None = None
    error: EvaluationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> str:
        """Return the value, or raise the stored failure."""
        if self.error is not None:
            raise self.error
        return self.value if self.value is not None else ""


class Request:
    """
    An expression awaiting evaluation.

    Attributes:
        text (str): The expression, fixed at construction
        sequence (int | None): Admission order, assigned by the admission queue
        attempts (int): Number of times the dispatcher offered it to the rate limiter
    """

    def __init__(self, text: str) -> None:
        self._text = text
        self.sequence: int | None = None
        self.attempts = 0
        self.created_at = time.monotonic()
        self.completed_at: float | None = None
        self._future: asyncio.Future[Outcome] | None = None
        self._callbacks: list[Callable[[Request], None]] = []

    @property
    def text(self) -> str:
        return self._text

    @property
    def latency(self) -> float | None:
        """Seconds from creation to outcome, None while pending."""
        if self.completed_at is None:
            return None
        return self.completed_at - self.created_at

    def __repr__(self) -> str:
        state = "pending"
        if self.done():
            state = "ok" if self.outcome().ok else "failed"
        return f"Request(sequence={self.sequence}, text={self._text!r}, {state})"

    def _cell(self) -> asyncio.Future[Outcome]:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def add_done_callback(self, callback: Callable[[Request], None]) -> None:
        """Run ``callback(request)`` once the outcome is written (immediately if already done)."""
        if self.done():
            self._run_callback(callback)
        else:
            self._callbacks.append(callback)

    def _resolve(self, outcome: Outcome) -> None:
        cell = self._cell()
        if cell.done():
            raise OutcomeAlreadySetError(f"Outcome of request {self.sequence} is already set")
        cell.set_result(outcome)
        self.completed_at = time.monotonic()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._run_callback(callback)

    def _run_callback(self, callback: Callable[[Request], None]) -> None:
        try:
            callback(self)
        except Exception:
            # a failing observer must not leak into the writer of the outcome
            logger.exception(f"Done callback {callback!r} of request {self.sequence} raised")

    def complete(self, value: str) -> None:
        """Store a successful result. Raises ``OutcomeAlreadySetError`` if already resolved."""
        self._resolve(Outcome(value=value))

    def fail(self, error: EvaluationError) -> None:
        """Store a terminal failure. Raises ``OutcomeAlreadySetError`` if already resolved."""
        self._resolve(Outcome(error=error))

    def outcome(self) -> Outcome:
        """Return the outcome without waiting. Raises ``asyncio.InvalidStateError`` if pending."""
        if self._future is None:
            raise asyncio.InvalidStateError("Request has not completed")
        return self._future.result()

    async def wait(self, timeout: float | None = None) -> Outcome:
        """
        Suspend until the outcome is written.

        Args:
            timeout (float | None): Seconds to wait before giving up; None waits forever

        Returns:
            Outcome: The terminal state of the request

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first. The request itself
                is unaffected and may still complete later.
        """
        # shield so a reader timing out never cancels the shared cell
        return await asyncio.wait_for(asyncio.shield(self._cell()), timeout)
