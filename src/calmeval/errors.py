from __future__ import annotations

"""
Error taxonomy for expression evaluation.

Every failure a request can end in is an ``EvaluationError`` subclass. These
are never raised out of the pipeline: workers and the dispatcher capture them
and store them in the request's outcome so a single failure cannot stop the
rest of the batch.
"""


class EvaluationError(Exception):
    """Base class for terminal request failures."""

    kind: str = "evaluation_error"

    def __str__(self) -> str:
        message = super().__str__()
        return f"{self.kind}: {message}" if message else self.kind


class RateLimitExceeded(EvaluationError):
    """Admission denied by the rate limiter (policy=drop or retries exhausted)."""

    kind = "rate_limit_exceeded"

    def __init__(self, message: str = "", attempts: int = 1) -> None:
        super().__init__(message)
        self.attempts = attempts


class TransportError(EvaluationError):
    """
    The external service could not be reached.

    Attributes:
        timed_out (bool): True when the call exceeded its timeout
    """

    kind = "transport_error"

    def __init__(self, message: str = "", timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


class ServiceError(EvaluationError):
    """
    The external service answered with a non-success status.

    Attributes:
        status_code (int): HTTP status returned by the service
        body (str): Response body, usually the service's error message
        rate_limited (bool): The evaluator recognised the response as throttling
    """

    kind = "service_error"

    def __init__(self, status_code: int, body: str = "", rate_limited: bool = False) -> None:
        super().__init__(f"HTTP {status_code}" + (f" {body}" if body else ""))
        self.status_code = status_code
        self.body = body
        self.rate_limited = rate_limited

    @property
    def is_rate_limited(self) -> bool:
        return self.rate_limited or self.status_code == 429


class CancelledOnShutdown(EvaluationError):
    """The request was still pending or in flight when the pipeline was torn down."""

    kind = "cancelled_on_shutdown"


class QueueClosedError(RuntimeError):
    """Raised when a request is enqueued after end-of-stream was signalled."""


class OutcomeAlreadySetError(RuntimeError):
    """Raised on a second attempt to complete a request's outcome."""
