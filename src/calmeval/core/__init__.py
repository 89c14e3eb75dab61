"""Core pipeline: admission queue, rate limiter, dispatcher and worker pool."""

from calmeval.core.admission import AdmissionQueue
from calmeval.core.dispatcher import Dispatcher
from calmeval.core.engine import (
    ExpressionPipeline,
    evaluate_expressions,
    evaluate_expressions_from_file,
    evaluate_stream,
)
from calmeval.core.models import (
    PipelineConfig,
    ProcessingResult,
    ProcessingStats,
    RateLimitPolicy,
    RequestResult,
    RetryConfig,
    StatusTracker,
)
from calmeval.core.pool import WorkerPool
from calmeval.core.rate_limit import RateLimiter, TokenBucket
from calmeval.core.request import END_OF_STREAM, Outcome, Request
from calmeval.core.retry import Backoff

__all__ = [
    # Processing functions
    "evaluate_expressions",
    "evaluate_expressions_from_file",
    "evaluate_stream",
    "ExpressionPipeline",
    # Pipeline components
    "AdmissionQueue",
    "Dispatcher",
    "WorkerPool",
    "RateLimiter",
    "TokenBucket",
    "Backoff",
    # Requests
    "Request",
    "Outcome",
    "END_OF_STREAM",
    # Configuration models
    "PipelineConfig",
    "RetryConfig",
    "RateLimitPolicy",
    # Result models
    "ProcessingResult",
    "ProcessingStats",
    "RequestResult",
    "StatusTracker",
]
