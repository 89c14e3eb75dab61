"""
calmeval: Calmly evaluate math expressions in bulk, within rate limits.

A Python library for evaluating large batches of expressions through a
remote evaluation API that only allows a fixed number of calls per second:
- Bounded admission queue with backpressure on producers
- Token-bucket rate limiting with requeue or drop on denial
- Fixed worker pool with per-call timeouts
- Every accepted expression ends with exactly one result or typed error

Example:
    >>> from calmeval import PipelineConfig, evaluate_expressions
    >>> from calmeval.evaluators import MathJsEvaluator
    >>>
    >>> result = await evaluate_expressions(
    ...     MathJsEvaluator(),
    ...     ["2 * 4 * 4", "5 / (7 - 5)", "sqrt(5^2 - 4^2)"],
    ...     config=PipelineConfig(external_quota_per_second=50),
    ... )
    >>> for success in result.successes:
    ...     print(f"{success.expression} => {success.result}")
"""

from calmeval.core.engine import (
    ExpressionPipeline,
    evaluate_expressions,
    evaluate_expressions_from_file,
)
from calmeval.core.models import (
    PipelineConfig,
    ProcessingResult,
    ProcessingStats,
    RateLimitPolicy,
    RequestResult,
    RetryConfig,
)
from calmeval.core.request import Outcome, Request
from calmeval.errors import (
    CancelledOnShutdown,
    EvaluationError,
    QueueClosedError,
    RateLimitExceeded,
    ServiceError,
    TransportError,
)
from calmeval.evaluators import BaseEvaluator, get_evaluator, register_evaluator

__version__ = "0.1.0"

__all__ = [
    # Main processing functions
    "evaluate_expressions",
    "evaluate_expressions_from_file",
    "ExpressionPipeline",
    # Configuration models
    "PipelineConfig",
    "RetryConfig",
    "RateLimitPolicy",
    # Result models
    "Request",
    "Outcome",
    "ProcessingResult",
    "ProcessingStats",
    "RequestResult",
    # Errors
    "EvaluationError",
    "RateLimitExceeded",
    "TransportError",
    "ServiceError",
    "CancelledOnShutdown",
    "QueueClosedError",
    # Evaluator interface
    "BaseEvaluator",
    "get_evaluator",
    "register_evaluator",
    # Version
    "__version__",
]
