from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class RateLimitPolicy(str, Enum):
    """What the dispatcher does with a request the rate limiter denies."""

    DROP = "drop"
    REQUEUE = "requeue"


@dataclass
class RetryConfig:
    """
    Backoff used when a rate-limited request is re-offered to the limiter.

    Attributes:
        base_delay_seconds (float): Initial delay before the first retry
        max_delay_seconds (float): Maximum delay between retries (caps exponential growth)
        jitter (float): Random variation factor (0.0-1.0) to prevent synchronized retries
    """

    base_delay_seconds: float = 0.05
    max_delay_seconds: float = 1.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("Backoff delays must be non-negative")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be within [0, 1], got {self.jitter}")


@dataclass
class PipelineConfig:
    """
    Configuration for the evaluation pipeline.

    Attributes:
        external_quota_per_second (float): Calls per second the external service allows;
            becomes the rate limiter capacity
        desired_peak_throughput_per_second (float): Upper bound on useful worker concurrency
        admission_queue_capacity (int): Pending requests buffered before producers block
        call_timeout (float): Seconds allowed for a single external call
        max_retries_on_rate_limit (int): Requeue attempts before a request is rejected
        rate_limit_policy (RateLimitPolicy): ``requeue`` (default) or ``drop``
        shutdown_grace_seconds (float): How long shutdown waits for in-flight work
        rate_limit_cooldown_seconds (float): Admission pause after the service answers 429
        retry (RetryConfig): Backoff settings for requeued requests
    """

    external_quota_per_second: float = 50
    desired_peak_throughput_per_second: float = 500
    admission_queue_capacity: int = 1000
    call_timeout: float = 5.0
    max_retries_on_rate_limit: int = 5
    rate_limit_policy: RateLimitPolicy = RateLimitPolicy.REQUEUE
    shutdown_grace_seconds: float = 60.0
    rate_limit_cooldown_seconds: float = 1.0
    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        self.rate_limit_policy = RateLimitPolicy(self.rate_limit_policy)
        if self.external_quota_per_second < 1:
            raise ValueError("external_quota_per_second must be at least 1")
        if self.desired_peak_throughput_per_second <= 0:
            raise ValueError("desired_peak_throughput_per_second must be positive")
        if self.admission_queue_capacity < 1:
            raise ValueError("admission_queue_capacity must be at least 1")
        if self.call_timeout <= 0:
            raise ValueError("call_timeout must be positive")
        if self.max_retries_on_rate_limit < 0:
            raise ValueError("max_retries_on_rate_limit must be non-negative")
        if self.shutdown_grace_seconds < 0:
            raise ValueError("shutdown_grace_seconds must be non-negative")
        if self.rate_limit_cooldown_seconds < 0:
            raise ValueError("rate_limit_cooldown_seconds must be non-negative")

    @property
    def pool_size(self) -> int:
        """Worker count: concurrency beyond the external quota would only idle."""
        return max(
            1, int(min(self.external_quota_per_second, self.desired_peak_throughput_per_second))
        )


@dataclass
class StatusTracker:
    """
    Tracks metrics and status while the pipeline runs.

    One instance per pipeline, read by the dispatcher for the 429 cool-off. All updates
    happen on the event loop thread.

    Attributes:
        num_tasks_started (int): Requests admitted into the queue
        num_tasks_in_progress (int): Requests without a terminal outcome yet
        num_tasks_succeeded (int): Requests completed with a result
        num_tasks_failed (int): Requests completed with any failure
        num_rate_limit_rejections (int): Requests rejected by the local rate limiter
        num_service_rate_limit_errors (int): 429 responses from the external service
        num_service_errors (int): Other non-success responses
        num_transport_errors (int): Connection failures and timeouts
        num_cancelled (int): Requests cancelled during shutdown
        time_of_last_rate_limit_error (float): Monotonic time of the most recent 429
    """

    num_tasks_started: int = 0
    num_tasks_in_progress: int = 0
    num_tasks_succeeded: int = 0
    num_tasks_failed: int = 0
    num_rate_limit_rejections: int = 0
    num_service_rate_limit_errors: int = 0
    num_service_errors: int = 0
    num_transport_errors: int = 0
    num_cancelled: int = 0
    time_of_last_rate_limit_error: float = float("-inf")


@dataclass
class RequestResult:
    """
    Final state of one expression.

    Attributes:
        sequence (int): Admission order of the request
        expression (str): The submitted expression
        result (str | None): Value returned by the evaluator, None on failure
        error (str | None): Rendered failure, None on success
        error_kind (str | None): Taxonomy kind of the failure
    """

    sequence: int
    expression: str
    result: str | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ProcessingStats:
    total_requests: int
    successful: int
    failed: int
    rate_limit_rejections: int
    service_rate_limit_errors: int
    service_errors: int
    transport_errors: int
    cancelled: int
    duration_seconds: float

    @classmethod
    def from_status(cls, status: StatusTracker, duration: float) -> ProcessingStats:
        return cls(
            total_requests=status.num_tasks_started,
            successful=status.num_tasks_succeeded,
            failed=status.num_tasks_failed,
            rate_limit_rejections=status.num_rate_limit_rejections,
            service_rate_limit_errors=status.num_service_rate_limit_errors,
            service_errors=status.num_service_errors,
            transport_errors=status.num_transport_errors,
            cancelled=status.num_cancelled,
            duration_seconds=duration,
        )


@dataclass
class ProcessingResult:
    """
    In-memory result of a bulk evaluation.

    Attributes:
        successes (list[RequestResult]): Requests that produced a value
        failures (list[RequestResult]): Requests that ended in a failure
        stats (ProcessingStats): Summary counters for the run
    """

    successes: list[RequestResult]
    failures: list[RequestResult]
    stats: ProcessingStats
