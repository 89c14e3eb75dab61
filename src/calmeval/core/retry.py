from __future__ import annotations

import random
from dataclasses import dataclass

from calmeval.core.models import RetryConfig

"""
Exponential backoff with jitter for requeued requests.

The dispatcher re-offers a rate-limited request to the limiter after the
delay computed here. The delay can be floored at the limiter's own estimate
of when the next admission frees up, so retries are not wasted on a bucket
that is known to still be empty.
"""


@dataclass
class Backoff:
    """
    Exponential backoff calculator with jitter.

    Attributes:
        base_delay_seconds (float): Delay for the first retry
        max_delay_seconds (float): Maximum delay (caps exponential growth)
        jitter (float): Random variation factor (0.0-1.0)
    """

    base_delay_seconds: float = 0.05
    max_delay_seconds: float = 1.0
    jitter: float = 0.1

    @classmethod
    def from_config(cls, config: RetryConfig) -> Backoff:
        return cls(
            base_delay_seconds=config.base_delay_seconds,
            max_delay_seconds=config.max_delay_seconds,
            jitter=config.jitter,
        )

    def compute_delay(self, attempt_index: int, minimum: float = 0.0) -> float:
        """
        Calculate the delay before retry number ``attempt_index``.

        Delay = max(minimum, min(max_delay, base_delay * 2^attempt_index) +/- jitter)

        Args:
            attempt_index (int): Zero-based retry number
            minimum (float): Lower bound, e.g. time until the limiter can grant again

        Returns:
            float: Delay in seconds (always >= 0)
        """
        delay = min(self.max_delay_seconds, self.base_delay_seconds * (2**attempt_index))
        # jitter in range [-jitter, +jitter] proportionally
        noise = delay * self.jitter * (2 * random.random() - 1)
        return max(0.0, minimum, delay + noise)
