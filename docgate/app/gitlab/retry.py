"""Retry and pacing policy for GitLab API calls.

The policy decides how long to wait before each attempt and after each
failure. It holds no state of its own; the quota snapshot comes from the
RateLimitTracker passed in.
"""

from dataclasses import dataclass
from typing import Tuple, Type

import httpx

from docgate.app.core.config import settings
from docgate.app.gitlab.rate_limit import RateLimitTracker

MAX_RETRIES = 3


@dataclass
class RetryPolicy:
    """Configuration for pacing, throttling and retry behavior (seconds).

    Attributes:
        max_retries: Retries after the first attempt, for 429s and network errors alike
        request_delay: Pause before every call while the quota looks healthy
        max_throttle_wait: Ceiling on the pre-request wait when quota is nearly exhausted
        reset_margin: Added to the time until reset so the window has really rolled over
        min_429_wait: Floor on the wait after a 429 when the reset time is known
        default_429_wait: Wait after a 429 when no reset time is known
        network_retry_delay: Wait after a transport failure
        retryable_exceptions: Exceptions treated as "no usable response"

    Example:
        >>> policy = RetryPolicy(request_delay=0)
        >>> policy.throttled_retry_delay(tracker)
    """

    max_retries: int = MAX_RETRIES
    request_delay: float = 1.0
    max_throttle_wait: float = 60.0
    reset_margin: float = 1.0
    min_429_wait: float = 1.0
    default_429_wait: float = 60.0
    network_retry_delay: float = 2.0
    retryable_exceptions: Tuple[Type[Exception], ...] = (httpx.RequestError,)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.gitlab_max_retries,
            request_delay=settings.gitlab_request_delay,
            max_throttle_wait=settings.gitlab_max_throttle_wait,
            default_429_wait=settings.gitlab_default_429_wait,
            network_retry_delay=settings.gitlab_network_retry_delay,
        )

    def pre_request_delay(self, tracker: RateLimitTracker, now: float) -> float:
        """Delay before issuing a call.

        Waits for the reset (capped) when the quota is nearly exhausted,
        otherwise the fixed inter-request delay.
        """
        if tracker.should_throttle(now):
            until_reset = tracker.time_until_reset(now) or 0.0
            return min(until_reset + self.reset_margin, self.max_throttle_wait)
        return self.request_delay

    def throttled_retry_delay(self, tracker: RateLimitTracker, now: float) -> float:
        """Delay after a 429 before the next attempt."""
        until_reset = tracker.time_until_reset(now)
        if until_reset is None:
            return self.default_429_wait
        return max(self.min_429_wait, until_reset + self.reset_margin)

    def can_retry(self, attempt: int) -> bool:
        """Whether another attempt is allowed after attempt number ``attempt`` (0-indexed)."""
        return attempt < self.max_retries

    def is_retryable(self, exception: Exception) -> bool:
        return isinstance(exception, self.retryable_exceptions)
