"""Tracking of the GitLab API quota reported in response headers.

GitLab reports its quota through ``RateLimit-Remaining``,
``RateLimit-Reset`` (epoch seconds) and ``RateLimit-Limit``. The tracker
keeps the last values seen. It is shared by every in-flight request and
updated without locking, so ``remaining`` is a hint, not a counter.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from docgate.app.core.logging import get_logger

logger = get_logger(__name__)

REMAINING_HEADER = "ratelimit-remaining"
RESET_HEADER = "ratelimit-reset"
LIMIT_HEADER = "ratelimit-limit"

# GitLab default for authenticated requests
DEFAULT_LIMIT = 2000


@dataclass
class RateLimitState:
    """Last known quota snapshot.

    Attributes:
        remaining: Requests left in the current window
        reset_time: When the window resets (epoch seconds), if known
        limit: Size of the window
    """

    remaining: int = DEFAULT_LIMIT
    reset_time: Optional[float] = None
    limit: int = DEFAULT_LIMIT


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


class RateLimitTracker:
    """Holds a RateLimitState and interprets it.

    One tracker is owned by whoever builds the GitLab client; pass the same
    tracker to every client that talks to the same GitLab instance.
    """

    def __init__(
        self,
        state: Optional[RateLimitState] = None,
        throttle_threshold: int = 5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state = state or RateLimitState()
        self.throttle_threshold = throttle_threshold
        self._clock = clock

    def observe(self, headers: Mapping[str, str]) -> None:
        """Update the snapshot from whichever rate-limit headers are present.

        Header lookup is case-insensitive. Missing or malformed headers
        leave the previous value in place.
        """
        lowered = {str(k).lower(): v for k, v in headers.items()}

        remaining = _parse_int(lowered.get(REMAINING_HEADER))
        if remaining is not None:
            self.state.remaining = max(remaining, 0)

        reset = _parse_int(lowered.get(RESET_HEADER))
        if reset is not None:
            self.state.reset_time = float(reset)

        limit = _parse_int(lowered.get(LIMIT_HEADER))
        if limit is not None and limit > 0:
            self.state.limit = limit

        logger.info(
            f"GitLab API rate limit: {self.state.remaining}/{self.state.limit} remaining, "
            f"resets at {self._format_reset()}"
        )

    def time_until_reset(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds until the quota window resets, or None when unknown."""
        if self.state.reset_time is None:
            return None
        if now is None:
            now = self._clock()
        return self.state.reset_time - now

    def should_throttle(self, now: Optional[float] = None) -> bool:
        """True when quota is nearly exhausted and the reset is still ahead."""
        if self.state.remaining >= self.throttle_threshold:
            return False
        until_reset = self.time_until_reset(now)
        return until_reset is not None and until_reset > 0

    def _format_reset(self) -> str:
        if self.state.reset_time is None:
            return "unknown"
        return datetime.fromtimestamp(self.state.reset_time, tz=timezone.utc).isoformat()
