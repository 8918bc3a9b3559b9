# Unlock Throttle
# Exponential backoff for master password attempts.
#
# No persistence: counters reset on restart, matching the lifetime of
# the derived key they protect.

import time
from typing import Callable, Optional

from ..core.config import VaultConfig
from .exceptions import RateLimited


class UnlockThrottle:
    """Failed-attempt counter with exponential backoff.

    - More than FAILURE_WINDOW_SECONDS since the last failure: counter resets.
    - After n failures the next attempt must wait min(30s, 2^(n-1) s),
      measured from the last failure.
    - A rejected attempt does not count as a failure.

    Args:
        clock: Seconds-since-epoch source (time.time); injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.failed_attempts = 0
        self.last_failed_attempt: Optional[float] = None

    def required_wait(self) -> float:
        if self.failed_attempts <= 0:
            return 0.0
        return float(min(VaultConfig.MAX_BACKOFF_SECONDS, 2 ** (self.failed_attempts - 1)))

    def check(self) -> None:
        """Raise RateLimited if an attempt is not allowed right now."""
        if self.last_failed_attempt is None:
            return
        elapsed = self._clock() - self.last_failed_attempt
        if elapsed > VaultConfig.FAILURE_WINDOW_SECONDS:
            self.reset()
            return
        wait = self.required_wait()
        if elapsed < wait:
            raise RateLimited(wait - elapsed)

    def record_failure(self) -> int:
        """Count a wrong password. Returns the new failure count."""
        self.failed_attempts += 1
        self.last_failed_attempt = self._clock()
        return self.failed_attempts

    def reset(self) -> None:
        self.failed_attempts = 0
        self.last_failed_attempt = None
