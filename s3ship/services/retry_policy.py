# s3ship/services/retry_policy.py
from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Callable, Optional


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings. max_attempts counts the first try."""
    max_attempts: int = 5
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay <= 0 or self.max_delay <= 0:
            raise ValueError("delays must be positive")
        if self.multiplier <= 1:
            raise ValueError("multiplier must be greater than 1")

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry n (1 = the wait after the first failed try)."""
        return min(self.base_delay * (self.multiplier ** (retry_number - 1)), self.max_delay)

    def start(self) -> "RetryState":
        return RetryState(attempt=1, next_delay=self.delay_for(1))


@dataclass(frozen=True)
class RetryState:
    attempt: int          # number of the try about to run (1-based)
    next_delay: float     # wait before the following try if this one fails
    slept: float = 0.0    # wait that preceded the current try

    def can_retry(self, policy: RetryPolicy) -> bool:
        return self.attempt < policy.max_attempts

    def advance(self, policy: RetryPolicy) -> "RetryState":
        """Move to the next try after a transient failure."""
        return replace(
            self,
            attempt=self.attempt + 1,
            slept=self.next_delay,
            next_delay=policy.delay_for(self.attempt + 1),
        )


# Sleep returns True when it was interrupted by cancellation
Sleeper = Callable[[float, Optional[threading.Event]], bool]


def event_sleep(delay: float, cancel_event: Optional[threading.Event] = None) -> bool:
    """Block for delay seconds, waking early if cancel_event is set."""
    event = cancel_event if cancel_event is not None else threading.Event()
    return event.wait(delay)


__all__ = ["RetryPolicy", "RetryState", "Sleeper", "event_sleep"]
