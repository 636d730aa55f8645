"""Retry policy and backoff computation for step actions."""

import math
import random
from collections.abc import Callable
from dataclasses import dataclass, field

from ..models import CommandResult, ErrorKind


def compute_backoff(
    attempt: int,
    base: float = 2.0,
    multiplier: float = 2.0,
    max_delay: float = 60.0,
    jitter: float = 0.5,
) -> float:
    """Compute exponential backoff with jitter.

    Args:
        attempt: Attempt that just failed (1-indexed)
        base: Delay after the first failure
        multiplier: Growth factor per attempt
        max_delay: Upper bound before jitter
        jitter: Maximum random seconds added

    Returns:
        Seconds to wait before the next attempt
    """
    delay = min(max_delay, base * multiplier ** max(attempt - 1, 0))
    return delay + random.uniform(0, jitter) if jitter > 0 else delay


@dataclass(frozen=True)
class RetryPolicy:
    """How many times a step action may run and how failures are classified.

    Attributes:
        max_attempts: Upper bound on action attempts (>= 1).
        base_delay: Backoff after the first failed attempt.
        multiplier: Exponential growth factor (1.0 gives a constant interval).
        max_delay: Cap on the computed delay.
        jitter: Random seconds added to each delay.
        success_exit_codes: Nonzero exit codes that still count as success.
        fatal_exit_codes: Exit codes that are never retried.
        classify: Optional override mapping a failed result to an ErrorKind.
    """

    max_attempts: int = 1
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.5
    success_exit_codes: frozenset[int] = field(default_factory=frozenset)
    fatal_exit_codes: frozenset[int] = field(default_factory=frozenset)
    classify: Callable[[CommandResult], ErrorKind] | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def fixed(cls, interval: float, timeout: float) -> "RetryPolicy":
        """Constant-interval polling bounded by a total time budget."""
        attempts = max(1, math.ceil(timeout / interval)) if interval > 0 else 1
        return cls(
            max_attempts=attempts,
            base_delay=interval,
            multiplier=1.0,
            max_delay=interval,
            jitter=0.0,
        )

    def is_success(self, result: CommandResult) -> bool:
        if result.timed_out or result.cancelled:
            return False
        return result.exit_code == 0 or result.exit_code in self.success_exit_codes

    def classify_failure(self, result: CommandResult) -> ErrorKind:
        """Classify a failed result; nonzero exits are transient unless listed fatal."""
        if result.cancelled:
            return ErrorKind.CANCELLED
        if result.timed_out:
            return ErrorKind.TIMEOUT
        if self.classify is not None:
            return self.classify(result)
        if result.exit_code in self.fatal_exit_codes:
            return ErrorKind.FATAL
        return ErrorKind.TRANSIENT

    def is_retryable(self, kind: ErrorKind) -> bool:
        return kind in (ErrorKind.TRANSIENT, ErrorKind.TIMEOUT)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after ``attempt`` failed."""
        return compute_backoff(
            attempt,
            base=self.base_delay,
            multiplier=self.multiplier,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )


NO_RETRY = RetryPolicy()
