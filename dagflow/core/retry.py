"""
Retry policy for failed task executions.

A failed run increments ``retry_count``. While the count stays within
``max_retries`` the task goes to RETRYING and becomes eligible again at
``next_retry_at``. Once the count exceeds ``max_retries`` the task is
FAILED for good.

The delay is ``retry_delay * backoff_multiplier ** (attempt - 1)`` capped at
``max_delay``. With the default multiplier of 1.0 it is a fixed delay. An
optional jitter adds up to ``jitter * delay`` seconds, still within
``max_delay``, so executors that failed together do not retry in lockstep.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta

from dagflow import config
from dagflow.core.models import TaskState


@dataclass(frozen=True)
class RetryDecision:
    state: TaskState
    retry_count: int
    error: str
    next_retry_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state == TaskState.FAILED


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    retry_delay: float = 10.0
    backoff_multiplier: float = 1.0
    max_delay: float = 300.0
    jitter: float = 0.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be >= 0")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")
        if self.jitter < 0:
            raise ValueError("jitter must be >= 0")

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        return cls(
            max_retries=config.MAX_RETRIES,
            retry_delay=config.RETRY_DELAY,
            backoff_multiplier=config.RETRY_BACKOFF,
            max_delay=config.RETRY_MAX_DELAY,
            jitter=config.RETRY_JITTER,
        )

    def base_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (1-indexed), without jitter."""
        exponent = max(attempt - 1, 0)
        return min(self.retry_delay * self.backoff_multiplier**exponent, self.max_delay)

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay(attempt)
        if self.jitter:
            delay = min(delay + random.uniform(0, self.jitter * delay), self.max_delay)
        return delay

    def on_failure(
        self,
        retry_count: int,
        error: str,
        now: datetime,
        max_retries: int | None = None,
    ) -> RetryDecision:
        limit = self.max_retries if max_retries is None else max_retries
        attempt = retry_count + 1

        if attempt > limit:
            return RetryDecision(
                state=TaskState.FAILED,
                retry_count=attempt,
                error=error,
                completed_at=now,
            )

        return RetryDecision(
            state=TaskState.RETRYING,
            retry_count=attempt,
            error=error,
            next_retry_at=now + timedelta(seconds=self.delay_for(attempt)),
        )
