"""Per-slot retry policy.

Every failure is retried with exponential backoff until the retry budget is
spent. Cancellation is the only thing that short-circuits a retry.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from aster.errors import BatchCancelled

MAX_RETRIES = 3


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of asking the policy about a failed attempt."""

    retry: bool
    wait_s: float = 0.0


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with deterministic exponential backoff."""

    max_retries: int = MAX_RETRIES
    initial_delay_s: float = 1.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_retries < 0:
            raise ValueError("RetryPolicy.max_retries must be >= 0")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("RetryPolicy.backoff_multiplier must be > 0")

    @property
    def max_attempts(self) -> int:
        """Total attempts per slot, including the first one."""
        return self.max_retries + 1

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed *attempt* (1-based)."""
        return self.initial_delay_s * (self.backoff_multiplier ** max(0, attempt - 1))

    def should_retry(self, attempt: int, exc: BaseException) -> RetryDecision:
        """Decide whether failed *attempt* (1-based) should be retried.

        Contract:
        - Cancellation is never retried and never waits.
        - Every other failure kind, safety blocks included, is retried until
          ``max_retries`` retries have been spent.
        """
        if isinstance(exc, (asyncio.CancelledError, BatchCancelled)):
            return RetryDecision(retry=False)
        if attempt > self.max_retries:
            return RetryDecision(retry=False)
        return RetryDecision(retry=True, wait_s=self.backoff_delay(attempt))
