"""Bounded retry budget shared by the injection readiness checks."""

import asyncio
import logging

logger = logging.getLogger(__name__)


class RetryBudget:
    """Fixed-delay retry counter.

    One budget is consumed across every readiness check of a single script
    command, so the total delay a command can accumulate before it is
    resolved is bounded by ``max_retries * delay``.

    Example:
        budget = RetryBudget(max_retries=10, delay=0.5)
        while not ready():
            if budget.exhausted:
                raise NotReadyError(...)
            await budget.wait()
    """

    def __init__(self, max_retries: int = 10, delay: float = 0.5):
        """Initialize retry budget.

        Args:
            max_retries: Maximum number of retries
            delay: Seconds to sleep before each retry
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.delay = delay
        self.attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_retries

    @property
    def remaining(self) -> int:
        return max(self.max_retries - self.attempts, 0)

    async def wait(self) -> int:
        """Consume one retry and sleep for the backoff delay.

        Returns:
            Number of retries consumed so far

        Raises:
            RuntimeError: If the budget is already exhausted
        """
        if self.exhausted:
            raise RuntimeError(f"Retry budget exhausted after {self.max_retries} retries")
        self.attempts += 1
        await asyncio.sleep(self.delay)
        return self.attempts

    def __repr__(self) -> str:
        return f"RetryBudget(attempts={self.attempts}, max_retries={self.max_retries}, delay={self.delay})"
