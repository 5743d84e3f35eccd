"""Retry policy for ledger submissions."""

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with an attempt ceiling.

    Attributes
    ----------
    max_attempts : int
        Total submit attempts, including the first.
    base_delay : float
        Delay after the first failed attempt, in seconds.
    multiplier : float
        Factor applied to the delay after each further failure.
    max_delay : float
        Upper bound for a single delay, in seconds.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-indexed).

        >>> RetryPolicy(base_delay=1.0, multiplier=2.0).delay_for(3)
        4.0
        """
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def total_delay(self) -> float:
        """Worst-case time spent sleeping between attempts."""
        return sum(self.delay_for(n) for n in range(1, self.max_attempts))
