"""Tests for the submit retry policy."""

import pytest

from spigot.faucet.retry import RetryPolicy


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_exponential_delays(self):
        """Delays grow by the multiplier."""
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=60.0)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_capped(self):
        """No single delay exceeds max_delay."""
        policy = RetryPolicy(base_delay=10.0, multiplier=10.0, max_delay=30.0)
        assert policy.delay_for(3) == 30.0

    def test_should_retry_counts_first_attempt(self):
        """max_attempts includes the first attempt."""
        policy = RetryPolicy(max_attempts=3)
        assert policy.should_retry(1)
        assert policy.should_retry(2)
        assert not policy.should_retry(3)

    def test_single_attempt_never_retries(self):
        """With one attempt there is nothing to retry."""
        policy = RetryPolicy(max_attempts=1)
        assert not policy.should_retry(1)
        assert policy.total_delay() == 0

    def test_total_delay(self):
        """total_delay sums the sleeps between attempts."""
        policy = RetryPolicy(max_attempts=4, base_delay=1.0, multiplier=2.0)
        assert policy.total_delay() == 7.0

    def test_zero_attempts_rejected(self):
        """At least one attempt is required."""
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)
