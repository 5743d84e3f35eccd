"""Tests for Prometheus metrics."""

from prometheus_client import REGISTRY

from spigot.observability.metrics import (
    ADMISSIONS,
    OUTCOMES,
    PAUSED,
    QUEUE_DEPTH,
    REQUEST_DURATION,
    SUBMISSION_DURATION,
    SUBMIT_ATTEMPTS,
    WALLET_BALANCE,
)


class TestMetrics:
    """Tests for Prometheus metrics."""

    def test_admissions_counter_labels(self):
        """ADMISSIONS counter is labelled by result."""
        initial = REGISTRY.get_sample_value(
            "spigot_admissions_total", {"result": "rate_limited"}
        ) or 0

        ADMISSIONS.labels(result="rate_limited").inc()

        sample = REGISTRY.get_sample_value("spigot_admissions_total", {"result": "rate_limited"})
        assert sample == initial + 1

    def test_outcomes_counter(self):
        """OUTCOMES counter is labelled by status."""
        OUTCOMES.labels(status="granted").inc()

        sample = REGISTRY.get_sample_value("spigot_outcomes_total", {"status": "granted"})
        assert sample is not None
        assert sample >= 1

    def test_submit_attempts_counter(self):
        """SUBMIT_ATTEMPTS counter is labelled by result."""
        SUBMIT_ATTEMPTS.labels(result="transient").inc()

        sample = REGISTRY.get_sample_value(
            "spigot_submit_attempts_total", {"result": "transient"}
        )
        assert sample is not None
        assert sample >= 1

    def test_gauges(self):
        """Queue depth, pause and balance gauges hold their last value."""
        QUEUE_DEPTH.set(7)
        PAUSED.set(1)
        WALLET_BALANCE.set(500.5)

        assert REGISTRY.get_sample_value("spigot_queue_depth") == 7
        assert REGISTRY.get_sample_value("spigot_paused") == 1
        assert REGISTRY.get_sample_value("spigot_wallet_balance") == 500.5
        PAUSED.set(0)

    def test_submission_duration_histogram(self):
        """SUBMISSION_DURATION records observations."""
        initial = REGISTRY.get_sample_value("spigot_submission_duration_seconds_count") or 0

        SUBMISSION_DURATION.observe(1.5)

        count = REGISTRY.get_sample_value("spigot_submission_duration_seconds_count")
        assert count == initial + 1

    def test_request_duration_histogram(self):
        """REQUEST_DURATION is labelled by outcome status."""
        REQUEST_DURATION.labels(status="failed").observe(42.0)

        count = REGISTRY.get_sample_value(
            "spigot_request_duration_seconds_count", {"status": "failed"}
        )
        assert count is not None
        assert count >= 1
