"""Prometheus metrics for Spigot.

Metrics:
- spigot_admissions_total: Counter of admission decisions by result
- spigot_outcomes_total: Counter of dispatch outcomes by status
- spigot_submit_attempts_total: Counter of ledger submit attempts by result
- spigot_queue_depth: Gauge of requests waiting for the dispatch worker
- spigot_paused: Gauge set to 1 while dispatch is paused
- spigot_wallet_balance: Gauge of the faucet wallet balance
- spigot_submission_duration_seconds: Histogram of build+broadcast time
- spigot_request_duration_seconds: Histogram of admission-to-outcome time
"""

from prometheus_client import Counter, Gauge, Histogram

# Counters
ADMISSIONS = Counter(
    "spigot_admissions_total",
    "Admission decisions",
    ["result"],
)

OUTCOMES = Counter(
    "spigot_outcomes_total",
    "Dispatch outcomes",
    ["status"],
)

SUBMIT_ATTEMPTS = Counter(
    "spigot_submit_attempts_total",
    "Ledger submit attempts",
    ["result"],
)

# Gauges
QUEUE_DEPTH = Gauge(
    "spigot_queue_depth",
    "Requests waiting in the dispatch queue",
)

PAUSED = Gauge(
    "spigot_paused",
    "1 while dispatch is paused by a fatal fault",
)

WALLET_BALANCE = Gauge(
    "spigot_wallet_balance",
    "Faucet wallet balance",
)

# Histograms
SUBMISSION_DURATION = Histogram(
    "spigot_submission_duration_seconds",
    "Time spent building and broadcasting a transfer",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

REQUEST_DURATION = Histogram(
    "spigot_request_duration_seconds",
    "Time from admission to final outcome",
    ["status"],
    buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)
