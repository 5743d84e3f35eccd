"""Observability for Spigot."""

from .health import DispatchCheck, HealthCheck, HealthServer, HealthStatus, StorageCheck
from .logging import clear_request_id, configure_logging, get_logger, set_request_id
from .metrics import (
    ADMISSIONS,
    OUTCOMES,
    PAUSED,
    QUEUE_DEPTH,
    REQUEST_DURATION,
    SUBMISSION_DURATION,
    SUBMIT_ATTEMPTS,
    WALLET_BALANCE,
)

__all__ = [
    # Health
    "DispatchCheck",
    "HealthCheck",
    "HealthServer",
    "HealthStatus",
    "StorageCheck",
    # Logging
    "clear_request_id",
    "configure_logging",
    "get_logger",
    "set_request_id",
    # Metrics
    "ADMISSIONS",
    "OUTCOMES",
    "PAUSED",
    "QUEUE_DEPTH",
    "REQUEST_DURATION",
    "SUBMISSION_DURATION",
    "SUBMIT_ATTEMPTS",
    "WALLET_BALANCE",
]
