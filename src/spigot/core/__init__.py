"""Core Spigot types."""

from .models import (
    AdmissionResult,
    Denied,
    DenialReason,
    DispatchOutcome,
    DispatchRecord,
    DispatchState,
    DispenseRequest,
    Enqueued,
    OutcomeStatus,
    RateLimitRecord,
    RateLimitRejection,
    Reservation,
)
from .window import Grant

__all__ = [
    "AdmissionResult",
    "Denied",
    "DenialReason",
    "DispatchOutcome",
    "DispatchRecord",
    "DispatchState",
    "DispenseRequest",
    "Enqueued",
    "Grant",
    "OutcomeStatus",
    "RateLimitRecord",
    "RateLimitRejection",
    "Reservation",
]
