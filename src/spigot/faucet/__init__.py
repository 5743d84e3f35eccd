"""Dispatch core for Spigot."""

from .admission import RequestAdmission
from .dispatcher import DispatchQueue
from .outcomes import OutcomeBus
from .rate_limiter import RateLimitLedger, RateLimitUsage
from .retry import RetryPolicy
from .service import FaucetService, FaucetStatus, create_faucet_service

__all__ = [
    "DispatchQueue",
    "FaucetService",
    "FaucetStatus",
    "OutcomeBus",
    "RateLimitLedger",
    "RateLimitUsage",
    "RequestAdmission",
    "RetryPolicy",
    "create_faucet_service",
]
