"""Durable state for the dispatch core.

Two logical tables back the faucet:
- rate_limit_records: per-identity rolling window bookkeeping
- dispatch_log: one row per admitted request, the crash-recovery source of truth

Every method that touches more than one table is a single atomic operation.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from spigot.core.models import (
    DispatchRecord,
    DispatchState,
    DispenseRequest,
    OutcomeStatus,
    RateLimitRecord,
    RateLimitRejection,
    Reservation,
)
from spigot.core.window import Grant


class StorageUnavailableError(Exception):
    """The storage backend could not be reached or failed mid-operation."""


class FaucetStore(ABC):
    """Storage backend for rate-limit state and the dispatch log."""

    @abstractmethod
    async def reserve(
        self,
        request: DispenseRequest,
        window_seconds: float,
        cap: Decimal,
        now: float,
    ) -> Reservation | RateLimitRejection:
        """Check the window cap and, if it allows, reserve quota for the request.

        The reservation and the ``queued`` dispatch-log row are written in the
        same atomic operation.
        """
        ...

    @abstractmethod
    async def commit(self, reservation: Reservation, now: float) -> None:
        """Mark a reservation as a completed grant."""
        ...

    @abstractmethod
    async def rollback(self, reservation: Reservation, window_seconds: float, now: float) -> None:
        """Remove a reservation's contribution to the window."""
        ...

    @abstractmethod
    async def grants(self, identity: str, window_seconds: float, now: float) -> list[Grant]:
        """Grants currently inside the identity's window, oldest first."""
        ...

    @abstractmethod
    async def get_record(self, identity: str) -> RateLimitRecord | None:
        ...

    @abstractmethod
    async def reset_identity(self, identity: str) -> None:
        """Drop all rate-limit state for an identity."""
        ...

    @abstractmethod
    async def update_dispatch(
        self,
        request_ref: str,
        state: DispatchState,
        *,
        tx_ref: str | None = None,
        outcome: OutcomeStatus | None = None,
        error: str | None = None,
        closed_at: float | None = None,
    ) -> None:
        """Record a state transition for a dispatch-log row.

        Fields passed as None keep their stored value.
        """
        ...

    @abstractmethod
    async def get_dispatch(self, request_ref: str) -> DispatchRecord | None:
        ...

    @abstractmethod
    async def open_dispatches(self) -> list[DispatchRecord]:
        """All rows not yet closed, in admission order."""
        ...

    @abstractmethod
    async def get_paused(self) -> str | None:
        """Return the pause reason, or None if the faucet is not paused."""
        ...

    @abstractmethod
    async def set_paused(self, reason: str) -> None:
        ...

    @abstractmethod
    async def clear_paused(self) -> None:
        ...

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the backend is reachable."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None
