"""Rate limit ledger for Spigot.

Features:
- Rolling window cap on the amount granted per identity
- Reservations count immediately, so concurrent admissions cannot all pass
- Rollback only when no funds can have moved (fail-closed otherwise)
- Durable across restarts when backed by Redis
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal

from spigot.core.models import (
    DispatchOutcome,
    DispenseRequest,
    OutcomeStatus,
    RateLimitRecord,
    RateLimitRejection,
    Reservation,
)
from spigot.core.window import next_eligible_time
from spigot.storage.base import FaucetStore

logger = logging.getLogger(__name__)


@dataclass
class RateLimitUsage:
    """An identity's standing in its current window."""

    identity: str
    amount_in_window: Decimal
    remaining: Decimal
    next_eligible_time: float | None  # None if a grant fits now


class RateLimitLedger:
    """Per-identity rolling-window limits over a FaucetStore.

    Parameters
    ----------
    store : FaucetStore
        Durable backend.
    window_seconds : float
        Length of the rolling window.
    cap : Decimal
        Maximum amount granted per identity within a window.
    grant_amount : Decimal
        Amount of a single grant, used for eligibility queries.
    """

    def __init__(
        self,
        store: FaucetStore,
        window_seconds: float = 86400,
        cap: Decimal = Decimal("1"),
        grant_amount: Decimal = Decimal("1"),
    ):
        if cap < grant_amount:
            raise ValueError("cap must be at least the grant amount")
        self._store = store
        self._window_seconds = window_seconds
        self._cap = cap
        self._grant_amount = grant_amount

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    @property
    def cap(self) -> Decimal:
        return self._cap

    async def check_and_reserve(
        self,
        request: DispenseRequest,
        now: float | None = None,
    ) -> Reservation | RateLimitRejection:
        """Reserve quota for a request if the window allows it.

        Raises
        ------
        StorageUnavailableError
            If the store cannot be reached; no reservation is made.
        """
        now = time.time() if now is None else now
        result = await self._store.reserve(request, self._window_seconds, self._cap, now)
        if isinstance(result, RateLimitRejection):
            logger.info(
                "Rate limit reached",
                extra={
                    "identity": request.identity,
                    "amount_in_window": str(result.amount_in_window),
                    "next_eligible_time": result.next_eligible_time,
                },
            )
        else:
            logger.debug(
                "Quota reserved",
                extra={"identity": request.identity, "request_ref": request.request_ref},
            )
        return result

    async def commit(
        self,
        reservation: Reservation,
        outcome: DispatchOutcome,
        now: float | None = None,
    ) -> None:
        """Finalize a reservation whose grant succeeded."""
        if outcome.status != OutcomeStatus.GRANTED:
            raise ValueError(f"Cannot commit a {outcome.status.value} outcome")
        now = time.time() if now is None else now
        await self._store.commit(reservation, now)

    async def rollback(self, reservation: Reservation, now: float | None = None) -> None:
        """Return a reservation's quota. Only valid when no funds moved."""
        now = time.time() if now is None else now
        await self._store.rollback(reservation, self._window_seconds, now)
        logger.info(
            "Reservation rolled back",
            extra={"identity": reservation.identity, "request_ref": reservation.request_ref},
        )

    async def get_usage(self, identity: str, now: float | None = None) -> RateLimitUsage:
        now = time.time() if now is None else now
        grants = await self._store.grants(identity, self._window_seconds, now)
        used = sum((g.amount for g in grants), Decimal("0"))
        return RateLimitUsage(
            identity=identity,
            amount_in_window=used,
            remaining=max(Decimal("0"), self._cap - used),
            next_eligible_time=next_eligible_time(
                grants, self._grant_amount, self._cap, now, self._window_seconds
            ),
        )

    async def get_record(self, identity: str) -> RateLimitRecord | None:
        return await self._store.get_record(identity)

    async def reset_identity(self, identity: str) -> None:
        """Clear an identity's window (operator action)."""
        await self._store.reset_identity(identity)
        logger.info("Rate limit reset for identity", extra={"identity": identity})
