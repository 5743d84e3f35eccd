"""In-memory store for development and testing.

State lives only as long as the process; a single asyncio lock makes each
operation atomic within that process.
"""

import asyncio
import logging
from dataclasses import replace
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
from spigot.core.window import Grant, in_window, next_eligible_time

from .base import FaucetStore

logger = logging.getLogger(__name__)


class MemoryStore(FaucetStore):
    """Process-local FaucetStore."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._grants: dict[str, list[Grant]] = {}
        self._records: dict[str, RateLimitRecord] = {}
        self._dispatch: dict[str, DispatchRecord] = {}
        self._paused: str | None = None

    def _refresh_record(self, identity: str, window_seconds: float, now: float) -> None:
        current = in_window(self._grants.get(identity, []), now, window_seconds)
        self._grants[identity] = current
        record = self._records.get(identity)
        if record is None:
            record = RateLimitRecord(
                identity=identity,
                window_start=None,
                amount_in_window=Decimal("0"),
                last_grant_time=None,
            )
            self._records[identity] = record
        record.window_start = current[0].granted_at if current else None
        record.amount_in_window = sum((g.amount for g in current), Decimal("0"))

    async def reserve(
        self,
        request: DispenseRequest,
        window_seconds: float,
        cap: Decimal,
        now: float,
    ) -> Reservation | RateLimitRejection:
        async with self._lock:
            current = in_window(self._grants.get(request.identity, []), now, window_seconds)
            eligible_at = next_eligible_time(current, request.amount, cap, now, window_seconds)
            if eligible_at is not None:
                return RateLimitRejection(
                    identity=request.identity,
                    amount_in_window=sum((g.amount for g in current), Decimal("0")),
                    next_eligible_time=eligible_at,
                )

            current.append(Grant(request.request_ref, request.amount, now))
            self._grants[request.identity] = current
            self._refresh_record(request.identity, window_seconds, now)
            self._dispatch[request.request_ref] = DispatchRecord(
                request_ref=request.request_ref,
                identity=request.identity,
                destination=request.destination,
                amount=request.amount,
                state=DispatchState.QUEUED,
                created_at=request.created_at,
                channel=request.channel,
            )
            return Reservation(
                request_ref=request.request_ref,
                identity=request.identity,
                amount=request.amount,
                reserved_at=now,
            )

    async def commit(self, reservation: Reservation, now: float) -> None:
        async with self._lock:
            record = self._records.get(reservation.identity)
            if record is not None:
                record.last_grant_time = now

    async def rollback(self, reservation: Reservation, window_seconds: float, now: float) -> None:
        async with self._lock:
            grants = self._grants.get(reservation.identity, [])
            self._grants[reservation.identity] = [
                g for g in grants if g.request_ref != reservation.request_ref
            ]
            self._refresh_record(reservation.identity, window_seconds, now)

    async def grants(self, identity: str, window_seconds: float, now: float) -> list[Grant]:
        async with self._lock:
            return in_window(self._grants.get(identity, []), now, window_seconds)

    async def get_record(self, identity: str) -> RateLimitRecord | None:
        async with self._lock:
            record = self._records.get(identity)
            return replace(record) if record else None

    async def reset_identity(self, identity: str) -> None:
        async with self._lock:
            self._grants.pop(identity, None)
            self._records.pop(identity, None)

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
        async with self._lock:
            row = self._dispatch.get(request_ref)
            if row is None:
                raise KeyError(f"Unknown request: {request_ref}")
            row.state = state
            if tx_ref is not None:
                row.tx_ref = tx_ref
            if outcome is not None:
                row.outcome = outcome
            if error is not None:
                row.error = error
            if closed_at is not None:
                row.closed_at = closed_at

    async def get_dispatch(self, request_ref: str) -> DispatchRecord | None:
        async with self._lock:
            row = self._dispatch.get(request_ref)
            return replace(row) if row else None

    async def open_dispatches(self) -> list[DispatchRecord]:
        async with self._lock:
            rows = [replace(r) for r in self._dispatch.values() if r.is_open]
        return sorted(rows, key=lambda r: r.created_at)

    async def get_paused(self) -> str | None:
        return self._paused

    async def set_paused(self, reason: str) -> None:
        self._paused = reason

    async def clear_paused(self) -> None:
        self._paused = None

    async def ping(self) -> bool:
        return True
