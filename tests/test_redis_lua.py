"""Tests for the Redis store's Lua scripts, run against fakeredis."""

import asyncio
from decimal import Decimal

import fakeredis
import pytest

from spigot.core.models import (
    DispatchState,
    DispenseRequest,
    OutcomeStatus,
    RateLimitRejection,
    Reservation,
)
from spigot.storage.redis_store import RedisStore

ADDRESS = "0x742d35Cc6634C0532925a3b844Bc9e7595f8fE00"
NOW = 1_700_000_000.0
WINDOW = 86400.0


@pytest.fixture
async def store():
    """RedisStore over a private in-process Redis with Lua support."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    store = RedisStore("redis://fakeredis", client=client)
    yield store
    await store.close()


def make_request(identity: str = "U123", now: float = NOW) -> DispenseRequest:
    return DispenseRequest.create(identity, ADDRESS, Decimal("1"), now, channel="C1")


async def reserve(store, identity="U123", now=NOW, cap=Decimal("2")):
    return await store.reserve(make_request(identity, now), WINDOW, cap, now)


class TestReserveScript:
    """Tests for the atomic reservation."""

    @pytest.mark.asyncio
    async def test_reserve_up_to_cap(self, store):
        """Reservations succeed until the cap is reached."""
        first = await reserve(store, now=NOW)
        second = await reserve(store, now=NOW + 10)
        third = await reserve(store, now=NOW + 20)

        assert isinstance(first, Reservation)
        assert isinstance(second, Reservation)
        assert isinstance(third, RateLimitRejection)
        assert third.amount_in_window == Decimal("2")

    @pytest.mark.asyncio
    async def test_rejection_reports_next_eligible_time(self, store):
        """The next eligible time is when the oldest grant leaves the window."""
        await reserve(store, now=NOW)
        await reserve(store, now=NOW + 100)

        rejection = await reserve(store, now=NOW + 200)

        assert isinstance(rejection, RateLimitRejection)
        assert rejection.next_eligible_time == NOW + WINDOW

    @pytest.mark.asyncio
    async def test_identities_are_independent(self, store):
        """One identity at its cap does not limit another."""
        await reserve(store, "U1", cap=Decimal("1"))

        assert isinstance(await reserve(store, "U1", cap=Decimal("1")), RateLimitRejection)
        assert isinstance(await reserve(store, "U2", cap=Decimal("1")), Reservation)

    @pytest.mark.asyncio
    async def test_reservation_writes_queued_row(self, store):
        """The dispatch-log row is created with the reservation."""
        request = make_request()

        await store.reserve(request, WINDOW, Decimal("1"), NOW)

        row = await store.get_dispatch(request.request_ref)
        assert row.state == DispatchState.QUEUED
        assert row.identity == "U123"
        assert row.amount == Decimal("1")
        assert row.channel == "C1"
        assert [r.request_ref for r in await store.open_dispatches()] == [request.request_ref]
        record = await store.get_record("U123")
        assert record.amount_in_window == Decimal("1")
        assert record.window_start == NOW

    @pytest.mark.asyncio
    async def test_rejected_request_writes_no_row(self, store):
        """A rejected request leaves no trace in the dispatch log."""
        await reserve(store, cap=Decimal("1"))
        request = make_request(now=NOW + 1)

        result = await store.reserve(request, WINDOW, Decimal("1"), NOW + 1)

        assert isinstance(result, RateLimitRejection)
        assert await store.get_dispatch(request.request_ref) is None
        assert len(await store.open_dispatches()) == 1

    @pytest.mark.asyncio
    async def test_window_boundary_inclusive(self, store):
        """A grant still counts at exactly one window later, not after."""
        await reserve(store, now=NOW, cap=Decimal("1"))

        at_boundary = await reserve(store, now=NOW + WINDOW, cap=Decimal("1"))
        after_boundary = await reserve(store, now=NOW + WINDOW + 1, cap=Decimal("1"))

        assert isinstance(at_boundary, RateLimitRejection)
        assert isinstance(after_boundary, Reservation)

    @pytest.mark.asyncio
    async def test_concurrent_reservations_respect_cap(self, store):
        """Concurrent admissions for one identity never exceed the cap."""
        results = await asyncio.gather(
            *(reserve(store, now=NOW + i * 0.001) for i in range(20))
        )

        granted = [r for r in results if isinstance(r, Reservation)]
        assert len(granted) == 2
        grants = await store.grants("U123", WINDOW, NOW + 1)
        assert sum(g.amount for g in grants) == Decimal("2")


class TestRollbackScript:
    """Tests for returning reserved quota."""

    @pytest.mark.asyncio
    async def test_rollback_restores_quota(self, store):
        """A rolled-back reservation frees its share of the cap."""
        reservation = await reserve(store, cap=Decimal("1"))

        await store.rollback(reservation, WINDOW, NOW + 5)

        assert await store.grants("U123", WINDOW, NOW + 5) == []
        record = await store.get_record("U123")
        assert record.amount_in_window == Decimal("0")
        assert record.window_start is None
        assert isinstance(await reserve(store, now=NOW + 6, cap=Decimal("1")), Reservation)

    @pytest.mark.asyncio
    async def test_rollback_keeps_other_grants(self, store):
        """Only the rolled-back reservation is removed."""
        kept = await reserve(store, now=NOW)
        dropped = await reserve(store, now=NOW + 10)

        await store.rollback(dropped, WINDOW, NOW + 20)

        grants = await store.grants("U123", WINDOW, NOW + 20)
        assert [g.request_ref for g in grants] == [kept.request_ref]
        record = await store.get_record("U123")
        assert record.amount_in_window == Decimal("1")
        assert record.window_start == NOW


class TestDispatchLog:
    """Tests for dispatch-log rows on Redis."""

    @pytest.mark.asyncio
    async def test_close_removes_from_open_set(self, store):
        """Closing a row keeps it readable but no longer open."""
        reservation = await reserve(store)

        await store.update_dispatch(
            reservation.request_ref,
            DispatchState.CLOSED,
            tx_ref="0xabc",
            outcome=OutcomeStatus.GRANTED,
            closed_at=NOW + 30,
        )

        row = await store.get_dispatch(reservation.request_ref)
        assert row.state == DispatchState.CLOSED
        assert row.outcome == OutcomeStatus.GRANTED
        assert row.tx_ref == "0xabc"
        assert await store.open_dispatches() == []

    @pytest.mark.asyncio
    async def test_pause_flag(self, store):
        """The pause flag round-trips through Redis."""
        await store.set_paused("Insufficient faucet balance")
        assert await store.get_paused() == "Insufficient faucet balance"

        await store.clear_paused()
        assert await store.get_paused() is None
