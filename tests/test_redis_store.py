"""Tests for the Redis-backed store with a mocked client."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from spigot.core.models import (
    DispatchState,
    DispenseRequest,
    OutcomeStatus,
    RateLimitRejection,
    Reservation,
)
from spigot.storage.base import StorageUnavailableError
from spigot.storage.redis_store import OPEN_DISPATCH_KEY, RedisStore, from_units, to_units

ADDRESS = "0x742d35Cc6634C0532925a3b844Bc9e7595f8fE00"


@pytest.fixture
def redis_client():
    """Mock redis.asyncio client with registered scripts."""
    client = MagicMock()
    reserve_script = AsyncMock()
    rollback_script = AsyncMock(return_value=0)
    client.register_script.side_effect = [reserve_script, rollback_script]

    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[1, 1])
    pipeline_cm = MagicMock()
    pipeline_cm.__aenter__ = AsyncMock(return_value=pipe)
    pipeline_cm.__aexit__ = AsyncMock(return_value=False)
    client.pipeline.return_value = pipeline_cm

    for name in ("hset", "hgetall", "zrangebyscore", "zrange", "delete", "get", "set", "ping"):
        setattr(client, name, AsyncMock())
    client.aclose = AsyncMock()
    return client, reserve_script, rollback_script, pipe


def make_store(redis_client) -> RedisStore:
    client, *_ = redis_client
    return RedisStore("redis://localhost:6379", client=client)


class TestUnits:
    """Tests for amount scaling."""

    def test_round_trip(self):
        """Amounts survive conversion to micro-units."""
        assert to_units(Decimal("1.5")) == 1_500_000
        assert from_units("1500000") == Decimal("1.5")

    def test_too_precise_rejected(self):
        """More than six decimal places cannot be stored."""
        with pytest.raises(ValueError, match="decimal places"):
            to_units(Decimal("0.0000001"))


class TestRedisStore:
    """Tests for RedisStore."""

    @pytest.mark.asyncio
    async def test_reserve_success(self, redis_client):
        """Reserve passes all keys to the script and returns a reservation."""
        _, reserve_script, _, _ = redis_client
        reserve_script.return_value = [1, "1000000", "100.0"]
        store = make_store(redis_client)
        request = DispenseRequest.create("U1", ADDRESS, Decimal("1"), 100.0, channel="C1")

        result = await store.reserve(request, 86400, Decimal("1"), 100.0)

        assert isinstance(result, Reservation)
        kwargs = reserve_script.call_args.kwargs
        assert kwargs["keys"] == [
            "spigot:grants:U1",
            "spigot:rate:U1",
            f"spigot:dispatch:{request.request_ref}",
            OPEN_DISPATCH_KEY,
        ]
        assert kwargs["args"][2] == 1_000_000  # cap units
        assert kwargs["args"][3] == 1_000_000  # amount units
        assert kwargs["args"][8] == "C1"

    @pytest.mark.asyncio
    async def test_reserve_rejected(self, redis_client):
        """A script rejection maps to RateLimitRejection."""
        _, reserve_script, _, _ = redis_client
        reserve_script.return_value = [0, "1000000", "86500.0"]
        store = make_store(redis_client)
        request = DispenseRequest.create("U1", ADDRESS, Decimal("1"), 200.0)

        result = await store.reserve(request, 86400, Decimal("1"), 200.0)

        assert isinstance(result, RateLimitRejection)
        assert result.amount_in_window == Decimal("1")
        assert result.next_eligible_time == 86500.0

    @pytest.mark.asyncio
    async def test_reserve_storage_error(self, redis_client):
        """Redis errors surface as StorageUnavailableError."""
        _, reserve_script, _, _ = redis_client
        reserve_script.side_effect = RedisConnectionError("refused")
        store = make_store(redis_client)
        request = DispenseRequest.create("U1", ADDRESS, Decimal("1"), 100.0)

        with pytest.raises(StorageUnavailableError, match="refused"):
            await store.reserve(request, 86400, Decimal("1"), 100.0)

    @pytest.mark.asyncio
    async def test_rollback_removes_grant_member(self, redis_client):
        """Rollback removes the grant entry by ref and amount."""
        _, _, rollback_script, _ = redis_client
        store = make_store(redis_client)
        reservation = Reservation("ref1", "U1", Decimal("1"), 100.0)

        await store.rollback(reservation, 86400, 150.0)

        assert rollback_script.call_args.kwargs["args"][0] == "ref1:1000000"

    @pytest.mark.asyncio
    async def test_grants_parses_members(self, redis_client):
        """Grant members decode into Grant objects."""
        client, *_ = redis_client
        client.zrangebyscore.return_value = [("ref1:1000000", 100.0), ("ref2:500000", 200.0)]
        store = make_store(redis_client)

        grants = await store.grants("U1", 86400, 300.0)

        assert [(g.request_ref, g.amount, g.granted_at) for g in grants] == [
            ("ref1", Decimal("1"), 100.0),
            ("ref2", Decimal("0.5"), 200.0),
        ]

    @pytest.mark.asyncio
    async def test_get_record_missing(self, redis_client):
        """A missing record returns None."""
        client, *_ = redis_client
        client.hgetall.return_value = {}
        store = make_store(redis_client)

        assert await store.get_record("U1") is None

    @pytest.mark.asyncio
    async def test_close_removes_from_open_set(self, redis_client):
        """Closing a row removes it from the open set in the same transaction."""
        _, _, _, pipe = redis_client
        store = make_store(redis_client)

        await store.update_dispatch(
            "ref1", DispatchState.CLOSED, outcome=OutcomeStatus.GRANTED, closed_at=10.0
        )

        fields = pipe.hset.call_args.kwargs["mapping"]
        assert fields["state"] == "closed"
        assert fields["outcome"] == "granted"
        assert "tx_ref" not in fields
        pipe.zrem.assert_called_once_with(OPEN_DISPATCH_KEY, "ref1")
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_terminal_update_keeps_open(self, redis_client):
        """Non-closing updates leave the open set alone."""
        _, _, _, pipe = redis_client
        store = make_store(redis_client)

        await store.update_dispatch("ref1", DispatchState.SUBMITTING, tx_ref="0xaa")

        pipe.zrem.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_dispatch_decodes_row(self, redis_client):
        """A stored hash decodes into a DispatchRecord."""
        client, *_ = redis_client
        client.hgetall.return_value = {
            "request_ref": "ref1",
            "identity": "U1",
            "destination": ADDRESS,
            "amount": "1",
            "channel": "",
            "state": "submitting",
            "created_at": "100.0",
            "tx_ref": "0xaa",
        }
        store = make_store(redis_client)

        row = await store.get_dispatch("ref1")

        assert row.state == DispatchState.SUBMITTING
        assert row.channel is None
        assert row.tx_ref == "0xaa"
        assert row.outcome is None

    @pytest.mark.asyncio
    async def test_ping_failure_returns_false(self, redis_client):
        """Ping reports False instead of raising."""
        client, *_ = redis_client
        client.ping.side_effect = RedisConnectionError("refused")
        store = make_store(redis_client)

        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_pause_flag(self, redis_client):
        """Pause flag reads and writes a single key."""
        client, *_ = redis_client
        client.get.return_value = "insufficient balance"
        store = make_store(redis_client)

        await store.set_paused("insufficient balance")
        assert await store.get_paused() == "insufficient balance"
        await store.clear_paused()

        client.set.assert_awaited_once_with("spigot:paused", "insufficient balance")
        client.delete.assert_awaited_once_with("spigot:paused")
