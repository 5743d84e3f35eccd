"""Redis-backed FaucetStore.

Layout:
- spigot:rate:{identity}       hash  window_start, amount_in_window, last_grant_time
- spigot:grants:{identity}     zset  <request_ref>:<amount_units> scored by time
- spigot:dispatch:{ref}        hash  one dispatch-log row
- spigot:dispatch:open         zset  refs of rows not yet closed, scored by created_at
- spigot:paused                str   pause reason
"""

import logging
from decimal import Decimal

from redis.asyncio import Redis
from redis.exceptions import RedisError

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

from .base import FaucetStore, StorageUnavailableError
from .lua import RESERVE_SCRIPT, ROLLBACK_SCRIPT

logger = logging.getLogger(__name__)

# Lua numbers are doubles; amounts are stored as integer micro-units.
AMOUNT_SCALE = Decimal(10**6)

KEY_PREFIX = "spigot"
OPEN_DISPATCH_KEY = f"{KEY_PREFIX}:dispatch:open"
PAUSED_KEY = f"{KEY_PREFIX}:paused"


def to_units(amount: Decimal) -> int:
    """Convert a coin amount to integer micro-units.

    Raises
    ------
    ValueError
        If the amount has more precision than a micro-unit.
    """
    scaled = amount * AMOUNT_SCALE
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has more than 6 decimal places")
    return int(scaled)


def from_units(units: int | str) -> Decimal:
    return Decimal(int(units)) / AMOUNT_SCALE


def _grant_member(request_ref: str, amount: Decimal) -> str:
    return f"{request_ref}:{to_units(amount)}"


def _optional_float(value: str | None) -> float | None:
    return float(value) if value not in (None, "") else None


class RedisStore(FaucetStore):
    """FaucetStore on Redis, using Lua scripts for multi-key atomicity.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    client : Redis | None
        Pre-built client, mainly for tests.
    """

    def __init__(self, redis_url: str, client: Redis | None = None):
        self._redis_url = redis_url
        self._redis = client or Redis.from_url(redis_url, decode_responses=True)
        self._reserve_script = self._redis.register_script(RESERVE_SCRIPT)
        self._rollback_script = self._redis.register_script(ROLLBACK_SCRIPT)

    @staticmethod
    def _grants_key(identity: str) -> str:
        return f"{KEY_PREFIX}:grants:{identity}"

    @staticmethod
    def _record_key(identity: str) -> str:
        return f"{KEY_PREFIX}:rate:{identity}"

    @staticmethod
    def _dispatch_key(request_ref: str) -> str:
        return f"{KEY_PREFIX}:dispatch:{request_ref}"

    async def reserve(
        self,
        request: DispenseRequest,
        window_seconds: float,
        cap: Decimal,
        now: float,
    ) -> Reservation | RateLimitRejection:
        try:
            allowed, used, at = await self._reserve_script(
                keys=[
                    self._grants_key(request.identity),
                    self._record_key(request.identity),
                    self._dispatch_key(request.request_ref),
                    OPEN_DISPATCH_KEY,
                ],
                args=[
                    repr(now),
                    repr(float(window_seconds)),
                    to_units(cap),
                    to_units(request.amount),
                    request.request_ref,
                    request.identity,
                    request.destination,
                    str(request.amount),
                    request.channel or "",
                    repr(request.created_at),
                ],
            )
        except RedisError as e:
            raise StorageUnavailableError(f"Reservation failed: {e}") from e

        if int(allowed) != 1:
            return RateLimitRejection(
                identity=request.identity,
                amount_in_window=from_units(used),
                next_eligible_time=float(at),
            )
        return Reservation(
            request_ref=request.request_ref,
            identity=request.identity,
            amount=request.amount,
            reserved_at=now,
        )

    async def commit(self, reservation: Reservation, now: float) -> None:
        try:
            await self._redis.hset(
                self._record_key(reservation.identity),
                mapping={"identity": reservation.identity, "last_grant_time": repr(now)},
            )
        except RedisError as e:
            raise StorageUnavailableError(f"Commit failed: {e}") from e

    async def rollback(self, reservation: Reservation, window_seconds: float, now: float) -> None:
        try:
            await self._rollback_script(
                keys=[
                    self._grants_key(reservation.identity),
                    self._record_key(reservation.identity),
                ],
                args=[
                    _grant_member(reservation.request_ref, reservation.amount),
                    repr(now),
                    repr(float(window_seconds)),
                ],
            )
        except RedisError as e:
            raise StorageUnavailableError(f"Rollback failed: {e}") from e

    async def grants(self, identity: str, window_seconds: float, now: float) -> list[Grant]:
        try:
            entries = await self._redis.zrangebyscore(
                self._grants_key(identity),
                now - window_seconds,
                "+inf",
                withscores=True,
            )
        except RedisError as e:
            raise StorageUnavailableError(f"Grant lookup failed: {e}") from e

        grants = []
        for member, score in entries:
            request_ref, _, units = member.rpartition(":")
            grants.append(Grant(request_ref, from_units(units), float(score)))
        return grants

    async def get_record(self, identity: str) -> RateLimitRecord | None:
        try:
            data = await self._redis.hgetall(self._record_key(identity))
        except RedisError as e:
            raise StorageUnavailableError(f"Record lookup failed: {e}") from e
        if not data:
            return None
        return RateLimitRecord(
            identity=identity,
            window_start=_optional_float(data.get("window_start")),
            amount_in_window=from_units(data.get("amount_in_window", "0")),
            last_grant_time=_optional_float(data.get("last_grant_time")),
        )

    async def reset_identity(self, identity: str) -> None:
        try:
            await self._redis.delete(self._grants_key(identity), self._record_key(identity))
        except RedisError as e:
            raise StorageUnavailableError(f"Reset failed: {e}") from e
        logger.info("Rate limit state reset", extra={"identity": identity})

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
        fields = {"state": state.value}
        if tx_ref is not None:
            fields["tx_ref"] = tx_ref
        if outcome is not None:
            fields["outcome"] = outcome.value
        if error is not None:
            fields["error"] = error
        if closed_at is not None:
            fields["closed_at"] = repr(closed_at)

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(self._dispatch_key(request_ref), mapping=fields)
                if state == DispatchState.CLOSED:
                    pipe.zrem(OPEN_DISPATCH_KEY, request_ref)
                await pipe.execute()
        except RedisError as e:
            raise StorageUnavailableError(f"Dispatch log update failed: {e}") from e

    async def get_dispatch(self, request_ref: str) -> DispatchRecord | None:
        try:
            data = await self._redis.hgetall(self._dispatch_key(request_ref))
        except RedisError as e:
            raise StorageUnavailableError(f"Dispatch lookup failed: {e}") from e
        if not data:
            return None
        return DispatchRecord(
            request_ref=data["request_ref"],
            identity=data["identity"],
            destination=data["destination"],
            amount=Decimal(data["amount"]),
            state=DispatchState(data["state"]),
            created_at=float(data["created_at"]),
            channel=data.get("channel") or None,
            tx_ref=data.get("tx_ref") or None,
            outcome=OutcomeStatus(data["outcome"]) if data.get("outcome") else None,
            error=data.get("error") or None,
            closed_at=_optional_float(data.get("closed_at")),
        )

    async def open_dispatches(self) -> list[DispatchRecord]:
        try:
            refs = await self._redis.zrange(OPEN_DISPATCH_KEY, 0, -1)
        except RedisError as e:
            raise StorageUnavailableError(f"Dispatch scan failed: {e}") from e

        rows = []
        for request_ref in refs:
            row = await self.get_dispatch(request_ref)
            if row is None:
                logger.warning("Open dispatch entry has no row", extra={"request_ref": request_ref})
                continue
            rows.append(row)
        return rows

    async def get_paused(self) -> str | None:
        try:
            return await self._redis.get(PAUSED_KEY)
        except RedisError as e:
            raise StorageUnavailableError(f"Pause lookup failed: {e}") from e

    async def set_paused(self, reason: str) -> None:
        try:
            await self._redis.set(PAUSED_KEY, reason)
        except RedisError as e:
            raise StorageUnavailableError(f"Pause update failed: {e}") from e

    async def clear_paused(self) -> None:
        try:
            await self._redis.delete(PAUSED_KEY)
        except RedisError as e:
            raise StorageUnavailableError(f"Pause update failed: {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.warning("Redis ping failed", extra={"url": self._redis_url, "error": str(e)})
            return False

    async def close(self) -> None:
        await self._redis.aclose()
