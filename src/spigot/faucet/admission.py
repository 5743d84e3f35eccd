"""Request admission for Spigot.

Decides synchronously whether a request may enter the dispatch queue. Nothing
here touches the ledger beyond address validation.
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal

from spigot.core.models import (
    AdmissionResult,
    Denied,
    DenialReason,
    DispenseRequest,
    Enqueued,
    RateLimitRejection,
)
from spigot.ledger.client import LedgerClient
from spigot.observability.metrics import ADMISSIONS
from spigot.storage.base import StorageUnavailableError

from .dispatcher import DispatchQueue
from .rate_limiter import RateLimitLedger

logger = logging.getLogger(__name__)


class RequestAdmission:
    """Front door of the dispatch core.

    Parameters
    ----------
    rate_limits : RateLimitLedger
        Per-identity window ledger; reserves quota and logs the request atomically.
    queue : DispatchQueue
        Queue admitted requests are pushed onto.
    ledger : LedgerClient
        Used only to validate destination addresses.
    grant_amount : Decimal
        The one amount the faucet grants.
    clock : Callable[[], float]
        Source of Unix timestamps.
    """

    def __init__(
        self,
        rate_limits: RateLimitLedger,
        queue: DispatchQueue,
        ledger: LedgerClient,
        grant_amount: Decimal = Decimal("1"),
        clock: Callable[[], float] = time.time,
    ):
        self._rate_limits = rate_limits
        self._queue = queue
        self._ledger = ledger
        self._grant_amount = grant_amount
        self._clock = clock

    async def admit(
        self,
        identity: str,
        destination: str,
        amount: Decimal | None = None,
        channel: str | None = None,
    ) -> AdmissionResult:
        """Admit or deny a dispense request.

        Parameters
        ----------
        identity : str
            Requester identity.
        destination : str
            Ledger address to fund.
        amount : Decimal | None
            Requested amount; defaults to the grant amount.
        channel : str | None
            Reply context for the eventual outcome.

        Returns
        -------
        Enqueued | Denied
            Enqueued with the request reference, or the reason for denial.
        """
        result = await self._admit(identity, destination, amount, channel)
        label = "enqueued" if isinstance(result, Enqueued) else result.reason.value
        ADMISSIONS.labels(result=label).inc()
        return result

    async def _admit(
        self,
        identity: str,
        destination: str,
        amount: Decimal | None,
        channel: str | None,
    ) -> AdmissionResult:
        try:
            paused = await self._queue.paused_reason()
        except StorageUnavailableError as e:
            return self._storage_denied(identity, e)
        if paused is not None:
            return Denied(
                DenialReason.PAUSED,
                "The faucet is paused. An operator has been notified.",
            )

        amount = self._grant_amount if amount is None else amount
        if amount != self._grant_amount:
            return Denied(
                DenialReason.INVALID_AMOUNT,
                f"The faucet only grants {self._grant_amount}",
            )

        if not self._ledger.validate_address(destination):
            return Denied(DenialReason.INVALID_ADDRESS, f"Invalid address: {destination}")

        if self._queue.is_full:
            return self._queue_full_denied(identity)

        request = DispenseRequest.create(
            identity=identity,
            destination=destination,
            amount=amount,
            now=self._clock(),
            channel=channel,
        )

        try:
            reserved = await self._rate_limits.check_and_reserve(request, now=request.created_at)
        except StorageUnavailableError as e:
            return self._storage_denied(identity, e)

        if isinstance(reserved, RateLimitRejection):
            eligible = datetime.fromtimestamp(reserved.next_eligible_time, tz=timezone.utc)
            return Denied(
                DenialReason.RATE_LIMITED,
                f"Rate limit reached. Next eligible at {eligible.isoformat(timespec='seconds')}",
                retry_after=reserved.next_eligible_time,
            )

        position = self._queue.try_enqueue(request)
        if position is None:
            # Filled up while the reservation was being made
            try:
                await self._queue.discard(request, "Dispatch queue full")
            except StorageUnavailableError as e:
                logger.error(
                    "Could not release reservation of unqueued request",
                    extra={"request_ref": request.request_ref, "error": str(e)},
                )
            return self._queue_full_denied(identity)

        logger.info(
            "Request admitted",
            extra={
                "request_ref": request.request_ref,
                "identity": identity,
                "destination": destination,
                "position": position,
            },
        )
        return Enqueued(request_ref=request.request_ref, position=position)

    def _queue_full_denied(self, identity: str) -> Denied:
        logger.warning("Dispatch queue full", extra={"identity": identity})
        return Denied(
            DenialReason.QUEUE_FULL,
            "The faucet is busy. Please try again in a few minutes.",
        )

    def _storage_denied(self, identity: str, error: Exception) -> Denied:
        logger.error("Storage unavailable", extra={"identity": identity, "error": str(error)})
        return Denied(
            DenialReason.STORAGE_UNAVAILABLE,
            "The faucet cannot reach its storage. Please try again later.",
        )
