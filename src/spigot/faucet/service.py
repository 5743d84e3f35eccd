"""Faucet Service for Spigot.

Coordinates the dispatch core:
- Request admission
- Rate limit ledger
- Dispatch queue and its outcome bus
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal

from spigot.config import SpigotConfig
from spigot.core.models import AdmissionResult
from spigot.ledger.client import LedgerClient, LedgerError
from spigot.observability.metrics import WALLET_BALANCE
from spigot.storage.base import FaucetStore, StorageUnavailableError

from .admission import RequestAdmission
from .dispatcher import DispatchQueue
from .outcomes import AlertCallback, OutcomeBus, OutcomeCallback
from .rate_limiter import RateLimitLedger
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class FaucetStatus:
    """Current faucet status."""

    healthy: bool
    paused_reason: str | None
    queue_depth: int
    max_queue_depth: int
    balance: Decimal | None
    grant_amount: Decimal
    message: str


class FaucetService:
    """Facade over admission, rate limits and dispatch.

    Parameters
    ----------
    admission : RequestAdmission
        Admission checks.
    rate_limits : RateLimitLedger
        Per-identity window ledger.
    queue : DispatchQueue
        Single-writer dispatch queue.
    ledger : LedgerClient
        Remote ledger.
    outcomes : OutcomeBus
        Bus the queue publishes outcomes on.
    grant_amount : Decimal
        Amount granted per request.
    """

    def __init__(
        self,
        admission: RequestAdmission,
        rate_limits: RateLimitLedger,
        queue: DispatchQueue,
        ledger: LedgerClient,
        outcomes: OutcomeBus,
        grant_amount: Decimal = Decimal("1"),
    ):
        self._admission = admission
        self._rate_limits = rate_limits
        self._queue = queue
        self._ledger = ledger
        self._outcomes = outcomes
        self._grant_amount = grant_amount
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def grant_amount(self) -> Decimal:
        return self._grant_amount

    @property
    def window_seconds(self) -> float:
        return self._rate_limits.window_seconds

    @property
    def queue(self) -> DispatchQueue:
        return self._queue

    @property
    def rate_limits(self) -> RateLimitLedger:
        return self._rate_limits

    def subscribe(self, callback: OutcomeCallback) -> None:
        """Receive every dispatch outcome."""
        self._outcomes.subscribe(callback)

    def subscribe_alerts(self, callback: AlertCallback) -> None:
        """Receive operator alerts."""
        self._outcomes.subscribe_alerts(callback)

    def validate_address(self, address: str) -> bool:
        return self._ledger.validate_address(address)

    async def start(self) -> None:
        """Start the faucet service.

        Recovers the dispatch log, then starts the dispatch worker.
        Subscribe to outcomes before calling this so recovered requests
        are delivered too.
        """
        if self._running:
            logger.warning("Faucet service already running")
            return

        await self._queue.start()
        self._running = True
        logger.info("Faucet service started")

    async def stop(self) -> None:
        if not self._running:
            return

        await self._queue.stop()
        self._running = False
        logger.info("Faucet service stopped")

    async def request_dispense(
        self,
        identity: str,
        destination: str,
        channel: str | None = None,
    ) -> AdmissionResult:
        """Ask for the standard grant.

        Returns
        -------
        Enqueued | Denied
            Immediate admission decision; the final outcome arrives on the bus.
        """
        return await self._admission.admit(identity, destination, channel=channel)

    async def resume(self) -> None:
        """Clear an operator pause."""
        await self._queue.resume()

    async def get_status(self) -> FaucetStatus:
        """Get current faucet status.

        Returns
        -------
        FaucetStatus
            Current status of the faucet.
        """
        paused_reason = None
        healthy = True
        message = "Faucet operational"

        try:
            paused_reason = await self._queue.paused_reason()
        except StorageUnavailableError as e:
            healthy = False
            message = f"Storage unavailable: {e}"

        balance = None
        try:
            balance = await self._ledger.get_balance()
            WALLET_BALANCE.set(float(balance))
        except LedgerError as e:
            logger.warning("Could not read wallet balance", extra={"error": str(e)})

        if paused_reason is not None:
            healthy = False
            message = f"Paused: {paused_reason}"
        elif balance is not None and balance < self._grant_amount:
            healthy = False
            message = "Wallet balance below grant amount"
        elif healthy and balance is None:
            message = "Faucet operational (balance unavailable)"

        return FaucetStatus(
            healthy=healthy,
            paused_reason=paused_reason,
            queue_depth=self._queue.depth,
            max_queue_depth=self._queue.max_depth,
            balance=balance,
            grant_amount=self._grant_amount,
            message=message,
        )

    async def get_user_status(self, identity: str) -> dict:
        """Get rate limit status for a requester.

        Parameters
        ----------
        identity : str
            Requester identity.

        Returns
        -------
        dict
            Amount used in the window, remaining allowance, and when the
            next grant fits (Unix timestamp, or None if it fits now).
        """
        usage = await self._rate_limits.get_usage(identity)
        wait = 0.0
        if usage.next_eligible_time is not None:
            wait = max(0.0, usage.next_eligible_time - time.time())

        return {
            "amount_in_window": str(usage.amount_in_window),
            "remaining": str(usage.remaining),
            "next_eligible_time": usage.next_eligible_time,
            "wait_seconds": wait,
            "grant_amount": str(self._grant_amount),
        }


def create_faucet_service(
    config: SpigotConfig,
    store: FaucetStore,
    ledger: LedgerClient,
) -> FaucetService:
    """Wire the dispatch core from configuration.

    Parameters
    ----------
    config : SpigotConfig
        Service configuration.
    store : FaucetStore
        Durable backend for rate limits and the dispatch log.
    ledger : LedgerClient
        Remote ledger.

    Returns
    -------
    FaucetService
        Service ready to be started.
    """
    rate_limits = RateLimitLedger(
        store,
        window_seconds=config.window_seconds,
        cap=config.window_cap,
        grant_amount=config.grant_amount,
    )
    outcomes = OutcomeBus()
    queue = DispatchQueue(
        store,
        rate_limits,
        ledger,
        outcomes,
        retry_policy=RetryPolicy(
            max_attempts=config.max_submit_attempts,
            base_delay=config.backoff_base_seconds,
            multiplier=config.backoff_multiplier,
            max_delay=config.backoff_max_seconds,
        ),
        max_depth=config.max_queue_depth,
        submit_timeout=config.submit_timeout_seconds,
        confirm_timeout=config.confirm_timeout_seconds,
        confirm_poll_interval=config.confirm_poll_seconds,
    )
    admission = RequestAdmission(rate_limits, queue, ledger, grant_amount=config.grant_amount)
    return FaucetService(
        admission,
        rate_limits,
        queue,
        ledger,
        outcomes,
        grant_amount=config.grant_amount,
    )
