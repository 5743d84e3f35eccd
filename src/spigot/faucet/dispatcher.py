"""Single-writer dispatch queue for Spigot.

One worker drains the queue strictly in arrival order, so at most one
transfer is ever being built or broadcast against the shared wallet.

Per-request states (persisted in the dispatch log):

    queued -> submitting -> confirmed | submit_failed | confirm_failed | unresolved -> closed

A transfer's tx_ref is written to the dispatch log before it is broadcast.
After a restart, rows left in ``submitting`` are resolved by querying the
ledger for that tx_ref; they are never broadcast again.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable

from spigot.core.models import (
    DispatchOutcome,
    DispatchState,
    DispenseRequest,
    OutcomeStatus,
    Reservation,
)
from spigot.ledger.client import (
    LedgerClient,
    PermanentLedgerError,
    RejectionReason,
    SignedTransfer,
    TransientLedgerError,
    TxStatus,
)
from spigot.observability.logging import clear_request_id, set_request_id
from spigot.observability.metrics import (
    OUTCOMES,
    PAUSED,
    QUEUE_DEPTH,
    REQUEST_DURATION,
    SUBMISSION_DURATION,
    SUBMIT_ATTEMPTS,
)
from spigot.storage.base import FaucetStore, StorageUnavailableError

from .outcomes import OutcomeBus
from .rate_limiter import RateLimitLedger
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class DispatchQueue:
    """Bounded FIFO of admitted requests with a single dispatch worker.

    Parameters
    ----------
    store : FaucetStore
        Backend holding the dispatch log and pause flag.
    rate_limits : RateLimitLedger
        Ledger whose reservations are committed or rolled back on close.
    ledger : LedgerClient
        Remote ledger.
    outcomes : OutcomeBus
        Receives every outcome and operator alert.
    retry_policy : RetryPolicy | None
        Backoff for transient submit failures.
    max_depth : int
        Maximum number of queued requests.
    submit_timeout : float
        Timeout for each ledger call, in seconds.
    confirm_timeout : float
        How long to wait for confirmation before closing as unresolved.
    confirm_poll_interval : float
        Delay between status queries while waiting for confirmation.
    pause_poll_interval : float
        How often a paused worker re-reads the durable pause flag.
    drain_timeout : float
        How long stop() waits for the in-flight request before cancelling.
    clock : Callable[[], float]
        Source of Unix timestamps.
    """

    def __init__(
        self,
        store: FaucetStore,
        rate_limits: RateLimitLedger,
        ledger: LedgerClient,
        outcomes: OutcomeBus,
        retry_policy: RetryPolicy | None = None,
        max_depth: int = 100,
        submit_timeout: float = 30.0,
        confirm_timeout: float = 300.0,
        confirm_poll_interval: float = 5.0,
        pause_poll_interval: float = 5.0,
        drain_timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._rate_limits = rate_limits
        self._ledger = ledger
        self._outcomes = outcomes
        self._retry = retry_policy or RetryPolicy()
        self._max_depth = max_depth
        self._submit_timeout = submit_timeout
        self._confirm_timeout = confirm_timeout
        self._confirm_poll_interval = confirm_poll_interval
        self._pause_poll_interval = pause_poll_interval
        self._drain_timeout = drain_timeout
        self._clock = clock

        self._queue: asyncio.Queue[DispenseRequest] = asyncio.Queue(maxsize=max_depth)
        # Requests recovered from the dispatch log go ahead of new arrivals
        self._backlog: deque[DispenseRequest] = deque()
        self._waiting: set[str] = set()
        self._resume_event = asyncio.Event()
        self._running = False
        self._task: asyncio.Task | None = None
        self._active: DispenseRequest | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def depth(self) -> int:
        """Requests waiting for the worker."""
        return self._queue.qsize() + len(self._backlog)

    @property
    def max_depth(self) -> int:
        return self._max_depth

    @property
    def is_full(self) -> bool:
        """Whether new arrivals must be refused; recovered requests count too."""
        return self.depth >= self._max_depth

    @property
    def active(self) -> DispenseRequest | None:
        """Request currently held by the worker, if any."""
        return self._active

    def try_enqueue(self, request: DispenseRequest) -> int | None:
        """Append a request without waiting.

        Returns
        -------
        int | None
            Position in the queue (1 = next), or None if the queue is full.
        """
        if self.is_full:
            return None
        try:
            self._queue.put_nowait(request)
            self._waiting.add(request.request_ref)
        except asyncio.QueueFull:
            return None
        QUEUE_DEPTH.set(self.depth)
        return self.depth

    async def discard(self, request: DispenseRequest, reason: str) -> None:
        """Undo an admission whose request could not be queued."""
        await self._rate_limits.rollback(Reservation.for_request(request))
        await self._store.update_dispatch(
            request.request_ref,
            DispatchState.CLOSED,
            outcome=OutcomeStatus.DENIED,
            error=reason,
            closed_at=self._clock(),
        )

    async def paused_reason(self) -> str | None:
        """Reason dispatch is paused, or None."""
        return await self._store.get_paused()

    async def pause(self, reason: str) -> None:
        """Stop taking requests until an operator resumes dispatch."""
        await self._store.set_paused(reason)
        PAUSED.set(1)
        await self._outcomes.alert(f"Dispatch paused: {reason}")

    async def resume(self) -> None:
        """Clear the pause flag and wake the worker."""
        await self._store.clear_paused()
        PAUSED.set(0)
        self._resume_event.set()
        logger.info("Dispatch resumed")

    async def start(self) -> None:
        """Resolve leftovers from the dispatch log, then start the worker."""
        if self._running:
            logger.warning("Dispatch queue already running")
            return

        await self.recover()
        self._running = True
        self._task = asyncio.create_task(self._worker_loop(), name="spigot-dispatch")
        logger.info("Dispatch worker started", extra={"max_depth": self._max_depth})

    async def stop(self) -> None:
        """Stop the worker.

        Queued requests stay in the dispatch log and are picked up by the next
        start. An in-flight request gets ``drain_timeout`` seconds to finish;
        if cancelled, recovery resolves it on the next start.
        """
        if not self._running:
            return

        self._running = False
        self._resume_event.set()
        if self._task:
            if self._active is not None:
                await asyncio.wait({self._task}, timeout=self._drain_timeout)
            if not self._task.done():
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Dispatch worker stopped", extra={"queued": self.depth})

    async def recover(self) -> int:
        """Resolve rows left open by a previous process.

        Rows still ``queued`` are re-queued in admission order. Rows that were
        being submitted are resolved against the ledger, never re-broadcast.

        Rows whose request is already waiting in memory (from an earlier start
        on this instance) are left where they are.

        Returns
        -------
        int
            Number of rows recovered.
        """
        rows = await self._store.open_dispatches()
        requeued = 0
        resolved = 0

        for row in rows:
            request = row.to_request()
            if row.state == DispatchState.QUEUED:
                if request.request_ref not in self._waiting:
                    self._backlog.append(request)
                    self._waiting.add(request.request_ref)
                requeued += 1
                continue

            set_request_id(request.request_ref)
            try:
                logger.warning(
                    "Resolving interrupted dispatch",
                    extra={"state": row.state.value, "tx_ref": row.tx_ref},
                )
                if row.tx_ref is None:
                    # Nothing was signed, so nothing can have been broadcast
                    await self._close(
                        request,
                        OutcomeStatus.FAILED,
                        error="Interrupted before a transaction was signed",
                        rollback=True,
                    )
                else:
                    await self._resolve_ambiguous(
                        request, row.tx_ref, "Interrupted during submission"
                    )
            finally:
                clear_request_id()
            resolved += 1

        QUEUE_DEPTH.set(self.depth)
        if rows:
            logger.info(
                "Dispatch log recovered",
                extra={"requeued": requeued, "resolved": resolved},
            )
        return requeued + resolved

    async def _next_request(self) -> DispenseRequest:
        if self._backlog:
            request = self._backlog.popleft()
        else:
            request = await self._queue.get()
        self._waiting.discard(request.request_ref)
        return request

    async def _wait_while_paused(self) -> None:
        while self._running:
            if await self._store.get_paused() is None:
                PAUSED.set(0)
                return
            PAUSED.set(1)
            self._resume_event.clear()
            try:
                await asyncio.wait_for(self._resume_event.wait(), timeout=self._pause_poll_interval)
            except asyncio.TimeoutError:
                pass

    async def _worker_loop(self) -> None:
        while self._running:
            try:
                await self._wait_while_paused()
            except StorageUnavailableError as e:
                logger.error("Cannot read pause flag", extra={"error": str(e)})
                await asyncio.sleep(self._pause_poll_interval)
                continue
            if not self._running:
                break

            request = await self._next_request()
            QUEUE_DEPTH.set(self.depth)
            self._active = request
            try:
                await self.process(request)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Dispatch failed unexpectedly",
                    extra={"request_ref": request.request_ref},
                )
                await self._close_after_error(request)
            finally:
                self._active = None

    async def process(self, request: DispenseRequest) -> DispatchOutcome:
        """Drive one request from ``queued`` to a terminal outcome."""
        set_request_id(request.request_ref)
        try:
            logger.info(
                "Dispatching request",
                extra={
                    "identity": request.identity,
                    "destination": request.destination,
                    "amount": str(request.amount),
                },
            )
            await self._store.update_dispatch(request.request_ref, DispatchState.SUBMITTING)
            return await self._submit(request)
        finally:
            clear_request_id()

    async def _submit(self, request: DispenseRequest) -> DispatchOutcome:
        transfer: SignedTransfer | None = None
        ambiguous = False
        last_error = ""
        attempt = 0
        started = time.perf_counter()

        while True:
            attempt += 1
            phase = "build"
            try:
                if transfer is None:
                    transfer = await asyncio.wait_for(
                        self._ledger.build_transfer(request.destination, request.amount),
                        self._submit_timeout,
                    )
                    # Durable before broadcast, so recovery can find it
                    await self._store.update_dispatch(
                        request.request_ref,
                        DispatchState.SUBMITTING,
                        tx_ref=transfer.tx_ref,
                    )
                phase = "broadcast"
                await asyncio.wait_for(self._ledger.broadcast(transfer), self._submit_timeout)
            except PermanentLedgerError as e:
                SUBMIT_ATTEMPTS.labels(result="rejected").inc()
                return await self._handle_rejection(request, transfer, e, ambiguous)
            except (TransientLedgerError, asyncio.TimeoutError) as e:
                timed_out = isinstance(e, asyncio.TimeoutError)
                SUBMIT_ATTEMPTS.labels(result="timeout" if timed_out else "transient").inc()
                if phase == "broadcast" and (timed_out or e.ambiguous):
                    ambiguous = True
                last_error = str(e) or ("timed out" if timed_out else type(e).__name__)
                logger.warning(
                    "Submit attempt failed",
                    extra={
                        "attempt": attempt,
                        "phase": phase,
                        "error": last_error,
                        "ambiguous": ambiguous,
                    },
                )
                if not self._retry.should_retry(attempt):
                    break
                await asyncio.sleep(self._retry.delay_for(attempt))
                continue

            SUBMIT_ATTEMPTS.labels(result="accepted").inc()
            SUBMISSION_DURATION.observe(time.perf_counter() - started)
            logger.info("Transfer accepted", extra={"tx_ref": transfer.tx_ref, "attempts": attempt})
            return await self._confirm(request, transfer.tx_ref)

        await self._store.update_dispatch(
            request.request_ref, DispatchState.SUBMIT_FAILED, error=last_error
        )
        if ambiguous and transfer is not None:
            return await self._resolve_ambiguous(request, transfer.tx_ref, last_error)
        return await self._close(
            request,
            OutcomeStatus.FAILED,
            error=f"Submission failed after {attempt} attempts: {last_error}",
            rollback=True,
        )

    async def _handle_rejection(
        self,
        request: DispenseRequest,
        transfer: SignedTransfer | None,
        error: PermanentLedgerError,
        ambiguous: bool,
    ) -> DispatchOutcome:
        tx_ref = transfer.tx_ref if transfer else None
        logger.error(
            "Transfer rejected",
            extra={"reason": error.reason.value, "error": str(error), "tx_ref": tx_ref},
        )
        await self._store.update_dispatch(
            request.request_ref, DispatchState.SUBMIT_FAILED, error=str(error)
        )

        if error.reason == RejectionReason.INSUFFICIENT_BALANCE:
            await self.pause(f"Insufficient faucet balance ({error})")
            return await self._close(
                request, OutcomeStatus.FAILED, tx_ref=tx_ref, error=str(error), rollback=False
            )

        # An earlier timed-out broadcast of this transfer may still land
        return await self._close(
            request,
            OutcomeStatus.FAILED,
            tx_ref=tx_ref,
            error=str(error),
            rollback=not ambiguous,
        )

    async def _resolve_ambiguous(
        self, request: DispenseRequest, tx_ref: str, error: str
    ) -> DispatchOutcome:
        """Settle a request whose transfer may or may not have reached the ledger."""
        try:
            status = await asyncio.wait_for(
                self._ledger.query_status(tx_ref), self._submit_timeout
            )
        except (TransientLedgerError, asyncio.TimeoutError) as e:
            logger.error("Status query failed", extra={"tx_ref": tx_ref, "error": str(e)})
            return await self._close_unresolved(
                request, tx_ref, f"Submission outcome unknown: {error}"
            )

        if status in (TxStatus.PENDING, TxStatus.CONFIRMED):
            return await self._confirm(request, tx_ref)
        if status == TxStatus.FAILED:
            await self._store.update_dispatch(request.request_ref, DispatchState.CONFIRM_FAILED)
            return await self._close(
                request,
                OutcomeStatus.FAILED,
                tx_ref=tx_ref,
                error="Transaction failed on ledger",
                rollback=False,
            )
        # Unknown to the node; the quota stays consumed in case it surfaces later
        return await self._close(
            request,
            OutcomeStatus.FAILED,
            tx_ref=tx_ref,
            error=f"Transaction not found on ledger: {error}",
            rollback=False,
        )

    async def _confirm(self, request: DispenseRequest, tx_ref: str) -> DispatchOutcome:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._confirm_timeout

        while True:
            try:
                status = await asyncio.wait_for(
                    self._ledger.query_status(tx_ref), self._submit_timeout
                )
            except (TransientLedgerError, asyncio.TimeoutError) as e:
                logger.warning("Status query failed", extra={"tx_ref": tx_ref, "error": str(e)})
                status = None

            if status == TxStatus.CONFIRMED:
                await self._store.update_dispatch(request.request_ref, DispatchState.CONFIRMED)
                return await self._close(request, OutcomeStatus.GRANTED, tx_ref=tx_ref)
            if status == TxStatus.FAILED:
                await self._store.update_dispatch(
                    request.request_ref, DispatchState.CONFIRM_FAILED
                )
                return await self._close(
                    request,
                    OutcomeStatus.FAILED,
                    tx_ref=tx_ref,
                    error="Transaction failed on ledger",
                    rollback=False,
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                return await self._close_unresolved(
                    request,
                    tx_ref,
                    f"No confirmation within {self._confirm_timeout:g}s",
                )
            await asyncio.sleep(min(self._confirm_poll_interval, remaining))

    async def _close_unresolved(
        self, request: DispenseRequest, tx_ref: str, error: str
    ) -> DispatchOutcome:
        await self._store.update_dispatch(
            request.request_ref, DispatchState.UNRESOLVED, tx_ref=tx_ref, error=error
        )
        await self._outcomes.alert(
            f"Request {request.request_ref} unresolved (tx {tx_ref}): {error}"
        )
        return await self._close(request, OutcomeStatus.UNRESOLVED, tx_ref=tx_ref, error=error)

    async def _close(
        self,
        request: DispenseRequest,
        status: OutcomeStatus,
        tx_ref: str | None = None,
        error: str | None = None,
        rollback: bool = False,
    ) -> DispatchOutcome:
        reservation = Reservation.for_request(request)
        outcome = DispatchOutcome.for_request(request, status, tx_ref=tx_ref, error=error)

        if status == OutcomeStatus.GRANTED:
            await self._rate_limits.commit(reservation, outcome)
        elif rollback:
            await self._rate_limits.rollback(reservation)

        now = self._clock()
        await self._store.update_dispatch(
            request.request_ref,
            DispatchState.CLOSED,
            tx_ref=tx_ref,
            outcome=status,
            error=error,
            closed_at=now,
        )
        OUTCOMES.labels(status=status.value).inc()
        REQUEST_DURATION.labels(status=status.value).observe(max(0.0, now - request.created_at))
        logger.info(
            "Request closed",
            extra={
                "request_ref": request.request_ref,
                "status": status.value,
                "tx_ref": tx_ref,
                "error": error,
            },
        )

        await self._outcomes.publish(outcome)
        return outcome

    async def _close_after_error(self, request: DispenseRequest) -> None:
        """Settle a request whose processing raised, going by its logged row.

        A row with a tx_ref may have been broadcast, so it is resolved against
        the ledger like any ambiguous submission. Without a tx_ref nothing was
        broadcast and the quota is returned.
        """
        error = "Internal error while dispatching"
        set_request_id(request.request_ref)
        try:
            row = await self._store.get_dispatch(request.request_ref)
            if row is not None and not row.is_open:
                return
            if row is not None and row.tx_ref is not None:
                await self._resolve_ambiguous(request, row.tx_ref, error)
            else:
                await self._close(request, OutcomeStatus.FAILED, error=error, rollback=True)
        except Exception:
            logger.exception(
                "Could not close request; it will be resolved on restart",
                extra={"request_ref": request.request_ref},
            )
        finally:
            clear_request_id()
