"""Domain types shared by the dispatch core.

Requests flow through three stages:
- Admission produces a DispenseRequest and a Reservation
- The dispatch queue drives the request through DispatchState transitions
- Every admitted request ends with exactly one DispatchOutcome
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class DispatchState(str, Enum):
    """Lifecycle of a request in the dispatch log."""

    QUEUED = "queued"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    SUBMIT_FAILED = "submit_failed"
    CONFIRM_FAILED = "confirm_failed"
    UNRESOLVED = "unresolved"
    CLOSED = "closed"


class OutcomeStatus(str, Enum):
    """Terminal status delivered to the requester."""

    GRANTED = "granted"
    DENIED = "denied"
    FAILED = "failed"
    UNRESOLVED = "unresolved"


class DenialReason(str, Enum):
    """Why an admission check refused a request."""

    INVALID_ADDRESS = "invalid_address"
    INVALID_AMOUNT = "invalid_amount"
    RATE_LIMITED = "rate_limited"
    QUEUE_FULL = "queue_full"
    PAUSED = "paused"
    STORAGE_UNAVAILABLE = "storage_unavailable"

    @property
    def retryable(self) -> bool:
        """Whether asking again later can succeed without changing the request."""
        return self not in (DenialReason.INVALID_ADDRESS, DenialReason.INVALID_AMOUNT)


def new_request_ref() -> str:
    """Generate an opaque request reference."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class DispenseRequest:
    """A request that passed admission.

    Attributes
    ----------
    request_ref : str
        Unique reference, primary key of the dispatch log.
    identity : str
        Requester identity (e.g., Slack user ID).
    destination : str
        Ledger address receiving the funds.
    amount : Decimal
        Amount to send, in whole coin units.
    created_at : float
        Unix timestamp of admission.
    channel : str | None
        Chat channel to deliver the outcome to.
    """

    request_ref: str
    identity: str
    destination: str
    amount: Decimal
    created_at: float
    channel: str | None = None

    @classmethod
    def create(
        cls,
        identity: str,
        destination: str,
        amount: Decimal,
        now: float,
        channel: str | None = None,
    ) -> "DispenseRequest":
        return cls(
            request_ref=new_request_ref(),
            identity=identity,
            destination=destination,
            amount=amount,
            created_at=now,
            channel=channel,
        )


@dataclass(frozen=True)
class Reservation:
    """Hold against an identity's quota, made before the outcome is known."""

    request_ref: str
    identity: str
    amount: Decimal
    reserved_at: float

    @classmethod
    def for_request(cls, request: DispenseRequest) -> "Reservation":
        return cls(
            request_ref=request.request_ref,
            identity=request.identity,
            amount=request.amount,
            reserved_at=request.created_at,
        )


@dataclass(frozen=True)
class RateLimitRejection:
    """Returned when a reservation would exceed the window cap."""

    identity: str
    amount_in_window: Decimal
    next_eligible_time: float


@dataclass
class RateLimitRecord:
    """Per-identity summary of the rolling window."""

    identity: str
    window_start: float | None
    amount_in_window: Decimal
    last_grant_time: float | None


@dataclass
class DispatchRecord:
    """One row of the dispatch log."""

    request_ref: str
    identity: str
    destination: str
    amount: Decimal
    state: DispatchState
    created_at: float
    channel: str | None = None
    tx_ref: str | None = None
    outcome: OutcomeStatus | None = None
    error: str | None = None
    closed_at: float | None = None

    @property
    def is_open(self) -> bool:
        return self.state != DispatchState.CLOSED

    def to_request(self) -> DispenseRequest:
        return DispenseRequest(
            request_ref=self.request_ref,
            identity=self.identity,
            destination=self.destination,
            amount=self.amount,
            created_at=self.created_at,
            channel=self.channel,
        )


@dataclass(frozen=True)
class DispatchOutcome:
    """Final result of an admitted request."""

    request_ref: str
    identity: str
    destination: str
    amount: Decimal
    status: OutcomeStatus
    tx_ref: str | None = None
    error: str | None = None
    channel: str | None = None

    @classmethod
    def for_request(
        cls,
        request: DispenseRequest,
        status: OutcomeStatus,
        tx_ref: str | None = None,
        error: str | None = None,
    ) -> "DispatchOutcome":
        return cls(
            request_ref=request.request_ref,
            identity=request.identity,
            destination=request.destination,
            amount=request.amount,
            status=status,
            tx_ref=tx_ref,
            error=error,
            channel=request.channel,
        )


@dataclass(frozen=True)
class Enqueued:
    """Admission accepted the request."""

    request_ref: str
    position: int


@dataclass(frozen=True)
class Denied:
    """Admission refused the request.

    Attributes
    ----------
    reason : DenialReason
        Machine-readable reason.
    message : str
        Human-readable explanation.
    retry_after : float | None
        Unix timestamp after which a retry may succeed (rate limits only).
    """

    reason: DenialReason
    message: str
    retry_after: float | None = None

    @property
    def retryable(self) -> bool:
        return self.reason.retryable


AdmissionResult = Enqueued | Denied
