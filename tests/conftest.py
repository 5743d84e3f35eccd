"""Pytest configuration and fixtures for Spigot tests."""

import asyncio
import os
from decimal import Decimal

import pytest

from spigot.ledger.client import (
    LedgerClient,
    PermanentLedgerError,
    SignedTransfer,
    TransientLedgerError,
    TxStatus,
)

VALID_ADDRESS = "0x742d35Cc6634C0532925a3b844Bc9e7595f8fE00"
OTHER_ADDRESS = "0x1234567890123456789012345678901234567890"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Clear Spigot-related environment variables before each test."""
    env_prefixes = ("SPIGOT_", "SLACK_", "REDIS_")
    for key in list(os.environ.keys()):
        if key.startswith(env_prefixes):
            monkeypatch.delenv(key, raising=False)


class FakeLedgerClient(LedgerClient):
    """Scriptable in-process ledger.

    ``broadcast_errors`` and ``build_errors`` are consumed one per call;
    once empty, calls succeed. ``statuses`` is consumed one per status query;
    the last entry repeats. Tracks how many transfers are in flight at once.
    """

    def __init__(self, balance: Decimal = Decimal("100")):
        self.balance = balance
        self.build_errors: list[Exception] = []
        self.broadcast_errors: list[Exception] = []
        self.statuses: list[TxStatus | Exception] = [TxStatus.CONFIRMED]
        self.broadcast_delay = 0.0
        self.built: list[SignedTransfer] = []
        self.broadcasts: list[str] = []
        self.status_queries: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._counter = 0

    def validate_address(self, address: str) -> bool:
        return (
            address.startswith("0x")
            and len(address) == 42
            and all(c in "0123456789abcdefABCDEF" for c in address[2:])
        )

    async def build_transfer(self, destination: str, amount: Decimal) -> SignedTransfer:
        if self.build_errors:
            raise self.build_errors.pop(0)
        self._counter += 1
        transfer = SignedTransfer(
            tx_ref=f"0x{self._counter:064x}",
            destination=destination,
            amount=amount,
            payload=b"signed",
        )
        self.built.append(transfer)
        return transfer

    async def broadcast(self, transfer: SignedTransfer) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.broadcasts.append(transfer.tx_ref)
            if self.broadcast_delay:
                await asyncio.sleep(self.broadcast_delay)
            if self.broadcast_errors:
                raise self.broadcast_errors.pop(0)
            return transfer.tx_ref
        finally:
            self.in_flight -= 1

    async def query_status(self, tx_ref: str) -> TxStatus:
        self.status_queries.append(tx_ref)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status

    async def get_balance(self) -> Decimal:
        return self.balance


@pytest.fixture
def fake_ledger():
    return FakeLedgerClient()


def transient(ambiguous: bool = False) -> TransientLedgerError:
    return TransientLedgerError("node unavailable", ambiguous=ambiguous)


def permanent(reason) -> PermanentLedgerError:
    return PermanentLedgerError(reason, f"rejected: {reason.value}")
