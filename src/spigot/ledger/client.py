"""Ledger client boundary for the dispatch core.

The core treats the ledger as an opaque, possibly slow, possibly failing
remote. It needs four things from it:
- address validation
- building a signed transfer (its tx_ref is known before broadcast)
- broadcasting that transfer
- querying a transaction's final state
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

import requests
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from .wallet import WalletProvider

logger = logging.getLogger(__name__)

NATIVE_TRANSFER_GAS = 21000


class TxStatus(str, Enum):
    """Ledger-side state of a transaction."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    UNKNOWN = "unknown"  # Node has never seen the transaction


class RejectionReason(str, Enum):
    """Why the node refused a transaction."""

    INSUFFICIENT_BALANCE = "insufficient_balance"
    INVALID_ADDRESS = "invalid_address"
    REJECTED = "rejected"


class LedgerError(Exception):
    """Base class for ledger client errors."""


class TransientLedgerError(LedgerError):
    """The node could not be reached or timed out.

    Parameters
    ----------
    message : str
        Error description.
    ambiguous : bool
        True if the transaction may have reached the node anyway.
    """

    def __init__(self, message: str, ambiguous: bool = False):
        super().__init__(message)
        self.ambiguous = ambiguous


class PermanentLedgerError(LedgerError):
    """The node rejected the transaction for a reason retrying will not fix."""

    def __init__(self, reason: RejectionReason, message: str):
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True)
class SignedTransfer:
    """A transfer signed and ready to broadcast."""

    tx_ref: str
    destination: str
    amount: Decimal
    payload: bytes


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of a one-shot submit."""

    accepted: bool
    tx_ref: str | None
    reason: RejectionReason | None = None
    message: str | None = None


class LedgerClient(ABC):
    """Remote ledger operations consumed by the dispatch core."""

    @abstractmethod
    def validate_address(self, address: str) -> bool:
        ...

    @abstractmethod
    async def build_transfer(self, destination: str, amount: Decimal) -> SignedTransfer:
        """Build and sign a transfer from the faucet wallet.

        Raises
        ------
        TransientLedgerError
            If the node is unavailable (never ambiguous: nothing is broadcast).
        PermanentLedgerError
            If the transfer can never be built (e.g., bad address).
        """
        ...

    @abstractmethod
    async def broadcast(self, transfer: SignedTransfer) -> str:
        """Broadcast a signed transfer and return its tx_ref.

        Broadcasting the same transfer twice is safe: a node that already has it
        reports it as accepted.
        """
        ...

    @abstractmethod
    async def query_status(self, tx_ref: str) -> TxStatus:
        ...

    @abstractmethod
    async def get_balance(self) -> Decimal:
        """Spendable balance of the faucet wallet."""
        ...

    async def submit(self, destination: str, amount: Decimal) -> SubmitResult:
        """Build and broadcast in one step.

        Raises
        ------
        TransientLedgerError
            If the node is unavailable.
        """
        transfer = await self.build_transfer(destination, amount)
        try:
            tx_ref = await self.broadcast(transfer)
        except PermanentLedgerError as e:
            return SubmitResult(
                accepted=False,
                tx_ref=transfer.tx_ref,
                reason=e.reason,
                message=str(e),
            )
        return SubmitResult(accepted=True, tx_ref=tx_ref)


def _classify_node_error(message: str) -> RejectionReason | None:
    """Map a JSON-RPC error message to a rejection reason.

    Returns None for messages meaning the node already holds the transaction.
    """
    lowered = message.lower()
    if "already known" in lowered or "known transaction" in lowered:
        return None
    if "insufficient funds" in lowered:
        return RejectionReason.INSUFFICIENT_BALANCE
    if "invalid address" in lowered:
        return RejectionReason.INVALID_ADDRESS
    return RejectionReason.REJECTED


class Web3LedgerClient(LedgerClient):
    """LedgerClient for an EVM JSON-RPC node sending native coin.

    web3 calls are blocking, so each one runs in a worker thread.

    Parameters
    ----------
    rpc_endpoint : str
        JSON-RPC endpoint URL.
    wallet : WalletProvider
        Wallet that signs transfers.
    request_timeout : float
        HTTP timeout for each RPC call, in seconds.
    """

    def __init__(self, rpc_endpoint: str, wallet: WalletProvider, request_timeout: float = 30.0):
        self._w3 = Web3(
            Web3.HTTPProvider(rpc_endpoint, request_kwargs={"timeout": request_timeout})
        )
        self._wallet = wallet

    @property
    def wallet_address(self) -> str:
        return self._wallet.address

    @property
    def connected(self) -> bool:
        return self._w3.is_connected()

    @property
    def chain_id(self) -> int:
        return self._w3.eth.chain_id

    def validate_address(self, address: str) -> bool:
        return Web3.is_address(address)

    async def build_transfer(self, destination: str, amount: Decimal) -> SignedTransfer:
        return await asyncio.to_thread(self._build_transfer, destination, amount)

    def _build_transfer(self, destination: str, amount: Decimal) -> SignedTransfer:
        if not Web3.is_address(destination):
            raise PermanentLedgerError(
                RejectionReason.INVALID_ADDRESS, f"Invalid address: {destination}"
            )
        to = Web3.to_checksum_address(destination)
        try:
            tx = {
                "to": to,
                "value": self._w3.to_wei(amount, "ether"),
                "gas": NATIVE_TRANSFER_GAS,
                "gasPrice": self._w3.eth.gas_price,
                "nonce": self._w3.eth.get_transaction_count(self._wallet.address, "pending"),
                "chainId": self._w3.eth.chain_id,
            }
        except requests.exceptions.RequestException as e:
            raise TransientLedgerError(f"Node unavailable: {e}") from e

        signed = self._wallet.get_account().sign_transaction(tx)
        return SignedTransfer(
            tx_ref=Web3.to_hex(signed.hash),
            destination=to,
            amount=amount,
            payload=bytes(signed.raw_transaction),
        )

    async def broadcast(self, transfer: SignedTransfer) -> str:
        return await asyncio.to_thread(self._broadcast, transfer)

    def _broadcast(self, transfer: SignedTransfer) -> str:
        try:
            self._w3.eth.send_raw_transaction(transfer.payload)
        except requests.exceptions.Timeout as e:
            raise TransientLedgerError(f"Broadcast timed out: {e}", ambiguous=True) from e
        except requests.exceptions.RequestException as e:
            raise TransientLedgerError(f"Node unavailable: {e}") from e
        except (ValueError, Web3Exception) as e:
            reason = _classify_node_error(str(e))
            if reason is None:
                logger.info("Transaction already known to node", extra={"tx_ref": transfer.tx_ref})
                return transfer.tx_ref
            if "nonce too low" in str(e).lower() and self._is_known(transfer.tx_ref):
                # An earlier attempt of this same transfer was mined
                return transfer.tx_ref
            raise PermanentLedgerError(reason, f"Node rejected transaction: {e}") from e

        logger.info(
            "Transfer broadcast",
            extra={
                "tx_ref": transfer.tx_ref,
                "to": transfer.destination,
                "amount": str(transfer.amount),
            },
        )
        return transfer.tx_ref

    def _is_known(self, tx_ref: str) -> bool:
        try:
            self._w3.eth.get_transaction(tx_ref)
        except TransactionNotFound:
            return False
        except requests.exceptions.RequestException as e:
            raise TransientLedgerError(f"Transaction lookup failed: {e}", ambiguous=True) from e
        return True

    async def query_status(self, tx_ref: str) -> TxStatus:
        return await asyncio.to_thread(self._query_status, tx_ref)

    def _query_status(self, tx_ref: str) -> TxStatus:
        try:
            try:
                receipt = self._w3.eth.get_transaction_receipt(tx_ref)
            except TransactionNotFound:
                return TxStatus.PENDING if self._is_known(tx_ref) else TxStatus.UNKNOWN
        except requests.exceptions.RequestException as e:
            raise TransientLedgerError(f"Status query failed: {e}") from e

        return TxStatus.CONFIRMED if receipt["status"] == 1 else TxStatus.FAILED

    async def get_balance(self) -> Decimal:
        return await asyncio.to_thread(self._get_balance)

    def _get_balance(self) -> Decimal:
        try:
            wei = self._w3.eth.get_balance(self._wallet.address)
        except requests.exceptions.RequestException as e:
            raise TransientLedgerError(f"Balance query failed: {e}") from e
        return Decimal(str(self._w3.from_wei(wei, "ether")))
