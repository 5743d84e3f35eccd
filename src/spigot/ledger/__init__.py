"""Ledger integration for Spigot."""

from .client import (
    LedgerClient,
    LedgerError,
    PermanentLedgerError,
    RejectionReason,
    SignedTransfer,
    SubmitResult,
    TransientLedgerError,
    TxStatus,
    Web3LedgerClient,
)
from .networks import NetworkInfo
from .wallet import KeyWallet, WalletProvider, load_wallet

__all__ = [
    "KeyWallet",
    "LedgerClient",
    "LedgerError",
    "NetworkInfo",
    "PermanentLedgerError",
    "RejectionReason",
    "SignedTransfer",
    "SubmitResult",
    "TransientLedgerError",
    "TxStatus",
    "WalletProvider",
    "Web3LedgerClient",
    "load_wallet",
]
