"""Faucet wallet loading.

Key custody stays outside the dispatch core: the ledger client only asks a
WalletProvider for an account to sign with.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount
from pydantic import SecretStr


class WalletProvider(ABC):
    """Source of the faucet's signing account."""

    @abstractmethod
    def get_account(self) -> LocalAccount:
        ...

    @property
    def address(self) -> str:
        """Checksummed address of the faucet wallet."""
        return self.get_account().address


class KeyWallet(WalletProvider):
    """Wallet backed by a raw private key, given inline or in a file.

    Parameters
    ----------
    private_key : SecretStr, optional
        The private key (from an environment variable).
    private_key_file : str, optional
        Path to a file containing the private key.

    Raises
    ------
    ValueError
        If neither source is provided.
    FileNotFoundError
        If private_key_file does not exist.
    """

    def __init__(
        self,
        private_key: SecretStr | None = None,
        private_key_file: str | None = None,
    ):
        if private_key is not None:
            self._account = Account.from_key(private_key.get_secret_value())
        elif private_key_file is not None:
            key_path = Path(private_key_file).expanduser()
            if not key_path.exists():
                raise FileNotFoundError(f"Private key file not found: {private_key_file}")
            self._account = Account.from_key(key_path.read_text().strip())
        else:
            raise ValueError("Either private_key or private_key_file must be provided")

    def get_account(self) -> LocalAccount:
        return self._account


def load_wallet(
    private_key: SecretStr | None,
    private_key_file: str | None,
) -> KeyWallet:
    """Load the faucet wallet, preferring the inline key when both are set.

    Raises
    ------
    ValueError
        If no key source is configured.
    """
    if private_key is None and private_key_file is None:
        raise ValueError(
            "No wallet configured. Set SPIGOT_WALLET_PRIVATE_KEY or SPIGOT_WALLET_PRIVATE_KEY_FILE"
        )
    if private_key is not None:
        return KeyWallet(private_key=private_key)
    return KeyWallet(private_key_file=private_key_file)
