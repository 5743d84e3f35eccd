"""Block explorer links for chat replies."""

from dataclasses import dataclass


@dataclass
class NetworkInfo:
    """Network details used to render links.

    Attributes
    ----------
    rpc_endpoint : str
        The RPC endpoint URL.
    chain_id : int | None
        Chain ID reported by the node, if known.
    block_explorer_url : str | None
        Base URL of a block explorer, if one is configured.
    """

    rpc_endpoint: str
    chain_id: int | None = None
    block_explorer_url: str | None = None

    def _link(self, kind: str, value: str) -> str | None:
        if not self.block_explorer_url:
            return None
        return f"{self.block_explorer_url.rstrip('/')}/{kind}/{value}"

    def tx_url(self, tx_ref: str) -> str | None:
        """Explorer URL for a transaction, or None without an explorer."""
        return self._link("tx", tx_ref)

    def address_url(self, address: str) -> str | None:
        """Explorer URL for an address, or None without an explorer."""
        return self._link("address", address)
