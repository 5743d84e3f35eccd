"""Spigot - rate-limited faucet dispatch."""

__version__ = "0.1.0"
