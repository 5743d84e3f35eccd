"""CLI subcommands for Spigot operations.

Provides command-line interface for:
- Wallet operations (address, balance)
- Dispatch queue inspection and resume
- Rate limit inspection and reset
- Dispatch log lookup
"""

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from decimal import Decimal
from typing import TypeVar

from spigot.config import SpigotConfig
from spigot.core.models import DispatchRecord
from spigot.faucet.rate_limiter import RateLimitLedger
from spigot.ledger.client import Web3LedgerClient
from spigot.ledger.wallet import KeyWallet, load_wallet
from spigot.storage import FaucetStore, create_store

T = TypeVar("T")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="spigot",
        description="Spigot - rate-limited faucet dispatch",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would happen without executing",
    )
    parser.add_argument(
        "--generate-wallet",
        metavar="FILE",
        help="Generate a new wallet and save private key to FILE, then exit",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Start the Spigot service")

    wallet_parser = subparsers.add_parser("wallet", help="Wallet operations")
    wallet_sub = wallet_parser.add_subparsers(dest="wallet_command")
    wallet_sub.add_parser("address", help="Show wallet address")
    wallet_sub.add_parser("balance", help="Show wallet balance")

    queue_parser = subparsers.add_parser("queue", help="Dispatch queue operations")
    queue_sub = queue_parser.add_subparsers(dest="queue_command")
    queue_sub.add_parser("status", help="Show pause state and open requests")
    queue_sub.add_parser("pending", help="List open requests")
    queue_sub.add_parser("resume", help="Clear the pause flag")

    limits_parser = subparsers.add_parser("limits", help="Rate limit operations")
    limits_sub = limits_parser.add_subparsers(dest="limits_command")
    show_parser = limits_sub.add_parser("show", help="Show an identity's window")
    show_parser.add_argument("identity", type=str, help="Requester identity (Slack user ID)")
    reset_parser = limits_sub.add_parser("reset", help="Clear an identity's window")
    reset_parser.add_argument("identity", type=str, help="Requester identity (Slack user ID)")

    dispatch_parser = subparsers.add_parser("dispatch", help="Dispatch log operations")
    dispatch_sub = dispatch_parser.add_subparsers(dest="dispatch_command")
    lookup_parser = dispatch_sub.add_parser("show", help="Show one dispatch log row")
    lookup_parser.add_argument("request_ref", type=str, help="Request reference")

    return parser


def _timestamp(value: float | None) -> str | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat(timespec="seconds")


def _record_to_dict(record: DispatchRecord) -> dict:
    return {
        "request_ref": record.request_ref,
        "identity": record.identity,
        "destination": record.destination,
        "amount": record.amount,
        "state": record.state.value,
        "outcome": record.outcome.value if record.outcome else None,
        "tx_ref": record.tx_ref,
        "error": record.error,
        "channel": record.channel,
        "created_at": _timestamp(record.created_at),
        "closed_at": _timestamp(record.closed_at),
    }


class CLIContext:
    """Shared context for CLI commands."""

    def __init__(self, config: SpigotConfig, dry_run: bool = False, json_output: bool = False):
        self.config = config
        self.dry_run = dry_run
        self.json_output = json_output
        self._wallet: KeyWallet | None = None
        self._ledger: Web3LedgerClient | None = None

    @property
    def wallet(self) -> KeyWallet:
        """Get wallet (lazy loaded)."""
        if self._wallet is None:
            self._wallet = load_wallet(
                self.config.wallet_private_key, self.config.wallet_private_key_file
            )
        return self._wallet

    @property
    def ledger(self) -> Web3LedgerClient:
        """Get ledger client (lazy loaded)."""
        if self._ledger is None:
            self._ledger = Web3LedgerClient(
                self.config.rpc_endpoint,
                self.wallet,
                request_timeout=self.config.rpc_timeout_seconds,
            )
        return self._ledger

    def create_store(self) -> FaucetStore:
        return create_store(self.config.redis_url)

    def rate_limits(self, store: FaucetStore) -> RateLimitLedger:
        return RateLimitLedger(
            store,
            window_seconds=self.config.window_seconds,
            cap=self.config.window_cap,
            grant_amount=self.config.grant_amount,
        )

    def with_store(self, operation: Callable[[FaucetStore], Awaitable[T]]) -> T:
        """Run an async operation against a fresh store, closing it afterwards."""

        async def _run() -> T:
            store = self.create_store()
            try:
                return await operation(store)
            finally:
                await store.close()

        return asyncio.run(_run())

    def output(self, data: dict) -> None:
        """Output data in the appropriate format."""
        if self.json_output:

            def decimal_default(obj):
                if isinstance(obj, Decimal):
                    return str(obj)
                raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

            print(json.dumps(data, default=decimal_default, indent=2))
        else:
            self._print_formatted(data)

    def _print_formatted(self, data: dict, indent: int = 0) -> None:
        prefix = "  " * indent
        for key, value in data.items():
            if isinstance(value, dict):
                print(f"{prefix}{key}:")
                self._print_formatted(value, indent + 1)
            elif isinstance(value, list):
                print(f"{prefix}{key}:")
                for item in value:
                    if isinstance(item, dict):
                        self._print_formatted(item, indent + 1)
                        print()
                    else:
                        print(f"{prefix}  - {item}")
            else:
                print(f"{prefix}{key}: {value}")


# Wallet commands


def cmd_wallet_address(ctx: CLIContext) -> int:
    """Show wallet address."""
    try:
        ctx.output({"address": ctx.wallet.address})
        return 0
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1


def cmd_wallet_balance(ctx: CLIContext) -> int:
    """Show wallet balance."""
    try:
        if not ctx.ledger.connected:
            ctx.output({"error": "Not connected to RPC endpoint"})
            return 1

        balance = asyncio.run(ctx.ledger.get_balance())
        ctx.output(
            {
                "address": ctx.wallet.address,
                "balance": balance,
                "grants_left": int(balance // ctx.config.grant_amount),
                "rpc": ctx.config.rpc_endpoint,
                "chain_id": ctx.ledger.chain_id,
            }
        )
        return 0
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1


# Queue commands


def cmd_queue_status(ctx: CLIContext) -> int:
    """Show pause state and open requests by state."""

    async def _status(store: FaucetStore) -> tuple[str | None, list[DispatchRecord]]:
        return await store.get_paused(), await store.open_dispatches()

    try:
        paused, rows = ctx.with_store(_status)
        by_state: dict[str, int] = {}
        for row in rows:
            by_state[row.state.value] = by_state.get(row.state.value, 0) + 1
        ctx.output(
            {
                "paused": paused is not None,
                "paused_reason": paused,
                "open_requests": len(rows),
                "by_state": by_state,
                "max_queue_depth": ctx.config.max_queue_depth,
            }
        )
        return 0
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1


def cmd_queue_pending(ctx: CLIContext) -> int:
    """List open requests in admission order."""
    try:
        rows = ctx.with_store(lambda store: store.open_dispatches())
        ctx.output({"pending": [_record_to_dict(row) for row in rows]})
        return 0
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1


def cmd_queue_resume(ctx: CLIContext) -> int:
    """Clear the pause flag; a running service picks it up on its next poll."""
    try:
        paused = ctx.with_store(lambda store: store.get_paused())
        if paused is None:
            ctx.output({"success": True, "message": "Dispatch is not paused"})
            return 0

        if ctx.dry_run:
            ctx.output(
                {
                    "dry_run": True,
                    "action": "resume",
                    "paused_reason": paused,
                    "message": "Would clear the pause flag",
                }
            )
            return 0

        ctx.with_store(lambda store: store.clear_paused())
        ctx.output({"success": True, "action": "resume", "paused_reason": paused})
        return 0
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1


# Limit commands


def cmd_limits_show(ctx: CLIContext, identity: str) -> int:
    """Show an identity's rolling window."""

    async def _show(store: FaucetStore):
        rate_limits = ctx.rate_limits(store)
        return await rate_limits.get_usage(identity), await rate_limits.get_record(identity)

    try:
        usage, record = ctx.with_store(_show)
        ctx.output(
            {
                "identity": identity,
                "amount_in_window": usage.amount_in_window,
                "remaining": usage.remaining,
                "cap": ctx.config.window_cap,
                "window_hours": ctx.config.window_hours,
                "next_eligible": _timestamp(usage.next_eligible_time) or "now",
                "last_grant": _timestamp(record.last_grant_time) if record else None,
            }
        )
        return 0
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1


def cmd_limits_reset(ctx: CLIContext, identity: str) -> int:
    """Clear an identity's rolling window."""
    try:
        if ctx.dry_run:
            ctx.output(
                {
                    "dry_run": True,
                    "action": "reset",
                    "identity": identity,
                    "message": f"Would clear the rate limit window of {identity}",
                }
            )
            return 0

        ctx.with_store(lambda store: ctx.rate_limits(store).reset_identity(identity))
        ctx.output({"success": True, "action": "reset", "identity": identity})
        return 0
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1


# Dispatch log commands


def cmd_dispatch_show(ctx: CLIContext, request_ref: str) -> int:
    """Show one dispatch log row."""
    try:
        record = ctx.with_store(lambda store: store.get_dispatch(request_ref))
        if record is None:
            ctx.output({"error": f"Unknown request: {request_ref}"})
            return 1
        ctx.output(_record_to_dict(record))
        return 0
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1


def run_cli(args: argparse.Namespace) -> int:
    """Execute CLI command based on parsed arguments.

    Returns
    -------
    int
        Exit code: 0 for success, positive for error, -1 signals caller
        to show help (no CLI command specified).
    """
    try:
        config = SpigotConfig()
    except Exception as e:
        if args.json:
            print(json.dumps({"error": f"Configuration error: {e}"}))
        else:
            print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    ctx = CLIContext(config, dry_run=args.dry_run, json_output=args.json)

    if args.command == "wallet":
        if args.wallet_command == "address":
            return cmd_wallet_address(ctx)
        elif args.wallet_command == "balance":
            return cmd_wallet_balance(ctx)
        else:
            print("Usage: spigot wallet [address|balance]", file=sys.stderr)
            return 1

    elif args.command == "queue":
        if args.queue_command == "status":
            return cmd_queue_status(ctx)
        elif args.queue_command == "pending":
            return cmd_queue_pending(ctx)
        elif args.queue_command == "resume":
            return cmd_queue_resume(ctx)
        else:
            print("Usage: spigot queue [status|pending|resume]", file=sys.stderr)
            return 1

    elif args.command == "limits":
        if args.limits_command == "show":
            return cmd_limits_show(ctx, args.identity)
        elif args.limits_command == "reset":
            return cmd_limits_reset(ctx, args.identity)
        else:
            print("Usage: spigot limits [show|reset] <identity>", file=sys.stderr)
            return 1

    elif args.command == "dispatch":
        if args.dispatch_command == "show":
            return cmd_dispatch_show(ctx, args.request_ref)
        else:
            print("Usage: spigot dispatch show <request_ref>", file=sys.stderr)
            return 1

    else:
        return -1
