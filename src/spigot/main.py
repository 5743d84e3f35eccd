#!/usr/bin/env python3
"""Spigot - rate-limited faucet dispatch.

Entry point for the Spigot service.
"""

import asyncio
import logging
import os
import signal
import sys
import tempfile
from pathlib import Path

from eth_account import Account

from spigot.cli import create_parser, run_cli
from spigot.config import SpigotConfig
from spigot.faucet import create_faucet_service
from spigot.ledger import NetworkInfo, Web3LedgerClient, load_wallet
from spigot.observability.health import DispatchCheck, HealthServer, StorageCheck
from spigot.observability.logging import configure_logging
from spigot.slack import MessageFormatter, SlackAdapter, SlackNotifier, register_commands
from spigot.storage import create_store


def generate_wallet(output_path: str) -> None:
    """Generate a new wallet and save the private key to a file.

    Parameters
    ----------
    output_path : str
        Path to save the private key file.
    """
    account = Account.create()

    key_path = Path(output_path)
    key_path.parent.mkdir(parents=True, exist_ok=True)

    # Same-directory temp file so the final rename is atomic
    fd, temp_path = tempfile.mkstemp(dir=key_path.parent, prefix=".spigot-key-")
    fd_closed = False
    try:
        os.fchmod(fd, 0o600)
        os.write(fd, account.key.hex().encode())
        os.close(fd)
        fd_closed = True
        os.rename(temp_path, key_path)
    except Exception:
        if not fd_closed:
            os.close(fd)
        Path(temp_path).unlink(missing_ok=True)
        raise

    print(f"""
Wallet generated successfully!

  Address:     {account.address}
  Private Key: {key_path.absolute()}

Next steps:

  1. Fund this address with enough native coin for the grants you expect

  2. Launch Spigot with this wallet:

     export SPIGOT_WALLET_PRIVATE_KEY_FILE={key_path.absolute()}
     spigot run

IMPORTANT: Keep this private key secure. Anyone with access can control the wallet.
""")


def parse_args(argv: list[str] | None = None):
    """Parse command line arguments."""
    return create_parser().parse_args(argv)


async def run_service() -> None:
    """Run the Spigot service (long-running mode).

    Wires up and starts all service components:
    - HealthServer for readiness probes and metrics
    - Durable store (Redis) for rate limits and the dispatch log
    - Wallet and ledger client
    - FaucetService (admission, dispatch queue, outcome bus)
    - SlackAdapter, slash commands and outcome notifier
    """
    config = SpigotConfig()
    configure_logging(level=config.log_level, log_format=config.log_format)

    logger = logging.getLogger(__name__)
    logger.info("Spigot starting")
    logger.info("RPC endpoint: %s", config.rpc_endpoint)
    logger.info(
        "Grant policy: %s per request, cap %s per %sh window",
        config.grant_amount,
        config.window_cap,
        config.window_hours,
    )

    if not config.slack_bot_token or not config.slack_app_token:
        logger.error("Missing Slack tokens. Set SLACK_BOT_TOKEN and SLACK_APP_TOKEN")
        sys.exit(1)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def on_shutdown_signal(sig_name: str) -> None:
        logger.info("Received signal %s, initiating shutdown", sig_name)
        shutdown_event.set()

    loop.add_signal_handler(signal.SIGTERM, lambda: on_shutdown_signal("SIGTERM"))
    loop.add_signal_handler(signal.SIGINT, lambda: on_shutdown_signal("SIGINT"))

    health_server = HealthServer(port=config.metrics_port)
    await health_server.start()
    logger.info("Health server started on port %d", config.metrics_port)

    store = create_store(config.redis_url)
    if not await store.ping():
        logger.error("Storage unreachable at %s", config.redis_url)
        await health_server.stop()
        sys.exit(1)

    try:
        if config.wallet_private_key and config.wallet_private_key_file:
            logger.warning(
                "Both SPIGOT_WALLET_PRIVATE_KEY and SPIGOT_WALLET_PRIVATE_KEY_FILE set; "
                "using SPIGOT_WALLET_PRIVATE_KEY"
            )
        wallet = load_wallet(config.wallet_private_key, config.wallet_private_key_file)
    except (ValueError, FileNotFoundError) as e:
        logger.error("%s", e)
        await store.close()
        await health_server.stop()
        sys.exit(1)

    logger.info("Wallet loaded: %s", wallet.address)

    ledger = Web3LedgerClient(
        config.rpc_endpoint, wallet, request_timeout=config.rpc_timeout_seconds
    )
    chain_id = await asyncio.to_thread(lambda: ledger.chain_id)
    logger.info("Connected to chain ID: %d", chain_id)

    network = NetworkInfo(
        rpc_endpoint=config.rpc_endpoint,
        chain_id=chain_id,
        block_explorer_url=config.block_explorer_url,
    )

    faucet = create_faucet_service(config, store, ledger)

    health_server.add_check(StorageCheck(store))
    health_server.add_check(DispatchCheck(faucet.queue))

    slack_adapter = SlackAdapter(
        bot_token=config.slack_bot_token,
        app_token=config.slack_app_token,
    )

    # Subscribe before start so outcomes of recovered requests are delivered
    notifier = SlackNotifier(
        slack_adapter.client,
        MessageFormatter(network),
        operator_ids=config.operator_user_ids,
        alert_channel=config.alert_channel,
    )
    faucet.subscribe(notifier.on_outcome)
    faucet.subscribe_alerts(notifier.on_alert)

    await faucet.start()

    register_commands(slack_adapter.app, faucet, network, config.operator_user_ids)
    logger.info("Slack commands registered")

    await slack_adapter.start()
    logger.info("Spigot service ready", extra={"bot_user_id": slack_adapter.bot_user_id})

    await shutdown_event.wait()

    logger.info("Spigot shutting down...")
    await slack_adapter.stop()
    await faucet.stop()
    await store.close()
    await health_server.stop()
    logger.info("Spigot shutdown complete")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for Spigot."""
    args = parse_args(argv)

    if args.generate_wallet:
        generate_wallet(args.generate_wallet)
        return

    if args.command and args.command != "run":
        exit_code = run_cli(args)
        if exit_code >= 0:
            sys.exit(exit_code)
        create_parser().print_help()
        sys.exit(0)

    asyncio.run(run_service())


if __name__ == "__main__":
    main()
