"""Slack command handlers for Spigot.

Commands:
- /spigot <address> - Request the standard grant
- /spigot status - Check faucet status and your allowance
- /spigot resume - Resume a paused faucet (operators only)
- /spigot help - Show help message
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from slack_bolt.async_app import AsyncApp

from spigot.core.models import Enqueued
from spigot.faucet.service import FaucetService
from spigot.ledger.networks import NetworkInfo

from .formatter import MessageFormatter

logger = logging.getLogger(__name__)

# Anything shaped like a hex address, checked against the ledger afterwards.
# Bare 40-digit hex is accepted and given its 0x prefix.
ADDRESS_CANDIDATE = re.compile(r"\b0x[0-9a-zA-Z]+\b|\b[0-9a-fA-F]{40}\b")


@dataclass
class ParsedAddresses:
    """Addresses found in command text."""

    valid: list[str] = field(default_factory=list)
    almost: list[str] = field(default_factory=list)  # look like addresses but fail validation


def _parse_addresses(text: str, validate: Callable[[str], bool]) -> ParsedAddresses:
    """Split address-like tokens into valid and almost-valid ones.

    Parameters
    ----------
    text : str
        Command arguments text.
    validate : Callable[[str], bool]
        Ledger address validator.

    Returns
    -------
    ParsedAddresses
        Tokens in order of appearance, duplicates removed.
    """
    parsed = ParsedAddresses()
    for candidate in ADDRESS_CANDIDATE.findall(text):
        address = candidate if candidate.startswith("0x") else f"0x{candidate}"
        if address in parsed.valid or candidate in parsed.almost:
            continue
        if validate(address):
            parsed.valid.append(address)
        else:
            parsed.almost.append(candidate)
    return parsed


def register_commands(
    app: AsyncApp,
    faucet: FaucetService,
    network: NetworkInfo | None = None,
    operator_ids: list[str] | None = None,
) -> None:
    """Register the Spigot slash command with the Slack app.

    Parameters
    ----------
    app : AsyncApp
        Slack Bolt async app instance.
    faucet : FaucetService
        Faucet service for handling requests.
    network : NetworkInfo | None
        Network info for explorer links.
    operator_ids : list[str] | None
        Slack user IDs allowed to run operator commands.
    """
    formatter = MessageFormatter(network)
    operators = list(operator_ids or [])

    @app.command("/spigot")
    async def handle_spigot_command(ack, command, respond):
        """Handle /spigot slash command."""
        await ack()

        try:
            user_id = command["user_id"]
            channel_id = command.get("channel_id")
            text = command.get("text", "").strip()

            parts = text.split(None, 1)
            subcommand = parts[0].lower() if parts else "help"

            logger.info(
                "Received /spigot command",
                extra={"user_id": user_id, "channel_id": channel_id, "command_args": text},
            )

            if subcommand == "help":
                await respond(formatter.format_help(faucet.grant_amount, faucet.window_seconds))
            elif subcommand == "status":
                await _handle_status(respond, faucet, formatter, user_id)
            elif subcommand == "resume":
                await _handle_resume(respond, faucet, formatter, user_id, operators)
            else:
                await _handle_request(respond, faucet, formatter, user_id, channel_id, text)
        except Exception:
            logger.exception("Error handling /spigot command")
            await respond(formatter.format_error("An unexpected error occurred. Please try again."))


async def _handle_request(
    respond,
    faucet: FaucetService,
    formatter: MessageFormatter,
    user_id: str,
    channel_id: str | None,
    text: str,
) -> None:
    """Handle /spigot <address>."""
    parsed = _parse_addresses(text, faucet.validate_address)

    if not parsed.valid:
        if parsed.almost:
            listed = "\n".join(f"`{a}`" for a in parsed.almost)
            await respond(
                formatter.format_error(
                    "The following _look like_ addresses, but are invalid "
                    f"(maybe a typo?):\n{listed}"
                )
            )
        else:
            await respond(
                formatter.format_error(
                    "Please provide an address: `/spigot <address>`. "
                    "Use `/spigot help` for available commands."
                )
            )
        return

    destination = parsed.valid[0]
    notes = []
    if parsed.almost:
        notes.append(
            "Ignored invalid addresses: " + ", ".join(f"`{a}`" for a in parsed.almost)
        )
    if len(parsed.valid) > 1:
        notes.append(
            "Only one address per request; try again later for: "
            + ", ".join(f"`{a}`" for a in parsed.valid[1:])
        )

    result = await faucet.request_dispense(user_id, destination, channel=channel_id)

    if isinstance(result, Enqueued):
        await respond(formatter.format_enqueued(result, destination, faucet.grant_amount, notes))
    else:
        await respond(formatter.format_denied(result))


async def _handle_status(
    respond, faucet: FaucetService, formatter: MessageFormatter, user_id: str
) -> None:
    """Handle /spigot status."""
    status = await faucet.get_status()
    user_status = await faucet.get_user_status(user_id)
    await respond(formatter.format_status(status, user_status))


async def _handle_resume(
    respond,
    faucet: FaucetService,
    formatter: MessageFormatter,
    user_id: str,
    operators: list[str],
) -> None:
    """Handle /spigot resume."""
    if user_id not in operators:
        logger.warning("Resume refused for non-operator", extra={"user_id": user_id})
        await respond(formatter.format_error("Only faucet operators can resume dispatch."))
        return

    await faucet.resume()
    logger.info("Dispatch resumed by operator", extra={"user_id": user_id})
    await respond(formatter.format_resumed())
