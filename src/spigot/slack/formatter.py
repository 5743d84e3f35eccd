"""Message formatter for Slack responses."""

import math
import time
from decimal import Decimal

from spigot.core.models import Denied, DenialReason, DispatchOutcome, Enqueued, OutcomeStatus
from spigot.faucet.service import FaucetStatus
from spigot.ledger.networks import NetworkInfo


def _format_wait(seconds: float) -> str:
    """Format a wait duration for user display."""
    seconds = max(0, math.ceil(seconds))
    if seconds < 60:
        return f"{seconds} seconds"
    hours, rest = divmod(seconds, 3600)
    minutes, remaining_seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if remaining_seconds > 0:
        return f"{minutes}m {remaining_seconds}s"
    return f"{minutes} minutes"


def _format_window(seconds: float) -> str:
    hours = seconds / 3600
    if hours.is_integer():
        return "hour" if hours == 1 else f"{int(hours)} hours"
    return f"{hours:g} hours"


def _mention(user_ids: list[str]) -> str:
    return " ".join(f"<@{user_id}>" for user_id in user_ids)


def _section(text: str) -> dict:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _context(text: str) -> dict:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


class MessageFormatter:
    """Formats faucet responses for Slack using Block Kit.

    Parameters
    ----------
    network : NetworkInfo | None
        Network info for generating explorer links.
    """

    def __init__(self, network: NetworkInfo | None = None):
        self._network = network

    def _tx_text(self, tx_ref: str) -> str:
        if self._network:
            tx_url = self._network.tx_url(tx_ref)
            if tx_url:
                return f"<{tx_url}|{tx_ref[:18]}...>"
        return f"`{tx_ref}`"

    def format_enqueued(
        self,
        result: Enqueued,
        destination: str,
        amount: Decimal,
        notes: list[str] | None = None,
    ) -> dict:
        """Format the reply to an admitted request.

        Parameters
        ----------
        result : Enqueued
            Admission result.
        destination : str
            Address being funded.
        amount : Decimal
            Amount that will be sent.
        notes : list[str] | None
            Extra lines about ignored or malformed addresses.

        Returns
        -------
        dict
            Slack Block Kit message.
        """
        blocks = [
            _section(f":hourglass_flowing_sand: *Sending {amount} to* `{destination}`"),
            _context(
                f"Queue position: {result.position}. "
                "You will get a message here once the transfer settles."
            ),
        ]
        if notes:
            blocks.append(_section("\n".join(notes)))
        return {"blocks": blocks}

    def format_denied(self, denied: Denied, now: float | None = None) -> dict:
        """Format a refused request.

        Parameters
        ----------
        denied : Denied
            Admission result.
        now : float | None
            Current Unix time, used to render the wait for rate limits.

        Returns
        -------
        dict
            Slack Block Kit message.
        """
        text = denied.message
        if denied.reason == DenialReason.RATE_LIMITED and denied.retry_after is not None:
            now = time.time() if now is None else now
            text = (
                "You have reached your limit. "
                f"Please wait {_format_wait(denied.retry_after - now)} before your next request"
            )

        blocks = [_section(f":x: *{text}*")]
        if denied.retryable and denied.reason != DenialReason.RATE_LIMITED:
            blocks.append(_context("This is temporary. Please try again later."))
        return {"blocks": blocks}

    def format_outcome(self, outcome: DispatchOutcome, operator_ids: list[str] | None = None) -> dict:
        """Format the final result of a request.

        Failed and unresolved outcomes mention the operators.

        Parameters
        ----------
        outcome : DispatchOutcome
            Final outcome.
        operator_ids : list[str] | None
            Slack user IDs to mention on failure.

        Returns
        -------
        dict
            Slack Block Kit message.
        """
        requester = f"<@{outcome.identity}>"

        if outcome.status == OutcomeStatus.GRANTED:
            blocks = [
                _section(f":white_check_mark: {requester} *Sent {outcome.amount}*"),
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*To:*\n`{outcome.destination}`"},
                        {
                            "type": "mrkdwn",
                            "text": f"*Transaction:*\n{self._tx_text(outcome.tx_ref or '')}",
                        },
                    ],
                },
            ]
            return {"blocks": blocks}

        if outcome.status == OutcomeStatus.UNRESOLVED:
            headline = (
                f":warning: {requester} *The transfer to* `{outcome.destination}` "
                "*could not be confirmed yet*"
            )
        else:
            headline = f":x: {requester} *Failed to send to* `{outcome.destination}`"

        blocks = [_section(headline)]
        details = []
        if outcome.error:
            details.append(f"Error: {outcome.error}")
        if outcome.tx_ref:
            details.append(f"Transaction: {self._tx_text(outcome.tx_ref)}")
        if details:
            blocks.append(_context("\n".join(details)))
        if operator_ids:
            blocks.append(_section(f"{_mention(operator_ids)}: you may want to investigate this"))
        return {"blocks": blocks}

    def format_status(self, status: FaucetStatus, user_status: dict) -> dict:
        """Format faucet status response.

        Parameters
        ----------
        status : FaucetStatus
            Current faucet status.
        user_status : dict
            Requester's allowance as returned by ``get_user_status``.

        Returns
        -------
        dict
            Slack Block Kit message.
        """
        health_emoji = ":white_check_mark:" if status.healthy else ":warning:"
        balance = "unavailable" if status.balance is None else str(status.balance)

        if user_status["wait_seconds"] > 0:
            allowance = f"Next grant in {_format_wait(user_status['wait_seconds'])}"
        else:
            allowance = f"{user_status['remaining']} available"

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "Spigot Faucet Status"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Health:*\n{health_emoji} {status.message}"},
                    {"type": "mrkdwn", "text": f"*Your Allowance:*\n{allowance}"},
                ],
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Wallet Balance:*\n{balance}"},
                    {
                        "type": "mrkdwn",
                        "text": f"*Queue:*\n{status.queue_depth}/{status.max_queue_depth}",
                    },
                ],
            },
        ]
        return {"blocks": blocks}

    def format_help(self, grant_amount: Decimal, window_seconds: float) -> dict:
        """Format help message.

        Parameters
        ----------
        grant_amount : Decimal
            Amount sent per request.
        window_seconds : float
            Length of the rate-limit window.

        Returns
        -------
        dict
            Slack Block Kit message.
        """
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "Spigot Faucet Commands"},
            },
            _section(
                "*Available Commands:*\n\n"
                "`/spigot <address>`\n"
                f"Request {grant_amount} sent to an address\n\n"
                "`/spigot status`\n"
                "Check faucet status and your allowance\n\n"
                "`/spigot help`\n"
                "Show this help message"
            ),
            _context(
                f"Rate limits apply over a rolling {_format_window(window_seconds)}. "
                "Use `/spigot status` to check your allowance."
            ),
        ]
        return {"blocks": blocks}

    def format_alert(self, message: str, operator_ids: list[str] | None = None) -> dict:
        """Format an operator alert."""
        text = f":rotating_light: *Faucet alert:* {message}"
        if operator_ids:
            text = f"{_mention(operator_ids)} {text}"
        return {"blocks": [_section(text)]}

    def format_resumed(self) -> dict:
        return {"blocks": [_section(":arrow_forward: *Dispatch resumed*")]}

    def format_error(self, message: str) -> dict:
        """Format a generic error message.

        Parameters
        ----------
        message : str
            Error message.

        Returns
        -------
        dict
            Slack Block Kit message.
        """
        return {"blocks": [_section(f":x: {message}")]}
