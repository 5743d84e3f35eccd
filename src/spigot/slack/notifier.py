"""Delivers dispatch outcomes and operator alerts to Slack."""

import logging

from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from spigot.core.models import DispatchOutcome, OutcomeStatus

from .formatter import MessageFormatter

logger = logging.getLogger(__name__)

_FALLBACK_TEXT = {
    OutcomeStatus.GRANTED: "Faucet transfer sent",
    OutcomeStatus.FAILED: "Faucet transfer failed",
    OutcomeStatus.UNRESOLVED: "Faucet transfer unresolved",
    OutcomeStatus.DENIED: "Faucet request denied",
}


class SlackNotifier:
    """Posts outcomes to the channel each request came from.

    Parameters
    ----------
    client : AsyncWebClient
        Slack Web API client.
    formatter : MessageFormatter
        Block Kit formatter.
    operator_ids : list[str] | None
        Operators mentioned on failed and unresolved outcomes.
    alert_channel : str | None
        Channel receiving operator alerts; alerts are only logged without one.
    """

    def __init__(
        self,
        client: AsyncWebClient,
        formatter: MessageFormatter,
        operator_ids: list[str] | None = None,
        alert_channel: str | None = None,
    ):
        self._client = client
        self._formatter = formatter
        self._operator_ids = list(operator_ids or [])
        self._alert_channel = alert_channel

    async def on_outcome(self, outcome: DispatchOutcome) -> None:
        """OutcomeBus subscriber."""
        if outcome.channel is None:
            logger.info(
                "Outcome has no reply channel",
                extra={"request_ref": outcome.request_ref, "status": outcome.status.value},
            )
            return

        message = self._formatter.format_outcome(outcome, self._operator_ids)
        try:
            await self._client.chat_postMessage(
                channel=outcome.channel,
                text=_FALLBACK_TEXT[outcome.status],
                blocks=message["blocks"],
            )
        except SlackApiError as e:
            logger.error(
                "Failed to deliver outcome",
                extra={
                    "request_ref": outcome.request_ref,
                    "channel": outcome.channel,
                    "error": e.response.get("error", str(e)),
                },
            )

    async def on_alert(self, message: str) -> None:
        """OutcomeBus alert subscriber."""
        if not self._alert_channel:
            return

        formatted = self._formatter.format_alert(message, self._operator_ids)
        try:
            await self._client.chat_postMessage(
                channel=self._alert_channel,
                text=f"Faucet alert: {message}",
                blocks=formatted["blocks"],
            )
        except SlackApiError as e:
            logger.error(
                "Failed to deliver alert",
                extra={"channel": self._alert_channel, "error": e.response.get("error", str(e))},
            )
