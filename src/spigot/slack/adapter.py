"""Socket Mode connection for the Spigot Slack front-end."""

import logging

from pydantic import SecretStr
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_bolt.async_app import AsyncApp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

logger = logging.getLogger(__name__)


class SlackAdapter:
    """Owns the Bolt app and its Socket Mode handler.

    The bot token is verified with ``auth.test`` before the socket is opened, so
    a revoked or mistyped token fails at startup instead of on the first reply.

    Parameters
    ----------
    bot_token : SecretStr
        Slack bot token (xoxb-...).
    app_token : SecretStr
        Slack app-level token (xapp-...) for Socket Mode.
    """

    def __init__(self, bot_token: SecretStr, app_token: SecretStr):
        self._app_token = app_token
        self._app = AsyncApp(token=bot_token.get_secret_value())
        self._handler: AsyncSocketModeHandler | None = None
        self._bot_user_id: str | None = None

    @property
    def app(self) -> AsyncApp:
        return self._app

    @property
    def client(self) -> AsyncWebClient:
        """Web API client shared with the outcome notifier."""
        return self._app.client

    @property
    def bot_user_id(self) -> str | None:
        """Slack user ID of the bot, known once started."""
        return self._bot_user_id

    @property
    def is_running(self) -> bool:
        return self._handler is not None

    async def start(self) -> None:
        """Verify the bot token, then connect via Socket Mode.

        Raises
        ------
        SlackApiError
            If the bot token is rejected.
        """
        if self._handler is not None:
            logger.warning("Slack adapter already running")
            return

        try:
            identity = await self._app.client.auth_test()
        except SlackApiError as e:
            logger.error("Slack bot token rejected", extra={"error": e.response.get("error")})
            raise
        self._bot_user_id = identity.get("user_id")
        logger.info(
            "Slack bot authenticated",
            extra={"bot_user_id": self._bot_user_id, "team": identity.get("team")},
        )

        handler = AsyncSocketModeHandler(self._app, self._app_token.get_secret_value())
        try:
            await handler.connect_async()
        except Exception as e:
            logger.error("Failed to connect Slack adapter", extra={"error": str(e)})
            raise
        self._handler = handler
        logger.info("Slack adapter connected via Socket Mode")

    async def stop(self) -> None:
        if self._handler is None:
            return
        await self._handler.close_async()
        self._handler = None
        logger.info("Slack adapter stopped")
