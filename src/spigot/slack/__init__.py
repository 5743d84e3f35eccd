"""Slack front-end for the Spigot faucet."""

from .adapter import SlackAdapter
from .commands import register_commands
from .formatter import MessageFormatter
from .notifier import SlackNotifier

__all__ = [
    "MessageFormatter",
    "SlackAdapter",
    "SlackNotifier",
    "register_commands",
]
