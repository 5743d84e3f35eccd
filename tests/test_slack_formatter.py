"""Tests for Slack message formatter."""

from decimal import Decimal

import pytest

from spigot.core.models import Denied, DenialReason, DispatchOutcome, Enqueued, OutcomeStatus
from spigot.faucet.service import FaucetStatus
from spigot.ledger.networks import NetworkInfo
from spigot.slack.formatter import MessageFormatter, _format_wait, _format_window

ADDRESS = "0x742d35Cc6634C0532925a3b844Bc9e7595f8fE00"
TX_REF = "0xabcd1234567890abcd1234567890abcd1234567890abcd1234567890abcd1234"


def make_outcome(status: OutcomeStatus, tx_ref: str | None = TX_REF, error: str | None = None):
    return DispatchOutcome(
        request_ref="ref1",
        identity="U123",
        destination=ADDRESS,
        amount=Decimal("1"),
        status=status,
        tx_ref=tx_ref,
        error=error,
        channel="C1",
    )


def all_text(message: dict) -> str:
    """Concatenate every mrkdwn/plain_text string in a message."""
    parts = []
    for block in message["blocks"]:
        if "text" in block:
            parts.append(block["text"]["text"])
        for field in block.get("fields", []):
            parts.append(field["text"])
        for element in block.get("elements", []):
            parts.append(element["text"])
    return "\n".join(parts)


class TestFormatWait:
    """Tests for wait duration formatting."""

    def test_seconds(self):
        """Short waits are shown in seconds, rounded up."""
        assert _format_wait(42.2) == "43 seconds"

    def test_minutes(self):
        """Waits under an hour show minutes and seconds."""
        assert _format_wait(300) == "5 minutes"
        assert _format_wait(330) == "5m 30s"

    def test_hours(self):
        """Long waits show hours and minutes."""
        assert _format_wait(3 * 3600 + 120) == "3h 2m"

    def test_negative_clamped(self):
        """A wait already over is shown as zero."""
        assert _format_wait(-5) == "0 seconds"

    def test_window(self):
        """Window lengths are shown in hours."""
        assert _format_window(3600) == "hour"
        assert _format_window(86400) == "24 hours"
        assert _format_window(5400) == "1.5 hours"


class TestMessageFormatter:
    """Tests for MessageFormatter."""

    @pytest.fixture
    def formatter(self):
        """Create a formatter without network info."""
        return MessageFormatter()

    @pytest.fixture
    def formatter_with_network(self):
        """Create a formatter with network info."""
        network = NetworkInfo(
            rpc_endpoint="https://rpc.example.com",
            chain_id=65100000,
            block_explorer_url="https://explorer.example.com",
        )
        return MessageFormatter(network)

    def test_format_enqueued(self, formatter):
        """Enqueued reply names amount, address and queue position."""
        response = formatter.format_enqueued(Enqueued("ref1", 3), ADDRESS, Decimal("1"))

        text = all_text(response)
        assert "Sending 1" in text
        assert ADDRESS in text
        assert "Queue position: 3" in text

    def test_format_enqueued_with_notes(self, formatter):
        """Notes are appended as an extra block."""
        response = formatter.format_enqueued(
            Enqueued("ref1", 1), ADDRESS, Decimal("1"), notes=["Only one address per request"]
        )

        assert len(response["blocks"]) == 3
        assert "Only one address" in response["blocks"][2]["text"]["text"]

    def test_format_denied_rate_limited(self, formatter):
        """Rate limit denials show the remaining wait."""
        denied = Denied(DenialReason.RATE_LIMITED, "Rate limit reached", retry_after=1000.0 + 7200)

        response = formatter.format_denied(denied, now=1000.0)

        text = all_text(response)
        assert "Please wait 2h 0m before your next request" in text
        assert len(response["blocks"]) == 1

    def test_format_denied_temporary(self, formatter):
        """Retryable denials say so."""
        denied = Denied(DenialReason.QUEUE_FULL, "The faucet is busy.")

        response = formatter.format_denied(denied)

        assert "The faucet is busy." in all_text(response)
        assert "temporary" in response["blocks"][1]["elements"][0]["text"]

    def test_format_denied_permanent(self, formatter):
        """Invalid requests get no retry hint."""
        denied = Denied(DenialReason.INVALID_ADDRESS, "Invalid address: 0x12")

        response = formatter.format_denied(denied)

        assert len(response["blocks"]) == 1
        assert ":x:" in response["blocks"][0]["text"]["text"]

    def test_format_outcome_granted(self, formatter):
        """Granted outcomes mention the requester and the transaction."""
        response = formatter.format_outcome(make_outcome(OutcomeStatus.GRANTED))

        text = all_text(response)
        assert ":white_check_mark:" in text
        assert "<@U123>" in text
        assert f"`{TX_REF}`" in text

    def test_format_outcome_granted_with_explorer(self, formatter_with_network):
        """Granted outcomes link to the explorer when configured."""
        response = formatter_with_network.format_outcome(make_outcome(OutcomeStatus.GRANTED))

        text = all_text(response)
        assert f"https://explorer.example.com/tx/{TX_REF}" in text

    def test_format_outcome_failed_mentions_operators(self, formatter):
        """Failures include the error and ping operators."""
        outcome = make_outcome(OutcomeStatus.FAILED, tx_ref=None, error="Node rejected")

        response = formatter.format_outcome(outcome, operator_ids=["UOPS1", "UOPS2"])

        text = all_text(response)
        assert "Failed to send" in text
        assert "Error: Node rejected" in text
        assert "<@UOPS1> <@UOPS2>: you may want to investigate this" in text
        assert "Transaction:" not in text

    def test_format_outcome_unresolved(self, formatter):
        """Unresolved outcomes say the transfer is not confirmed yet."""
        outcome = make_outcome(OutcomeStatus.UNRESOLVED, error="No confirmation within 300s")

        response = formatter.format_outcome(outcome)

        text = all_text(response)
        assert ":warning:" in text
        assert "could not be confirmed yet" in text
        assert TX_REF in text

    def test_format_status(self, formatter):
        """Status shows health, allowance, balance and queue."""
        status = FaucetStatus(
            healthy=True,
            paused_reason=None,
            queue_depth=2,
            max_queue_depth=100,
            balance=Decimal("42"),
            grant_amount=Decimal("1"),
            message="Faucet operational",
        )
        user_status = {"remaining": "1", "wait_seconds": 0.0}

        response = formatter.format_status(status, user_status)

        assert response["blocks"][0]["text"]["text"] == "Spigot Faucet Status"
        text = all_text(response)
        assert "Faucet operational" in text
        assert "1 available" in text
        assert "42" in text
        assert "2/100" in text

    def test_format_status_waiting(self, formatter):
        """A limited requester sees when the next grant fits."""
        status = FaucetStatus(
            healthy=False,
            paused_reason="Insufficient faucet balance",
            queue_depth=0,
            max_queue_depth=100,
            balance=None,
            grant_amount=Decimal("1"),
            message="Paused: Insufficient faucet balance",
        )
        user_status = {"remaining": "0", "wait_seconds": 90.0}

        text = all_text(formatter.format_status(status, user_status))

        assert ":warning:" in text
        assert "Next grant in 1m 30s" in text
        assert "unavailable" in text

    def test_format_help(self, formatter):
        """Help lists commands and the window length."""
        text = all_text(formatter.format_help(Decimal("1"), 86400))

        assert "/spigot <address>" in text
        assert "/spigot status" in text
        assert "rolling 24 hours" in text

    def test_format_alert(self, formatter):
        """Alerts mention operators."""
        text = all_text(formatter.format_alert("Dispatch paused", operator_ids=["UOPS"]))

        assert text.startswith("<@UOPS>")
        assert "Dispatch paused" in text

    def test_format_error(self, formatter):
        """format_error wraps the message."""
        assert ":x: Oops" in all_text(formatter.format_error("Oops"))
