"""Tests for the outcome bus."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from spigot.core.models import DispatchOutcome, OutcomeStatus
from spigot.faucet.outcomes import OutcomeBus


def make_outcome() -> DispatchOutcome:
    return DispatchOutcome(
        request_ref="ref1",
        identity="U1",
        destination="0x742d35Cc6634C0532925a3b844Bc9e7595f8fE00",
        amount=Decimal("1"),
        status=OutcomeStatus.GRANTED,
        tx_ref="0xabc",
    )


class TestOutcomeBus:
    """Tests for OutcomeBus."""

    @pytest.mark.asyncio
    async def test_publish_reaches_all_subscribers(self):
        """Every subscriber receives the outcome."""
        bus = OutcomeBus()
        first, second = AsyncMock(), AsyncMock()
        bus.subscribe(first)
        bus.subscribe(second)
        outcome = make_outcome()

        await bus.publish(outcome)

        first.assert_awaited_once_with(outcome)
        second.assert_awaited_once_with(outcome)

    @pytest.mark.asyncio
    async def test_failing_subscriber_isolated(self):
        """A subscriber that raises does not block the others."""
        bus = OutcomeBus()
        broken = AsyncMock(side_effect=RuntimeError("slack down"))
        working = AsyncMock()
        bus.subscribe(broken)
        bus.subscribe(working)

        await bus.publish(make_outcome())

        working.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_alerts_separate_from_outcomes(self):
        """Alerts go only to alert subscribers."""
        bus = OutcomeBus()
        outcome_cb, alert_cb = AsyncMock(), AsyncMock()
        bus.subscribe(outcome_cb)
        bus.subscribe_alerts(alert_cb)

        await bus.alert("Dispatch paused")

        alert_cb.assert_awaited_once_with("Dispatch paused")
        outcome_cb.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_alert_without_subscribers(self):
        """Alerting with nobody listening only logs."""
        await OutcomeBus().alert("nobody home")
