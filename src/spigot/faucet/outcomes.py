"""Outcome and alert delivery.

The dispatch queue publishes every closed request here; chat front-ends
subscribe to deliver results to the originating channel.
"""

import logging
from collections.abc import Awaitable, Callable

from spigot.core.models import DispatchOutcome

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[DispatchOutcome], Awaitable[None]]
AlertCallback = Callable[[str], Awaitable[None]]


class OutcomeBus:
    """Fan-out of dispatch outcomes and operator alerts to subscribers.

    Outcomes are already durable in the dispatch log when published, so a
    failing subscriber is logged and does not affect the others.
    """

    def __init__(self):
        self._subscribers: list[OutcomeCallback] = []
        self._alert_subscribers: list[AlertCallback] = []

    def subscribe(self, callback: OutcomeCallback) -> None:
        self._subscribers.append(callback)

    def subscribe_alerts(self, callback: AlertCallback) -> None:
        self._alert_subscribers.append(callback)

    async def publish(self, outcome: DispatchOutcome) -> None:
        for callback in self._subscribers:
            try:
                await callback(outcome)
            except Exception:
                logger.exception(
                    "Outcome subscriber failed",
                    extra={"request_ref": outcome.request_ref, "status": outcome.status.value},
                )

    async def alert(self, message: str) -> None:
        """Raise an operator-visible alert."""
        logger.critical("Operator alert: %s", message)
        for callback in self._alert_subscribers:
            try:
                await callback(message)
            except Exception:
                logger.exception("Alert subscriber failed")
