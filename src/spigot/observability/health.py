"""Health endpoints for Spigot.

Endpoints:
- /health: Liveness probe (200 while the process serves HTTP)
- /ready: Readiness probe (200 when storage is reachable and dispatch is not paused)
- /metrics: Prometheus metrics
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from aiohttp import web
from prometheus_client import REGISTRY, generate_latest

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Health check status values."""

    OK = "ok"
    ERROR = "error"
    NOT_READY = "not_ready"


@dataclass
class CheckResult:
    """Result of a single health check."""

    name: str
    status: HealthStatus
    message: str | None = None


@dataclass
class HealthResult:
    """Combined health check result."""

    status: HealthStatus
    checks: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        result = {"status": self.status.value}
        if self.checks:
            result["checks"] = self.checks
        return result


class HealthCheck(ABC):
    """A named readiness check."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def check(self) -> CheckResult:
        ...


class _Pingable(Protocol):
    async def ping(self) -> bool: ...


class _Pausable(Protocol):
    async def paused_reason(self) -> str | None: ...


class StorageCheck(HealthCheck):
    """Ready only while the store answers pings."""

    def __init__(self, store: _Pingable):
        self._store = store

    @property
    def name(self) -> str:
        return "storage"

    async def check(self) -> CheckResult:
        if await self._store.ping():
            return CheckResult(name=self.name, status=HealthStatus.OK)
        return CheckResult(name=self.name, status=HealthStatus.ERROR, message="unreachable")


class DispatchCheck(HealthCheck):
    """Not ready while dispatch is paused by a fatal fault."""

    def __init__(self, queue: _Pausable):
        self._queue = queue

    @property
    def name(self) -> str:
        return "dispatch"

    async def check(self) -> CheckResult:
        reason = await self._queue.paused_reason()
        if reason is None:
            return CheckResult(name=self.name, status=HealthStatus.OK)
        return CheckResult(
            name=self.name,
            status=HealthStatus.NOT_READY,
            message=f"paused: {reason}",
        )


class HealthServer:
    """HTTP server for health and metrics endpoints.

    Parameters
    ----------
    host : str
        Host to bind to.
    port : int
        Port to bind to.
    """

    # Containers need the probes reachable from outside the pod.
    def __init__(self, host: str = "0.0.0.0", port: int = 8080):  # noqa: S104
        self._host = host
        self._port = port
        self._checks: list[HealthCheck] = []
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def add_check(self, check: HealthCheck) -> None:
        self._checks.append(check)

    def create_app(self) -> web.Application:
        """Build the aiohttp application with all routes."""
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/ready", self._handle_ready)
        app.router.add_get("/metrics", self._handle_metrics)
        return app

    async def start(self) -> None:
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()

        logger.info(
            "Health server started",
            extra={"host": self._host, "port": self._port},
        )

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            logger.info("Health server stopped")

    async def _handle_health(self, _request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def _handle_ready(self, _request: web.Request) -> web.Response:
        result = await self._check_readiness()
        status_code = 200 if result.status == HealthStatus.OK else 503
        return web.json_response(result.to_dict(), status=status_code)

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        return web.Response(
            body=generate_latest(REGISTRY),
            content_type="text/plain",
            charset="utf-8",
        )

    async def _check_readiness(self) -> HealthResult:
        if not self._checks:
            return HealthResult(status=HealthStatus.OK)

        checks: dict[str, str] = {}
        all_ok = True

        for check in self._checks:
            try:
                result = await check.check()
            except Exception as e:
                logger.exception("Health check failed", extra={"check": check.name})
                checks[check.name] = f"error: {type(e).__name__}: {e}"
                all_ok = False
                continue

            if result.status == HealthStatus.OK:
                checks[result.name] = "ok"
            else:
                checks[result.name] = result.message or "error"
                all_ok = False

        return HealthResult(
            status=HealthStatus.OK if all_ok else HealthStatus.NOT_READY,
            checks=checks,
        )
