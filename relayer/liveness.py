"""
Liveness reporting for external monitors.

``HealthState`` is the one mutable status cell; only the reconciliation loop
writes to it. ``LivenessServer`` exposes a read-only JSON view of it on
``/health`` and ``/``. Anything else is a 404.

Usage:
    health = HealthState()
    server = LivenessServer(health, retry_scheduler, watch_list, host, port)
    await server.start()
    ...
    await server.stop()
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from aiohttp import web

from bot_logging.logger_manager import setup_module_logger
from shared.constants import SERVICE_NAME

if TYPE_CHECKING:
    from relayer.retry_scheduler import RetryScheduler
    from relayer.watch_list import WatchList

STATUS_OK = "ok"
STATUS_ERROR = "error"


class HealthState:
    """Current health flag, time of last completed tick and process start."""

    def __init__(self) -> None:
        self._healthy = True
        self._last_check: str | None = None
        self._started = time.monotonic()

    @property
    def status(self) -> str:
        return STATUS_OK if self._healthy else STATUS_ERROR

    @property
    def last_check(self) -> str | None:
        return self._last_check

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started

    def mark_ok(self) -> None:
        self._healthy = True
        self._last_check = datetime.now(timezone.utc).isoformat()

    def mark_error(self) -> None:
        self._healthy = False

    def snapshot(
        self,
        service: str = SERVICE_NAME,
        pending_retries: int = 0,
        churned: int = 0,
        watch_list_size: int = 0,
    ) -> dict[str, Any]:
        return {
            "status": self.status,
            "service": service,
            "lastCheck": self._last_check,
            "uptime": round(self.uptime, 3),
            "pendingRetries": pending_retries,
            "churned": churned,
            "watchListSize": watch_list_size,
        }


class LivenessServer:
    """Minimal aiohttp app serving the health snapshot."""

    def __init__(
        self,
        health: HealthState,
        retry_scheduler: RetryScheduler,
        watch_list: WatchList,
        host: str,
        port: int,
        service_name: str = SERVICE_NAME,
    ) -> None:
        self._health = health
        self._retry_scheduler = retry_scheduler
        self._watch_list = watch_list
        self._host = host
        self._port = port
        self._service_name = service_name
        self._runner: web.AppRunner | None = None

        self._logger = setup_module_logger(
            "liveness", "liveness.log", module_folder="Liveness_Logs"
        )

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self.health_handler)
        app.router.add_get("/", self.health_handler)
        return app

    async def health_handler(self, request: web.Request) -> web.Response:
        pending, churned = self._retry_scheduler.counts()
        return web.json_response(
            self._health.snapshot(
                service=self._service_name,
                pending_retries=pending,
                churned=churned,
                watch_list_size=len(self._watch_list),
            )
        )

    async def start(self) -> None:
        runner = web.AppRunner(self.create_app())
        await runner.setup()
        site = web.TCPSite(runner, host=self._host, port=self._port)
        await site.start()
        self._runner = runner
        self._logger.info("Health server running on %s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            self._logger.info("Health server stopped")
