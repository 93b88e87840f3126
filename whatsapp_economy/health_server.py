"""Health and Prometheus metrics endpoints for whatsapp-economy-bot.

Serves ``/health`` (JSON), ``/ping`` and ``/metrics`` (Prometheus text
exposition) from an aiohttp.web application.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from aiohttp import web

from . import __version__

if TYPE_CHECKING:
    from .main import BotApp


class HealthServer:
    """aiohttp.web server exposing bot health and economy metrics."""

    def __init__(
        self,
        app: BotApp,
        host: str = "0.0.0.0",
        port: int = 3000,
        logger: logging.Logger | None = None,
    ) -> None:
        self._app = app
        self._host = host
        self._port = port
        self._logger = logger or logging.getLogger("economy.health")
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        webapp = web.Application()
        webapp.router.add_get("/", self.handle_health)
        webapp.router.add_get("/health", self.handle_health)
        webapp.router.add_get("/ping", self.handle_ping)
        webapp.router.add_get("/metrics", self.handle_metrics)
        return webapp

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        self._logger.info("Health server listening on %s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    # ══════════════════════════════════════════════════════════
    #  Handlers
    # ══════════════════════════════════════════════════════════

    async def handle_ping(self, request: web.Request) -> web.Response:
        return web.Response(text="pong")

    async def handle_health(self, request: web.Request) -> web.Response:
        db_ok = await self._app.db.ping() if self._app.db else False
        gateway_ok = bool(self._app.gateway and self._app.gateway.connected)
        status = "healthy" if db_ok and gateway_ok else "degraded"
        body = {
            "status": status,
            "service": self._app.config.bot.name if self._app.config else "whatsapp-economy-bot",
            "version": __version__,
            "uptime_seconds": round(self._app.uptime_seconds, 1),
            "database": "ok" if db_ok else "unreachable",
            "gateway": "connected" if gateway_ok else "disconnected",
            "active_command_locks": self._app.locks.active_count if self._app.locks else 0,
            "timestamp": time.time(),
        }
        return web.json_response(body, status=200 if db_ok else 503)

    async def handle_metrics(self, request: web.Request) -> web.Response:
        lines = await self.collect_metrics()
        return web.Response(text="\n".join(lines) + "\n", content_type="text/plain")

    async def collect_metrics(self) -> list[str]:
        """Prometheus exposition lines."""
        app = self._app
        handler = app.message_handler
        lines: list[str] = [
            "# TYPE economy_uptime_seconds gauge",
            f"economy_uptime_seconds {app.uptime_seconds:.1f}",
            "# TYPE economy_messages_seen_total counter",
            f"economy_messages_seen_total {handler.messages_seen if handler else 0}",
            "# TYPE economy_commands_processed_total counter",
            f"economy_commands_processed_total {handler.commands_processed if handler else 0}",
            "# TYPE economy_command_errors_total counter",
            f"economy_command_errors_total {handler.command_errors if handler else 0}",
            "# TYPE economy_active_command_locks gauge",
            f"economy_active_command_locks {app.locks.active_count if app.locks else 0}",
            "# TYPE economy_gateway_connected gauge",
            f"economy_gateway_connected {int(bool(app.gateway and app.gateway.connected))}",
        ]

        if app.db:
            try:
                stats = await app.db.get_economy_stats()
            except Exception:
                self._logger.exception("Failed to collect economy stats")
            else:
                lines += [
                    "# TYPE economy_accounts gauge",
                    f"economy_accounts {stats['accounts']}",
                    "# TYPE economy_circulation gauge",
                    f"economy_circulation {stats['circulation']}",
                    f"economy_wallet_total {stats['wallet_total']}",
                    f"economy_bank_total {stats['bank_total']}",
                    "# TYPE economy_transactions gauge",
                    f"economy_transactions {stats['transactions']}",
                ]
        return lines
