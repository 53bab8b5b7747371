"""HTTP push endpoint plus health and metrics endpoints.

Routes:
    POST /          push delivery of one build event
    GET  /health    engine status and outcome counters
    GET  /ready     readiness probe (503 until the notifier is set up)
    GET  /live      liveness probe
    GET  /metrics   Prometheus metrics

A push is answered with 200 when the event needs no redelivery and 500 when
delivery failed, so the pushing subscription retries it later.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from aiohttp import web
from prometheus_client import generate_latest

from build_notifiers.sources.codec import EventDecodeError, decode_push_envelope

if TYPE_CHECKING:
    from build_notifiers.engine import NotificationEngine

logger = logging.getLogger(__name__)

DEFAULT_HTTP_PORT = 8080


class NotifierServer:
    """aiohttp server exposing a notification engine over HTTP."""

    def __init__(self, engine: NotificationEngine) -> None:
        self.engine = engine
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    async def _handle_push(self, request: web.Request) -> web.Response:
        """Handle a push delivery of a build event."""
        if not self.engine.is_ready:
            return web.json_response(
                {"error": f"notifier is {self.engine.state.value}"}, status=503
            )

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return web.json_response({"error": "body is not valid JSON"}, status=400)

        try:
            message_id, build = decode_push_envelope(body)
        except EventDecodeError as e:
            logger.warning("Rejecting push message: %s", e)
            return web.json_response({"error": str(e)}, status=400)

        logger.debug("Received push message %s for build %s", message_id or "-", build.id)
        result = await self.engine.handle(build)

        return web.json_response(
            {
                "build_id": result.build_id,
                "outcome": result.outcome.value,
                "attempts": result.attempts,
            },
            status=200 if result.should_ack else 500,
        )

    def _status_body(self) -> dict[str, Any]:
        stats = self.engine.stats
        return {
            "status": self.engine.state.value,
            "notifier": self.engine.notifier.name,
            "uptime_seconds": round(time.time() - stats.started_at, 3),
            "received": stats.received,
            "outcomes": dict(stats.outcomes),
            "last_error": stats.last_error,
        }

    async def _handle_health(self, _request: web.Request) -> web.Response:
        """Handle /health endpoint."""
        status_code = 200 if self.engine.is_ready else 503
        return web.json_response(self._status_body(), status=status_code)

    async def _handle_ready(self, _request: web.Request) -> web.Response:
        """Handle /ready endpoint for k8s readiness probe."""
        if not self.engine.is_ready:
            return web.json_response(
                {"ready": False, "reason": self.engine.state.value}, status=503
            )
        return web.json_response({"ready": True}, status=200)

    async def _handle_live(self, _request: web.Request) -> web.Response:
        """Handle /live endpoint for k8s liveness probe."""
        return web.json_response({"live": True}, status=200)

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        """Handle /metrics endpoint (Prometheus format)."""
        return web.Response(
            body=generate_latest(),
            content_type="text/plain",
            charset="utf-8",
        )

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_post("/", self._handle_push)
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/ready", self._handle_ready)
        app.router.add_get("/live", self._handle_live)
        app.router.add_get("/metrics", self._handle_metrics)
        return app

    async def start(self, port: int = DEFAULT_HTTP_PORT, host: str = "0.0.0.0") -> None:
        """Start serving on the given port."""
        if self._runner:
            logger.warning("HTTP server already running")
            return

        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, host, port)
        await site.start()

        logger.info("HTTP server started on port %d", port)

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            logger.info("HTTP server stopped")
