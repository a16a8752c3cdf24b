"""Shutdown handler HTTP server (aiohttp-based, runs as an anyio task)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import anyio
from aiohttp import web

from .admin import AdminClient
from .completion import CompletionSignal, DrainOutcome
from .coordinator import AdminOperations, DrainCoordinator
from .errors import AdminError, ParameterError, ShutdownInProgressError, WaitTimeoutError
from .logging import get_logger
from .params import ShutdownParameters, parse_query_params
from .settings import DrainSettings

logger = get_logger(__name__)


class AdminInterface(AdminOperations, Protocol):
    @property
    def metric(self) -> str: ...


@dataclass(frozen=True, slots=True)
class AppContext:
    admin: AdminInterface
    signal: CompletionSignal
    coordinator: DrainCoordinator
    defaults: ShutdownParameters


APP_CONTEXT: web.AppKey[AppContext] = web.AppKey("envoy_drain.context", AppContext)

_SHUTDOWN_RESPONSES: dict[DrainOutcome, tuple[int, str]] = {
    DrainOutcome.SUCCESS: (200, "shutdown complete"),
    DrainOutcome.FAILURE: (500, "shutdown failed"),
    DrainOutcome.TIMED_OUT: (408, "timed out waiting for connections to drain"),
}

# A drain timeout is reported as 200 to waiters: the sidecar has finished
# its part and the proxy keeps draining on its own.
_WAIT_RESPONSES: dict[DrainOutcome, tuple[int, str]] = {
    DrainOutcome.SUCCESS: (200, "shutdown complete"),
    DrainOutcome.FAILURE: (500, "shutdown failed"),
    DrainOutcome.TIMED_OUT: (200, "shutdown finished after drain deadline"),
}


def build_app(
    settings: DrainSettings,
    admin: AdminInterface,
    signal: CompletionSignal | None = None,
) -> web.Application:
    """Build the aiohttp application for the shutdown handler."""
    signal = signal or CompletionSignal()
    ctx = AppContext(
        admin=admin,
        signal=signal,
        coordinator=DrainCoordinator(admin, signal, force=settings.force),
        defaults=settings.defaults,
    )

    async def handle_alive(request: web.Request) -> web.Response:
        return web.Response(status=200)

    async def handle_ready(request: web.Request) -> web.Response:
        return web.Response(status=200)

    async def handle_stats(request: web.Request) -> web.Response:
        try:
            count = await ctx.admin.active_connections()
        except AdminError as exc:
            logger.error("stats.failed", error=str(exc))
            return web.Response(status=500, text="failed to read connection stats\n")
        return web.Response(status=200, text=f"{ctx.admin.metric}: {count}\n")

    async def handle_shutdown(request: web.Request) -> web.Response:
        try:
            params = parse_query_params(request.query, ctx.defaults)
        except ParameterError as exc:
            logger.warning("shutdown.invalid_params", error=str(exc))
            return web.Response(status=400, text=f"invalid parameters: {exc}\n")

        try:
            outcome = await ctx.coordinator.initiate_shutdown(params)
        except ShutdownInProgressError as exc:
            logger.warning("shutdown.conflict", error=str(exc))
            return web.Response(status=409, text="shutdown already in progress\n")
        except Exception:
            logger.exception("shutdown.internal_error")
            return web.Response(status=500, text="internal error\n")

        status, text = _SHUTDOWN_RESPONSES[outcome]
        return web.Response(status=status, text=text + "\n")

    async def handle_wait(request: web.Request) -> web.Response:
        try:
            params = parse_query_params(request.query, ctx.defaults)
        except ParameterError as exc:
            logger.warning("wait.invalid_params", error=str(exc))
            return web.Response(status=400, text=f"invalid parameters: {exc}\n")

        logger.info("wait.started", deadline=params.deadline)
        try:
            outcome = await ctx.signal.wait(params)
        except WaitTimeoutError:
            return web.Response(
                status=408, text="timed out waiting for shutdown to complete\n"
            )

        logger.info("wait.finished", outcome=outcome.value)
        status, text = _WAIT_RESPONSES[outcome]
        return web.Response(status=status, text=text + "\n")

    app = web.Application()
    app[APP_CONTEXT] = ctx
    app.router.add_get("/health/alive", handle_alive)
    app.router.add_get("/health/ready", handle_ready)
    app.router.add_get("/check/stats", handle_stats)
    # Kubernetes preStop HTTP hooks issue GET, so /shutdown accepts both.
    app.router.add_post("/shutdown", handle_shutdown)
    app.router.add_get("/shutdown", handle_shutdown)
    app.router.add_get("/waitforshutdown", handle_wait)
    return app


async def run_server(settings: DrainSettings) -> None:
    """Run the shutdown handler until cancelled."""
    async with AdminClient(settings.admin) as admin:
        app = build_app(settings, admin)
        runner = web.AppRunner(
            app,
            access_log=None,
            handler_cancellation=settings.server.cancel_abandoned_requests,
        )
        await runner.setup()
        try:
            site = web.TCPSite(runner, settings.server.host, settings.server.port)
            await site.start()
            logger.info(
                "server.started",
                host=settings.server.host,
                port=settings.server.port,
                admin=settings.admin.base_url,
                force=settings.force,
            )
            # Block until cancelled by structured concurrency.
            await anyio.sleep_forever()
        finally:
            await runner.cleanup()
