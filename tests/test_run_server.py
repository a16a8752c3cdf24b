"""End-to-end tests for ``run_server`` against a fake Envoy admin interface."""

from __future__ import annotations

import asyncio

import aiohttp
import anyio
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from envoy_drain.server import run_server
from envoy_drain.settings import DrainSettings


def _fake_envoy(active: int) -> web.Application:
    async def ok(request: web.Request) -> web.Response:
        return web.Response(text="OK\n")

    async def stats(request: web.Request) -> web.Response:
        return web.Response(text=f"http.envoy.downstream_cx_active: {active}\n")

    app = web.Application()
    app.router.add_post("/healthcheck/fail", ok)
    app.router.add_post("/drain_listeners", ok)
    app.router.add_post("/quitquitquit", ok)
    app.router.add_get("/stats", stats)
    return app


async def _wait_until_listening(session: aiohttp.ClientSession, base: str) -> None:
    for _ in range(100):
        try:
            async with session.get(f"{base}/health/alive") as resp:
                if resp.status == 200:
                    return
        except aiohttp.ClientConnectionError:
            pass
        await anyio.sleep(0.05)
    raise AssertionError("shutdown handler did not start")


def _settings(envoy: TestServer, *, cancel_abandoned: bool) -> DrainSettings:
    return DrainSettings(
        admin={"host": "127.0.0.1", "port": envoy.port},
        server={
            "host": "127.0.0.1",
            "port": unused_port(),
            "cancel_abandoned_requests": cancel_abandoned,
        },
        defaults={"delay": 0, "period": 1, "deadline": 60},
    )


@pytest.mark.anyio
async def test_abandoned_shutdown_publishes_failure_when_cancellation_enabled():
    envoy = TestServer(_fake_envoy(active=3))
    await envoy.start_server()
    settings = _settings(envoy, cancel_abandoned=True)
    base = f"http://127.0.0.1:{settings.server.port}"
    statuses: list[int] = []

    try:
        async with aiohttp.ClientSession() as session:
            async with anyio.create_task_group() as tg:
                tg.start_soon(run_server, settings)
                await _wait_until_listening(session, base)

                async def wait() -> None:
                    async with session.get(
                        f"{base}/waitforshutdown?period=1&deadline=10"
                    ) as resp:
                        statuses.append(resp.status)

                tg.start_soon(wait)

                # The caller gives up while connections are still draining.
                with pytest.raises(asyncio.TimeoutError):
                    async with session.post(
                        f"{base}/shutdown",
                        timeout=aiohttp.ClientTimeout(total=0.5),
                    ):
                        pass

                with anyio.fail_after(5):
                    while not statuses:
                        await anyio.sleep(0.05)
                tg.cancel_scope.cancel()
    finally:
        await envoy.close()

    assert statuses == [500]


@pytest.mark.anyio
async def test_run_server_serves_stats_from_admin():
    envoy = TestServer(_fake_envoy(active=7))
    await envoy.start_server()
    settings = _settings(envoy, cancel_abandoned=False)
    base = f"http://127.0.0.1:{settings.server.port}"

    try:
        async with aiohttp.ClientSession() as session:
            async with anyio.create_task_group() as tg:
                tg.start_soon(run_server, settings)
                await _wait_until_listening(session, base)
                async with session.get(f"{base}/check/stats") as resp:
                    assert resp.status == 200
                    assert await resp.text() == "http.envoy.downstream_cx_active: 7\n"
                tg.cancel_scope.cancel()
    finally:
        await envoy.close()
