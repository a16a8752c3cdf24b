"""Client for the proxy's admin interface."""

from __future__ import annotations

import re

import httpx

from .errors import AdminError, StatsParseError
from .logging import get_logger
from .settings import DEFAULT_STATS_METRIC, AdminSettings

logger = get_logger(__name__)


def parse_active_connections(
    body: str, metric: str = DEFAULT_STATS_METRIC
) -> int:
    """Extract the integer value of *metric* from an admin stats payload."""
    pattern = re.compile(re.escape(metric) + r":[ ]+([0-9]+)")
    match = pattern.search(body)
    if match is None:
        raise StatsParseError(
            f"failed to parse {metric} from stats payload: {body.strip()!r}"
        )
    return int(match.group(1))


class AdminClient:
    """The four admin operations used during shutdown.

    Transport errors and non-2xx responses both surface as ``AdminError``.
    """

    def __init__(
        self,
        settings: AdminSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._metric = settings.stats_metric
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.timeout,
            transport=transport,
        )

    @property
    def metric(self) -> str:
        return self._metric

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> AdminClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self, method: str, path: str, *, params: dict[str, str] | None = None
    ) -> httpx.Response:
        try:
            resp = await self._client.request(
                method, path, params=params, headers={"Content-Type": "text/plain"}
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("admin.request_rejected", path=path, status=status)
            raise AdminError(f"{method} {path} returned HTTP {status}") from exc
        except httpx.HTTPError as exc:
            logger.warning("admin.request_failed", path=path, error=str(exc))
            raise AdminError(f"{method} {path} failed: {exc}") from exc
        return resp

    async def fail_health_checks(self) -> None:
        logger.info("admin.healthcheck_fail")
        await self._request("POST", "/healthcheck/fail")

    async def active_connections(self) -> int:
        resp = await self._request(
            "GET", "/stats", params={"filter": self._metric}
        )
        count = parse_active_connections(resp.text, self._metric)
        logger.debug("admin.stats", metric=self._metric, count=count)
        return count

    async def begin_graceful_drain(self) -> None:
        logger.info("admin.drain_listeners")
        await self._request("POST", "/drain_listeners?graceful")

    async def force_quit(self) -> None:
        logger.info("admin.quitquitquit")
        await self._request("POST", "/quitquitquit")
