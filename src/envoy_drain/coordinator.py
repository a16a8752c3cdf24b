"""Drain coordination: fail health checks, drain, wait, optionally force."""

from __future__ import annotations

import enum
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

import anyio

from .completion import CompletionSignal, DrainOutcome
from .errors import AdminError
from .logging import get_logger
from .params import ShutdownParameters

logger = get_logger(__name__)


class AdminOperations(Protocol):
    async def fail_health_checks(self) -> None: ...

    async def active_connections(self) -> int: ...

    async def begin_graceful_drain(self) -> None: ...

    async def force_quit(self) -> None: ...


class Phase(enum.Enum):
    START = "start"
    FAILING_HEALTH_CHECK = "failing_health_check"
    DELAYING = "delaying"
    CHECKING = "checking"
    DRAINING = "draining"
    FORCE_SHUTDOWN = "force_shutdown"
    DONE = "done"


class DrainCoordinator:
    """Runs one shutdown cycle per ``initiate_shutdown`` call.

    Every call publishes exactly one ``DrainOutcome`` to the completion
    signal, whichever branch it ends on. A second call while a cycle is in
    flight raises ``ShutdownInProgressError`` before touching the admin
    interface.

    The drain loop checks the deadline before each sleep, so the deadline
    can be overshot by at most one ``period``.
    """

    def __init__(
        self,
        admin: AdminOperations,
        signal: CompletionSignal,
        *,
        force: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self._admin = admin
        self._signal = signal
        self._force = force
        self._clock = clock
        self._sleep = sleep
        self._phase = Phase.START

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def force(self) -> bool:
        return self._force

    async def initiate_shutdown(self, params: ShutdownParameters) -> DrainOutcome:
        generation = self._signal.begin_cycle()
        self._phase = Phase.START
        log = logger.bind(generation=generation)
        log.info(
            "shutdown.requested",
            delay=params.delay,
            period=params.period,
            deadline=params.deadline,
            force=self._force,
        )
        started = self._clock()
        outcome = DrainOutcome.FAILURE
        try:
            outcome = await self._run(params, started, log)
        except anyio.get_cancelled_exc_class():
            log.warning(
                "shutdown.cancelled",
                phase=self._phase.value,
                elapsed=self._elapsed(started),
            )
            raise
        finally:
            self._phase = Phase.DONE
            self._signal.publish(outcome)
            log.info(
                "shutdown.finished",
                outcome=outcome.value,
                elapsed=self._elapsed(started),
            )
        return outcome

    def _elapsed(self, started: float) -> float:
        return round(self._clock() - started, 3)

    async def _run(self, params: ShutdownParameters, started: float, log) -> DrainOutcome:
        self._phase = Phase.FAILING_HEALTH_CHECK
        try:
            await self._admin.fail_health_checks()
        except AdminError as exc:
            log.error("shutdown.healthcheck_fail_failed", error=str(exc))
            return DrainOutcome.FAILURE

        # Give load balancers time to observe the failing health checks.
        self._phase = Phase.DELAYING
        if params.delay > 0:
            log.info("shutdown.delaying", seconds=params.delay)
            await self._sleep(params.delay)

        self._phase = Phase.CHECKING
        try:
            count = await self._admin.active_connections()
        except AdminError as exc:
            log.error("shutdown.stats_failed", phase=self._phase.value, error=str(exc))
            return DrainOutcome.FAILURE
        if count == 0:
            log.info("shutdown.no_active_connections")
            return DrainOutcome.SUCCESS

        self._phase = Phase.DRAINING
        try:
            await self._admin.begin_graceful_drain()
        except AdminError as exc:
            log.error("shutdown.drain_failed", active=count, error=str(exc))
            return DrainOutcome.FAILURE
        log.info("shutdown.draining", active=count)

        while True:
            try:
                count = await self._admin.active_connections()
            except AdminError as exc:
                log.error(
                    "shutdown.stats_failed",
                    phase=self._phase.value,
                    elapsed=self._elapsed(started),
                    error=str(exc),
                )
                return DrainOutcome.FAILURE
            if count == 0:
                log.info("shutdown.drained", elapsed=self._elapsed(started))
                break
            elapsed = self._clock() - started
            if elapsed > params.deadline:
                log.warning(
                    "shutdown.deadline_exceeded",
                    active=count,
                    elapsed=round(elapsed, 3),
                    deadline=params.deadline,
                )
                await self._maybe_force_quit(log)
                return DrainOutcome.TIMED_OUT
            log.info("shutdown.poll", active=count, elapsed=round(elapsed, 3))
            await self._sleep(params.period)

        await self._maybe_force_quit(log)
        return DrainOutcome.SUCCESS

    async def _maybe_force_quit(self, log) -> None:
        if not self._force:
            return
        self._phase = Phase.FORCE_SHUTDOWN
        try:
            await self._admin.force_quit()
        except AdminError as exc:
            log.error("shutdown.force_quit_failed", error=str(exc))
