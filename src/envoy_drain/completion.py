"""Cross-request completion signal for shutdown cycles.

One ``CompletionSignal`` is owned by the application. The ``/shutdown``
handler opens a cycle and publishes its outcome; any number of
``/waitforshutdown`` handlers wait for that outcome. Delivery is broadcast:
every waiter sees the same outcome, and it stays readable until the next
cycle begins.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass

import anyio

from .errors import ShutdownInProgressError, WaitTimeoutError
from .logging import get_logger
from .params import ShutdownParameters

logger = get_logger(__name__)


class DrainOutcome(enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True, slots=True)
class SignalSnapshot:
    generation: int
    in_flight: bool
    outcome: DrainOutcome | None


class CompletionSignal:
    """Single-writer, multi-reader outcome slot with a generation counter.

    All state lives on one event loop; anyio primitives are not thread-safe,
    so the signal must only be touched from tasks of that loop.
    """

    def __init__(self) -> None:
        self._generation = 0
        self._in_flight = False
        self._outcome: DrainOutcome | None = None
        self._changed: anyio.Event | None = None

    def _change_event(self) -> anyio.Event:
        if self._changed is None:
            self._changed = anyio.Event()
        return self._changed

    def _notify(self) -> None:
        # anyio events cannot be cleared; the next waiter creates a fresh one.
        changed, self._changed = self._changed, None
        if changed is not None:
            changed.set()

    def snapshot(self) -> SignalSnapshot:
        return SignalSnapshot(self._generation, self._in_flight, self._outcome)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def begin_cycle(self) -> int:
        """Start a new cycle and return its generation number.

        Raises ``ShutdownInProgressError`` while a cycle is still running.
        """
        if self._in_flight:
            raise ShutdownInProgressError(
                f"shutdown cycle {self._generation} is still in progress"
            )
        self._generation += 1
        self._in_flight = True
        self._outcome = None
        logger.debug("completion.cycle_started", generation=self._generation)
        self._notify()
        return self._generation

    def publish(self, outcome: DrainOutcome) -> None:
        if not self._in_flight:
            raise RuntimeError("publish() called with no shutdown cycle in flight")
        self._outcome = outcome
        self._in_flight = False
        logger.debug(
            "completion.published",
            generation=self._generation,
            outcome=outcome.value,
        )
        self._notify()

    def _ready(self) -> DrainOutcome | None:
        if self._in_flight:
            return None
        return self._outcome

    async def wait(self, params: ShutdownParameters) -> DrainOutcome:
        """Block until an outcome is available or ``params.deadline`` passes.

        Sleeps ``params.delay`` first, then waits in slices of at most
        ``params.period``. The deadline is measured from the call, not from
        the start of the cycle. Raises ``WaitTimeoutError`` on expiry; the
        signal itself is never modified.
        """
        started = time.monotonic()
        if params.delay > 0:
            await anyio.sleep(params.delay)

        while True:
            outcome = self._ready()
            if outcome is not None:
                return outcome

            elapsed = time.monotonic() - started
            remaining = params.deadline - elapsed
            if remaining <= 0:
                logger.warning(
                    "completion.wait_timeout",
                    elapsed=round(elapsed, 3),
                    deadline=params.deadline,
                )
                raise WaitTimeoutError(
                    f"no shutdown outcome within {params.deadline:g}s"
                )

            slice_s = min(params.period, remaining) if params.period > 0 else remaining
            changed = self._change_event()
            with anyio.move_on_after(slice_s) as scope:
                await changed.wait()
            if scope.cancelled_caught:
                logger.debug(
                    "completion.waiting",
                    elapsed=round(time.monotonic() - started, 3),
                    in_flight=self._in_flight,
                )
