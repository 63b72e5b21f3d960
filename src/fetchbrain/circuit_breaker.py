"""
Circuit breaker guarding calls to the knowledge service.

- CLOSED: normal operation, calls pass through
- OPEN: service failing, calls are skipped and the crawl continues without it
- HALF_OPEN: reset timeout elapsed, calls go through as recovery trials
"""

from __future__ import annotations

import time
import typing as t
from enum import StrEnum

import structlog
from pydantic import BaseModel

log = structlog.get_logger(__name__)


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitBreakerState(BaseModel):
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: float | None = None


class CircuitBreaker:
    """
    Three-state failure isolation gate.

    Parameters
    ----------
    failure_threshold : int
        Failures recorded while closed before the circuit opens. A success while
        closed resets the count.
    reset_timeout_seconds : float
        Time the circuit stays open before the next check lets a trial call through.
    success_threshold : int
        Successes recorded while half-open before the circuit closes again.
    clock : typing.Callable[[], float], optional
        Monotonic time source, in seconds.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout_seconds: float = 30.0,
        success_threshold: int = 1,
        clock: t.Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._reset_timeout_seconds = reset_timeout_seconds
        self._success_threshold = success_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None

    @property
    def state(self) -> CircuitState:
        return self._state

    def is_open(self) -> bool:
        """
        Check whether calls must be skipped.

        An open circuit whose reset timeout has elapsed moves to half-open and
        reports ``False`` so the caller can make a trial call right away.

        Returns
        -------
        bool
            ``True`` when the circuit is open.
        """
        if self._state is CircuitState.CLOSED:
            return False

        if self._state is CircuitState.OPEN:
            last_failure_time = self._last_failure_time or 0.0
            if self._clock() - last_failure_time >= self._reset_timeout_seconds:
                log.info(event="Circuit half-open, testing knowledge service")
                self._state = CircuitState.HALF_OPEN
                self._failure_count = 0
                self._success_count = 0
                return False
            return True

        return False

    def record_success(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self._success_threshold:
                log.info(event="Knowledge service recovered, circuit closed")
                self.reset()
        elif self._state is CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        self._last_failure_time = self._clock()

        if self._state is CircuitState.HALF_OPEN:
            log.warning(event="Knowledge service still failing, circuit reopened")
            self._open()
            return

        if self._state is CircuitState.OPEN:
            # a batch dispatched before the circuit opened; extends the open window
            return

        self._failure_count += 1
        if self._failure_count >= self._failure_threshold:
            log.warning(
                event="Circuit opened, crawling continues without the knowledge service",
                failure_count=self._failure_count,
                reset_timeout_seconds=self._reset_timeout_seconds,
            )
            self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._success_count = 0

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None

    def get_stats(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            state=self._state,
            failure_count=self._failure_count,
            success_count=self._success_count,
            last_failure_time=self._last_failure_time,
        )
