"""
circuit_breaker.py — Three-state guard around the itinerary generator.

  CLOSED     calls pass through; consecutive failures are counted
  OPEN       calls fail fast with CircuitOpenError until the recovery window ends
  HALF_OPEN  exactly one trial call is let through; its outcome closes or re-opens

Usage:
    breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=30,
                             expected_response_time=300)
    result = await breaker.execute(lambda: client.call(...))

execute() races every call against expected_response_time; a timeout is
recorded exactly like any other failure.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum

from errors import CircuitOpenError, GeneratorTimeoutError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED    = 'CLOSED'
    OPEN      = 'OPEN'
    HALF_OPEN = 'HALF_OPEN'


class CircuitBreaker:
    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 30.0,
                 expected_response_time: float = 300.0, name: str = 'generator',
                 clock=time.monotonic):
        self.failure_threshold      = failure_threshold
        self.recovery_timeout       = recovery_timeout
        self.expected_response_time = expected_response_time
        self.name                   = name
        self._clock                 = clock
        self._lock                  = asyncio.Lock()

        self._state             = CircuitState.CLOSED
        self._failure_count     = 0
        self._success_count     = 0
        self._total_requests    = 0
        self._last_failure_time: datetime | None = None
        self._last_success_time: datetime | None = None
        self._next_attempt_at: float | None = None
        self._trial_in_flight   = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    async def execute(self, fn):
        """Run ``fn()`` (a coroutine factory) under breaker protection."""
        async with self._lock:
            self._total_requests += 1
            trial = self._admit()

        try:
            result = await self._with_timeout(fn)
        except asyncio.CancelledError:
            # Cancellation of the caller is not a verdict on the dependency.
            if trial:
                self._trial_in_flight = False
            raise
        except Exception as exc:
            async with self._lock:
                self._on_failure(trial, exc)
            raise

        async with self._lock:
            self._on_success(trial)
        return result

    def _admit(self) -> bool:
        """Decide whether a call may proceed; returns True for the half-open trial."""
        if self._state == CircuitState.OPEN:
            now = self._clock()
            if self._next_attempt_at is not None and now >= self._next_attempt_at:
                self._state = CircuitState.HALF_OPEN
                logger.info('Circuit %s: recovery window elapsed, HALF_OPEN', self.name)
            else:
                raise CircuitOpenError(self._seconds_until_retry(now))

        if self._state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(0.0)
            self._trial_in_flight = True
            return True
        return False

    async def _with_timeout(self, fn):
        try:
            return await asyncio.wait_for(fn(), timeout=self.expected_response_time)
        except asyncio.TimeoutError as exc:
            raise GeneratorTimeoutError(
                f'Operation timed out after {self.expected_response_time:g}s'
            ) from exc

    def _on_success(self, trial: bool) -> None:
        self._success_count += 1
        self._failure_count = 0
        self._last_success_time = datetime.now(timezone.utc)
        if trial:
            self._trial_in_flight = False
        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            self._next_attempt_at = None
            logger.info('Circuit %s: trial call succeeded, CLOSED', self.name)

    def _on_failure(self, trial: bool, exc: BaseException) -> None:
        self._failure_count += 1
        self._last_failure_time = datetime.now(timezone.utc)
        if trial:
            self._trial_in_flight = False

        if self._state == CircuitState.HALF_OPEN:
            self._open()
            logger.warning('Circuit %s: trial call failed (%s), OPEN again', self.name, exc)
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._open()
            logger.warning('Circuit %s: %d consecutive failures, OPEN for %gs',
                           self.name, self._failure_count, self.recovery_timeout)

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._next_attempt_at = self._clock() + self.recovery_timeout

    def _seconds_until_retry(self, now: float | None = None) -> float:
        if self._state != CircuitState.OPEN or self._next_attempt_at is None:
            return 0.0
        now = self._clock() if now is None else now
        return max(0.0, self._next_attempt_at - now)

    def is_healthy(self) -> bool:
        return self._state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def reset(self) -> None:
        """Manually close the circuit. total_requests is kept."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None
        self._last_success_time = None
        self._next_attempt_at = None
        self._trial_in_flight = False
        logger.info('Circuit %s: manually reset', self.name)

    def get_stats(self) -> dict:
        return {
            'name':              self.name,
            'state':             self._state.value,
            'failure_count':     self._failure_count,
            'success_count':     self._success_count,
            'total_requests':    self._total_requests,
            'last_failure_time': self._last_failure_time.isoformat() if self._last_failure_time else None,
            'last_success_time': self._last_success_time.isoformat() if self._last_success_time else None,
            'retry_after':       round(self._seconds_until_retry(), 3),
        }
