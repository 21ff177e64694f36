"""Async circuit breaker guarding calls to one external dependency.

States:
  CLOSED - normal operation; every call goes through
  OPEN - tripped; calls fail immediately with CircuitOpenError
  HALF_OPEN - probing; exactly one call is let through

Transitions:
  CLOSED -> OPEN: error percentage over the rolling window reaches the
                  threshold, once at least ``volume_threshold`` calls were seen
  OPEN -> HALF_OPEN: after ``reset_timeout_s``
  HALF_OPEN -> CLOSED: probe succeeds
  HALF_OPEN -> OPEN: probe fails

Each call is bounded by ``timeout_s``; a timeout counts as a failure. Every
gateway owns its own breaker instance.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from attestation_platform.domain.exceptions import CircuitOpenError, CircuitTimeoutError
from attestation_platform.infrastructure.config import CircuitBreakerConfig
from attestation_platform.infrastructure.logging import get_logger
from attestation_platform.infrastructure.metrics import MetricsRegistry

T = TypeVar("T")

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_GAUGE_VALUE = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


class CircuitBreaker:
    """Error-rate circuit breaker for async calls.

    Args:
        name: Dependency name, used in errors, logs and metrics.
        timeout_s: Hard timeout applied to every call.
        error_threshold_percentage: Failure percentage that trips the breaker.
        reset_timeout_s: Time spent OPEN before a probe is allowed.
        volume_threshold: Minimum calls in the window before tripping.
        rolling_window_s: Length of the outcome window.
        excluded: Exception types that propagate without counting as failures.
        metrics: Metrics registry for the state gauge.
        clock: Monotonic clock (tests).
    """

    def __init__(
        self,
        name: str,
        timeout_s: float = 10.0,
        error_threshold_percentage: float = 50.0,
        reset_timeout_s: float = 30.0,
        volume_threshold: int = 5,
        rolling_window_s: float = 60.0,
        excluded: tuple[type[BaseException], ...] = (),
        metrics: MetricsRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.timeout_s = timeout_s
        self.error_threshold_percentage = error_threshold_percentage
        self.reset_timeout_s = reset_timeout_s
        self.volume_threshold = volume_threshold
        self.rolling_window_s = rolling_window_s
        self.excluded = excluded
        self._metrics = metrics
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._probe_in_flight = False
        self._outcomes: deque[tuple[float, bool]] = deque()
        self._publish_state()

    @classmethod
    def from_config(
        cls,
        name: str,
        config: CircuitBreakerConfig,
        metrics: MetricsRegistry | None = None,
        **kwargs: Any,
    ) -> CircuitBreaker:
        return cls(
            name,
            timeout_s=config.timeout_s,
            error_threshold_percentage=config.error_threshold_percentage,
            reset_timeout_s=config.reset_timeout_s,
            volume_threshold=config.volume_threshold,
            rolling_window_s=config.rolling_window_s,
            metrics=metrics,
            **kwargs,
        )

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.reset_timeout_s:
            self._set_state(CircuitState.HALF_OPEN)
        return self._state

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn(*args, **kwargs)`` under the breaker.

        Raises:
            CircuitOpenError: The breaker is open, or a probe is already running.
            CircuitTimeoutError: The call exceeded ``timeout_s``.
        """
        state = self.state
        if state == CircuitState.OPEN:
            raise CircuitOpenError(self.name)
        probing = state == CircuitState.HALF_OPEN
        if probing:
            if self._probe_in_flight:
                raise CircuitOpenError(self.name)
            self._probe_in_flight = True

        try:
            result = await asyncio.wait_for(fn(*args, **kwargs), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            self._record(False, probing)
            raise CircuitTimeoutError(self.name, self.timeout_s) from e
        except self.excluded:
            self._record(True, probing)
            raise
        except Exception:
            self._record(False, probing)
            raise
        finally:
            if probing:
                self._probe_in_flight = False

        self._record(True, probing)
        return result

    def reset(self) -> None:
        """Force the breaker closed and forget recent outcomes."""
        self._outcomes.clear()
        self._probe_in_flight = False
        self._set_state(CircuitState.CLOSED)

    def stats(self) -> dict[str, Any]:
        self._prune(self._clock())
        failures = sum(1 for _, ok in self._outcomes if not ok)
        return {
            "name": self.name,
            "state": self.state.value,
            "calls": len(self._outcomes),
            "failures": failures,
        }

    def _record(self, success: bool, probing: bool) -> None:
        now = self._clock()
        if probing:
            if success:
                self._outcomes.clear()
                self._set_state(CircuitState.CLOSED)
            else:
                self._trip(now)
            return

        self._outcomes.append((now, success))
        self._prune(now)
        if success or self._state != CircuitState.CLOSED:
            return

        total = len(self._outcomes)
        if total < self.volume_threshold:
            return
        failures = sum(1 for _, ok in self._outcomes if not ok)
        if failures * 100.0 / total >= self.error_threshold_percentage:
            self._trip(now)

    def _trip(self, now: float) -> None:
        self._opened_at = now
        self._set_state(CircuitState.OPEN)

    def _prune(self, now: float) -> None:
        horizon = now - self.rolling_window_s
        while self._outcomes and self._outcomes[0][0] < horizon:
            self._outcomes.popleft()

    def _set_state(self, state: CircuitState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        log = logger.warning if state == CircuitState.OPEN else logger.info
        log("circuit_state_changed", circuit=self.name, from_state=previous.value, to_state=state.value)
        self._publish_state()

    def _publish_state(self) -> None:
        if self._metrics is not None:
            self._metrics.circuit_state.labels(name=self.name).set(_GAUGE_VALUE[self._state])
