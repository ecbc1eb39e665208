"""Circuit breaker for outbound requests.

The circuit breaker prevents cascading failures by rejecting calls to a
backend that keeps failing, giving it time to recover before traffic
resumes. It operates in three states:
- CLOSED: Normal operation, calls are allowed and outcomes recorded
- OPEN: Calls are rejected immediately with ``CircuitOpenError``
- HALF_OPEN: One probe call decides whether to close or reopen

Failures are counted inside a rolling window of ``monitoring_period``
milliseconds, and the circuit only opens once the window also holds at
least ``minimum_requests`` calls.
"""

import logging
import time
from collections import deque
from functools import wraps
from typing import Any, Awaitable, Callable, Deque, Mapping, Optional, Tuple, TypeVar, Union

from pydantic import ValidationError as PydanticValidationError

from ...exceptions import CircuitOpenError, ValidationError
from ...models import CircuitBreakerConfig, CircuitBreakerStats, CircuitState

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _now_ms() -> float:
    return time.time() * 1000


class CircuitBreaker:
    """Rolling-window circuit breaker.

    Can wrap calls through ``execute`` or be applied as a decorator to
    async functions.

    :param config: Thresholds, merged over the defaults
    :type config: Optional[Union[CircuitBreakerConfig, Mapping[str, Any]]]
    :param is_failure: Predicate deciding whether an exception counts as a
        backend failure. Exceptions it rejects propagate without being
        recorded. Defaults to counting every exception.
    :type is_failure: Optional[Callable[[BaseException], bool]]
    :param name: Name used in log messages
    :type name: str
    """

    def __init__(
        self,
        config: Optional[Union[CircuitBreakerConfig, Mapping[str, Any]]] = None,
        is_failure: Optional[Callable[[BaseException], bool]] = None,
        name: str = "default",
    ):
        if config is None:
            config = CircuitBreakerConfig()
        elif not isinstance(config, CircuitBreakerConfig):
            try:
                config = CircuitBreakerConfig(**dict(config))
            except PydanticValidationError as e:
                first = e.errors()[0]
                raise ValidationError(
                    f"Invalid circuit breaker configuration: {first.get('msg')}",
                    field=".".join(str(p) for p in first.get("loc", ())) or None,
                ) from e
        self.config = config
        self.name = name
        self._is_failure = is_failure or (lambda exc: True)

        self._state = CircuitState.CLOSED
        self._history: Deque[Tuple[float, bool]] = deque()
        self._failures = 0
        self._successes = 0
        self._total_requests = 0
        self._last_failure_time: Optional[float] = None
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def next_retry_time(self) -> Optional[float]:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return None
        return self._opened_at + self.config.reset_timeout

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` through the breaker.

        :param operation: Zero-argument coroutine function
        :type operation: Callable[[], Awaitable[T]]
        :return: The operation's result
        :raises CircuitOpenError: If the circuit is open and the reset
            timeout has not elapsed; the operation is not invoked
        """
        if self._state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._transition(CircuitState.HALF_OPEN)
            else:
                raise CircuitOpenError(next_retry_time=self.next_retry_time)

        try:
            result = await operation()
        except Exception as e:
            if self._is_failure(e):
                self._on_failure()
            raise
        self._on_success()
        return result

    def __call__(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Apply the breaker to every call of an async function."""

        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await self.execute(lambda: func(*args, **kwargs))

        return wrapper

    def get_stats(self) -> CircuitBreakerStats:
        """Return a snapshot of the breaker's counters."""
        self._prune(_now_ms())
        return CircuitBreakerStats(
            state=self._state,
            failures=self._failures,
            successes=self._successes,
            total_requests=self._total_requests,
            last_failure_time=self._last_failure_time,
            next_retry_time=self.next_retry_time,
        )

    def force_open(self) -> None:
        """Open the circuit now. It stays open for a full reset timeout."""
        now = _now_ms()
        self._last_failure_time = now
        self._opened_at = now
        self._transition(CircuitState.OPEN)

    def force_close(self) -> None:
        """Close the circuit and forget recorded failures."""
        self._failures = 0
        self._history.clear()
        self._opened_at = None
        self._transition(CircuitState.CLOSED)

    def reset(self) -> None:
        """Return to the initial closed state with all counters zeroed."""
        self._history.clear()
        self._failures = 0
        self._successes = 0
        self._total_requests = 0
        self._last_failure_time = None
        self._opened_at = None
        self._transition(CircuitState.CLOSED)

    def _should_attempt_reset(self) -> bool:
        next_retry = self.next_retry_time
        return next_retry is None or _now_ms() >= next_retry

    def _on_success(self) -> None:
        now = _now_ms()
        self._total_requests += 1
        self._successes += 1
        if self._state == CircuitState.HALF_OPEN:
            self._failures = 0
            self._history.clear()
            self._opened_at = None
            self._transition(CircuitState.CLOSED)
            return
        self._history.append((now, True))
        self._prune(now)

    def _on_failure(self) -> None:
        now = _now_ms()
        self._total_requests += 1
        self._last_failure_time = now
        self._history.append((now, False))
        self._prune(now)

        if self._state == CircuitState.HALF_OPEN:
            self._opened_at = now
            self._transition(CircuitState.OPEN)
            return

        window_total = len(self._history)
        if (
            self._state == CircuitState.CLOSED
            and self._failures >= self.config.threshold
            and window_total >= self.config.minimum_requests
        ):
            self._opened_at = now
            self._transition(CircuitState.OPEN)

    def _prune(self, now: float) -> None:
        """Drop outcomes older than the monitoring period and recount failures."""
        period = self.config.monitoring_period
        if period is not None:
            cutoff = now - period
            while self._history and self._history[0][0] < cutoff:
                self._history.popleft()
        self._failures = sum(1 for _, ok in self._history if not ok)

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.OPEN:
            logger.warning(
                f"Circuit '{self.name}' OPEN after {self._failures} failures "
                f"(was {old_state.value})"
            )
        else:
            logger.info(f"Circuit '{self.name}' {old_state.value} -> {new_state.value}")
