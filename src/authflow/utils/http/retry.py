"""Retry manager for async operations.

This module provides a retry manager that re-runs failed async operations
according to a ``RetryConfig``. Whether an error is worth retrying is
decided by classifying it into one or more conditions (``network``,
``5xx``, ``timeout``, ``circuit-open``) and intersecting them with the
configured conditions.

Backoff supports fixed, exponential and jittered exponential strategies.
Jitter prevents thundering herd problems when many clients fail at once.
Every executed attempt is recorded, and the record is attached to the
error that finally escapes as ``retry_info``.
"""

import asyncio
import logging
import random
import time
from functools import wraps
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Set,
    TypeVar,
    Union,
)

import httpx
from pydantic import ValidationError as PydanticValidationError

from ...exceptions import CircuitOpenError, ValidationError
from ...models import RetryAttempt, RetryConfig, RetryInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

NETWORK_ERROR_CODES = {"ECONNREFUSED", "ENOTFOUND", "ECONNRESET", "ETIMEDOUT"}
TIMEOUT_ERROR_CODES = {"ETIMEDOUT", "TIMEOUT"}
NETWORK_ERROR_MESSAGES = ("network error", "connection refused", "dns lookup failed")

SCENARIOS: Dict[str, Dict[str, Any]] = {
    "network-flaky": {
        "attempts": 5,
        "delay": 2000,
        "strategy": "exponential-jitter",
        "conditions": ["network", "timeout"],
        "max_delay": 30000,
    },
    "api-default": {
        "attempts": 3,
        "delay": 1000,
        "strategy": "exponential",
        "conditions": ["5xx", "timeout"],
        "max_delay": 10000,
    },
    "critical-path": {
        "attempts": 7,
        "delay": 500,
        "strategy": "exponential-jitter",
        "conditions": ["network", "5xx", "timeout", "circuit-open"],
        "max_delay": 60000,
    },
    "fast-fail": {
        "attempts": 2,
        "delay": 500,
        "strategy": "fixed",
        "conditions": ["5xx"],
        "max_delay": 1000,
    },
}

SCENARIO_ALIASES = {
    "network": "network-flaky",
    "api": "api-default",
    "critical": "critical-path",
    "fast": "fast-fail",
}

ConfigInput = Optional[Union[RetryConfig, Mapping[str, Any]]]


def _status_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status", None)
    if status is None:
        status = getattr(error, "status_code", None)
    if isinstance(status, bool) or not isinstance(status, int):
        return None
    return status


def classify_error(error: BaseException) -> Set[str]:
    """Classify an error into the retry conditions it satisfies.

    An error can satisfy several conditions at once, for example a
    connection timeout is both ``network`` and ``timeout``.

    :param error: Error raised by an attempt
    :type error: BaseException
    :return: Set of matching condition names
    :rtype: Set[str]
    """
    conditions: Set[str] = set()
    code = getattr(error, "code", None)
    code = code if isinstance(code, str) else None
    status = _status_of(error)
    message = str(error).lower()

    if (
        isinstance(error, httpx.TransportError)
        or code in NETWORK_ERROR_CODES
        or status == 0
        or any(m in message for m in NETWORK_ERROR_MESSAGES)
    ):
        conditions.add("network")

    if status is not None and 500 <= status < 600:
        conditions.add("5xx")

    if (
        isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError))
        or code in TIMEOUT_ERROR_CODES
        or "timeout" in message
    ):
        conditions.add("timeout")

    if isinstance(error, CircuitOpenError) or "circuit breaker is open" in message:
        conditions.add("circuit-open")

    return conditions


def compute_delay(config: RetryConfig, retry_number: int) -> float:
    """Compute the backoff before retry ``retry_number`` (1-indexed), in ms.

    :param config: Retry policy
    :type config: RetryConfig
    :param retry_number: Index of the upcoming retry, starting at 1
    :type retry_number: int
    :return: Delay in milliseconds, capped at ``max_delay``
    :rtype: float
    """
    if config.strategy == "fixed":
        delay = config.delay
    else:
        delay = config.delay * (2 ** (retry_number - 1))
        if config.strategy == "exponential-jitter":
            spread = config.jitter_factor
            delay *= random.uniform(1 - spread, 1 + spread)
    if config.max_delay is not None:
        delay = min(delay, config.max_delay)
    return max(0.0, delay)


def _merge(base: RetryConfig, override: ConfigInput) -> RetryConfig:
    if override is None:
        return base
    if isinstance(override, RetryConfig):
        override = override.model_dump(exclude_unset=True)
    try:
        return RetryConfig(**{**base.model_dump(), **dict(override)})
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(
            f"Invalid retry configuration: {first.get('msg')}",
            field=field or None,
            value=first.get("input"),
        ) from e


class RetryManager:
    """Retries async operations according to a policy.

    Can be used directly through ``execute`` or as a decorator::

        retry = RetryManager({"attempts": 5})

        @retry
        async def fetch():
            ...

    :param config: Policy, merged over the defaults
    :type config: Optional[Union[RetryConfig, Mapping[str, Any]]]
    """

    def __init__(self, config: ConfigInput = None):
        self._config = _merge(RetryConfig(), config)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        override_config: ConfigInput = None,
    ) -> T:
        """Run ``operation`` until it succeeds or the policy gives up.

        :param operation: Zero-argument coroutine function
        :type operation: Callable[[], Awaitable[T]]
        :param override_config: Policy fields overriding the manager's for
            this call only
        :type override_config: Optional[Union[RetryConfig, Mapping[str, Any]]]
        :return: The operation's result
        :raises Exception: The last error, with ``retry_info`` attached, when
            attempts are exhausted or the error is not retryable
        """
        config = _merge(self._config, override_config)
        allowed = set(config.conditions)
        attempts: List[RetryAttempt] = []
        start = time.time() * 1000

        for attempt_number in range(1, config.attempts + 1):
            try:
                result = await operation()
            except Exception as e:
                is_last = attempt_number >= config.attempts
                retryable = bool(classify_error(e) & allowed)
                delay = 0.0
                if retryable and not is_last:
                    delay = compute_delay(config, attempt_number)
                attempts.append(
                    RetryAttempt(
                        attempt_number=attempt_number,
                        delay_ms=delay,
                        error=e,
                        timestamp_ms=time.time() * 1000,
                    )
                )
                if not retryable or is_last:
                    if not retryable:
                        logger.debug(
                            f"Not retrying {type(e).__name__}: no matching retry condition"
                        )
                    else:
                        logger.warning(
                            f"Giving up after {attempt_number} attempt(s): {e}"
                        )
                    e.retry_info = RetryInfo(
                        success=False,
                        attempts=attempts,
                        total_time=time.time() * 1000 - start,
                    )
                    raise
                logger.info(
                    f"Attempt {attempt_number}/{config.attempts} failed "
                    f"({type(e).__name__}), retrying in {delay:.0f}ms"
                )
                await asyncio.sleep(delay / 1000)
            else:
                if attempt_number > 1:
                    logger.info(f"Operation succeeded after {attempt_number} attempts")
                return result

        # attempts >= 1 guarantees the loop returns or raises
        raise RuntimeError("Retry loop exited without a result")

    def __call__(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Wrap an async function so every call goes through ``execute``."""

        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await self.execute(lambda: func(*args, **kwargs))

        return wrapper

    def estimate_total_retry_time(self, override_config: ConfigInput = None) -> float:
        """Sum the backoff delays of a fully failing run, ignoring jitter.

        :return: Total delay in milliseconds
        :rtype: float
        """
        config = _merge(self._config, override_config)
        if config.strategy == "exponential-jitter":
            config = config.model_copy(update={"strategy": "exponential"})
        return sum(compute_delay(config, n) for n in range(1, config.attempts))

    @classmethod
    def create_for_scenario(cls, name: str) -> "RetryManager":
        """Build a manager preconfigured for a named scenario.

        :param name: ``network-flaky``, ``api-default``, ``critical-path`` or
            ``fast-fail`` (short forms ``network``, ``api``, ``critical`` and
            ``fast`` are accepted)
        :type name: str
        :return: Configured retry manager
        :rtype: RetryManager
        :raises ValidationError: If the scenario is unknown
        """
        key = SCENARIO_ALIASES.get(name, name)
        if key not in SCENARIOS:
            raise ValidationError(f"Unknown retry scenario: {name}", field="scenario", value=name)
        return cls(SCENARIOS[key])

    def update_config(self, partial: Mapping[str, Any]) -> None:
        """Merge policy fields over the current configuration."""
        self._config = _merge(self._config, partial)

    def get_config(self) -> RetryConfig:
        """Return a copy of the current policy."""
        return self._config.model_copy(deep=True)
