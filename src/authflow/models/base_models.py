"""Shared Pydantic models for AuthFlow.

This module contains the data models used throughout the client core,
including the token pair, component configuration, retry diagnostics,
circuit breaker statistics and health status.

The models provide type safety and validation for:
- Token persistence and extraction
- Retry, circuit breaker and health monitor configuration
- Diagnostics attached to errors and exposed by components
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr

RetryStrategy = Literal["fixed", "exponential", "exponential-jitter"]
RetryCondition = Literal["network", "5xx", "timeout", "circuit-open"]

StatusChangeCallback = Callable[[bool], Union[None, Awaitable[None]]]


# Token Models
class TokenPair(BaseModel):
    """Access/refresh credential bundle used for bearer authentication.

    The pair is always written and removed as a whole. Both halves are
    opaque strings; the access token is sent as a bearer credential and
    the refresh token is exchanged for a new pair.

    :param access_token: Bearer credential attached to requests
    :type access_token: str
    :param refresh_token: Credential exchanged at the refresh endpoint
    :type refresh_token: str
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    access_token: StrictStr = Field(..., min_length=1, alias="accessToken")
    refresh_token: StrictStr = Field(..., min_length=1, alias="refreshToken")


# Retry Models
class RetryConfig(BaseModel):
    """Retry policy for the retry manager.

    All durations are milliseconds.

    :param attempts: Total number of attempts, including the first one
    :type attempts: int
    :param delay: Base delay between attempts
    :type delay: float
    :param strategy: Backoff strategy
    :type strategy: RetryStrategy
    :param conditions: Error classes that are worth retrying
    :type conditions: List[RetryCondition]
    :param max_delay: Optional cap applied to every computed delay
    :type max_delay: Optional[float]
    :param jitter_factor: Relative spread used by ``exponential-jitter``
    :type jitter_factor: float
    """

    attempts: int = Field(3, ge=1)
    delay: float = Field(1000, ge=0)
    strategy: RetryStrategy = "exponential"
    conditions: List[RetryCondition] = Field(
        default_factory=lambda: ["network", "5xx", "timeout"]
    )
    max_delay: Optional[float] = Field(30000, ge=0)
    jitter_factor: float = Field(0.1, ge=0, le=1)


class RetryAttempt(BaseModel):
    """One executed attempt of a retried operation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    attempt_number: int
    delay_ms: float
    error: Optional[BaseException] = None
    timestamp_ms: float


class RetryInfo(BaseModel):
    """Diagnostics attached to an error once its retry policy is exhausted."""

    success: bool = False
    attempts: List[RetryAttempt] = Field(default_factory=list)
    total_time: float = 0


# Circuit Breaker Models
class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker thresholds.

    :param threshold: Failures within the window that open the circuit
    :type threshold: int
    :param reset_timeout: Time an open circuit waits before probing (ms)
    :type reset_timeout: float
    :param monitoring_period: Length of the rolling window (ms), ``None``
        keeps every outcome since the circuit last closed
    :type monitoring_period: Optional[float]
    :param minimum_requests: Requests within the window required before
        the circuit may open
    :type minimum_requests: int
    """

    threshold: int = Field(5, ge=1)
    reset_timeout: float = Field(60000, ge=0)
    monitoring_period: Optional[float] = Field(300000, gt=0)
    minimum_requests: int = Field(10, ge=0)


class CircuitBreakerStats(BaseModel):
    """Snapshot of circuit breaker counters and state."""

    state: CircuitState
    failures: int = 0
    successes: int = 0
    total_requests: int = 0
    last_failure_time: Optional[float] = None
    next_retry_time: Optional[float] = None


# Health Models
class HealthConfig(BaseModel):
    """Health monitor configuration (durations in ms)."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    enabled: bool = True
    endpoint: str = "/health"
    interval: float = Field(60000, gt=0)
    timeout: float = Field(5000, gt=0)
    on_status_change: Optional[StatusChangeCallback] = None


class HealthStatus(BaseModel):
    """Result of the most recent liveness probe.

    :param is_healthy: Whether the last probe succeeded
    :type is_healthy: bool
    :param last_check_time: Epoch ms of the last probe, ``0`` before any
    :type last_check_time: float
    :param last_healthy_time: Epoch ms of the last successful probe
    :type last_healthy_time: float
    :param response_time_ms: Duration of the last probe
    :type response_time_ms: float
    :param error: Failure message of the last probe, if it failed
    :type error: Optional[str]
    """

    is_healthy: bool = True
    last_check_time: float = 0
    last_healthy_time: float = 0
    response_time_ms: float = 0
    error: Optional[str] = None


# Request Models
class RequestConfig(BaseModel):
    """Per-request options for authenticated calls.

    :param headers: Extra request headers
    :type headers: Dict[str, str]
    :param timeout: Optional per-call timeout in ms
    :type timeout: Optional[float]
    :param is_retry: Marks the replay after a refresh; a second 401 is not
        refreshed again
    :type is_retry: bool
    :param retry: Optional retry policy override for this call
    :type retry: Optional[Dict[str, Any]]
    """

    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = Field(None, gt=0)
    is_retry: bool = False
    retry: Optional[Dict[str, Any]] = None
