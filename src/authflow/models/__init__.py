"""Data models for AuthFlow.

Re-exports the shared Pydantic models so call sites can use
``from authflow.models import TokenPair``.
"""

from .base_models import (
    CircuitBreakerConfig,
    CircuitBreakerStats,
    CircuitState,
    HealthConfig,
    HealthStatus,
    RequestConfig,
    RetryAttempt,
    RetryCondition,
    RetryConfig,
    RetryInfo,
    RetryStrategy,
    StatusChangeCallback,
    TokenPair,
)

__all__ = [
    "TokenPair",
    "RetryConfig",
    "RetryAttempt",
    "RetryInfo",
    "RetryStrategy",
    "RetryCondition",
    "CircuitState",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "HealthConfig",
    "HealthStatus",
    "StatusChangeCallback",
    "RequestConfig",
]
