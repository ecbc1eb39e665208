"""HTTP utilities public API (barrel module).

This package provides:
- HTTP transport with normalized responses and errors
- Retry manager with error classification and backoff strategies
- Rolling-window circuit breaker
- Periodic health monitor

Recommended import pattern for consumers:
    from authflow.utils.http import HTTPTransport, RetryManager, CircuitBreaker

This keeps call sites stable even if internal modules are reorganized.
"""

from .circuit_breaker import CircuitBreaker
from .health import HealthMonitor
from .retry import RetryManager, classify_error, compute_delay
from .transport import HTTPResponse, HTTPTransport

__all__ = [
    "HTTPTransport",
    "HTTPResponse",
    "RetryManager",
    "classify_error",
    "compute_delay",
    "CircuitBreaker",
    "HealthMonitor",
]
