"""AuthFlow: resilient authenticated HTTP client core.

This package manages an access/refresh token pair, refreshes it
transparently when requests are rejected with 401, coordinates
concurrent refreshes, retries transient failures with backoff, and
isolates a failing backend with a circuit breaker. An optional health
monitor probes backend liveness.

:var __version__: Current package version
:type __version__: str
"""

__version__ = "0.1.0"

from .client import AuthFlowClient, create_client  # noqa: E402
from .config import Settings  # noqa: E402
from .models import TokenPair  # noqa: E402

__all__ = ["AuthFlowClient", "create_client", "Settings", "TokenPair", "__version__"]
