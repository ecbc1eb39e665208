"""Configuration settings for the AuthFlow client.

This module defines the configuration settings for the client core,
including auth endpoints, token field names, request timeout, and the
retry, circuit breaker and health monitor policies. Settings are loaded
from ``AUTHFLOW_``-prefixed environment variables and .env files, and can
be overridden with keyword arguments.
"""

from typing import Callable, List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..models import (
    CircuitBreakerConfig,
    HealthConfig,
    RetryCondition,
    RetryConfig,
    RetryStrategy,
    TokenPair,
)


class Settings(BaseSettings):
    """Client settings loaded from environment variables.

    All durations are milliseconds.

    :param base_url: Base URL that relative request paths are joined to
    :type base_url: str
    :param login_endpoint: Path of the login endpoint
    :type login_endpoint: str
    :param refresh_endpoint: Path of the token refresh endpoint
    :type refresh_endpoint: str
    :param logout_endpoint: Path of the logout endpoint
    :type logout_endpoint: str
    :param access_token_field: Response field holding the access token
    :type access_token_field: str
    :param refresh_token_field: Response field holding the refresh token
    :type refresh_token_field: str
    :param storage: Storage capability, ``memory`` or an injected ``custom`` adapter
    :type storage: Literal["memory", "custom"]
    :param timeout: Default request timeout
    :type timeout: float
    :param log_level: Logging level used by ``setup_secure_logging``
    :type log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTHFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields in .env file
    )

    base_url: str = Field("", description="Base URL for relative request paths")

    # Auth endpoints
    login_endpoint: str = Field("/auth/login", description="Login endpoint path")
    refresh_endpoint: str = Field("/auth/refresh", description="Refresh endpoint path")
    logout_endpoint: str = Field("/auth/logout", description="Logout endpoint path")

    # Token field names in auth responses
    access_token_field: str = Field("accessToken", min_length=1)
    refresh_token_field: str = Field("refreshToken", min_length=1)

    storage: Literal["memory", "custom"] = Field(
        "memory", description="Token storage capability"
    )
    timeout: float = Field(10000, gt=0, description="Request timeout in ms")

    # Retry policy
    retry_attempts: int = Field(3, ge=1)
    retry_delay: float = Field(1000, ge=0)
    retry_strategy: RetryStrategy = "exponential"
    retry_conditions: List[RetryCondition] = Field(
        default_factory=lambda: ["network", "5xx", "timeout"]
    )
    retry_max_delay: Optional[float] = Field(30000, ge=0)
    retry_jitter_factor: float = Field(0.1, ge=0, le=1)

    # Circuit breaker
    circuit_breaker_enabled: bool = True
    circuit_threshold: int = Field(5, ge=1)
    circuit_reset_timeout: float = Field(60000, ge=0)
    circuit_monitoring_period: Optional[float] = Field(300000, gt=0)
    circuit_minimum_requests: int = Field(10, ge=0)

    # Health monitoring
    health_enabled: bool = False
    health_endpoint: str = "/health"
    health_interval: float = Field(60000, gt=0)
    health_timeout: float = Field(5000, gt=0)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO", description="Logging level"
    )

    # Optional authentication validator, only settable in code
    validate_auth: Optional[Callable[[Optional[TokenPair]], bool]] = Field(
        None, exclude=True
    )

    @field_validator("login_endpoint", "refresh_endpoint", "logout_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Require endpoints to be absolute paths or absolute URLs.

        :param v: Endpoint as configured
        :type v: str
        :return: Endpoint unchanged
        :rtype: str
        :raises ValueError: If the endpoint is neither a path nor a URL
        """
        if v.startswith("/") or v.startswith(("http://", "https://")):
            return v
        raise ValueError(f"Endpoint must start with '/' or be an absolute URL: {v!r}")

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so paths can be appended directly."""
        return v.rstrip("/")

    def retry_config(self) -> RetryConfig:
        """Build the retry manager policy from these settings."""
        return RetryConfig(
            attempts=self.retry_attempts,
            delay=self.retry_delay,
            strategy=self.retry_strategy,
            conditions=list(self.retry_conditions),
            max_delay=self.retry_max_delay,
            jitter_factor=self.retry_jitter_factor,
        )

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        """Build the circuit breaker thresholds from these settings."""
        return CircuitBreakerConfig(
            threshold=self.circuit_threshold,
            reset_timeout=self.circuit_reset_timeout,
            monitoring_period=self.circuit_monitoring_period,
            minimum_requests=self.circuit_minimum_requests,
        )

    def health_config(self) -> HealthConfig:
        """Build the health monitor configuration from these settings."""
        return HealthConfig(
            enabled=self.health_enabled,
            endpoint=self.health_endpoint,
            interval=self.health_interval,
            timeout=self.health_timeout,
        )

    @property
    def auth_endpoints(self) -> List[str]:
        """Endpoints that never trigger a token refresh."""
        return [self.login_endpoint, self.refresh_endpoint, self.logout_endpoint]
