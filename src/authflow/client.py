"""Client facade wiring the AuthFlow components together.

``create_client`` builds one fully independent client: its own settings,
storage, transport, retry manager, circuit breaker, auth manager and
optional health monitor. Nothing is shared between clients.

Example::

    async with create_client(base_url="https://api.example.com") as client:
        await client.login({"username": "ada", "password": "secret"})
        response = await client.get("/me")
"""

import logging
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from .auth.manager import AuthManager, RequestOptions
from .auth.storage import StorageAdapter, create_storage
from .auth.token_store import TokenStore
from .config.settings import Settings
from .exceptions import ConfigurationError
from .models import CircuitBreakerStats, HealthStatus, TokenPair
from .utils.http.circuit_breaker import CircuitBreaker
from .utils.http.health import HealthMonitor
from .utils.http.retry import RetryManager
from .utils.http.transport import HTTPResponse, HTTPTransport
from .utils.security import setup_secure_logging

logger = logging.getLogger(__name__)

AuthValidator = Callable[[Optional[TokenPair]], bool]


def counts_as_backend_failure(exc: BaseException) -> bool:
    """Decide whether an error should count against the circuit breaker.

    Client errors say nothing about backend health, except request
    timeouts and rate limiting.
    """
    status = getattr(exc, "status", None)
    if isinstance(status, int) and 400 <= status < 500:
        return status in (408, 429)
    return True


class AuthFlowClient:
    """Authenticated HTTP client with refresh, retry and circuit breaking.

    Build instances with ``create_client`` rather than directly.
    """

    def __init__(
        self,
        settings: Settings,
        token_store: TokenStore,
        transport: HTTPTransport,
        auth_manager: AuthManager,
        retry_manager: RetryManager,
        circuit_breaker: Optional[CircuitBreaker] = None,
        health_monitor: Optional[HealthMonitor] = None,
    ):
        self.settings = settings
        self.token_store = token_store
        self.transport = transport
        self.auth_manager = auth_manager
        self.retry_manager = retry_manager
        self.circuit_breaker = circuit_breaker
        self.health_monitor = health_monitor

    async def login(self, credentials: Any) -> Any:
        return await self.auth_manager.login(credentials)

    async def logout(self) -> None:
        await self.auth_manager.logout()

    async def is_authenticated(self, validator: Optional[AuthValidator] = None) -> bool:
        """Check whether the client holds a usable session.

        A validator passed here wins over ``settings.validate_auth``. Without
        either, the stored pair must exist with a live refresh token.

        :param validator: Optional predicate receiving the stored pair
        :type validator: Optional[Callable[[Optional[TokenPair]], bool]]
        :return: Whether the client is authenticated
        :rtype: bool
        """
        check = validator or self.settings.validate_auth
        if check is not None:
            return bool(check(await self.token_store.get_tokens()))
        return await self.token_store.has_valid_tokens()

    async def has_valid_tokens(self) -> bool:
        return await self.token_store.has_valid_tokens()

    async def get_tokens(self) -> Optional[TokenPair]:
        return await self.token_store.get_tokens()

    async def set_tokens(self, tokens: Any) -> None:
        await self.token_store.set_tokens(tokens)

    async def clear_tokens(self) -> None:
        await self.token_store.clear_tokens()

    async def request(
        self, method: str, url: str, data: Any = None, config: RequestOptions = None
    ) -> HTTPResponse:
        return await self.auth_manager.authenticated_request(method, url, data, config)

    async def get(self, url: str, config: RequestOptions = None) -> HTTPResponse:
        return await self.request("GET", url, config=config)

    async def post(
        self, url: str, data: Any = None, config: RequestOptions = None
    ) -> HTTPResponse:
        return await self.request("POST", url, data, config)

    async def put(
        self, url: str, data: Any = None, config: RequestOptions = None
    ) -> HTTPResponse:
        return await self.request("PUT", url, data, config)

    async def patch(
        self, url: str, data: Any = None, config: RequestOptions = None
    ) -> HTTPResponse:
        return await self.request("PATCH", url, data, config)

    async def delete(self, url: str, config: RequestOptions = None) -> HTTPResponse:
        return await self.request("DELETE", url, config=config)

    def get_health_status(self) -> Optional[HealthStatus]:
        """Latest health status, or None when monitoring is disabled."""
        if self.health_monitor is None:
            return None
        return self.health_monitor.get_status()

    async def check_health(self) -> Optional[HealthStatus]:
        """Probe the backend now, or return None when monitoring is disabled."""
        if self.health_monitor is None:
            return None
        return await self.health_monitor.check_now()

    def get_circuit_stats(self) -> Optional[CircuitBreakerStats]:
        if self.circuit_breaker is None:
            return None
        return self.circuit_breaker.get_stats()

    async def aclose(self) -> None:
        """Stop health monitoring and close the transport."""
        if self.health_monitor is not None:
            await self.health_monitor.destroy()
        await self.transport.aclose()

    async def __aenter__(self) -> "AuthFlowClient":
        if self.health_monitor is not None:
            self.health_monitor.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


def create_client(
    settings: Optional[Settings] = None,
    storage: Optional[StorageAdapter] = None,
    transport: Optional[HTTPTransport] = None,
    configure_logging: bool = False,
    on_token_refresh: Optional[Callable[[TokenPair], Any]] = None,
    on_logout: Optional[Callable[[], Any]] = None,
    on_auth_error: Optional[Callable[[Exception], Any]] = None,
    **overrides: Any,
) -> AuthFlowClient:
    """Build an independent client.

    :param settings: Base settings, loaded from the environment if omitted
    :type settings: Optional[Settings]
    :param storage: Adapter used when ``storage`` is ``custom``. Passing an
        adapter without overriding the storage kind selects ``custom``.
    :type storage: Optional[StorageAdapter]
    :param transport: Transport to use instead of a new one
    :type transport: Optional[HTTPTransport]
    :param configure_logging: Install redacting log output at
        ``settings.log_level``
    :type configure_logging: bool
    :param overrides: Settings fields overriding ``settings``
    :return: Configured client
    :rtype: AuthFlowClient
    :raises ConfigurationError: If the resulting settings are invalid
    """
    if storage is not None and "storage" not in overrides:
        overrides["storage"] = "custom"
    try:
        if settings is None:
            settings = Settings(**overrides)
        elif overrides:
            merged = {**settings.model_dump(), **overrides}
            merged.setdefault("validate_auth", settings.validate_auth)
            settings = Settings(**merged)
    except PydanticValidationError as e:
        first = e.errors()[0]
        setting = ".".join(str(p) for p in first.get("loc", ()))
        raise ConfigurationError(
            f"Invalid settings: {first.get('msg')}", setting=setting or None
        ) from e

    if configure_logging:
        setup_secure_logging(settings.log_level)

    token_store = TokenStore(create_storage(settings.storage, storage))
    if transport is None:
        transport = HTTPTransport(base_url=settings.base_url, timeout=settings.timeout)

    retry_manager = RetryManager(settings.retry_config())
    circuit_breaker = None
    if settings.circuit_breaker_enabled:
        circuit_breaker = CircuitBreaker(
            settings.circuit_breaker_config(),
            is_failure=counts_as_backend_failure,
            name=settings.base_url or "default",
        )

    auth_manager = AuthManager(
        settings,
        token_store,
        transport,
        retry_manager=retry_manager,
        circuit_breaker=circuit_breaker,
        on_token_refresh=on_token_refresh,
        on_logout=on_logout,
        on_auth_error=on_auth_error,
    )

    health_monitor = None
    if settings.health_enabled:
        health_monitor = HealthMonitor(settings.health_config(), transport=transport)

    logger.debug(
        f"Created client for {settings.base_url or '<no base url>'} "
        f"(storage={settings.storage}, circuit_breaker={circuit_breaker is not None}, "
        f"health={health_monitor is not None})"
    )
    return AuthFlowClient(
        settings,
        token_store,
        transport,
        auth_manager,
        retry_manager,
        circuit_breaker=circuit_breaker,
        health_monitor=health_monitor,
    )
