"""Authentication flow and token refresh coordination.

This module provides the auth manager, which owns the login/logout flow
and makes authenticated requests on behalf of callers. When a request is
rejected with 401, the manager refreshes the token pair and replays the
request once with the new access token.

Refreshes are single-flight: while one refresh is in flight, every other
caller that needs a token (a concurrent 401 or a brand new request) is
parked in an ordered queue and released with the refresh outcome. The
queue is drained in arrival order; each released caller then sends its
own request, so completion order is not guaranteed.
"""

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Callable, Deque, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..config.settings import Settings
from ..exceptions import (
    AuthError,
    TokenRefreshError,
    TokensNotFoundError,
    TransportError,
    ValidationError,
)
from ..models import RequestConfig, TokenPair
from ..utils.http.circuit_breaker import CircuitBreaker
from ..utils.http.retry import RetryManager
from ..utils.http.transport import HTTPResponse, HTTPTransport
from .token_store import TokenStore

logger = logging.getLogger(__name__)

RequestOptions = Optional[Union[RequestConfig, Mapping[str, Any]]]


class AuthManager:
    """Coordinates login, logout and authenticated requests.

    Each client owns its own manager; there is no shared instance.

    :param settings: Endpoint and token field configuration
    :type settings: Settings
    :param token_store: Store holding the current token pair
    :type token_store: TokenStore
    :param transport: Transport used for all outbound calls
    :type transport: HTTPTransport
    :param retry_manager: Optional retry policy wrapped around requests
    :type retry_manager: Optional[RetryManager]
    :param circuit_breaker: Optional breaker gating requests
    :type circuit_breaker: Optional[CircuitBreaker]
    :param on_token_refresh: Hook called with the new ``TokenPair``
    :param on_logout: Hook called after tokens are cleared on logout
    :param on_auth_error: Hook called with the error of a failed login or
        refresh
    """

    def __init__(
        self,
        settings: Settings,
        token_store: TokenStore,
        transport: HTTPTransport,
        retry_manager: Optional[RetryManager] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        on_token_refresh: Optional[Callable[[TokenPair], Any]] = None,
        on_logout: Optional[Callable[[], Any]] = None,
        on_auth_error: Optional[Callable[[Exception], Any]] = None,
    ):
        self.settings = settings
        self.token_store = token_store
        self.transport = transport
        self.retry_manager = retry_manager
        self.circuit_breaker = circuit_breaker
        self.on_token_refresh = on_token_refresh
        self.on_logout = on_logout
        self.on_auth_error = on_auth_error

        self._refresh_task: Optional[asyncio.Task] = None
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def is_refreshing(self) -> bool:
        """Whether a token refresh is currently in flight."""
        return self._refresh_task is not None and not self._refresh_task.done()

    @property
    def queue_size(self) -> int:
        return len(self._waiters)

    async def login(self, credentials: Mapping[str, Any]) -> Any:
        """Authenticate with credentials and store the returned tokens.

        :param credentials: Login payload, sent as the JSON body
        :type credentials: Mapping[str, Any]
        :return: The login response body
        :rtype: Any
        :raises ValidationError: If credentials are not a non-empty mapping
        :raises TokensNotFoundError: If the response lacks a token field;
            stored tokens are left unchanged
        :raises AuthError: If the login endpoint rejects the request
        """
        if not isinstance(credentials, Mapping) or not credentials:
            raise ValidationError(
                "Credentials must be a non-empty mapping", field="credentials"
            )

        try:
            response = await self.transport.post(
                self.settings.login_endpoint, data=dict(credentials)
            )
        except TransportError as e:
            error = AuthError(f"Login failed: {e.message}", status=e.status)
            await self._call_hook(self.on_auth_error, error)
            raise error from e

        try:
            tokens = self._extract_tokens(response.data)
        except TokensNotFoundError as e:
            await self._call_hook(self.on_auth_error, e)
            raise
        await self.token_store.set_tokens(tokens)
        logger.info("Login succeeded, tokens stored")
        return response.data

    async def logout(self) -> None:
        """Notify the server and clear local tokens.

        The logout call is best effort: its failure is logged and ignored,
        and tokens are cleared regardless.
        """
        access_token = await self.token_store.get_access_token()
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
        try:
            await self.transport.post(self.settings.logout_endpoint, headers=headers)
        except Exception as e:
            logger.debug(f"Logout endpoint failed, continuing: {e}")
        finally:
            await self.token_store.clear_tokens()
        logger.info("Logged out, tokens cleared")
        await self._call_hook(self.on_logout)

    async def authenticated_request(
        self,
        method: str,
        url: str,
        data: Any = None,
        config: RequestOptions = None,
    ) -> HTTPResponse:
        """Send a request with the bearer token, refreshing it on 401.

        :param method: HTTP method
        :type method: str
        :param url: Absolute URL or path relative to the base URL
        :type url: str
        :param data: JSON body for POST, PUT and PATCH
        :type data: Any
        :param config: Per-request headers, timeout and retry override
        :type config: Optional[Union[RequestConfig, Mapping[str, Any]]]
        :return: Response of the request, or of its replay after a refresh
        :rtype: HTTPResponse
        :raises AuthError: If the refresh triggered by a 401 fails
        :raises TransportError: For any other failed request
        """
        config = self._coerce_config(config)
        auth_endpoint = self._is_auth_endpoint(url)

        # Hold new requests until a pending refresh settles
        if self.is_refreshing and not config.is_retry and not auth_endpoint:
            await self._wait_for_refresh()

        access_token = await self.token_store.get_access_token()
        headers = dict(config.headers)
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            return await self._send(method, url, data, headers, config)
        except TransportError as e:
            if e.is_unauthorized and not config.is_retry and not auth_endpoint:
                return await self._handle_unauthorized(
                    method, url, data, config, access_token
                )
            raise

    async def _handle_unauthorized(
        self,
        method: str,
        url: str,
        data: Any,
        config: RequestConfig,
        sent_token: Optional[str],
    ) -> HTTPResponse:
        current = await self.token_store.get_access_token()
        if self.is_refreshing:
            logger.debug("Refresh in flight, queueing request")
            new_token = await self._wait_for_refresh()
        elif current and current != sent_token:
            # Rotated by a refresh that finished while this request was out
            new_token = current
        else:
            new_token = await self._start_refresh()

        retry_config = config.model_copy(
            update={
                "headers": {**config.headers, "Authorization": f"Bearer {new_token}"},
                "is_retry": True,
            }
        )
        return await self._send(method, url, data, dict(retry_config.headers), retry_config)

    async def _send(
        self,
        method: str,
        url: str,
        data: Any,
        headers: Mapping[str, str],
        config: RequestConfig,
    ) -> HTTPResponse:
        async def call() -> HTTPResponse:
            return await self.transport.request(
                method, url, data=data, headers=dict(headers), timeout=config.timeout
            )

        async def guarded() -> HTTPResponse:
            return await self.circuit_breaker.execute(call)

        operation = guarded if self.circuit_breaker is not None else call
        if self.retry_manager is not None:
            return await self.retry_manager.execute(operation, config.retry)
        return await operation()

    async def _start_refresh(self) -> str:
        self._refresh_task = asyncio.ensure_future(self._run_refresh())
        # A cancelled trigger must not abort the refresh for queued callers
        pair = await asyncio.shield(self._refresh_task)
        return pair.access_token

    async def _wait_for_refresh(self) -> str:
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        return await waiter

    async def _run_refresh(self) -> TokenPair:
        pair: Optional[TokenPair] = None
        error: Optional[BaseException] = None
        try:
            pair = await self._refresh_tokens()
            return pair
        except Exception as e:
            error = e
            logger.warning(f"Token refresh failed, clearing tokens: {e}")
            await self.token_store.clear_tokens()
            raise
        finally:
            self._refresh_task = None
            if pair is None and error is None:
                error = TokenRefreshError("Token refresh was cancelled")
            self._release_waiters(pair, error)
            if pair is not None:
                await self._call_hook(self.on_token_refresh, pair)
            elif isinstance(error, Exception):
                await self._call_hook(self.on_auth_error, error)

    async def _refresh_tokens(self) -> TokenPair:
        refresh_token = await self.token_store.get_refresh_token()
        if not refresh_token:
            raise TokenRefreshError("No refresh token available")
        if self.token_store.is_token_expired(refresh_token):
            raise TokenRefreshError("Refresh token expired")

        logger.info("Refreshing access token")
        try:
            response = await self.transport.post(
                self.settings.refresh_endpoint,
                data={self.settings.refresh_token_field: refresh_token},
            )
        except TransportError as e:
            raise TokenRefreshError(
                f"Token refresh failed: {e.message}", status=e.status
            ) from e

        tokens = self._extract_tokens(response.data)
        await self.token_store.set_tokens(tokens)
        logger.info(f"Access token refreshed, releasing {len(self._waiters)} queued request(s)")
        return tokens

    def _release_waiters(
        self, pair: Optional[TokenPair], error: Optional[BaseException]
    ) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            if pair is not None:
                waiter.set_result(pair.access_token)
            else:
                waiter.set_exception(error)

    def _extract_tokens(self, data: Any) -> TokenPair:
        access_field = self.settings.access_token_field
        refresh_field = self.settings.refresh_token_field
        if not isinstance(data, Mapping):
            raise TokensNotFoundError(access_field, refresh_field)
        access_token = data.get(access_field)
        refresh_token = data.get(refresh_field)
        if not isinstance(access_token, str) or not isinstance(refresh_token, str):
            raise TokensNotFoundError(access_field, refresh_field)
        if not access_token or not refresh_token:
            raise TokensNotFoundError(access_field, refresh_field)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def _is_auth_endpoint(self, url: str) -> bool:
        path = url.split("?", 1)[0].rstrip("/")
        for endpoint in self.settings.auth_endpoints:
            endpoint = endpoint.rstrip("/")
            if endpoint and (path == endpoint or path.endswith(endpoint)):
                return True
        return False

    @staticmethod
    def _coerce_config(config: RequestOptions) -> RequestConfig:
        if config is None:
            return RequestConfig()
        if isinstance(config, RequestConfig):
            return config
        try:
            return RequestConfig.model_validate(dict(config))
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ()))
            raise ValidationError(
                f"Invalid request configuration: {first.get('msg')}",
                field=field or None,
                value=first.get("input"),
            ) from e

    @staticmethod
    async def _call_hook(hook: Optional[Callable[..., Any]], *args: Any) -> None:
        if hook is None:
            return
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Auth hook {getattr(hook, '__name__', hook)!r} failed: {e}")
