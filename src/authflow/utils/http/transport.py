"""HTTP transport with normalized responses and errors.

This module wraps a single ``httpx.AsyncClient`` and turns every exchange
into either an ``HTTPResponse`` or a ``TransportError``. Callers above the
transport (retry manager, circuit breaker, auth manager) only ever look at
``status`` and ``code`` on those errors, never at httpx exceptions.

Timeouts are expressed in milliseconds, like every other duration in the
package, and converted to seconds for httpx.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ...exceptions import NetworkError, RequestTimeoutError, TransportError
from ..security import safe_log_dict, sanitize_headers, sanitize_url

logger = logging.getLogger(__name__)

BODY_METHODS = {"POST", "PUT", "PATCH"}

DEFAULT_HEADERS = {"Content-Type": "application/json"}


class HTTPResponse:
    """Normalized HTTP response.

    :param data: Parsed body, JSON when the content type says so, text
        otherwise, None when empty
    :param status: HTTP status code
    :param status_text: Reason phrase
    :param headers: Response headers
    """

    def __init__(
        self,
        data: Any,
        status: int,
        status_text: str = "",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.data = data
        self.status = status
        self.status_text = status_text
        self.headers = headers or {}

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> "HTTPResponse":
        """Build a normalized response from an httpx response.

        :param response: The underlying httpx.Response object
        :type response: httpx.Response
        :return: Normalized response
        :rtype: HTTPResponse
        """
        return cls(
            data=parse_body(response),
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=dict(response.headers),
        )

    @property
    def status_code(self) -> int:
        return self.status

    def is_success(self) -> bool:
        """Check if the response indicates success (2xx status code)."""
        return 200 <= self.status < 300

    def is_client_error(self) -> bool:
        """Check if the response indicates a client error (4xx status code)."""
        return 400 <= self.status < 500

    def is_server_error(self) -> bool:
        """Check if the response indicates a server error (5xx status code)."""
        return 500 <= self.status < 600

    def __repr__(self) -> str:
        return f"HTTPResponse(status={self.status})"


def parse_body(response: httpx.Response) -> Any:
    """Decode a response body based on its content type."""
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            logger.debug("Response declared JSON but failed to parse, using text")
    return response.text


def network_error_code(exc: httpx.TransportError) -> str:
    """Map an httpx transport failure to a connection-level error code."""
    message = str(exc).lower()
    if isinstance(exc, httpx.ConnectError):
        if (
            "name or service not known" in message
            or "nodename nor servname" in message
            or "getaddrinfo" in message
            or "name resolution" in message
        ):
            return "ENOTFOUND"
        return "ECONNREFUSED"
    if isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    return "ECONNREFUSED"


class HTTPTransport:
    """Async HTTP transport bound to a base URL.

    :param base_url: Base URL relative paths are joined to
    :type base_url: str
    :param timeout: Default per-request timeout in milliseconds
    :type timeout: float
    :param client: Optional injected httpx client. An injected client is
        not closed by ``aclose``.
    :type client: Optional[httpx.AsyncClient]
    :param headers: Extra default headers sent with every request
    :type headers: Optional[Dict[str, str]]
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 10000,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._default_headers = {**DEFAULT_HEADERS, **(headers or {})}
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient()

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    def build_url(self, url: str) -> str:
        """Join a relative path to the base URL. Absolute URLs pass through."""
        if url.startswith(("http://", "https://")) or not self.base_url:
            return url
        if not url.startswith("/"):
            url = f"/{url}"
        return f"{self.base_url}{url}"

    async def request(
        self,
        method: str,
        url: str,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HTTPResponse:
        """Send a request and normalize the outcome.

        :param method: HTTP method
        :type method: str
        :param url: Absolute URL or path relative to the base URL
        :type url: str
        :param data: JSON body, only sent for POST, PUT and PATCH
        :type data: Any
        :param headers: Request headers merged over the defaults
        :type headers: Optional[Dict[str, str]]
        :param timeout: Per-call timeout in milliseconds
        :type timeout: Optional[float]
        :return: Normalized response for 2xx statuses
        :rtype: HTTPResponse
        :raises TransportError: For non-2xx statuses
        :raises RequestTimeoutError: When the call exceeds its timeout
        :raises NetworkError: When no response was received
        """
        method = method.upper()
        full_url = self.build_url(url)
        timeout_ms = timeout if timeout is not None else self.timeout
        request_headers = {**self._default_headers, **(headers or {})}

        request_kwargs: Dict[str, Any] = {
            "headers": request_headers,
            "timeout": httpx.Timeout(timeout_ms / 1000),
        }
        if method in BODY_METHODS and data is not None:
            request_kwargs["json"] = data

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"{method} {sanitize_url(full_url)} headers={sanitize_headers(request_headers)}"
                f" body={safe_log_dict(request_kwargs.get('json'))}"
            )

        try:
            response = await self._client.request(method, full_url, **request_kwargs)
        except httpx.TimeoutException as e:
            logger.debug(f"{method} {sanitize_url(full_url)} timed out after {timeout_ms}ms")
            raise RequestTimeoutError(timeout_ms=timeout_ms) from e
        except httpx.TransportError as e:
            code = network_error_code(e)
            logger.debug(f"{method} {sanitize_url(full_url)} failed: {code}")
            raise NetworkError(f"Network error: {e}", code=code) from e

        result = HTTPResponse.from_httpx(response)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"{method} {sanitize_url(full_url)} -> {result.status}"
                f" body={safe_log_dict(result.data)}"
            )
        if not result.is_success():
            raise TransportError(
                message=result.status_text or f"HTTP {result.status}",
                status=result.status,
                data=result.data,
                headers=result.headers,
            )
        return result

    async def get(self, url: str, **kwargs) -> HTTPResponse:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, data: Any = None, **kwargs) -> HTTPResponse:
        return await self.request("POST", url, data=data, **kwargs)

    async def put(self, url: str, data: Any = None, **kwargs) -> HTTPResponse:
        return await self.request("PUT", url, data=data, **kwargs)

    async def patch(self, url: str, data: Any = None, **kwargs) -> HTTPResponse:
        return await self.request("PATCH", url, data=data, **kwargs)

    async def delete(self, url: str, **kwargs) -> HTTPResponse:
        return await self.request("DELETE", url, **kwargs)

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "HTTPTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
