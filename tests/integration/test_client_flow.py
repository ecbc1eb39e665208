"""End-to-end tests of a client built by create_client.

A single in-process backend (httpx.MockTransport) stands in for the API.
These tests exercise the full path: auth manager, retry manager, circuit
breaker and transport, plus health monitoring.
"""

import asyncio
import json

import httpx
import pytest

from authflow import AuthFlowClient, Settings, TokenPair, create_client
from authflow.auth.storage import MemoryStorage
from authflow.exceptions import CircuitOpenError, ConfigurationError, TransportError
from authflow.models import CircuitState
from authflow.utils.http.transport import HTTPTransport


class Backend:
    """Minimal API with login, refresh, a flaky route and a health probe."""

    def __init__(self, token_factory):
        self.token_factory = token_factory
        self.access = token_factory()
        self.refresh = token_factory(exp_offset=86400)
        self.flaky_failures = 0
        self.flaky_calls = 0
        self.healthy = True
        self.refresh_calls = 0

    def handler(self, request):
        path = request.url.path
        if path == "/auth/login":
            return httpx.Response(
                200, json={"accessToken": self.access, "refreshToken": self.refresh}
            )
        if path == "/auth/refresh":
            self.refresh_calls += 1
            body = json.loads(request.content)
            if body.get("refreshToken") != self.refresh:
                return httpx.Response(401)
            self.access = self.token_factory()
            self.refresh = self.token_factory(exp_offset=86400)
            return httpx.Response(
                200, json={"accessToken": self.access, "refreshToken": self.refresh}
            )
        if path == "/auth/logout":
            return httpx.Response(204)
        if path == "/health":
            return httpx.Response(200 if self.healthy else 503)
        if request.headers.get("authorization") != f"Bearer {self.access}":
            return httpx.Response(401)
        if path == "/flaky":
            self.flaky_calls += 1
            if self.flaky_calls <= self.flaky_failures:
                return httpx.Response(503)
        if path == "/down":
            return httpx.Response(500)
        return httpx.Response(200, json={"path": path, "method": request.method})


@pytest.fixture
def backend(token_factory):
    return Backend(token_factory)


def build_client(backend, **overrides) -> AuthFlowClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))
    settings = Settings(_env_file=None, base_url="https://api.test")
    transport = HTTPTransport(base_url=settings.base_url, client=client)
    overrides.setdefault("retry_delay", 0)
    return create_client(settings, transport=transport, **overrides)


@pytest.mark.integration
class TestClientFlow:
    """Test the assembled client."""

    @pytest.mark.asyncio
    async def test_login_request_logout(self, backend):
        async with build_client(backend) as client:
            assert await client.is_authenticated() is False

            await client.login({"username": "ada", "password": "pw"})
            assert await client.is_authenticated() is True

            response = await client.post("/orders", data={"sku": "A1"})
            assert response.data == {"path": "/orders", "method": "POST"}

            await client.logout()
            assert await client.get_tokens() is None

    @pytest.mark.asyncio
    async def test_transparent_refresh(self, backend, token_factory):
        async with build_client(backend) as client:
            await client.set_tokens(
                {"accessToken": token_factory(), "refreshToken": backend.refresh}
            )

            response = await client.get("/me")

            assert response.status == 200
            assert backend.refresh_calls == 1
            assert (await client.get_tokens()).access_token == backend.access

    @pytest.mark.asyncio
    async def test_transient_5xx_is_retried(self, backend):
        backend.flaky_failures = 2
        async with build_client(backend) as client:
            await client.login({"password": "pw"})

            response = await client.get("/flaky")

            assert response.status == 200
            assert backend.flaky_calls == 3

    @pytest.mark.asyncio
    async def test_per_request_retry_override(self, backend):
        backend.flaky_failures = 5
        async with build_client(backend) as client:
            await client.login({"password": "pw"})

            with pytest.raises(TransportError) as exc_info:
                await client.get("/flaky", config={"retry": {"attempts": 1}})

            assert backend.flaky_calls == 1
            assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_circuit_opens_on_persistent_failures(self, backend):
        async with build_client(
            backend,
            retry_attempts=1,
            circuit_threshold=3,
            circuit_minimum_requests=3,
        ) as client:
            await client.login({"password": "pw"})

            for _ in range(3):
                with pytest.raises(TransportError):
                    await client.get("/down")

            assert client.get_circuit_stats().state == CircuitState.OPEN
            with pytest.raises(CircuitOpenError):
                await client.get("/me")

    @pytest.mark.asyncio
    async def test_unauthorized_does_not_trip_circuit(self, backend, token_factory):
        async with build_client(
            backend, retry_attempts=1, circuit_threshold=1, circuit_minimum_requests=1
        ) as client:
            await client.set_tokens(
                {"accessToken": token_factory(), "refreshToken": backend.refresh}
            )

            await client.get("/me")

            assert client.get_circuit_stats().state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_circuit_breaker_can_be_disabled(self, backend):
        async with build_client(backend, circuit_breaker_enabled=False) as client:
            assert client.get_circuit_stats() is None

    @pytest.mark.asyncio
    async def test_health_monitoring(self, backend):
        changes = []
        async with build_client(
            backend, health_enabled=True, health_interval=10000
        ) as client:
            client.health_monitor.update_config({"on_status_change": changes.append})
            await asyncio.sleep(0.01)
            assert client.get_health_status().is_healthy is True

            backend.healthy = False
            status = await client.check_health()

            assert status.is_healthy is False
            assert status.error == "Unhealthy status code: 503"
            assert changes == [False]

    @pytest.mark.asyncio
    async def test_health_disabled_by_default(self, backend):
        async with build_client(backend) as client:
            assert client.get_health_status() is None
            assert await client.check_health() is None


class TestCreateClient:
    """Test client construction."""

    @pytest.mark.asyncio
    async def test_clients_are_independent(self, backend):
        first = build_client(backend)
        second = build_client(backend)

        await first.set_tokens({"accessToken": "a", "refreshToken": "r"})

        assert await second.get_tokens() is None
        assert first.circuit_breaker is not second.circuit_breaker
        await first.aclose()
        await second.aclose()

    @pytest.mark.asyncio
    async def test_custom_storage(self, backend):
        storage = MemoryStorage()
        client = create_client(
            Settings(_env_file=None, base_url="https://api.test"), storage=storage
        )

        await client.set_tokens({"accessToken": "a", "refreshToken": "r"})

        assert client.settings.storage == "custom"
        assert len(storage) == 2
        await client.aclose()

    def test_custom_storage_requires_adapter(self):
        with pytest.raises(ConfigurationError, match="requires an adapter"):
            create_client(Settings(_env_file=None, storage="custom"))

    def test_invalid_settings(self):
        with pytest.raises(ConfigurationError) as exc_info:
            create_client(retry_strategy="linear")
        assert exc_info.value.details["setting"] == "retry_strategy"

    @pytest.mark.asyncio
    async def test_validator_priority(self, backend):
        client = build_client(backend, validate_auth=lambda tokens: True)

        assert await client.is_authenticated() is True
        assert await client.is_authenticated(lambda tokens: tokens is not None) is False
        await client.set_tokens({"accessToken": "a", "refreshToken": "r"})
        assert await client.is_authenticated(
            lambda tokens: tokens == TokenPair(access_token="a", refresh_token="r")
        )
        await client.aclose()
