import sys
import time
import uuid
from pathlib import Path

import jwt
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def pytest_configure(config):
    # Register the asyncio marker so pytest doesn't warn when it's used.
    config.addinivalue_line(
        "markers", "asyncio: mark test to run in an asyncio event loop"
    )
    # Add custom markers for test organization
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "auth: mark test as testing authentication"
    )


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """Set environment variables for tests.

    Keeps Settings deterministic regardless of the developer's shell.
    """
    monkeypatch.setenv("AUTHFLOW_BASE_URL", "https://api.test")
    monkeypatch.setenv("AUTHFLOW_LOG_LEVEL", "INFO")
    monkeypatch.delenv("AUTHFLOW_STORAGE", raising=False)
    monkeypatch.delenv("AUTHFLOW_HEALTH_ENABLED", raising=False)
    monkeypatch.delenv("AUTHFLOW_CIRCUIT_BREAKER_ENABLED", raising=False)

    yield


def make_jwt(exp_offset=3600, **claims):
    """Encode a token expiring ``exp_offset`` seconds from now.

    Pass ``exp_offset=None`` for a token without an ``exp`` claim.
    """
    payload = {"jti": uuid.uuid4().hex, **claims}
    if exp_offset is not None:
        payload["exp"] = int(time.time()) + exp_offset
    return jwt.encode(payload, "test-secret", algorithm="HS256")


@pytest.fixture
def token_factory():
    """Factory producing signed test JWTs."""
    return make_jwt


@pytest.fixture
def valid_pair():
    """Token pair with a live access and refresh token."""
    return {
        "accessToken": make_jwt(sub="user-1", kind="access"),
        "refreshToken": make_jwt(exp_offset=86400, sub="user-1", kind="refresh"),
    }
