"""Tests for token persistence, expiry evaluation and storage adapters."""

import base64
import json
import time
from unittest.mock import MagicMock

import pytest

from authflow.auth.storage import MemoryStorage, StorageAdapter, create_storage
from authflow.auth.token_store import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    TokenStore,
    decode_claims,
    is_jwt_expired,
    validate_jwt_structure,
)
from authflow.exceptions import ConfigurationError, ValidationError
from authflow.models import TokenPair


def _segment(obj) -> str:
    raw = obj if isinstance(obj, bytes) else json.dumps(obj).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


class AsyncDictStorage(StorageAdapter):
    """Adapter whose methods are coroutines."""

    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value

    async def remove(self, key):
        self.data.pop(key, None)

    async def clear(self):
        self.data.clear()


class FailingRefreshWriteStorage(MemoryStorage):
    """Fails when the refresh token is written."""

    def set(self, key, value):
        if key == REFRESH_TOKEN_KEY:
            raise IOError("disk full")
        super().set(key, value)


class TestTokenStore:
    """Test token store read/write behaviour."""

    @pytest.mark.asyncio
    async def test_set_then_get_round_trips(self):
        store = TokenStore()
        await store.set_tokens(TokenPair(access_token="a-1", refresh_token="r-1"))

        tokens = await store.get_tokens()
        assert tokens == TokenPair(access_token="a-1", refresh_token="r-1")
        assert await store.get_access_token() == "a-1"
        assert await store.get_refresh_token() == "r-1"

    @pytest.mark.asyncio
    async def test_set_tokens_accepts_mapping_with_wire_names(self):
        store = TokenStore()
        await store.set_tokens({"accessToken": "a", "refreshToken": "r"})
        assert (await store.get_tokens()).access_token == "a"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "tokens",
        [
            {"accessToken": "", "refreshToken": "r"},
            {"accessToken": "a", "refreshToken": ""},
            {"accessToken": 123, "refreshToken": "r"},
            {"accessToken": "a"},
            "not-a-mapping",
        ],
    )
    async def test_set_tokens_rejects_invalid_pairs(self, tokens):
        storage = MemoryStorage()
        store = TokenStore(storage)

        with pytest.raises(ValidationError):
            await store.set_tokens(tokens)
        assert len(storage) == 0

    @pytest.mark.asyncio
    async def test_get_tokens_requires_both_halves(self):
        storage = MemoryStorage()
        storage.set(ACCESS_TOKEN_KEY, "only-access")
        store = TokenStore(storage)

        assert await store.get_tokens() is None
        assert await store.has_tokens() is False

    @pytest.mark.asyncio
    async def test_refresh_write_failure_rolls_back_access_token(self):
        storage = FailingRefreshWriteStorage()
        store = TokenStore(storage)

        with pytest.raises(IOError):
            await store.set_tokens({"accessToken": "a", "refreshToken": "r"})

        assert storage.get(ACCESS_TOKEN_KEY) is None
        assert await store.get_tokens() is None

    @pytest.mark.asyncio
    async def test_clear_tokens_is_idempotent(self):
        store = TokenStore()
        await store.set_tokens({"accessToken": "a", "refreshToken": "r"})

        await store.clear_tokens()
        await store.clear_tokens()

        assert await store.get_tokens() is None

    @pytest.mark.asyncio
    async def test_read_failure_is_reported_as_missing(self):
        storage = MagicMock(spec=StorageAdapter)
        storage.get.side_effect = RuntimeError("storage unavailable")
        store = TokenStore(storage)

        assert await store.get_access_token() is None
        assert await store.get_tokens() is None

    @pytest.mark.asyncio
    async def test_async_adapter_is_awaited(self):
        storage = AsyncDictStorage()
        store = TokenStore(storage)

        await store.set_tokens({"accessToken": "a", "refreshToken": "r"})
        assert storage.data == {ACCESS_TOKEN_KEY: "a", REFRESH_TOKEN_KEY: "r"}
        assert (await store.get_tokens()).refresh_token == "r"

        await store.clear_tokens()
        assert storage.data == {}


class TestTokenExpiry:
    """Test expiry evaluation from the exp claim."""

    @pytest.mark.parametrize(
        "token",
        ["", "abc", "a.b", "a.b.c.d", "not.valid.jwt", f"x.{_segment(b'not json')}.y"],
    )
    def test_malformed_tokens_are_expired(self, token):
        assert TokenStore().is_token_expired(token) is True

    def test_non_object_payload_is_expired(self):
        token = f"{_segment({'alg': 'none'})}.{_segment([1, 2, 3])}.sig"
        assert is_jwt_expired(token) is True

    def test_future_exp_is_not_expired(self, token_factory):
        assert TokenStore().is_token_expired(token_factory(exp_offset=3600)) is False

    def test_past_exp_is_expired(self, token_factory):
        assert TokenStore().is_token_expired(token_factory(exp_offset=-3600)) is True

    def test_missing_exp_never_expires(self, token_factory):
        assert is_jwt_expired(token_factory(exp_offset=None)) is False

    def test_opaque_header_does_not_affect_expiry(self):
        payload = _segment({"exp": int(time.time()) + 3600})
        token = f"opaqueheader.{payload}.sig"

        assert is_jwt_expired(token) is False
        assert decode_claims(token)["exp"] > time.time()

    @pytest.mark.asyncio
    async def test_opaque_header_refresh_token_keeps_session(self, token_factory):
        store = TokenStore()
        refresh = f"opaqueheader.{_segment({'exp': int(time.time()) + 3600})}.sig"
        await store.set_tokens(
            TokenPair(access_token=token_factory(), refresh_token=refresh)
        )

        assert await store.has_valid_tokens() is True
        assert await store.get_refresh_token() == refresh

    def test_non_numeric_exp_never_expires(self):
        token = f"{_segment({'alg': 'none'})}.{_segment({'exp': 'tomorrow'})}.sig"
        assert is_jwt_expired(token) is False

    def test_decode_claims_skips_signature_check(self, token_factory):
        claims = decode_claims(token_factory(sub="user-9"))
        assert claims["sub"] == "user-9"
        assert decode_claims("garbage") is None

    def test_validate_jwt_structure(self, token_factory):
        assert validate_jwt_structure(token_factory()) == (True, None)
        assert validate_jwt_structure("a.b")[0] is False
        assert validate_jwt_structure("")[0] is False
        valid, error = validate_jwt_structure("a.b.c")
        assert valid is False
        assert "JSON" in error


class TestHasValidTokens:
    """Test session validity checks."""

    @pytest.mark.asyncio
    async def test_no_tokens(self):
        assert await TokenStore().has_valid_tokens() is False

    @pytest.mark.asyncio
    async def test_live_refresh_token(self, valid_pair):
        store = TokenStore()
        await store.set_tokens(valid_pair)
        assert await store.has_valid_tokens() is True

    @pytest.mark.asyncio
    async def test_expired_access_token_is_still_valid(self, token_factory):
        store = TokenStore()
        await store.set_tokens(
            {
                "accessToken": token_factory(exp_offset=-60),
                "refreshToken": token_factory(exp_offset=3600),
            }
        )
        assert await store.has_valid_tokens() is True

    @pytest.mark.asyncio
    async def test_expired_refresh_token_clears_pair(self, token_factory):
        store = TokenStore()
        await store.set_tokens(
            {
                "accessToken": token_factory(),
                "refreshToken": token_factory(exp_offset=-60),
            }
        )

        assert await store.has_valid_tokens() is False
        assert await store.get_tokens() is None


class TestCreateStorage:
    """Test storage capability resolution."""

    def test_memory(self):
        assert isinstance(create_storage("memory"), MemoryStorage)

    def test_custom_requires_adapter(self):
        with pytest.raises(ConfigurationError):
            create_storage("custom")

    def test_custom_returns_adapter(self):
        adapter = AsyncDictStorage()
        assert create_storage("custom", adapter) is adapter

    def test_custom_rejects_incomplete_adapter(self):
        class NoClear:
            def get(self, key):
                return None

            def set(self, key, value):
                pass

            def remove(self, key):
                pass

        with pytest.raises(ConfigurationError, match="clear"):
            create_storage("custom", NoClear())

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            create_storage("cookies")
