"""Token store holding the access/refresh pair.

This module is the single source of truth for the current credentials.
The pair is written and removed as a whole so a reader never observes a
half-written state, and expiry is judged from the JWT ``exp`` claim.

Claims are decoded without signature verification. They are advisory and
only used to avoid sending requests that are certain to be rejected.
"""

import binascii
import json
import logging
import time
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from jwt.utils import base64url_decode
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ValidationError
from ..models import TokenPair
from .storage import MemoryStorage, StorageAdapter, resolve

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "auth_access_token"
REFRESH_TOKEN_KEY = "auth_refresh_token"


def decode_claims(token: str) -> Optional[Dict[str, Any]]:
    """Decode the payload of a JWT without verifying it.

    :param token: Encoded token
    :type token: str
    :return: Claims dictionary, or None when the token is malformed
    :rtype: Optional[Dict[str, Any]]
    """
    if not isinstance(token, str):
        return None
    parts = token.split(".")
    if len(parts) != 3:
        return None
    # Only the payload segment is decoded; the header may be opaque
    try:
        claims = json.loads(base64url_decode(parts[1]))
    except (ValueError, binascii.Error, UnicodeDecodeError):
        return None
    if not isinstance(claims, dict):
        return None
    return claims


def is_jwt_expired(token: str) -> bool:
    """Return whether a token is expired, treating malformed tokens as expired.

    A token without a numeric ``exp`` claim never expires.
    """
    claims = decode_claims(token)
    if claims is None:
        return True
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return False
    return exp < time.time()


def validate_jwt_structure(token: str) -> Tuple[bool, Optional[str]]:
    """Check that a string looks like a decodable JWT.

    :param token: Candidate token
    :type token: str
    :return: Tuple of (is_valid, error_message)
    :rtype: Tuple[bool, Optional[str]]
    """
    if not isinstance(token, str) or not token:
        return False, "Token must be a non-empty string"
    parts = token.split(".")
    if len(parts) != 3:
        return False, "Token must have 3 parts separated by dots"
    if not all(parts[:2]):
        return False, "Token header and payload must not be empty"
    if decode_claims(token) is None:
        return False, "Token payload is not valid JSON"
    return True, None


class TokenStore:
    """Persists and evaluates the current token pair.

    :param storage: Storage adapter, defaults to in-memory storage
    :type storage: Optional[StorageAdapter]
    """

    def __init__(self, storage: Optional[StorageAdapter] = None):
        self._storage = storage if storage is not None else MemoryStorage()

    @property
    def storage(self) -> StorageAdapter:
        return self._storage

    async def set_tokens(self, tokens: Union[TokenPair, Mapping[str, Any]]) -> None:
        """Persist a token pair.

        The access token is written first. If writing the refresh token
        fails, the access token write is rolled back and the storage error
        is re-raised.

        :param tokens: Token pair, or a mapping with both fields
        :raises ValidationError: If either token is empty or not a string
        """
        pair = self._coerce_pair(tokens)
        await resolve(self._storage.set(ACCESS_TOKEN_KEY, pair.access_token))
        try:
            await resolve(self._storage.set(REFRESH_TOKEN_KEY, pair.refresh_token))
        except Exception:
            logger.warning("Refresh token write failed, rolling back access token")
            await resolve(self._storage.remove(ACCESS_TOKEN_KEY))
            raise

    async def get_tokens(self) -> Optional[TokenPair]:
        """Return the stored pair, or None if either half is missing."""
        access_token = await self.get_access_token()
        refresh_token = await self.get_refresh_token()
        if not access_token or not refresh_token:
            return None
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    async def get_access_token(self) -> Optional[str]:
        return await self._read(ACCESS_TOKEN_KEY)

    async def get_refresh_token(self) -> Optional[str]:
        return await self._read(REFRESH_TOKEN_KEY)

    async def clear_tokens(self) -> None:
        """Remove both tokens. Safe to call when nothing is stored."""
        await resolve(self._storage.remove(ACCESS_TOKEN_KEY))
        await resolve(self._storage.remove(REFRESH_TOKEN_KEY))

    def is_token_expired(self, token: str) -> bool:
        """Check token expiry from its ``exp`` claim."""
        return is_jwt_expired(token)

    async def has_tokens(self) -> bool:
        """Whether a complete pair is stored, ignoring expiry."""
        return await self.get_tokens() is not None

    async def has_valid_tokens(self) -> bool:
        """Whether a usable pair is stored.

        An expired refresh token means the session cannot be recovered,
        so the pair is cleared. An expired access token alone is still
        valid since it can be refreshed.

        :return: True when a pair is stored and its refresh token is live
        :rtype: bool
        """
        tokens = await self.get_tokens()
        if tokens is None:
            return False
        if self.is_token_expired(tokens.refresh_token):
            logger.info("Refresh token expired, clearing stored tokens")
            await self.clear_tokens()
            return False
        return True

    async def _read(self, key: str) -> Optional[str]:
        try:
            value = await resolve(self._storage.get(key))
        except Exception as e:
            logger.warning(f"Failed to read {key} from storage: {e}")
            return None
        return value or None

    @staticmethod
    def _coerce_pair(tokens: Union[TokenPair, Mapping[str, Any]]) -> TokenPair:
        if isinstance(tokens, TokenPair):
            return tokens
        if not isinstance(tokens, Mapping):
            raise ValidationError("Tokens must be a token pair or a mapping")
        try:
            return TokenPair.model_validate(dict(tokens))
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ()))
            raise ValidationError(
                "Invalid tokens: access and refresh tokens must be non-empty strings",
                field=field or None,
            ) from e
