"""Authentication module for AuthFlow.

This module provides token persistence, storage adapters and the auth
manager that coordinates login, logout and single-flight token refresh.

:var __all__: List of public exports from this module
:type __all__: List[str]
"""

from .manager import AuthManager
from .storage import MemoryStorage, StorageAdapter, create_storage
from .token_store import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    TokenStore,
    decode_claims,
    is_jwt_expired,
    validate_jwt_structure,
)

__all__ = [
    "AuthManager",
    "TokenStore",
    "StorageAdapter",
    "MemoryStorage",
    "create_storage",
    "decode_claims",
    "is_jwt_expired",
    "validate_jwt_structure",
    "ACCESS_TOKEN_KEY",
    "REFRESH_TOKEN_KEY",
]
