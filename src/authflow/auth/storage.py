"""Key/value storage adapters backing the token store.

The token store never talks to a concrete persistence mechanism directly.
It goes through a ``StorageAdapter`` whose methods may be plain functions
or coroutines, so browser-like, file-backed or remote stores can be plugged
in without changing the token logic.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Dict, Optional, Union

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class StorageAdapter(ABC):
    """Abstract key/value storage used for token persistence.

    Implementations may return plain values or awaitables from any method.
    """

    @abstractmethod
    def get(self, key: str) -> Union[Optional[str], Awaitable[Optional[str]]]:
        """Read a value, ``None`` when absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> Union[None, Awaitable[None]]:
        """Write a value."""
        pass

    @abstractmethod
    def remove(self, key: str) -> Union[None, Awaitable[None]]:
        """Delete a value. Removing a missing key is not an error."""
        pass

    @abstractmethod
    def clear(self) -> Union[None, Awaitable[None]]:
        """Delete every value."""
        pass


class MemoryStorage(StorageAdapter):
    """Process-local dict-backed storage.

    Contents are lost when the process exits.
    """

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


async def resolve(result: Any) -> Any:
    """Await an adapter result when it is awaitable.

    :param result: Value or awaitable returned by an adapter method
    :return: The plain value
    """
    if inspect.isawaitable(result):
        return await result
    return result


def create_storage(
    kind: str = "memory", adapter: Optional[StorageAdapter] = None
) -> StorageAdapter:
    """Resolve the storage capability once, at construction time.

    :param kind: ``memory`` or ``custom``
    :type kind: str
    :param adapter: Adapter to use when ``kind`` is ``custom``
    :type adapter: Optional[StorageAdapter]
    :return: Storage adapter instance
    :rtype: StorageAdapter
    :raises ConfigurationError: If the kind is unknown or a custom adapter
        was not supplied
    """
    if kind == "memory":
        if adapter is not None:
            logger.debug("Ignoring supplied adapter for memory storage")
        return MemoryStorage()
    if kind == "custom":
        if adapter is None:
            raise ConfigurationError(
                "Custom storage requires an adapter instance", setting="storage"
            )
        for method in ("get", "set", "remove", "clear"):
            if not callable(getattr(adapter, method, None)):
                raise ConfigurationError(
                    f"Storage adapter is missing required method: {method}",
                    setting="storage",
                )
        return adapter
    raise ConfigurationError(f"Unknown storage type: {kind}", setting="storage")
