"""
Abstract Storage Backend for SpendGuard.

Provides the pluggable persistence layer behind the policy, budget, nonce,
pending-payment and audit stores. Besides plain CRUD, backends expose the
atomic primitives the guard relies on under concurrency:

- ``save_if_absent``: insert-if-absent (nonce claims)
- ``compare_and_swap``: replace a record only if it still holds the expected value
- ``atomic_add``: numeric counter increment (audit log ids)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class StorageBackend(ABC):
    """
    Abstract base class for storage backends.

    Records are JSON-serializable dicts grouped into named collections.
    """

    @abstractmethod
    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        """
        Save data to storage, replacing any existing record.

        Args:
            collection: Collection name
            key: Unique key for the record
            data: Data to store (must be JSON-serializable)
        """
        ...

    @abstractmethod
    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """
        Get data from storage.

        Returns:
            Data dict or None if not found
        """
        ...

    @abstractmethod
    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        """
        Delete data from storage.

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Query data with optional filters.

        Args:
            collection: Collection name
            filters: Key-value pairs to filter by (exact match)
            limit: Maximum records to return
            offset: Number of records to skip

        Returns:
            List of matching records, each with its key under ``_key``
        """
        ...

    @abstractmethod
    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        """Count records in collection."""
        ...

    @abstractmethod
    async def clear(self, collection: str) -> int:
        """
        Clear all records from a collection.

        Returns:
            Number of records deleted
        """
        ...

    @abstractmethod
    async def save_if_absent(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> bool:
        """
        Atomically insert a record only if the key does not exist yet.

        Returns:
            True if the record was inserted, False if the key was already present
        """
        ...

    @abstractmethod
    async def compare_and_swap(
        self,
        collection: str,
        key: str,
        expected: dict[str, Any] | None,
        data: dict[str, Any],
    ) -> bool:
        """
        Atomically replace a record if it still equals ``expected``.

        Args:
            expected: Value read earlier, or None if the key must be absent
            data: New value

        Returns:
            True if swapped, False if the record changed in between
        """
        ...

    @abstractmethod
    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        """
        Atomically add amount to a numeric counter stored at key.

        Returns:
            New total value as string
        """
        ...

    async def health_check(self) -> bool:
        """Check if storage is healthy and connected."""
        return True

    async def close(self) -> None:
        """Release backend resources."""
        return None


# Storage backend registry for dependency injection
_STORAGE_BACKENDS: dict[str, type[StorageBackend]] = {}


def register_storage_backend(name: str, backend_class: type[StorageBackend]) -> None:
    """Register a storage backend by name."""
    _STORAGE_BACKENDS[name] = backend_class


def get_storage_backend(name: str) -> type[StorageBackend] | None:
    """Get a registered storage backend by name."""
    return _STORAGE_BACKENDS.get(name)


def list_storage_backends() -> list[str]:
    """List all registered storage backend names."""
    return list(_STORAGE_BACKENDS.keys())
