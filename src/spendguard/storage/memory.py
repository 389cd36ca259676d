"""
In-Memory Storage Backend.

Default storage backend that keeps all data in memory.
Suitable for development, tests and single-process deployments.
"""

from __future__ import annotations

import threading
from copy import deepcopy
from decimal import Decimal, InvalidOperation
from typing import Any

from spendguard.storage.base import StorageBackend, register_storage_backend


class InMemoryStorage(StorageBackend):
    """
    In-memory storage backend.

    Stores all data in Python dicts. Data is lost when process ends.
    Every operation runs under one lock, so the atomic primitives hold
    across threads as well as across asyncio tasks.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = threading.RLock()

    def _ensure_collection(self, collection: str) -> dict[str, Any]:
        """Ensure collection exists and return it."""
        if collection not in self._data:
            self._data[collection] = {}
        return self._data[collection]

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        with self._lock:
            coll = self._ensure_collection(collection)
            coll[key] = deepcopy(data)

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        with self._lock:
            coll = self._ensure_collection(collection)
            data = coll.get(key)
            if data is None:
                return None
            if not isinstance(data, dict):
                # Counters created via atomic_add
                return {"value": data}
            return deepcopy(data)

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        with self._lock:
            coll = self._ensure_collection(collection)
            if key in coll:
                del coll[key]
                return True
            return False

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        with self._lock:
            coll = self._ensure_collection(collection)

            results = []
            for key, data in coll.items():
                if not isinstance(data, dict):
                    continue
                if filters and any(data.get(k) != v for k, v in filters.items()):
                    continue

                result = deepcopy(data)
                result["_key"] = key
                results.append(result)

        results = results[offset:]
        if limit is not None:
            results = results[:limit]

        return results

    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        if filters:
            results = await self.query(collection, filters)
            return len(results)

        with self._lock:
            return len(self._ensure_collection(collection))

    async def clear(self, collection: str) -> int:
        with self._lock:
            coll = self._ensure_collection(collection)
            count = len(coll)
            coll.clear()
            return count

    async def save_if_absent(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> bool:
        with self._lock:
            coll = self._ensure_collection(collection)
            if key in coll:
                return False
            coll[key] = deepcopy(data)
            return True

    async def compare_and_swap(
        self,
        collection: str,
        key: str,
        expected: dict[str, Any] | None,
        data: dict[str, Any],
    ) -> bool:
        with self._lock:
            coll = self._ensure_collection(collection)
            if coll.get(key) != expected:
                return False
            coll[key] = deepcopy(data)
            return True

    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        with self._lock:
            coll = self._ensure_collection(collection)
            current_val = coll.get(key)

            try:
                current_dec = Decimal(str(current_val)) if current_val is not None else Decimal("0")
            except InvalidOperation:
                # Non-numeric records restart from zero
                current_dec = Decimal("0")

            new_val = current_dec + Decimal(amount)

            # Stored as string to match Redis behavior
            coll[key] = str(new_val)
            return str(new_val)


# Register as default backend
register_storage_backend("memory", InMemoryStorage)
