"""
Nonce store - the record of consumed payment nonces.

A claim is permanent until an explicit administrative clear. The
insert-if-absent claim is the single point of truth for "has this
nonce been spent".
"""

from __future__ import annotations

from typing import Any

from spendguard.core.types import utc_now_iso
from spendguard.storage.base import StorageBackend


class NonceStore:
    """Append-only set of claimed nonces backed by StorageBackend."""

    COLLECTION = "used_nonces"

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    async def claim(self, nonce: str, details: dict[str, Any] | None = None) -> bool:
        """
        Atomically claim a nonce.

        Returns:
            True if newly claimed, False if it was already claimed
        """
        record = {"claimed_at": utc_now_iso(), **(details or {})}
        return await self._storage.save_if_absent(self.COLLECTION, nonce, record)

    async def is_claimed(self, nonce: str) -> bool:
        return await self._storage.get(self.COLLECTION, nonce) is not None

    async def count(self) -> int:
        return await self._storage.count(self.COLLECTION)

    async def clear(self) -> int:
        """Forget all claims. Returns the number cleared."""
        return await self._storage.clear(self.COLLECTION)
