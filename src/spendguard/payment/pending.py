"""
Pending payment store - quoted payment terms awaiting a proof.

Each requirement is stored under its nonce with an absolute expiry
(``_expires_at``); expired records read as missing and are removed lazily.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from spendguard.core.logging import get_logger
from spendguard.core.types import PaymentRequirement
from spendguard.storage.base import StorageBackend

logger = get_logger("payment.pending")

DEFAULT_TTL = 3600  # 1 hour


class PendingPaymentStore:
    """Maps issued nonces to the PaymentRequirement quoted for them."""

    COLLECTION = "pending_payments"

    def __init__(
        self,
        storage: StorageBackend,
        default_ttl: int = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._default_ttl = default_ttl
        self._clock = clock

    async def put(
        self,
        nonce: str,
        requirement: PaymentRequirement,
        ttl: int | None = None,
    ) -> None:
        """Store a quote under its nonce for ``ttl`` seconds."""
        ttl = ttl if ttl is not None else self._default_ttl
        await self._storage.save(
            self.COLLECTION,
            nonce,
            {
                "requirement": requirement.to_dict(),
                "_expires_at": self._clock() + ttl,
            },
        )

    async def get(self, nonce: str) -> PaymentRequirement | None:
        """Return the quote for a nonce, or None if unknown or expired."""
        entry = await self._storage.get(self.COLLECTION, nonce)
        if entry is None:
            return None

        if self._clock() > entry.get("_expires_at", 0):
            logger.debug(f"Pending payment {nonce} expired")
            await self._storage.delete(self.COLLECTION, nonce)
            return None

        return PaymentRequirement.from_dict(entry["requirement"])

    async def remove(self, nonce: str) -> bool:
        return await self._storage.delete(self.COLLECTION, nonce)

    async def count(self) -> int:
        return await self._storage.count(self.COLLECTION)

    async def clear(self) -> int:
        return await self._storage.clear(self.COLLECTION)
