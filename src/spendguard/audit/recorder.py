"""
Audit trail for guard decisions.

Every terminal decision is appended exactly once, before it is returned.
Entries are immutable, ids are sequential (``log_<n>``) and only the
``max_entries`` most recent are retained.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from spendguard.core.logging import get_logger
from spendguard.core.types import AuditLogEntry, Decision, LogStats, utc_now_iso

if TYPE_CHECKING:
    from spendguard.storage.base import StorageBackend

logger = get_logger("audit")

MAX_LOGS = 100


class AuditRecorder:
    """
    Append-only, bounded audit log using StorageBackend.

    Ids come from an atomic counter, so concurrent appends from several
    guard instances never collide.
    """

    COLLECTION = "audit_logs"
    META_COLLECTION = "audit_meta"
    COUNTER_KEY = "log_counter"

    def __init__(self, storage: StorageBackend, max_entries: int = MAX_LOGS) -> None:
        """
        Initialize recorder with storage backend.

        Args:
            storage: The storage backend (InMemory, Redis, etc.)
            max_entries: How many of the most recent entries to retain
        """
        self._storage = storage
        self._max_entries = max_entries

    async def append(
        self,
        *,
        provider: str,
        action: str,
        task: str,
        cost: Decimal,
        decision: Decision,
        reason: str,
        payload: dict[str, Any] | None = None,
        response: dict[str, Any] | None = None,
        payment_nonce: str | None = None,
        payment_payer: str | None = None,
        payment_verified: bool | None = None,
        run_id: str | None = None,
    ) -> AuditLogEntry:
        """
        Record a decision.

        Returns:
            The stored entry, with its assigned id and timestamp
        """
        counter = await self._storage.atomic_add(self.META_COLLECTION, self.COUNTER_KEY, "1")
        sequence = int(Decimal(counter))

        entry = AuditLogEntry(
            id=f"log_{sequence}",
            provider=provider,
            action=action,
            task=task,
            cost=cost,
            decision=decision,
            reason=reason,
            timestamp=utc_now_iso(),
            payload=payload,
            response=response,
            payment_nonce=payment_nonce,
            payment_payer=payment_payer,
            payment_verified=payment_verified,
            run_id=run_id,
        )
        await self._storage.save(self.COLLECTION, entry.id, entry.to_dict())

        # Ring buffer: each append evicts the entry max_entries behind it
        evicted = sequence - self._max_entries
        if evicted > 0:
            await self._storage.delete(self.COLLECTION, f"log_{evicted}")

        logger.debug(f"Recorded {entry.id}: {decision.value} ({reason})")
        return entry

    async def get(self, log_id: str) -> AuditLogEntry | None:
        data = await self._storage.get(self.COLLECTION, log_id)
        if not data:
            return None
        return AuditLogEntry.from_dict(data)

    async def get_logs(self, limit: int = 50) -> list[AuditLogEntry]:
        """Most recent entries first."""
        raw = await self._storage.query(self.COLLECTION)
        entries = [AuditLogEntry.from_dict(d) for d in raw]
        entries.sort(key=lambda e: e.sequence, reverse=True)
        return entries[:limit]

    async def get_stats(self) -> LogStats:
        """Decision counts over the retained entries."""
        entries = await self.get_logs(limit=self._max_entries)
        return LogStats(
            total=len(entries),
            approved=sum(1 for e in entries if e.decision == Decision.APPROVED),
            denied=sum(1 for e in entries if e.decision == Decision.DENIED),
            payment_required=sum(1 for e in entries if e.decision == Decision.PAYMENT_REQUIRED),
        )

    async def clear(self) -> int:
        """
        Clear all entries and restart ids at ``log_1``.

        Returns:
            Number of entries cleared
        """
        count = await self._storage.clear(self.COLLECTION)
        await self._storage.delete(self.META_COLLECTION, self.COUNTER_KEY)
        return count
