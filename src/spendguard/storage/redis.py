"""
Redis Storage Backend.

Production storage backend using Redis, shared by every guard instance
of a multi-process deployment. Requires the redis package.
"""

from __future__ import annotations

import json
import os
from typing import Any

from spendguard.core.exceptions import StorageError
from spendguard.storage.base import StorageBackend, register_storage_backend


class RedisStorage(StorageBackend):
    """
    Redis storage backend.

    Records are JSON strings under ``{prefix}:{collection}:{key}``; each
    collection keeps a set index of its keys for query/count/clear.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        prefix: str = "spendguard",
        client: Any = None,
    ) -> None:
        """
        Initialize Redis storage.

        Args:
            redis_url: Redis connection URL (or from SPENDGUARD_REDIS_URL env)
            prefix: Key prefix for all storage keys
            client: Pre-built ``redis.asyncio`` client (tests, shared pools)
        """
        self._redis_url = redis_url or os.environ.get(
            "SPENDGUARD_REDIS_URL",
            "redis://localhost:6379/0",
        )
        self._prefix = prefix
        self._client = client

    def _get_client(self):
        """Lazy-load Redis client."""
        if self._client is None:
            import redis.asyncio as redis

            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def _make_key(self, collection: str, key: str) -> str:
        """Create Redis key from collection and key."""
        return f"{self._prefix}:{collection}:{key}"

    def _index_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:_index"

    @staticmethod
    def _decode(raw: str | None) -> dict[str, Any] | None:
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            # Counters created via atomic_add are raw numeric strings
            return {"value": raw}
        return data

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        client = self._get_client()
        await client.set(self._make_key(collection, key), json.dumps(data))
        await client.sadd(self._index_key(collection), key)

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        client = self._get_client()
        return self._decode(await client.get(self._make_key(collection, key)))

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        client = self._get_client()
        result = await client.delete(self._make_key(collection, key))
        await client.srem(self._index_key(collection), key)
        return result > 0

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        client = self._get_client()
        keys = sorted(await client.smembers(self._index_key(collection)))
        if not keys:
            return []

        # One round trip for the whole collection
        raw_values = await client.mget([self._make_key(collection, key) for key in keys])

        matches = []
        for key, raw in zip(keys, raw_values):
            record = self._decode(raw)
            if record is None:
                # Index entry outlived its record
                continue
            if filters and any(record.get(k) != v for k, v in filters.items()):
                continue
            record["_key"] = key
            matches.append(record)

        end = None if limit is None else offset + limit
        return matches[offset:end]

    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        if filters:
            results = await self.query(collection, filters)
            return len(results)

        client = self._get_client()
        return await client.scard(self._index_key(collection))

    async def clear(self, collection: str) -> int:
        client = self._get_client()
        keys = await client.smembers(self._index_key(collection))

        for key in keys:
            await client.delete(self._make_key(collection, key))
        await client.delete(self._index_key(collection))

        return len(keys)

    async def save_if_absent(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> bool:
        client = self._get_client()
        # SET NX is the single point of truth for the claim
        created = await client.set(self._make_key(collection, key), json.dumps(data), nx=True)
        if not created:
            return False
        await client.sadd(self._index_key(collection), key)
        return True

    async def compare_and_swap(
        self,
        collection: str,
        key: str,
        expected: dict[str, Any] | None,
        data: dict[str, Any],
    ) -> bool:
        from redis.exceptions import WatchError

        client = self._get_client()
        redis_key = self._make_key(collection, key)

        async with client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(redis_key)
                current = self._decode(await pipe.get(redis_key))
                if current != expected:
                    await pipe.unwatch()
                    return False

                pipe.multi()
                pipe.set(redis_key, json.dumps(data))
                pipe.sadd(self._index_key(collection), key)
                await pipe.execute()
                return True
            except WatchError:
                # Another writer touched the key between WATCH and EXEC
                return False

    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        client = self._get_client()
        # INCRBYFLOAT is atomic; Redis stores the result as a string
        new_val = await client.incrbyfloat(self._make_key(collection, key), float(amount))
        await client.sadd(self._index_key(collection), key)
        return str(new_val)

    async def health_check(self) -> bool:
        """Check Redis connection."""
        try:
            client = self._get_client()
            await client.ping()
            return True
        except Exception:
            return False

    async def ping(self) -> None:
        """Like health_check, but raises StorageError with the cause."""
        try:
            await self._get_client().ping()
        except Exception as e:
            raise StorageError(f"Redis unreachable at {self._redis_url}: {e}") from e

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None


# Register backend
register_storage_backend("redis", RedisStorage)
