"""
Storage backends for SpendGuard.

Every store (policy, budget, used nonces, pending payments, audit log) sits
on one StorageBackend. A single process can use ``memory``; several guard
processes sharing one budget and one nonce set need ``redis``.

Example:
    >>> from spendguard.core.config import Config
    >>> from spendguard.storage import get_storage, storage_from_config
    >>>
    >>> storage = get_storage("memory")
    >>> storage = storage_from_config(Config(storage_backend="redis", redis_url="redis://cache:6379/0"))
"""

from __future__ import annotations

import os
from typing import Any

from spendguard.core.config import Config
from spendguard.core.exceptions import ConfigurationError
from spendguard.storage.base import (
    StorageBackend,
    get_storage_backend,
    list_storage_backends,
    register_storage_backend,
)
from spendguard.storage.memory import InMemoryStorage
from spendguard.storage.redis import RedisStorage


def get_storage(backend_name: str | None = None, **kwargs: Any) -> StorageBackend:
    """
    Instantiate a registered backend.

    Args:
        backend_name: ``memory``, ``redis`` or any name passed to
            register_storage_backend; None reads SPENDGUARD_STORAGE_BACKEND
        **kwargs: Backend constructor arguments

    Raises:
        ConfigurationError: If no backend is registered under the name
    """
    name = backend_name or os.environ.get("SPENDGUARD_STORAGE_BACKEND", "memory")

    backend_class = get_storage_backend(name)
    if backend_class is None:
        raise ConfigurationError(
            f"Unknown storage backend: '{name}'. "
            f"Available: {', '.join(list_storage_backends())}",
            details={"backend": name},
        )
    return backend_class(**kwargs)


def storage_from_config(config: Config) -> StorageBackend:
    """Build the backend named by ``config.storage_backend`` with its Redis settings."""
    if config.storage_backend == "redis":
        return get_storage("redis", redis_url=config.redis_url, prefix=config.redis_prefix)
    return get_storage(config.storage_backend)


__all__ = [
    "StorageBackend",
    "InMemoryStorage",
    "RedisStorage",
    "get_storage",
    "get_storage_backend",
    "list_storage_backends",
    "register_storage_backend",
    "storage_from_config",
]
