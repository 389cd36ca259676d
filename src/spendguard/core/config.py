"""
Configuration management for SpendGuard.

Handles loading configuration from environment variables and validation.
Policy and budget values here are defaults used to seed empty stores;
they never overwrite persisted state.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any

from spendguard.core.exceptions import ConfigurationError
from spendguard.core.types import PolicyConfig, to_decimal


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {name} is not set")
    return value


def _split_list(value: str) -> frozenset[str]:
    return frozenset(item.strip() for item in value.split(",") if item.strip())


def _env_decimal(name: str, default: str) -> Decimal:
    raw = _get_env_var(name, default=default)
    try:
        return to_decimal(raw)  # type: ignore[arg-type]
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a decimal, got {raw!r}") from e


def _env_number(name: str, default: str, cast: type) -> Any:
    raw = _get_env_var(name, default=default)
    try:
        return cast(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be {cast.__name__}, got {raw!r}") from e


@dataclass(frozen=True)
class Config:
    """SpendGuard configuration."""

    storage_backend: str = "memory"
    redis_url: str | None = None
    redis_prefix: str = "spendguard"
    log_level: str = "INFO"

    # Store defaults
    daily_limit: Decimal = Decimal("1.0")
    max_price_per_call: Decimal = Decimal("0.5")
    allowed_providers: frozenset[str] = field(default_factory=lambda: frozenset({"email"}))
    allowed_actions: frozenset[str] = field(default_factory=lambda: frozenset({"send"}))
    allowed_tasks: frozenset[str] = field(default_factory=lambda: frozenset({"welcome_flow"}))

    # Payment lifecycle
    pending_payment_ttl: int = 3600  # seconds a quote stays payable
    audit_max_entries: int = 100
    budget_cas_retries: int = 50

    # Provider; a URL switches from the built-in mock to a remote x402 provider
    provider_url: str | None = None
    provider_timeout: float = 30.0  # HTTP provider timeout in seconds

    def __post_init__(self) -> None:
        if self.daily_limit < 0:
            raise ConfigurationError("daily_limit must not be negative")
        if self.max_price_per_call < 0:
            raise ConfigurationError("max_price_per_call must not be negative")
        if self.pending_payment_ttl <= 0:
            raise ConfigurationError("pending_payment_ttl must be positive")
        if self.audit_max_entries <= 0:
            raise ConfigurationError("audit_max_entries must be positive")
        if self.budget_cas_retries <= 0:
            raise ConfigurationError("budget_cas_retries must be positive")
        if self.provider_timeout <= 0:
            raise ConfigurationError("provider_timeout must be positive")

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        values: dict[str, Any] = {
            "storage_backend": _get_env_var("SPENDGUARD_STORAGE_BACKEND", default="memory"),
            "redis_url": _get_env_var("SPENDGUARD_REDIS_URL"),
            "redis_prefix": _get_env_var("SPENDGUARD_REDIS_PREFIX", default="spendguard"),
            "log_level": _get_env_var("SPENDGUARD_LOG_LEVEL", default="INFO"),
            "daily_limit": _env_decimal("SPENDGUARD_DAILY_LIMIT", "1.0"),
            "max_price_per_call": _env_decimal("SPENDGUARD_MAX_PRICE_PER_CALL", "0.5"),
            "allowed_providers": _split_list(
                _get_env_var("SPENDGUARD_ALLOWED_PROVIDERS", default="email")  # type: ignore[arg-type]
            ),
            "allowed_actions": _split_list(
                _get_env_var("SPENDGUARD_ALLOWED_ACTIONS", default="send")  # type: ignore[arg-type]
            ),
            "allowed_tasks": _split_list(
                _get_env_var("SPENDGUARD_ALLOWED_TASKS", default="welcome_flow")  # type: ignore[arg-type]
            ),
            "pending_payment_ttl": _env_number("SPENDGUARD_PENDING_TTL", "3600", int),
            "audit_max_entries": _env_number("SPENDGUARD_AUDIT_MAX_ENTRIES", "100", int),
            "provider_timeout": _env_number("SPENDGUARD_PROVIDER_TIMEOUT", "30.0", float),
            "provider_url": _get_env_var("SPENDGUARD_PROVIDER_URL"),
        }
        values.update(overrides)
        return cls(**values)

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        return replace(self, **updates)

    def default_policy(self) -> PolicyConfig:
        """Policy used to seed an empty policy store."""
        return PolicyConfig(
            max_price_per_call=self.max_price_per_call,
            allowed_providers=set(self.allowed_providers),
            allowed_actions=set(self.allowed_actions),
            allowed_tasks=set(self.allowed_tasks),
        )
