"""
PolicyEngine - Allow/deny rules evaluated before any payment logic.

The policy is a singleton record in storage, seeded from configuration
on first read and changed only through explicit administrative updates.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from spendguard.core.exceptions import ValidationError
from spendguard.core.logging import get_logger
from spendguard.core.types import PolicyConfig, Reason, to_decimal
from spendguard.guards.base import Guard, GuardContext, GuardResult
from spendguard.storage.base import StorageBackend

logger = get_logger("policy")


class PolicyStore:
    """Storage-backed holder of the current PolicyConfig."""

    COLLECTION = "policy"
    KEY = "current"

    def __init__(self, storage: StorageBackend, defaults: PolicyConfig | None = None) -> None:
        self._storage = storage
        self._defaults = defaults or PolicyConfig()

    async def get(self) -> PolicyConfig:
        """Load the policy, seeding the defaults if none is stored yet."""
        data = await self._storage.get(self.COLLECTION, self.KEY)
        if data is None:
            await self._storage.save_if_absent(self.COLLECTION, self.KEY, self._defaults.to_dict())
            data = await self._storage.get(self.COLLECTION, self.KEY)
        return PolicyConfig.from_dict(data or self._defaults.to_dict())

    async def set(self, partial: dict[str, Any]) -> PolicyConfig:
        """
        Merge a partial update into the stored policy.

        Args:
            partial: Any subset of max_price_per_call, allowed_providers,
                allowed_actions, allowed_tasks

        Returns:
            The updated policy

        Raises:
            ValidationError: On unknown fields or a negative price cap
        """
        unknown = set(partial) - set(PolicyConfig.FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown policy fields: {', '.join(sorted(unknown))}",
                details={"allowed": list(PolicyConfig.FIELDS)},
            )

        current = await self.get()
        updated = current.to_dict()
        for field_name, value in partial.items():
            if field_name == "max_price_per_call":
                try:
                    price = to_decimal(value)
                except ValueError as e:
                    raise ValidationError(str(e)) from e
                if price < 0:
                    raise ValidationError("max_price_per_call must not be negative")
                updated[field_name] = str(price)
            else:
                if isinstance(value, str):
                    raise ValidationError(f"{field_name} must be a list of names, not a string")
                updated[field_name] = sorted(set(value))

        await self._storage.save(self.COLLECTION, self.KEY, updated)
        logger.info(f"Policy updated: {sorted(partial)}")
        return PolicyConfig.from_dict(updated)

    async def clear(self) -> None:
        """Drop the stored policy; the next read re-seeds the defaults."""
        await self._storage.delete(self.COLLECTION, self.KEY)


class PolicyEngine(Guard):
    """
    Guard that enforces the provider/action/task allowlists and price cap.

    Checks run in a fixed order and the first failure wins:
    provider, action, task, price.
    """

    def __init__(self, store: PolicyStore, name: str = "policy") -> None:
        self._store = store
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def store(self) -> PolicyStore:
        return self._store

    async def check(self, context: GuardContext) -> GuardResult:
        """Check a request against the current policy."""
        policy = await self._store.get()
        return self.evaluate(policy, context)

    def evaluate(self, policy: PolicyConfig, context: GuardContext) -> GuardResult:
        """Pure evaluation of one request against a given policy."""
        if context.provider not in policy.allowed_providers:
            return self._deny(
                Reason.PROVIDER_NOT_ALLOWED,
                f'"{context.provider}" not in allowlist',
            )

        if context.action not in policy.allowed_actions:
            return self._deny(
                Reason.ACTION_NOT_ALLOWED,
                f'"{context.action}" not in allowlist',
            )

        if context.task not in policy.allowed_tasks:
            return self._deny(
                Reason.TASK_NOT_ALLOWED,
                f'"{context.task}" not in allowlist',
            )

        if context.cost_estimated > policy.max_price_per_call:
            return self._deny(
                Reason.PRICE_EXCEEDED,
                f"${_fmt(context.cost_estimated)} exceeds max ${_fmt(policy.max_price_per_call)}",
                metadata={
                    "cost_estimated": str(context.cost_estimated),
                    "max_price_per_call": str(policy.max_price_per_call),
                },
            )

        return GuardResult(
            allowed=True,
            reason=Reason.POLICY_CHECK_PASSED.value,
            guard_name=self.name,
        )

    def _deny(
        self,
        reason: Reason,
        detail: str,
        metadata: dict[str, Any] | None = None,
    ) -> GuardResult:
        return GuardResult(
            allowed=False,
            reason=reason.with_detail(detail),
            guard_name=self.name,
            metadata=metadata,
        )


def _fmt(amount: Decimal) -> str:
    return f"{amount:.4f}"
