"""
BudgetLedger - Daily spending ceiling for paid provider calls.

Tracks ``daily_limit`` and ``remaining``. Deductions happen only after a
provider has confirmed execution and are applied with a compare-and-swap
loop, so concurrent approvals can never push ``remaining`` below zero.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable

from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt

from spendguard.core.exceptions import StorageError, ValidationError
from spendguard.core.logging import get_logger
from spendguard.core.types import AmountType, BudgetState, BudgetStatus, Reason, to_decimal
from spendguard.guards.base import Guard, GuardContext, GuardResult
from spendguard.storage.base import StorageBackend

logger = get_logger("budget")

ZERO = Decimal("0")


class _SwapConflict(Exception):
    """The stored budget changed between read and swap."""


class BudgetStore:
    """Storage-backed holder of the BudgetState singleton."""

    COLLECTION = "budget"
    KEY = "current"

    def __init__(self, storage: StorageBackend, default_limit: AmountType = Decimal("1.0")) -> None:
        self._storage = storage
        limit = to_decimal(default_limit)
        self._defaults = BudgetState(daily_limit=limit, remaining=limit)

    async def get(self) -> BudgetState:
        """Load the budget, seeding the default limit if none is stored yet."""
        data = await self._storage.get(self.COLLECTION, self.KEY)
        if data is None:
            await self._storage.save_if_absent(self.COLLECTION, self.KEY, self._defaults.to_dict())
            data = await self._storage.get(self.COLLECTION, self.KEY)
        return BudgetState.from_dict(data or self._defaults.to_dict())

    async def set(self, state: BudgetState) -> None:
        await self._storage.save(self.COLLECTION, self.KEY, state.to_dict())

    async def swap(self, expected: BudgetState, new: BudgetState) -> bool:
        """Replace the budget only if it still equals ``expected``."""
        return await self._storage.compare_and_swap(
            self.COLLECTION, self.KEY, expected.to_dict(), new.to_dict()
        )

    async def clear(self) -> None:
        """Drop the stored budget; the next read re-seeds the default limit."""
        await self._storage.delete(self.COLLECTION, self.KEY)


class BudgetLedger(Guard):
    """
    Guard that enforces the daily budget, and the ledger that settles it.

    ``check`` followed by ``deduct`` is not atomic as a pair; ``deduct``
    itself is atomic and clamps at zero.
    """

    def __init__(
        self,
        store: BudgetStore,
        name: str = "budget",
        max_retries: int = 50,
    ) -> None:
        self._store = store
        self._name = name
        self._max_retries = max_retries

    @property
    def name(self) -> str:
        return self._name

    @property
    def store(self) -> BudgetStore:
        return self._store

    async def status(self) -> BudgetStatus:
        """Current limit, remaining, spent and percentage used."""
        return BudgetStatus.from_state(await self._store.get())

    async def check(self, context: GuardContext) -> GuardResult:
        return await self.check_amount(context.cost_estimated)

    async def check_amount(self, amount: AmountType) -> GuardResult:
        """Check if the remaining budget covers ``amount``."""
        amount = to_decimal(amount)
        state = await self._store.get()

        if amount > state.remaining:
            return GuardResult(
                allowed=False,
                reason=Reason.BUDGET_EXCEEDED.with_detail(
                    f"${amount:.4f} exceeds remaining ${state.remaining:.4f}"
                ),
                guard_name=self.name,
                metadata={"requested": str(amount), "remaining": str(state.remaining)},
            )

        return GuardResult(
            allowed=True,
            reason=Reason.BUDGET_CHECK_PASSED.value,
            guard_name=self.name,
            metadata={"remaining": str(state.remaining)},
        )

    async def deduct(self, amount: AmountType) -> BudgetState:
        """
        Deduct a settled amount: ``remaining := max(0, remaining - amount)``.

        Call only after the provider confirmed execution, once per action.

        Raises:
            ValidationError: If amount is negative or not a number
            StorageError: If the swap kept conflicting for max_retries attempts
        """
        try:
            amount = to_decimal(amount)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if amount < 0:
            raise ValidationError(f"Cannot deduct a negative amount: {amount}")

        try:
            updated = await self._swap_with_retry(
                lambda current: BudgetState(
                    daily_limit=current.daily_limit,
                    remaining=max(ZERO, current.remaining - amount),
                )
            )
        except RetryError as e:
            raise StorageError(
                f"Budget deduction failed after {self._max_retries} conflicting attempts",
                collection=BudgetStore.COLLECTION,
                key=BudgetStore.KEY,
                details={"amount": str(amount)},
            ) from e

        logger.info(f"Budget deducted {amount}, remaining {updated.remaining}")
        return updated

    async def reset(self) -> BudgetState:
        """Restore ``remaining`` to ``daily_limit``."""
        try:
            updated = await self._swap_with_retry(
                lambda current: BudgetState(
                    daily_limit=current.daily_limit, remaining=current.daily_limit
                )
            )
        except RetryError as e:
            raise StorageError(
                "Budget reset failed: too many concurrent updates",
                collection=BudgetStore.COLLECTION,
                key=BudgetStore.KEY,
            ) from e

        logger.info(f"Budget reset to {updated.daily_limit}")
        return updated

    async def _swap_with_retry(
        self, change: Callable[[BudgetState], BudgetState]
    ) -> BudgetState:
        """
        Read, apply ``change`` and swap until no other writer interferes.

        Raises:
            RetryError: If every one of max_retries swaps conflicted
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(_SwapConflict),
            stop=stop_after_attempt(self._max_retries),
        ):
            with attempt:
                current = await self._store.get()
                updated = change(current)
                if not await self._store.swap(current, updated):
                    logger.debug(
                        f"Budget swap conflict (attempt {attempt.retry_state.attempt_number})"
                    )
                    raise _SwapConflict()
        return updated

    async def set_limit(self, new_limit: AmountType) -> BudgetState:
        """
        Replace the daily limit. Remaining is set to the new limit as well.

        Raises:
            ValidationError: If the limit is negative or not a number
        """
        try:
            limit = to_decimal(new_limit)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if limit < 0:
            raise ValidationError(f"Daily limit must not be negative: {limit}")

        state = BudgetState(daily_limit=limit, remaining=limit)
        await self._store.set(state)
        logger.info(f"Daily limit set to {limit}")
        return state

    async def clear(self) -> None:
        await self._store.clear()
