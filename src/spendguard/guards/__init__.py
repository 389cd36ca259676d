"""
Guards module - Pre-payment gates for guarded provider calls.

- PolicyEngine: provider/action/task allowlists and the per-call price cap
- BudgetLedger: daily spending ceiling, settled after confirmed execution

Example:
    >>> from spendguard.guards import BudgetLedger, BudgetStore, GuardContext
    >>> from spendguard.storage import InMemoryStorage
    >>> from decimal import Decimal
    >>>
    >>> ledger = BudgetLedger(BudgetStore(InMemoryStorage(), default_limit="1.0"))
    >>> result = await ledger.check_amount(Decimal("0.001"))
    >>> if result.allowed:
    ...     ...  # call the provider, then
    ...     await ledger.deduct(Decimal("0.001"))
"""

from spendguard.guards.base import Guard, GuardContext, GuardResult
from spendguard.guards.budget import BudgetLedger, BudgetStore
from spendguard.guards.policy import PolicyEngine, PolicyStore

__all__ = [
    "Guard",
    "GuardContext",
    "GuardResult",
    "BudgetLedger",
    "BudgetStore",
    "PolicyEngine",
    "PolicyStore",
]
