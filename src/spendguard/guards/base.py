"""
Guard base classes.

Guards are the read-only gates evaluated before any payment logic:
the policy allowlist and the budget ceiling.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any


@dataclass
class GuardResult:
    """
    Result of a guard check.

    Attributes:
        allowed: Whether the request may proceed
        reason: Reason string (machine code, optionally followed by detail)
        guard_name: Name of the guard that produced this result
        metadata: Additional context data
    """

    allowed: bool
    reason: str
    guard_name: str = ""
    metadata: dict[str, Any] | None = None

    def __bool__(self) -> bool:
        """Allow using result in boolean context."""
        return self.allowed


@dataclass
class GuardContext:
    """
    What a guard needs to know about a request.

    ``cost_estimated`` is the provider's published price, never a
    caller-supplied value.
    """

    provider: str
    action: str
    task: str
    cost_estimated: Decimal
    metadata: dict[str, Any] | None = None


class Guard(ABC):
    """
    Abstract base class for guards.

    Checks must be free of side effects so they can run concurrently.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this guard."""
        ...

    @abstractmethod
    async def check(self, context: GuardContext) -> GuardResult:
        """Check if the request should be allowed."""
        ...
