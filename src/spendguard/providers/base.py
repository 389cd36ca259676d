"""
Provider gateway interface.

A provider is the upstream pay-per-call service. Unpaid, it quotes
payment terms; paid, it executes the action. The guard never reads
the payload; only the provider knows its schema.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from spendguard.core.types import PaymentRequirement, ProviderResult


@dataclass(frozen=True)
class ProviderInfo:
    """Static, published terms of a provider."""

    name: str
    price: Decimal
    asset: str = "USDC"
    network: str = "base-sepolia"
    pay_to: str = ""
    callback_url: str | None = None


class ProviderGateway(ABC):
    """Abstract base class for pay-per-call providers."""

    @property
    @abstractmethod
    def info(self) -> ProviderInfo:
        """Published provider terms."""
        ...

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def price(self) -> Decimal:
        """Authoritative price per call."""
        return self.info.price

    @abstractmethod
    async def quote(self) -> PaymentRequirement:
        """
        Ask for fresh payment terms (the HTTP 402 answer).

        Raises:
            UnexpectedProviderResponse: If the provider did not ask for payment
            ProviderError: If the provider is unreachable
        """
        ...

    @abstractmethod
    async def execute(
        self,
        payload: dict[str, Any],
        payment_proof: str | None = None,
    ) -> ProviderResult:
        """
        Perform the paid action.

        Args:
            payload: Provider-specific request body
            payment_proof: Encoded proof header, for providers that want it

        Raises:
            UnexpectedProviderResponse: On a response that is neither result nor error
            ProviderError: If the provider is unreachable
        """
        ...

    async def reset(self) -> None:
        """Reset provider-side demo state (counters)."""
        return None

    async def close(self) -> None:
        return None
