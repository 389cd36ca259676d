"""
Mock email provider - a pay-per-call email sender for demos and tests.

Charges 0.001 USDC per email on base-sepolia. Email ids come from a
storage counter so they stay unique across guard instances sharing Redis.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

from spendguard.core.logging import get_logger
from spendguard.core.types import PaymentRequirement, ProviderResult, utc_now_iso
from spendguard.payment.proof import generate_nonce
from spendguard.providers.base import ProviderGateway, ProviderInfo
from spendguard.storage.base import StorageBackend
from spendguard.storage.memory import InMemoryStorage

logger = get_logger("providers.email")

EMAIL_PROVIDER_INFO = ProviderInfo(
    name="email",
    price=Decimal("0.001"),
    asset="USDC",
    network="base-sepolia",
    pay_to="0xMockWalletAddress",
    callback_url="/api/provider/email/send",
)


class MockEmailProvider(ProviderGateway):
    """Email provider that requires payment before sending."""

    COUNTER_COLLECTION = "provider_counters"
    COUNTER_KEY = "email"

    def __init__(
        self,
        storage: StorageBackend | None = None,
        info: ProviderInfo = EMAIL_PROVIDER_INFO,
        latency: float = 0.0,
    ) -> None:
        """
        Args:
            storage: Backend for the email id counter (defaults to in-memory)
            info: Published terms
            latency: Simulated send delay in seconds
        """
        self._storage = storage or InMemoryStorage()
        self._info = info
        self._latency = latency

    @property
    def info(self) -> ProviderInfo:
        return self._info

    async def quote(self) -> PaymentRequirement:
        return PaymentRequirement(
            price=self._info.price,
            asset=self._info.asset,
            network=self._info.network,
            nonce=generate_nonce(),
            pay_to=self._info.pay_to,
            callback_url=self._info.callback_url,
        )

    async def execute(
        self,
        payload: dict[str, Any],
        payment_proof: str | None = None,
    ) -> ProviderResult:
        to = payload.get("to")
        subject = payload.get("subject")
        if not to or not subject:
            return ProviderResult(success=False, error="Missing required fields: to, subject")

        if self._latency:
            await asyncio.sleep(self._latency)

        counter = await self._storage.atomic_add(self.COUNTER_COLLECTION, self.COUNTER_KEY, "1")
        email_id = f"email_{int(Decimal(counter))}"
        logger.info(f"Sent {email_id} to {to}")

        return ProviderResult(
            success=True,
            data={
                "status": "sent",
                "id": email_id,
                "to": to,
                "subject": subject,
                "body": payload.get("body") or "(no body)",
                "sent_at": utc_now_iso(),
            },
        )

    async def reset(self) -> None:
        await self._storage.delete(self.COUNTER_COLLECTION, self.COUNTER_KEY)
