"""
SpendGuard client - wiring and administrative surface.

Builds the stores, guards, verifier, provider and audit trail from one
Config and one StorageBackend, and exposes the guarded execution entry
point plus the administrative operations an operator UI or HTTP layer
needs (budget reset, limits, policy, clears, audit reads).
"""

from __future__ import annotations

from typing import Any

from dotenv import load_dotenv

from spendguard.audit.recorder import AuditRecorder
from spendguard.core.config import Config
from spendguard.core.logging import configure_logging, get_logger
from spendguard.core.types import (
    AmountType,
    AuditLogEntry,
    BudgetStatus,
    GuardDecision,
    GuardRequest,
    LogStats,
    PolicyConfig,
)
from spendguard.guards.budget import BudgetLedger, BudgetStore
from spendguard.guards.policy import PolicyEngine, PolicyStore
from spendguard.orchestrator import GuardOrchestrator
from spendguard.payment.nonces import NonceStore
from spendguard.payment.pending import PendingPaymentStore
from spendguard.payment.signature import SignatureVerifier
from spendguard.payment.verifier import PaymentVerifier
from spendguard.providers.base import ProviderGateway
from spendguard.providers.email import EMAIL_PROVIDER_INFO, MockEmailProvider
from spendguard.providers.http import HttpProviderGateway
from spendguard.storage import storage_from_config
from spendguard.storage.base import StorageBackend


class SpendGuard:
    """
    Main entry point.

    Example:
        >>> guard = SpendGuard()
        >>> decision = await guard.execute("email", "send", "welcome_flow", {"to": "a@b.c", "subject": "Hi"})
        >>> decision.decision
        <Decision.PAYMENT_REQUIRED: 'PAYMENT_REQUIRED'>
        >>> _, header = create_mock_payment(decision.payment_requirement)
        >>> decision = await guard.execute("email", "send", "welcome_flow", {...}, payment_proof=header)
        >>> decision.decision
        <Decision.APPROVED: 'APPROVED'>
    """

    def __init__(
        self,
        config: Config | None = None,
        storage: StorageBackend | None = None,
        provider: ProviderGateway | None = None,
        signature_verifier: SignatureVerifier | None = None,
        load_env: bool = False,
        configure_log: bool = True,
    ) -> None:
        """
        Initialize SpendGuard.

        Args:
            config: Configuration (default: Config.from_env())
            storage: Storage backend (default: config.storage_backend)
            provider: Provider gateway (default: HttpProviderGateway when
                config.provider_url is set, else MockEmailProvider)
            signature_verifier: Proof signature check (default: mock format check)
            load_env: Load a .env file before reading the environment
            configure_log: Install the spendguard log handler at config.log_level
        """
        if load_env:
            load_dotenv()

        self._config = config or Config.from_env()

        if configure_log:
            configure_logging(level=self._config.log_level)
        self._logger = get_logger("client")

        if storage is None:
            storage = storage_from_config(self._config)
        self._storage = storage

        self._policy_store = PolicyStore(storage, self._config.default_policy())
        self._budget_store = BudgetStore(storage, self._config.daily_limit)

        self._policy = PolicyEngine(self._policy_store)
        self._budget = BudgetLedger(self._budget_store, max_retries=self._config.budget_cas_retries)
        self._nonces = NonceStore(storage)
        self._pending = PendingPaymentStore(storage, default_ttl=self._config.pending_payment_ttl)
        self._verifier = PaymentVerifier(self._nonces, signature_verifier)
        self._provider = provider or self._build_provider(self._config, storage)
        self._audit = AuditRecorder(storage, max_entries=self._config.audit_max_entries)

        self._orchestrator = GuardOrchestrator(
            policy=self._policy,
            budget=self._budget,
            verifier=self._verifier,
            pending=self._pending,
            provider=self._provider,
            audit=self._audit,
            pending_ttl=self._config.pending_payment_ttl,
        )

        self._logger.info(
            f"SpendGuard ready (storage: {self._config.storage_backend}, provider: {self._provider.name})"
        )

    @staticmethod
    def _build_provider(config: Config, storage: StorageBackend) -> ProviderGateway:
        if config.provider_url:
            return HttpProviderGateway.from_config(config, EMAIL_PROVIDER_INFO, config.provider_url)
        return MockEmailProvider(storage)

    async def __aenter__(self) -> SpendGuard:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release provider and storage connections."""
        await self._provider.close()
        await self._storage.close()

    @property
    def config(self) -> Config:
        return self._config

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    @property
    def orchestrator(self) -> GuardOrchestrator:
        return self._orchestrator

    @property
    def policy(self) -> PolicyEngine:
        return self._policy

    @property
    def budget(self) -> BudgetLedger:
        return self._budget

    @property
    def nonces(self) -> NonceStore:
        return self._nonces

    @property
    def pending_payments(self) -> PendingPaymentStore:
        return self._pending

    @property
    def provider(self) -> ProviderGateway:
        return self._provider

    @property
    def audit(self) -> AuditRecorder:
        return self._audit

    # Guarded execution

    async def execute_guarded(
        self,
        request: GuardRequest,
        payment_proof_header: str | None = None,
    ) -> GuardDecision:
        """Run one request through the guard. See GuardOrchestrator.execute_guarded."""
        return await self._orchestrator.execute_guarded(request, payment_proof_header)

    async def execute(
        self,
        provider: str,
        action: str,
        task: str,
        payload: dict[str, Any] | None = None,
        payment_proof: str | None = None,
        run_id: str | None = None,
    ) -> GuardDecision:
        """
        Convenience wrapper around execute_guarded.

        Args:
            provider: Provider name (checked against the allowlist)
            action: Action name
            task: Task name
            payload: Provider-specific body
            payment_proof: Encoded X-PAYMENT-PROOF header value
            run_id: Correlation id recorded in the audit trail
        """
        request = GuardRequest(
            provider=provider,
            action=action,
            task=task,
            payload=payload or {},
            run_id=run_id,
        )
        return await self._orchestrator.execute_guarded(request, payment_proof)

    # Budget administration

    async def get_budget(self) -> BudgetStatus:
        return await self._budget.status()

    async def reset_budget(self) -> BudgetStatus:
        await self._budget.reset()
        return await self._budget.status()

    async def set_daily_limit(self, limit: AmountType) -> BudgetStatus:
        """Set a new daily limit; remaining becomes the new limit."""
        await self._budget.set_limit(limit)
        return await self._budget.status()

    async def clear_budget(self) -> BudgetStatus:
        """Drop the stored budget; the configured daily limit applies again."""
        await self._budget.clear()
        return await self._budget.status()

    # Policy administration

    async def get_policy(self) -> PolicyConfig:
        return await self._policy_store.get()

    async def update_policy(self, **changes: Any) -> PolicyConfig:
        """
        Update policy fields.

        Example:
            >>> await guard.update_policy(max_price_per_call=Decimal("0.01"), allowed_tasks=["digest"])
        """
        return await self._policy_store.set(changes)

    async def clear_policy(self) -> PolicyConfig:
        await self._policy_store.clear()
        return await self._policy_store.get()

    # Payment state administration

    async def clear_nonces(self) -> int:
        """Forget consumed nonces. Previously used proofs stop counting as replays."""
        count = await self._nonces.clear()
        self._logger.warning(f"Cleared {count} used nonces")
        return count

    async def clear_pending_payments(self) -> int:
        return await self._pending.clear()

    # Audit

    async def get_logs(self, limit: int = 50) -> list[AuditLogEntry]:
        return await self._audit.get_logs(limit)

    async def get_log_stats(self) -> LogStats:
        return await self._audit.get_stats()

    async def clear_logs(self) -> int:
        return await self._audit.clear()

    async def clear_all(self) -> dict[str, Any]:
        """
        Wipe all guard state: audit log, budget, policy, nonces, pending
        payments and provider counters. Budget and policy fall back to the
        configured defaults.
        """
        logs = await self._audit.clear()
        await self._budget.clear()
        await self._policy_store.clear()
        nonces = await self._nonces.clear()
        pending = await self._pending.clear()
        await self._provider.reset()

        self._logger.warning("All SpendGuard state cleared")
        return {"logs": logs, "nonces": nonces, "pending_payments": pending}

    async def health_check(self) -> bool:
        return await self._storage.health_check()

    def __repr__(self) -> str:
        return (
            f"SpendGuard(storage={self._config.storage_backend!r}, "
            f"provider={self._provider.name!r}, price={self._provider.price})"
        )
