"""
GuardOrchestrator - the "decide -> pay -> run" flow for one request.

States:
    RECEIVED -> POLICY_CHECKED -> BUDGET_CHECKED -> {QUOTING | VERIFYING}
    -> {PAYMENT_REQUIRED | EXECUTING} -> {APPROVED | DENIED}

Every terminal decision is written to the audit trail exactly once
before it is returned. Guard outcomes are values; only collaborator
defects (storage down, provider unreachable) raise.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from spendguard.audit.recorder import AuditRecorder
from spendguard.core.exceptions import PaymentProofError, ProviderError, UnexpectedProviderResponse
from spendguard.core.logging import get_logger
from spendguard.core.types import (
    Decision,
    GuardDecision,
    GuardRequest,
    PaymentProof,
    PaymentRequirement,
    ProviderResult,
    Reason,
)
from spendguard.guards.base import GuardContext
from spendguard.guards.budget import BudgetLedger
from spendguard.guards.policy import PolicyEngine
from spendguard.payment.pending import PendingPaymentStore
from spendguard.payment.proof import parse_payment_proof_header
from spendguard.payment.verifier import PaymentVerifier
from spendguard.providers.base import ProviderGateway

logger = get_logger("orchestrator")


class GuardState(str, Enum):
    """Progress of one request through the guard."""

    RECEIVED = "RECEIVED"
    POLICY_CHECKED = "POLICY_CHECKED"
    BUDGET_CHECKED = "BUDGET_CHECKED"
    QUOTING = "QUOTING"
    VERIFYING = "VERIFYING"
    EXECUTING = "EXECUTING"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    APPROVED = "APPROVED"
    DENIED = "DENIED"


@dataclass
class _GuardRun:
    """Per-request working state."""

    request: GuardRequest
    cost: Decimal
    state: GuardState = GuardState.RECEIVED
    proof: PaymentProof | None = None
    payment_verified: bool | None = None

    def advance(self, state: GuardState) -> None:
        logger.debug(f"{self.request.provider}/{self.request.action}: {self.state.value} -> {state.value}")
        self.state = state


class GuardOrchestrator:
    """
    Composes policy, budget, payment verification, the provider and the
    audit trail into the decision for one request.

    Safe for concurrent use: all request state is local to a call, and
    shared state is only touched through atomic store operations.
    """

    def __init__(
        self,
        policy: PolicyEngine,
        budget: BudgetLedger,
        verifier: PaymentVerifier,
        pending: PendingPaymentStore,
        provider: ProviderGateway,
        audit: AuditRecorder,
        pending_ttl: int | None = None,
    ) -> None:
        self._policy = policy
        self._budget = budget
        self._verifier = verifier
        self._pending = pending
        self._provider = provider
        self._audit = audit
        self._pending_ttl = pending_ttl

    @property
    def provider(self) -> ProviderGateway:
        return self._provider

    async def execute_guarded(
        self,
        request: GuardRequest,
        payment_proof_header: str | None = None,
    ) -> GuardDecision:
        """
        Decide, and if paid, run one request.

        Args:
            request: What the agent wants to do; its payload is passed to
                the provider untouched
            payment_proof_header: Base64 JSON proof from the X-PAYMENT-PROOF
                header, or None for an unpaid attempt

        Returns:
            GuardDecision: APPROVED with the provider response, DENIED with a
            reason, or PAYMENT_REQUIRED with fresh payment terms
        """
        # The charged amount is the provider's published price, never caller input
        run = _GuardRun(request=request, cost=self._provider.price)
        context = GuardContext(
            provider=request.provider,
            action=request.action,
            task=request.task,
            cost_estimated=run.cost,
        )

        policy_result, budget_result = await asyncio.gather(
            self._policy.check(context),
            self._budget.check(context),
        )

        run.advance(GuardState.POLICY_CHECKED)
        if not policy_result.allowed:
            return await self._finish(run, Decision.DENIED, policy_result.reason)

        run.advance(GuardState.BUDGET_CHECKED)

        if payment_proof_header:
            # Only the paid path spends budget, so only it is gated on budget
            if not budget_result.allowed:
                return await self._finish(run, Decision.DENIED, budget_result.reason)
            return await self._verify_and_execute(run, payment_proof_header)

        if not budget_result.allowed:
            logger.info(f"Quoting despite insufficient budget: {budget_result.reason}")
        return await self._quote(run)

    async def _quote(self, run: _GuardRun) -> GuardDecision:
        run.advance(GuardState.QUOTING)

        try:
            requirement = await self._provider.quote()
        except UnexpectedProviderResponse as e:
            return await self._finish(
                run,
                Decision.DENIED,
                Reason.UNEXPECTED_PROVIDER_RESPONSE.with_detail(e.message),
            )
        except ProviderError as e:
            logger.error(f"Quote from {self._provider.name} failed: {e}")
            raise

        if not isinstance(requirement, PaymentRequirement):
            return await self._finish(
                run,
                Decision.DENIED,
                Reason.UNEXPECTED_PROVIDER_RESPONSE.with_detail("quote returned no payment terms"),
            )

        await self._pending.put(requirement.nonce, requirement, self._pending_ttl)

        return await self._finish(
            run,
            Decision.PAYMENT_REQUIRED,
            Reason.X402_PAYMENT_REQUIRED.value,
            payment_requirement=requirement,
            payment_nonce=requirement.nonce,
        )

    async def _verify_and_execute(self, run: _GuardRun, header: str) -> GuardDecision:
        run.advance(GuardState.VERIFYING)

        try:
            run.proof = parse_payment_proof_header(header)
        except PaymentProofError as e:
            return await self._finish(
                run,
                Decision.DENIED,
                Reason.INVALID_PAYMENT_PROOF.with_detail(e.message),
            )

        proof = run.proof
        run.payment_verified = False

        pending = await self._pending.get(proof.nonce)
        if pending is None:
            # A consumed nonce whose quote is gone is still a replay, never "not found"
            if await self._verifier.nonces.is_claimed(proof.nonce):
                logger.warning(f"Replay of consumed nonce {proof.nonce} by {proof.payer}")
                return await self._finish(
                    run,
                    Decision.DENIED,
                    Reason.REPLAY_ATTACK.with_detail("Nonce already used"),
                )
            return await self._finish(
                run,
                Decision.DENIED,
                Reason.PAYMENT_NOT_FOUND.with_detail("No pending payment for this nonce"),
            )

        verification = await self._verifier.verify(proof, pending.nonce, pending.price)
        if not verification.valid:
            return await self._finish(run, Decision.DENIED, verification.reason)

        # Nonce is consumed from here on, whatever the provider does
        run.payment_verified = True
        run.advance(GuardState.EXECUTING)

        try:
            result = await self._provider.execute(run.request.payload, payment_proof=header)
        except UnexpectedProviderResponse as e:
            return await self._finish(
                run,
                Decision.DENIED,
                Reason.UNEXPECTED_PROVIDER_RESPONSE.with_detail(e.message),
            )
        except ProviderError as e:
            # Nonce stays claimed; the caller sees the failure as a hard error
            logger.error(f"Execution by {self._provider.name} failed after payment {proof.nonce}: {e}")
            raise

        if not isinstance(result, ProviderResult):
            return await self._finish(
                run,
                Decision.DENIED,
                Reason.UNEXPECTED_PROVIDER_RESPONSE.with_detail("execute returned no result"),
            )

        if not result.success:
            return await self._finish(
                run,
                Decision.DENIED,
                Reason.PROVIDER_ERROR.with_detail(result.error or "unknown"),
            )

        # The provider delivered: settlement and its audit record complete even if the caller goes away
        return await asyncio.shield(self._settle(run, proof, result))

    async def _settle(
        self,
        run: _GuardRun,
        proof: PaymentProof,
        result: ProviderResult,
    ) -> GuardDecision:
        await asyncio.gather(
            self._budget.deduct(run.cost),
            self._pending.remove(proof.nonce),
        )
        return await self._finish(
            run,
            Decision.APPROVED,
            Reason.PAYMENT_VERIFIED.value,
            response=result.data,
            provider_response=result.data,
        )

    async def _finish(
        self,
        run: _GuardRun,
        decision: Decision,
        reason: str,
        payment_requirement: PaymentRequirement | None = None,
        payment_nonce: str | None = None,
        response: dict[str, Any] | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> GuardDecision:
        """Audit a terminal decision, then build the caller's answer."""
        run.advance(GuardState(decision.value))
        request = run.request
        proof = run.proof

        entry = await self._audit.append(
            provider=request.provider,
            action=request.action,
            task=request.task,
            cost=run.cost,
            decision=decision,
            reason=reason,
            payload=request.payload,
            response=response,
            payment_nonce=proof.nonce if proof else payment_nonce,
            payment_payer=proof.payer if proof else None,
            payment_verified=run.payment_verified,
            run_id=request.run_id,
        )

        log = logger.info if decision != Decision.DENIED else logger.warning
        log(f"{entry.id} {decision.value} {request.provider}/{request.action}/{request.task}: {reason}")

        return GuardDecision(
            decision=decision,
            reason=reason,
            log_id=entry.id,
            payment_requirement=payment_requirement,
            provider_response=provider_response,
        )
