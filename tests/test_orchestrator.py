"""
Tests for the guarded execution flow.

Covers the decide -> pay -> run scenarios end to end through SpendGuard
with the mock email provider, plus collaborator failure handling with a
mocked provider.
"""

import asyncio
import base64
import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from spendguard.client import SpendGuard
from spendguard.core.exceptions import ProviderError, StorageError, UnexpectedProviderResponse
from spendguard.core.types import (
    Decision,
    GuardRequest,
    PaymentProof,
    PaymentRequirement,
    ProviderResult,
)
from spendguard.payment.proof import (
    create_mock_payment,
    encode_payment_proof_header,
    sign_payment_proof,
)
from spendguard.providers.base import ProviderGateway


def header_for(decision) -> str:
    _, header = create_mock_payment(decision.payment_requirement)
    return header


async def quote_and_pay(guard: SpendGuard, request: GuardRequest):
    quoted = await guard.execute_guarded(request)
    assert quoted.decision == Decision.PAYMENT_REQUIRED
    return await guard.execute_guarded(request, header_for(quoted))


@pytest.fixture
def mock_provider() -> MagicMock:
    provider = MagicMock(spec=ProviderGateway)
    provider.name = "email"
    provider.price = Decimal("0.001")
    provider.quote = AsyncMock(
        return_value=PaymentRequirement(
            price=Decimal("0.001"),
            asset="USDC",
            network="base-sepolia",
            nonce="nonce_mock_1",
            pay_to="0xMockWalletAddress",
        )
    )
    provider.execute = AsyncMock(return_value=ProviderResult(success=True, data={"id": "email_1"}))
    provider.reset = AsyncMock()
    provider.close = AsyncMock()
    return provider


@pytest.fixture
def mocked_guard(config, storage, mock_provider) -> SpendGuard:
    return SpendGuard(config=config, storage=storage, provider=mock_provider, configure_log=False)


class TestNormalFlow:
    """Unpaid request is quoted, paid retry executes once."""

    @pytest.mark.asyncio
    async def test_unpaid_request_gets_payment_terms(self, guard, email_request):
        decision = await guard.execute_guarded(email_request)

        assert decision.decision == Decision.PAYMENT_REQUIRED
        assert decision.reason == "x402_payment_required"
        assert decision.log_id == "log_1"
        assert decision.payment_requirement.price == Decimal("0.001")
        assert decision.payment_requirement.asset == "USDC"
        assert decision.provider_response is None
        assert "x402_payment_required" in decision.to_dict()

    @pytest.mark.asyncio
    async def test_quote_is_remembered_as_pending(self, guard, email_request):
        decision = await guard.execute_guarded(email_request)

        pending = await guard.pending_payments.get(decision.payment_requirement.nonce)
        assert pending == decision.payment_requirement

    @pytest.mark.asyncio
    async def test_paid_request_is_approved(self, guard, email_request):
        quoted = await guard.execute_guarded(email_request)
        decision = await guard.execute_guarded(email_request, header_for(quoted))

        assert decision.decision == Decision.APPROVED
        assert decision.reason == "payment_verified"
        assert decision.log_id == "log_2"
        assert decision.provider_response["status"] == "sent"
        assert decision.provider_response["id"] == "email_1"
        assert decision.provider_response["to"] == "user@example.com"

        budget = await guard.get_budget()
        assert budget.remaining == Decimal("0.999")
        assert budget.spent == Decimal("0.001")

    @pytest.mark.asyncio
    async def test_settlement_clears_pending_and_claims_nonce(self, guard, email_request):
        quoted = await guard.execute_guarded(email_request)
        nonce = quoted.payment_requirement.nonce
        await guard.execute_guarded(email_request, header_for(quoted))

        assert await guard.pending_payments.get(nonce) is None
        assert await guard.nonces.is_claimed(nonce) is True

    @pytest.mark.asyncio
    async def test_audit_trail(self, guard, email_request):
        quoted = await guard.execute_guarded(email_request)
        proof, header = create_mock_payment(quoted.payment_requirement)
        approved = await guard.execute_guarded(email_request, header)

        quote_entry = await guard.audit.get(quoted.log_id)
        assert quote_entry.decision == Decision.PAYMENT_REQUIRED
        assert quote_entry.payment_nonce == proof.nonce
        assert quote_entry.payment_verified is None

        entry = await guard.audit.get(approved.log_id)
        assert entry.decision == Decision.APPROVED
        assert entry.cost == Decimal("0.001")
        assert entry.payload == email_request.payload
        assert entry.response["id"] == "email_1"
        assert entry.payment_nonce == proof.nonce
        assert entry.payment_payer == proof.payer
        assert entry.payment_verified is True

    @pytest.mark.asyncio
    async def test_run_id_is_recorded(self, guard, email_payload):
        request = GuardRequest("email", "send", "welcome_flow", email_payload, run_id="run-123")
        decision = await guard.execute_guarded(request)

        assert (await guard.audit.get(decision.log_id)).run_id == "run-123"

    @pytest.mark.asyncio
    async def test_round_trip_repeats(self, guard, email_request):
        for _ in range(5):
            decision = await quote_and_pay(guard, email_request)
            assert decision.decision == Decision.APPROVED

        assert (await guard.get_budget()).remaining == Decimal("0.995")


class TestPolicyDenial:
    """Policy violations are denied before any payment logic."""

    @pytest.mark.asyncio
    async def test_provider_not_allowed(self, guard, email_payload):
        request = GuardRequest("sms", "send", "welcome_flow", email_payload)
        decision = await guard.execute_guarded(request)

        assert decision.decision == Decision.DENIED
        assert decision.reason_code == "provider_not_allowed"
        assert decision.payment_requirement is None
        assert (await guard.get_budget()).remaining == Decimal("1.0")
        assert await guard.pending_payments.count() == 0
        assert (await guard.audit.get(decision.log_id)).decision == Decision.DENIED

    @pytest.mark.asyncio
    async def test_policy_checked_even_with_proof(self, guard, email_request, email_payload):
        quoted = await guard.execute_guarded(email_request)
        request = GuardRequest("email", "delete", "welcome_flow", email_payload)

        decision = await guard.execute_guarded(request, header_for(quoted))

        assert decision.reason_code == "action_not_allowed"
        assert await guard.nonces.is_claimed(quoted.payment_requirement.nonce) is False

    @pytest.mark.asyncio
    async def test_task_not_allowed(self, guard, email_payload):
        decision = await guard.execute_guarded(GuardRequest("email", "send", "spam", email_payload))
        assert decision.reason_code == "task_not_allowed"

    @pytest.mark.asyncio
    async def test_price_exceeded(self, guard, email_request):
        await guard.update_policy(max_price_per_call=Decimal("0.0005"))

        decision = await guard.execute_guarded(email_request)

        assert decision.decision == Decision.DENIED
        assert decision.reason == "price_exceeded: $0.0010 exceeds max $0.0005"

    @pytest.mark.asyncio
    async def test_provider_violation_reported_over_price(self, guard, email_payload):
        await guard.update_policy(max_price_per_call=Decimal("0"))

        decision = await guard.execute_guarded(GuardRequest("sms", "send", "welcome_flow", email_payload))

        assert decision.reason_code == "provider_not_allowed"


class TestBudgetExhaustion:
    """Budget gates the paid path only."""

    @pytest.mark.asyncio
    async def test_exhaust_then_quote_then_deny(self, guard, email_request):
        await guard.set_daily_limit(Decimal("0.002"))

        assert (await quote_and_pay(guard, email_request)).decision == Decision.APPROVED
        assert (await quote_and_pay(guard, email_request)).decision == Decision.APPROVED
        assert (await guard.get_budget()).remaining == Decimal("0")

        quoted = await guard.execute_guarded(email_request)
        assert quoted.decision == Decision.PAYMENT_REQUIRED

        denied = await guard.execute_guarded(email_request, header_for(quoted))
        assert denied.decision == Decision.DENIED
        assert denied.reason_code == "budget_exceeded"
        assert await guard.nonces.is_claimed(quoted.payment_requirement.nonce) is False
        assert (await guard.get_budget()).remaining == Decimal("0")

    @pytest.mark.asyncio
    async def test_reset_budget_allows_payment_again(self, guard, email_request):
        await guard.set_daily_limit(Decimal("0.001"))
        await quote_and_pay(guard, email_request)
        await guard.reset_budget()

        assert (await quote_and_pay(guard, email_request)).decision == Decision.APPROVED


class TestReplayProtection:
    """A proof is good for exactly one execution."""

    @pytest.mark.asyncio
    async def test_replay_after_success(self, guard, email_request):
        quoted = await guard.execute_guarded(email_request)
        header = header_for(quoted)

        first = await guard.execute_guarded(email_request, header)
        second = await guard.execute_guarded(email_request, header)

        assert first.decision == Decision.APPROVED
        assert second.decision == Decision.DENIED
        assert second.reason_code == "replay_attack"
        assert (await guard.get_budget()).remaining == Decimal("0.999")

    @pytest.mark.asyncio
    async def test_concurrent_submissions_execute_once(self, guard, email_request):
        quoted = await guard.execute_guarded(email_request)
        header = header_for(quoted)

        decisions = await asyncio.gather(
            *[guard.execute_guarded(email_request, header) for _ in range(5)]
        )

        assert [d.decision for d in decisions].count(Decision.APPROVED) == 1
        assert all(d.reason_code == "replay_attack" for d in decisions if not d.approved)
        assert (await guard.get_budget()).remaining == Decimal("0.999")

    @pytest.mark.asyncio
    async def test_concurrent_distinct_payments_never_overdraw(self, guard, email_request):
        await guard.set_daily_limit(Decimal("0.002"))
        quotes = [await guard.execute_guarded(email_request) for _ in range(5)]

        decisions = await asyncio.gather(
            *[guard.execute_guarded(email_request, header_for(q)) for q in quotes]
        )

        assert any(d.approved for d in decisions)
        budget = await guard.get_budget()
        assert Decimal("0") <= budget.remaining <= budget.daily_limit

    @pytest.mark.asyncio
    async def test_unknown_nonce(self, guard, email_request):
        requirement = PaymentRequirement(
            price=Decimal("0.001"),
            asset="USDC",
            network="base-sepolia",
            nonce="nonce_never_quoted",
            pay_to="0xMockWalletAddress",
        )
        _, header = create_mock_payment(requirement)

        decision = await guard.execute_guarded(email_request, header)

        assert decision.reason_code == "payment_not_found"
        assert await guard.nonces.is_claimed("nonce_never_quoted") is False

    @pytest.mark.asyncio
    async def test_expired_quote(self, guard, email_request):
        quoted = await guard.execute_guarded(email_request)
        await guard.clear_pending_payments()

        decision = await guard.execute_guarded(email_request, header_for(quoted))

        assert decision.reason_code == "payment_not_found"

    @pytest.mark.asyncio
    async def test_consumed_nonce_stays_a_replay_after_quote_is_gone(self, guard, email_request):
        quoted = await guard.execute_guarded(email_request)
        header = header_for(quoted)
        await guard.execute_guarded(email_request, header)
        await guard.clear_pending_payments()

        decision = await guard.execute_guarded(email_request, header)

        assert decision.reason_code == "replay_attack"


class TestInvalidProofs:
    @pytest.mark.asyncio
    async def test_undecodable_header(self, guard, email_request):
        decision = await guard.execute_guarded(email_request, "%%%not-a-proof%%%")

        assert decision.decision == Decision.DENIED
        assert decision.reason == "invalid_payment_proof: Could not parse payment proof"
        entry = await guard.audit.get(decision.log_id)
        assert entry.payment_nonce is None

    @pytest.mark.asyncio
    async def test_header_missing_fields(self, guard, email_request):
        header = base64.b64encode(json.dumps({"nonce": "n1"}).encode()).decode()

        decision = await guard.execute_guarded(email_request, header)

        assert decision.reason_code == "invalid_payment_proof"

    @pytest.mark.asyncio
    async def test_forged_signature_keeps_quote_payable(self, guard, email_request):
        quoted = await guard.execute_guarded(email_request)
        requirement = quoted.payment_requirement
        forged = PaymentProof(
            nonce=requirement.nonce,
            payer="mock_payer_1",
            signature="forged",
            amount=requirement.price,
        )

        denied = await guard.execute_guarded(email_request, encode_payment_proof_header(forged))
        assert denied.reason_code == "invalid_signature"
        assert (await guard.audit.get(denied.log_id)).payment_verified is False

        approved = await guard.execute_guarded(email_request, header_for(quoted))
        assert approved.decision == Decision.APPROVED

    @pytest.mark.asyncio
    async def test_invalid_payer(self, guard, email_request):
        quoted = await guard.execute_guarded(email_request)
        proof = sign_payment_proof(quoted.payment_requirement, payer="0xNotMock")

        decision = await guard.execute_guarded(email_request, encode_payment_proof_header(proof))

        assert decision.reason_code == "invalid_payer"

    @pytest.mark.asyncio
    async def test_underpayment(self, guard, email_request):
        quoted = await guard.execute_guarded(email_request)
        requirement = quoted.payment_requirement
        proof = PaymentProof(
            nonce=requirement.nonce,
            payer="mock_payer_1",
            signature="mock_signature_1",
            amount=Decimal("0.0001"),
        )

        decision = await guard.execute_guarded(email_request, encode_payment_proof_header(proof))

        assert decision.reason_code == "insufficient_amount"
        assert (await guard.get_budget()).remaining == Decimal("1.0")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["NaN", "sNaN", "Infinity", float("nan")])
    async def test_non_finite_amount_is_denied(self, guard, email_request, amount):
        quoted = await guard.execute_guarded(email_request)
        nonce = quoted.payment_requirement.nonce
        body = {
            "nonce": nonce,
            "payer": "mock_payer_1",
            "signature": "mock_signature_1",
            "amount": amount,
        }
        header = base64.b64encode(json.dumps(body).encode()).decode()

        decision = await guard.execute_guarded(email_request, header)

        assert decision.decision == Decision.DENIED
        assert decision.reason_code == "invalid_payment_proof"
        assert (await guard.audit.get(decision.log_id)).decision == Decision.DENIED
        assert await guard.nonces.is_claimed(nonce) is False
        assert (await guard.get_budget()).remaining == Decimal("1.0")


class TestProviderFailures:
    @pytest.mark.asyncio
    async def test_provider_error_does_not_charge(self, guard):
        request = GuardRequest("email", "send", "welcome_flow", {"to": "user@example.com"})
        quoted = await guard.execute_guarded(request)
        header = header_for(quoted)

        decision = await guard.execute_guarded(request, header)

        assert decision.decision == Decision.DENIED
        assert decision.reason == "provider_error: Missing required fields: to, subject"
        assert (await guard.get_budget()).remaining == Decimal("1.0")
        assert await guard.nonces.is_claimed(quoted.payment_requirement.nonce) is True

        retry = await guard.execute_guarded(request, header)
        assert retry.reason_code == "replay_attack"

    @pytest.mark.asyncio
    async def test_provider_error_without_detail(self, mocked_guard, mock_provider, email_request):
        mock_provider.execute.return_value = ProviderResult(success=False)
        quoted = await mocked_guard.execute_guarded(email_request)

        decision = await mocked_guard.execute_guarded(email_request, header_for(quoted))

        assert decision.reason == "provider_error: unknown"

    @pytest.mark.asyncio
    async def test_unexpected_quote_response(self, mocked_guard, mock_provider, email_request):
        mock_provider.quote.side_effect = UnexpectedProviderResponse("status 200", provider_name="email")

        decision = await mocked_guard.execute_guarded(email_request)

        assert decision.decision == Decision.DENIED
        assert decision.reason == "unexpected_provider_response: status 200"
        assert await mocked_guard.pending_payments.count() == 0

    @pytest.mark.asyncio
    async def test_quote_without_terms(self, mocked_guard, mock_provider, email_request):
        mock_provider.quote.return_value = {"price": "0.001"}

        decision = await mocked_guard.execute_guarded(email_request)

        assert decision.reason_code == "unexpected_provider_response"

    @pytest.mark.asyncio
    async def test_unexpected_execute_response(self, mocked_guard, mock_provider, email_request):
        mock_provider.execute.side_effect = UnexpectedProviderResponse("status 402 after verified payment")
        quoted = await mocked_guard.execute_guarded(email_request)

        decision = await mocked_guard.execute_guarded(email_request, header_for(quoted))

        assert decision.reason_code == "unexpected_provider_response"
        assert (await mocked_guard.get_budget()).remaining == Decimal("1.0")

    @pytest.mark.asyncio
    async def test_payload_and_proof_passed_through(self, mocked_guard, mock_provider, email_request):
        quoted = await mocked_guard.execute_guarded(email_request)
        header = header_for(quoted)

        await mocked_guard.execute_guarded(email_request, header)

        mock_provider.execute.assert_awaited_once_with(email_request.payload, payment_proof=header)

    @pytest.mark.asyncio
    async def test_quote_does_not_touch_budget_or_nonces(self, mocked_guard, email_request):
        for _ in range(3):
            await mocked_guard.execute_guarded(email_request)

        assert (await mocked_guard.get_budget()).remaining == Decimal("1.0")
        assert await mocked_guard.nonces.count() == 0

    @pytest.mark.asyncio
    async def test_unreachable_provider_propagates(self, mocked_guard, mock_provider, email_request):
        mock_provider.quote.side_effect = ProviderError("connection refused", provider_name="email")

        with pytest.raises(ProviderError):
            await mocked_guard.execute_guarded(email_request)

    @pytest.mark.asyncio
    async def test_provider_crash_after_payment_propagates(
        self, mocked_guard, mock_provider, email_request
    ):
        mock_provider.execute.side_effect = ProviderError("timeout", provider_name="email")
        quoted = await mocked_guard.execute_guarded(email_request)

        with pytest.raises(ProviderError):
            await mocked_guard.execute_guarded(email_request, header_for(quoted))

        assert await mocked_guard.nonces.is_claimed(quoted.payment_requirement.nonce) is True
        assert (await mocked_guard.get_budget()).remaining == Decimal("1.0")

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self, mocked_guard, email_request):
        mocked_guard.budget.store.get = AsyncMock(side_effect=StorageError("redis down"))

        with pytest.raises(StorageError):
            await mocked_guard.execute_guarded(email_request)
