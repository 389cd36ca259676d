"""
Type definitions for SpendGuard.

This module contains the enums, data classes and helpers shared by the
guards, the payment verifier, the providers and the orchestrator.
Money is always Decimal; storage representations use strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, TypeAlias

# Type alias for flexible amount input
AmountType: TypeAlias = Decimal | int | float | str


def to_decimal(value: AmountType) -> Decimal:
    """
    Convert an amount to Decimal without float artifacts.

    Raises:
        ValueError: If the value is not a finite number (NaN and Infinity included)
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"Invalid amount: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return result


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Decision(str, Enum):
    """Terminal outcome of one guarded request."""

    APPROVED = "APPROVED"
    DENIED = "DENIED"
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"


class Reason(str, Enum):
    """Machine-readable reason codes. Detail text may follow after ': '."""

    # Policy
    PROVIDER_NOT_ALLOWED = "provider_not_allowed"
    ACTION_NOT_ALLOWED = "action_not_allowed"
    TASK_NOT_ALLOWED = "task_not_allowed"
    PRICE_EXCEEDED = "price_exceeded"
    POLICY_CHECK_PASSED = "policy_check_passed"

    # Budget
    BUDGET_EXCEEDED = "budget_exceeded"
    BUDGET_CHECK_PASSED = "budget_check_passed"

    # Payment proof
    INVALID_PAYMENT_PROOF = "invalid_payment_proof"
    INVALID_NONCE = "invalid_nonce"
    INVALID_SIGNATURE = "invalid_signature"
    INVALID_PAYER = "invalid_payer"
    INSUFFICIENT_AMOUNT = "insufficient_amount"
    PAYMENT_NOT_FOUND = "payment_not_found"
    REPLAY_ATTACK = "replay_attack"
    PAYMENT_VERIFIED = "payment_verified"

    # Provider
    X402_PAYMENT_REQUIRED = "x402_payment_required"
    PROVIDER_ERROR = "provider_error"
    UNEXPECTED_PROVIDER_RESPONSE = "unexpected_provider_response"

    def with_detail(self, detail: str | None = None) -> str:
        """Render the reason string, optionally followed by detail text."""
        if detail:
            return f"{self.value}: {detail}"
        return self.value


def reason_code(reason: str) -> str:
    """Extract the machine code from a reason string."""
    return reason.split(":", 1)[0].strip()


@dataclass
class PolicyConfig:
    """
    Allow/deny configuration evaluated before any payment logic.

    Attributes:
        max_price_per_call: Highest price a single call may cost
        allowed_providers: Provider names that may be called
        allowed_actions: Action names that may be performed
        allowed_tasks: Task names that may trigger a call
    """

    max_price_per_call: Decimal = Decimal("0.5")
    allowed_providers: set[str] = field(default_factory=lambda: {"email"})
    allowed_actions: set[str] = field(default_factory=lambda: {"send"})
    allowed_tasks: set[str] = field(default_factory=lambda: {"welcome_flow"})

    FIELDS = ("max_price_per_call", "allowed_providers", "allowed_actions", "allowed_tasks")

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_price_per_call": str(self.max_price_per_call),
            "allowed_providers": sorted(self.allowed_providers),
            "allowed_actions": sorted(self.allowed_actions),
            "allowed_tasks": sorted(self.allowed_tasks),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PolicyConfig:
        defaults = cls()
        return cls(
            max_price_per_call=to_decimal(
                data.get("max_price_per_call", defaults.max_price_per_call)
            ),
            allowed_providers=set(data.get("allowed_providers", defaults.allowed_providers)),
            allowed_actions=set(data.get("allowed_actions", defaults.allowed_actions)),
            allowed_tasks=set(data.get("allowed_tasks", defaults.allowed_tasks)),
        )


@dataclass(frozen=True)
class BudgetState:
    """Persisted budget: `0 <= remaining <= daily_limit` at rest."""

    daily_limit: Decimal
    remaining: Decimal

    @property
    def spent(self) -> Decimal:
        return self.daily_limit - self.remaining

    def to_dict(self) -> dict[str, Any]:
        return {"daily_limit": str(self.daily_limit), "remaining": str(self.remaining)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BudgetState:
        return cls(
            daily_limit=to_decimal(data["daily_limit"]),
            remaining=to_decimal(data["remaining"]),
        )


@dataclass(frozen=True)
class BudgetStatus:
    """Read-only projection of the budget for dashboards and admin APIs."""

    daily_limit: Decimal
    remaining: Decimal
    spent: Decimal
    percentage_used: float

    @classmethod
    def from_state(cls, state: BudgetState) -> BudgetStatus:
        spent = state.spent
        if state.daily_limit > 0:
            percentage = float(spent / state.daily_limit * 100)
        else:
            percentage = 0.0
        return cls(
            daily_limit=state.daily_limit,
            remaining=state.remaining,
            spent=spent,
            percentage_used=percentage,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "daily_limit": str(self.daily_limit),
            "remaining": str(self.remaining),
            "spent": str(self.spent),
            "percentage_used": self.percentage_used,
        }


@dataclass(frozen=True)
class PaymentRequirement:
    """
    x402 payment terms quoted by a provider for one unpaid attempt.

    Attributes:
        price: Price in the given asset (e.g. Decimal("0.001") USDC)
        asset: Asset symbol (e.g. "USDC")
        network: Payment network (e.g. "base-sepolia")
        nonce: Unique, opaque token for this quote
        pay_to: Wallet address receiving the payment
        callback_url: Where the paid request should be sent
    """

    price: Decimal
    asset: str
    network: str
    nonce: str
    pay_to: str
    callback_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "price": str(self.price),
            "asset": self.asset,
            "network": self.network,
            "nonce": self.nonce,
            "pay_to": self.pay_to,
        }
        if self.callback_url is not None:
            data["callback_url"] = self.callback_url
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentRequirement:
        """Parse terms; accepts both snake_case and the camelCase x402 wire keys."""
        return cls(
            price=to_decimal(data["price"]),
            asset=data.get("asset", ""),
            network=data.get("network", ""),
            nonce=data["nonce"],
            pay_to=data.get("pay_to", data.get("payTo", "")),
            callback_url=data.get("callback_url", data.get("callbackUrl")),
        )


@dataclass(frozen=True)
class PaymentProof:
    """Signed client proof that a quoted payment was made."""

    nonce: str
    payer: str
    signature: str
    amount: Decimal | None = None
    asset: str | None = None
    network: str | None = None
    timestamp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "nonce": self.nonce,
            "payer": self.payer,
            "signature": self.signature,
        }
        if self.amount is not None:
            # JSON number on the wire
            data["amount"] = float(self.amount)
        if self.asset is not None:
            data["asset"] = self.asset
        if self.network is not None:
            data["network"] = self.network
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymentProof:
        amount = data.get("amount")
        return cls(
            nonce=str(data["nonce"]),
            payer=str(data["payer"]),
            signature=str(data["signature"]),
            amount=to_decimal(amount) if amount is not None else None,
            asset=data.get("asset"),
            network=data.get("network"),
            timestamp=data.get("timestamp"),
        )


@dataclass
class ProviderResult:
    """Outcome of a paid provider call."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class GuardRequest:
    """
    One action an agent wants to perform through the guard.

    The payload is opaque to the guard; only the provider reads it.
    """

    provider: str
    action: str
    task: str
    payload: dict[str, Any] = field(default_factory=dict)
    run_id: str | None = None


@dataclass
class VerifyResult:
    """Result of payment proof verification."""

    valid: bool
    reason: str
    details: dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.valid


@dataclass
class GuardDecision:
    """Terminal decision returned to the caller of `execute_guarded`."""

    decision: Decision
    reason: str
    log_id: str
    payment_requirement: PaymentRequirement | None = None
    provider_response: dict[str, Any] | None = None

    @property
    def reason_code(self) -> str:
        return reason_code(self.reason)

    @property
    def approved(self) -> bool:
        return self.decision == Decision.APPROVED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "decision": self.decision.value,
            "reason": self.reason,
            "log_id": self.log_id,
        }
        if self.payment_requirement is not None:
            data["x402_payment_required"] = self.payment_requirement.to_dict()
        if self.provider_response is not None:
            data["provider_response"] = self.provider_response
        return data


@dataclass(frozen=True)
class AuditLogEntry:
    """
    Immutable record of one guard decision.

    Attributes:
        id: Sequential log id ("log_<n>")
        provider, action, task: What was requested
        cost: Price the guard evaluated the request at
        decision: APPROVED, DENIED or PAYMENT_REQUIRED
        reason: Reason string of the decision
        timestamp: ISO-8601 creation time (UTC)
        payload: Request payload as received
        response: Provider response data (approved requests)
        payment_nonce: Nonce quoted or presented
        payment_payer: Payer from the presented proof
        payment_verified: Whether the proof passed verification
        run_id: Caller-supplied correlation id
    """

    id: str
    provider: str
    action: str
    task: str
    cost: Decimal
    decision: Decision
    reason: str
    timestamp: str
    payload: dict[str, Any] | None = None
    response: dict[str, Any] | None = None
    payment_nonce: str | None = None
    payment_payer: str | None = None
    payment_verified: bool | None = None
    run_id: str | None = None

    @property
    def sequence(self) -> int:
        return int(self.id.rsplit("_", 1)[-1])

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "action": self.action,
            "task": self.task,
            "cost": str(self.cost),
            "decision": self.decision.value,
            "reason": self.reason,
            "timestamp": self.timestamp,
            "payload": self.payload,
            "response": self.response,
            "payment_nonce": self.payment_nonce,
            "payment_payer": self.payment_payer,
            "payment_verified": self.payment_verified,
            "run_id": self.run_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditLogEntry:
        return cls(
            id=data["id"],
            provider=data.get("provider", ""),
            action=data.get("action", ""),
            task=data.get("task", ""),
            cost=to_decimal(data.get("cost", "0")),
            decision=Decision(data["decision"]),
            reason=data.get("reason", ""),
            timestamp=data.get("timestamp", ""),
            payload=data.get("payload"),
            response=data.get("response"),
            payment_nonce=data.get("payment_nonce"),
            payment_payer=data.get("payment_payer"),
            payment_verified=data.get("payment_verified"),
            run_id=data.get("run_id"),
        )


@dataclass(frozen=True)
class LogStats:
    """Decision counts over the retained audit window."""

    total: int = 0
    approved: int = 0
    denied: int = 0
    payment_required: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "approved": self.approved,
            "denied": self.denied,
            "paymentRequired": self.payment_required,
        }
