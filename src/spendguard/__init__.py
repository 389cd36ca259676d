"""
SpendGuard - Policy, budget and payment guard for pay-per-call agent actions.

Decide -> pay -> run: an unpaid request is answered with x402 payment
terms, a request carrying a valid single-use payment proof is executed
exactly once, and every decision lands in the audit trail.

Usage:
    >>> from spendguard import SpendGuard, create_mock_payment
    >>>
    >>> guard = SpendGuard()
    >>> payload = {"to": "user@example.com", "subject": "Welcome"}
    >>> decision = await guard.execute("email", "send", "welcome_flow", payload)
    >>> _, header = create_mock_payment(decision.payment_requirement)
    >>> decision = await guard.execute("email", "send", "welcome_flow", payload, payment_proof=header)
    >>> decision.approved
    True
"""

from spendguard.audit import AuditRecorder
from spendguard.client import SpendGuard
from spendguard.core.config import Config
from spendguard.core.exceptions import (
    ConfigurationError,
    PaymentProofError,
    ProviderError,
    SpendGuardError,
    StorageError,
    UnexpectedProviderResponse,
    ValidationError,
)
from spendguard.core.logging import configure_logging, get_logger
from spendguard.core.types import (
    AuditLogEntry,
    BudgetState,
    BudgetStatus,
    Decision,
    GuardDecision,
    GuardRequest,
    LogStats,
    PaymentProof,
    PaymentRequirement,
    PolicyConfig,
    ProviderResult,
    Reason,
    VerifyResult,
)
from spendguard.guards import (
    BudgetLedger,
    BudgetStore,
    Guard,
    GuardContext,
    GuardResult,
    PolicyEngine,
    PolicyStore,
)
from spendguard.orchestrator import GuardOrchestrator, GuardState
from spendguard.payment import (
    PAYMENT_PROOF_HEADER,
    Ed25519SignatureVerifier,
    MockSignatureVerifier,
    NonceStore,
    PaymentVerifier,
    PendingPaymentStore,
    SignatureVerifier,
    create_mock_payment,
    encode_payment_proof_header,
    generate_nonce,
    parse_payment_proof_header,
    sign_ed25519_proof,
    sign_payment_proof,
)
from spendguard.providers import (
    HttpProviderGateway,
    MockEmailProvider,
    ProviderGateway,
    ProviderInfo,
)
from spendguard.storage import (
    InMemoryStorage,
    RedisStorage,
    StorageBackend,
    get_storage,
    storage_from_config,
)

__version__ = "0.1.0"

__all__ = [
    # Main client
    "SpendGuard",
    "GuardOrchestrator",
    "GuardState",
    # Config
    "Config",
    "configure_logging",
    "get_logger",
    # Exceptions
    "SpendGuardError",
    "ConfigurationError",
    "ValidationError",
    "StorageError",
    "ProviderError",
    "UnexpectedProviderResponse",
    "PaymentProofError",
    # Types
    "Decision",
    "Reason",
    "PolicyConfig",
    "BudgetState",
    "BudgetStatus",
    "PaymentRequirement",
    "PaymentProof",
    "ProviderResult",
    "GuardRequest",
    "GuardDecision",
    "VerifyResult",
    "AuditLogEntry",
    "LogStats",
    # Guards
    "Guard",
    "GuardContext",
    "GuardResult",
    "PolicyEngine",
    "PolicyStore",
    "BudgetLedger",
    "BudgetStore",
    # Payment
    "PAYMENT_PROOF_HEADER",
    "PaymentVerifier",
    "NonceStore",
    "PendingPaymentStore",
    "SignatureVerifier",
    "MockSignatureVerifier",
    "Ed25519SignatureVerifier",
    "create_mock_payment",
    "encode_payment_proof_header",
    "generate_nonce",
    "parse_payment_proof_header",
    "sign_ed25519_proof",
    "sign_payment_proof",
    # Providers
    "ProviderGateway",
    "ProviderInfo",
    "MockEmailProvider",
    "HttpProviderGateway",
    # Storage
    "StorageBackend",
    "InMemoryStorage",
    "RedisStorage",
    "get_storage",
    "storage_from_config",
    # Audit
    "AuditRecorder",
]
