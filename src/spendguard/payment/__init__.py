"""
Payment module - x402 payment proofs, verification and replay prevention.
"""

from spendguard.payment.nonces import NonceStore
from spendguard.payment.pending import PendingPaymentStore
from spendguard.payment.proof import (
    PAYMENT_PROOF_HEADER,
    create_mock_payment,
    encode_payment_proof_header,
    generate_nonce,
    parse_payment_proof_header,
    sign_payment_proof,
)
from spendguard.payment.signature import (
    Ed25519SignatureVerifier,
    MockSignatureVerifier,
    SignatureVerifier,
    payment_message,
    sign_ed25519_proof,
)
from spendguard.payment.verifier import PaymentVerifier

__all__ = [
    "PAYMENT_PROOF_HEADER",
    "NonceStore",
    "PendingPaymentStore",
    "PaymentVerifier",
    "SignatureVerifier",
    "MockSignatureVerifier",
    "Ed25519SignatureVerifier",
    "create_mock_payment",
    "encode_payment_proof_header",
    "generate_nonce",
    "parse_payment_proof_header",
    "payment_message",
    "sign_ed25519_proof",
    "sign_payment_proof",
]
