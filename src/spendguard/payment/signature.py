"""
Signature verification for payment proofs.

The verifier only answers "is this payer credential and signature
acceptable"; nonce matching, amounts and replay protection live in
PaymentVerifier. Swap implementations without touching the orchestrator.
"""

from __future__ import annotations

import base64
import binascii
from abc import ABC, abstractmethod
from decimal import Decimal

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from spendguard.core.types import PaymentProof, PaymentRequirement, Reason, VerifyResult

MOCK_SIGNATURE_PREFIX = "mock_signature_"
MOCK_PAYER_PREFIX = "mock_payer_"


def payment_message(nonce: str, payer: str, amount: Decimal | None) -> bytes:
    """Canonical bytes a payer signs: ``<nonce>:<payer>:<amount>``."""
    amount_str = "" if amount is None else format(amount.normalize(), "f")
    return f"{nonce}:{payer}:{amount_str}".encode("utf-8")


class SignatureVerifier(ABC):
    """Checks the payer credential and authorization signature of a proof."""

    @abstractmethod
    def verify(self, proof: PaymentProof) -> VerifyResult:
        """
        Returns:
            VerifyResult with reason invalid_signature or invalid_payer on failure
        """
        ...


class MockSignatureVerifier(SignatureVerifier):
    """
    Format-only verifier for demos and tests.

    Accepts any signature starting with ``mock_signature_`` and any payer
    starting with ``mock_payer_``. Not cryptographic.
    """

    def verify(self, proof: PaymentProof) -> VerifyResult:
        if not proof.signature or not proof.signature.startswith(MOCK_SIGNATURE_PREFIX):
            return VerifyResult(
                valid=False,
                reason=Reason.INVALID_SIGNATURE.with_detail("Malformed signature"),
            )

        if not proof.payer or not proof.payer.startswith(MOCK_PAYER_PREFIX):
            return VerifyResult(
                valid=False,
                reason=Reason.INVALID_PAYER.with_detail("Malformed payer address"),
            )

        return VerifyResult(valid=True, reason="signature_ok")


class Ed25519SignatureVerifier(SignatureVerifier):
    """
    Verifies Ed25519 signatures over ``payment_message``.

    The payer is the hex-encoded raw 32-byte public key; the signature is
    base64-encoded.
    """

    def verify(self, proof: PaymentProof) -> VerifyResult:
        try:
            signature_bytes = base64.b64decode(proof.signature, validate=True)
        except (binascii.Error, ValueError):
            signature_bytes = b""
        if len(signature_bytes) != 64:
            return VerifyResult(
                valid=False,
                reason=Reason.INVALID_SIGNATURE.with_detail("Malformed signature"),
            )

        try:
            public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(proof.payer))
        except ValueError:
            return VerifyResult(
                valid=False,
                reason=Reason.INVALID_PAYER.with_detail("Payer is not an Ed25519 public key"),
            )

        try:
            public_key.verify(
                signature_bytes,
                payment_message(proof.nonce, proof.payer, proof.amount),
            )
        except InvalidSignature:
            return VerifyResult(
                valid=False,
                reason=Reason.INVALID_SIGNATURE.with_detail("Signature mismatch"),
            )

        return VerifyResult(valid=True, reason="signature_ok")


def sign_ed25519_proof(
    requirement: PaymentRequirement,
    private_key: Ed25519PrivateKey,
    timestamp: str | None = None,
) -> PaymentProof:
    """Client-side helper: sign a requirement with an Ed25519 key."""
    from cryptography.hazmat.primitives import serialization

    payer = (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        .hex()
    )
    signature = private_key.sign(payment_message(requirement.nonce, payer, requirement.price))

    return PaymentProof(
        nonce=requirement.nonce,
        payer=payer,
        signature=base64.b64encode(signature).decode("ascii"),
        amount=requirement.price,
        asset=requirement.asset,
        network=requirement.network,
        timestamp=timestamp,
    )
