"""
Payment proof header codec and client-side payment helpers.

A proof travels as base64-encoded JSON in a single request header
(``X-PAYMENT-PROOF``); it is never accepted in the request body.
"""

from __future__ import annotations

import base64
import binascii
import json
import secrets
import time

from spendguard.core.exceptions import PaymentProofError
from spendguard.core.types import PaymentProof, PaymentRequirement, utc_now_iso
from spendguard.payment.signature import MOCK_PAYER_PREFIX, MOCK_SIGNATURE_PREFIX

PAYMENT_PROOF_HEADER = "X-PAYMENT-PROOF"


def generate_nonce() -> str:
    """Generate a unique payment nonce: ``nonce_<ms>_<random>``."""
    return f"nonce_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


def encode_payment_proof_header(proof: PaymentProof) -> str:
    """Encode a proof as a header value."""
    return base64.b64encode(json.dumps(proof.to_dict()).encode("utf-8")).decode("ascii")


def parse_payment_proof_header(header: str) -> PaymentProof:
    """
    Decode a header value into a PaymentProof.

    Raises:
        PaymentProofError: If the header is not base64 JSON with nonce,
            payer and signature
    """
    try:
        decoded = base64.b64decode(header, validate=True)
        data = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, ValueError) as e:
        raise PaymentProofError("Could not parse payment proof") from e

    if not isinstance(data, dict):
        raise PaymentProofError("Payment proof must be a JSON object")

    missing = [name for name in ("nonce", "payer", "signature") if not data.get(name)]
    if missing:
        raise PaymentProofError(
            f"Payment proof missing fields: {', '.join(missing)}",
            details={"missing": missing},
        )

    try:
        return PaymentProof.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise PaymentProofError(f"Invalid payment proof: {e}") from e


def sign_payment_proof(
    requirement: PaymentRequirement,
    payer: str | None = None,
) -> PaymentProof:
    """
    Sign a mock payment proof for a requirement.

    Accepted by MockSignatureVerifier only; use sign_ed25519_proof for
    real signatures.
    """
    payer = payer or f"{MOCK_PAYER_PREFIX}{int(time.time() * 1000)}"
    signature = f"{MOCK_SIGNATURE_PREFIX}{requirement.nonce}_{payer}_{int(time.time() * 1000)}"

    return PaymentProof(
        nonce=requirement.nonce,
        payer=payer,
        signature=signature,
        amount=requirement.price,
        asset=requirement.asset,
        network=requirement.network,
        timestamp=utc_now_iso(),
    )


def create_mock_payment(requirement: PaymentRequirement) -> tuple[PaymentProof, str]:
    """Sign a mock proof and encode it; returns (proof, header value)."""
    proof = sign_payment_proof(requirement)
    return proof, encode_payment_proof_header(proof)
