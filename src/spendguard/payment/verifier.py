"""
PaymentVerifier - checks a payment proof against the quoted terms.

Checks run in order, each a hard failure:

1. The proof's nonce matches the quoted nonce
2. Payer credential and signature pass the SignatureVerifier
3. A stated amount covers the quoted price
4. The nonce is claimed atomically; an existing claim is a replay

The claim runs last so a malformed proof never burns a nonce.
"""

from __future__ import annotations

from decimal import Decimal

from spendguard.core.logging import get_logger
from spendguard.core.types import AmountType, PaymentProof, Reason, VerifyResult, to_decimal
from spendguard.payment.nonces import NonceStore
from spendguard.payment.signature import MockSignatureVerifier, SignatureVerifier

logger = get_logger("payment.verifier")


class PaymentVerifier:
    """Verifies proofs and enforces single use of each nonce."""

    def __init__(
        self,
        nonces: NonceStore,
        signature_verifier: SignatureVerifier | None = None,
    ) -> None:
        self._nonces = nonces
        self._signature_verifier = signature_verifier or MockSignatureVerifier()

    @property
    def nonces(self) -> NonceStore:
        return self._nonces

    async def verify(
        self,
        proof: PaymentProof,
        expected_nonce: str,
        expected_amount: AmountType,
    ) -> VerifyResult:
        """
        Verify a proof and, if valid, consume its nonce.

        Args:
            proof: Decoded client proof
            expected_nonce: Nonce of the pending requirement
            expected_amount: Quoted price

        Returns:
            VerifyResult; on success ``details`` holds nonce, payer and amount
        """
        expected_amount = to_decimal(expected_amount)

        if proof.nonce != expected_nonce:
            return VerifyResult(
                valid=False,
                reason=Reason.INVALID_NONCE.with_detail("Nonce mismatch"),
                details={"nonce": proof.nonce},
            )

        signature_result = self._signature_verifier.verify(proof)
        if not signature_result.valid:
            return VerifyResult(
                valid=False,
                reason=signature_result.reason,
                details={"nonce": proof.nonce, "payer": proof.payer},
            )

        if proof.amount is not None and proof.amount < expected_amount:
            return VerifyResult(
                valid=False,
                reason=Reason.INSUFFICIENT_AMOUNT.with_detail(
                    f"Paid {proof.amount}, expected {expected_amount}"
                ),
                details={"amount": str(proof.amount)},
            )

        amount: Decimal = proof.amount if proof.amount is not None else expected_amount
        claimed = await self._nonces.claim(
            proof.nonce,
            details={"payer": proof.payer, "amount": str(amount)},
        )
        if not claimed:
            logger.warning(f"Replay attempt for nonce {proof.nonce} by {proof.payer}")
            return VerifyResult(
                valid=False,
                reason=Reason.REPLAY_ATTACK.with_detail("Nonce already used"),
                details={"nonce": proof.nonce},
            )

        return VerifyResult(
            valid=True,
            reason=Reason.PAYMENT_VERIFIED.value,
            details={"nonce": proof.nonce, "payer": proof.payer, "amount": amount},
        )
