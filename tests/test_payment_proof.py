"""Tests for the payment proof header codec and client helpers."""

import base64
import json
import re
from decimal import Decimal

import pytest

from spendguard.core.exceptions import PaymentProofError
from spendguard.core.types import PaymentRequirement
from spendguard.payment.proof import (
    PAYMENT_PROOF_HEADER,
    create_mock_payment,
    encode_payment_proof_header,
    generate_nonce,
    parse_payment_proof_header,
    sign_payment_proof,
)


def b64json(value) -> str:
    return base64.b64encode(json.dumps(value).encode()).decode()


@pytest.fixture
def requirement() -> PaymentRequirement:
    return PaymentRequirement(
        price=Decimal("0.001"),
        asset="USDC",
        network="base-sepolia",
        nonce=generate_nonce(),
        pay_to="0xMockWalletAddress",
        callback_url="/api/provider/email/send",
    )


class TestNonce:
    def test_format(self):
        assert re.fullmatch(r"nonce_\d+_[0-9a-f]{12}", generate_nonce())

    def test_unique(self):
        assert len({generate_nonce() for _ in range(200)}) == 200


class TestSignPaymentProof:
    def test_mock_proof_matches_requirement(self, requirement):
        proof = sign_payment_proof(requirement)

        assert proof.nonce == requirement.nonce
        assert proof.amount == Decimal("0.001")
        assert proof.asset == "USDC"
        assert proof.network == "base-sepolia"
        assert proof.payer.startswith("mock_payer_")
        assert proof.signature.startswith("mock_signature_")
        assert proof.timestamp is not None

    def test_explicit_payer(self, requirement):
        proof = sign_payment_proof(requirement, payer="mock_payer_agent7")
        assert proof.payer == "mock_payer_agent7"

    def test_create_mock_payment_header_decodes_to_proof(self, requirement):
        proof, header = create_mock_payment(requirement)

        assert parse_payment_proof_header(header) == proof


class TestParsePaymentProofHeader:
    def test_header_name(self):
        assert PAYMENT_PROOF_HEADER == "X-PAYMENT-PROOF"

    def test_wire_format_is_base64_json(self, requirement):
        proof = sign_payment_proof(requirement)
        decoded = json.loads(base64.b64decode(encode_payment_proof_header(proof)))

        assert decoded["nonce"] == requirement.nonce
        assert decoded["amount"] == 0.001

    def test_minimal_proof(self):
        proof = parse_payment_proof_header(
            b64json({"nonce": "n1", "payer": "mock_payer_1", "signature": "mock_signature_1"})
        )

        assert proof.nonce == "n1"
        assert proof.amount is None

    def test_not_base64(self):
        with pytest.raises(PaymentProofError, match="Could not parse payment proof"):
            parse_payment_proof_header("not base64!!")

    def test_not_json(self):
        header = base64.b64encode(b"nonce=n1").decode()
        with pytest.raises(PaymentProofError, match="Could not parse payment proof"):
            parse_payment_proof_header(header)

    def test_not_utf8(self):
        header = base64.b64encode(b"\xff\xfe\xfd").decode()
        with pytest.raises(PaymentProofError):
            parse_payment_proof_header(header)

    def test_not_an_object(self):
        with pytest.raises(PaymentProofError, match="must be a JSON object"):
            parse_payment_proof_header(b64json(["n1", "payer", "sig"]))

    def test_missing_fields(self):
        with pytest.raises(PaymentProofError, match="missing fields: payer, signature") as exc_info:
            parse_payment_proof_header(b64json({"nonce": "n1"}))

        assert exc_info.value.details == {"missing": ["payer", "signature"]}

    def test_bad_amount(self):
        with pytest.raises(PaymentProofError, match="Invalid payment proof"):
            parse_payment_proof_header(
                b64json({"nonce": "n1", "payer": "p", "signature": "s", "amount": "lots"})
            )
