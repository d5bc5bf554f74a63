"""Tests for webhook signature verification."""

from voice_crm.services.signature import compute_signature, verify_signature

SECRET = "whsec_test"
BODY = b'{"message": {"type": "call-ended", "call": {"id": "call-1"}}}'


class TestVerifySignature:
    """HMAC-SHA256 verification over the raw body."""

    def test_valid_signature_accepted(self) -> None:
        assert verify_signature(BODY, compute_signature(BODY, SECRET), SECRET) is True

    def test_sha256_prefix_accepted(self) -> None:
        assert verify_signature(BODY, "sha256=" + compute_signature(BODY, SECRET), SECRET) is True

    def test_tampered_body_rejected(self) -> None:
        signature = compute_signature(BODY, SECRET)
        tampered = BODY.replace(b"call-1", b"call-2")
        assert verify_signature(tampered, signature, SECRET) is False

    def test_missing_signature_rejected_when_secret_set(self) -> None:
        assert verify_signature(BODY, None, SECRET) is False

    def test_no_secret_accepts_anything(self) -> None:
        assert verify_signature(BODY, None, None) is True
        assert verify_signature(BODY, "garbage", "") is True
