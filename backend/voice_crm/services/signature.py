"""Webhook signature verification (HMAC-SHA256 over the raw body)."""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Verify a webhook signature.

    Verification is skipped (and the payload accepted) when no secret is
    configured. With a secret configured, a missing or mismatched signature
    is rejected.

    Args:
        raw_body: Request body exactly as received
        signature: Hex digest from the signature header, optionally "sha256=" prefixed
        secret: Shared signing secret

    Returns:
        True if the payload may be trusted
    """
    if not secret:
        logger.debug("Webhook secret not configured, skipping signature verification")
        return True

    if not signature:
        logger.warning("⚠️ Webhook rejected: missing signature header")
        return False

    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]

    expected = compute_signature(raw_body, secret)
    if not hmac.compare_digest(expected, provided.lower()):
        logger.warning("⚠️ Webhook rejected: signature mismatch")
        return False
    return True
