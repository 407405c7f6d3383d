"""HMAC-SHA256 signatures for gateway webhooks."""

from __future__ import annotations

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-ClickPesa-Signature"
_PREFIX = "sha256="


def compute_signature(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    """
    Verify a webhook signature.

    Accepts a bare hex digest or one prefixed with ``sha256=``. An empty
    secret or a missing signature always fails verification.

    Args:
        payload: Raw request body
        signature: Signature from request header
        secret: Shared secret for HMAC

    Returns:
        True if signature is valid
    """
    if not secret:
        logger.warning("Webhook secret not configured, rejecting request")
        return False
    if not signature:
        return False

    if signature.startswith(_PREFIX):
        signature = signature[len(_PREFIX):]

    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected, signature.strip().lower())
