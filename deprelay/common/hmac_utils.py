"""HMAC utilities for notification signature validation."""

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_hmac_sha256(data: bytes, secret: str) -> str:
    """Compute HMAC-SHA256 hex digest for given data and secret."""
    return hmac.new(secret.encode("utf-8"), data, hashlib.sha256).hexdigest()


def sign_payload(data: bytes, secret: str) -> str:
    """Build the X-Hub-Signature header value for a payload."""
    return SIGNATURE_PREFIX + compute_hmac_sha256(data, secret)


def verify_hmac_signature(data: bytes, signature_header: str, secret: str) -> bool:
    """Verify an "sha256=<hex>" signature header against the payload."""
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        logger.error("Invalid signature header format")
        return False

    expected_signature = signature_header[len(SIGNATURE_PREFIX):]
    computed_signature = compute_hmac_sha256(data, secret)

    # Constant-time comparison
    return hmac.compare_digest(computed_signature, expected_signature)
