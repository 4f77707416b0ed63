"""
Webhook Security Module

Signature verification for inbound webhook deliveries:
- Constant-time signature comparison
- Optional timestamp window when the sender supplies one
- Verification always runs on the raw request body, before any parsing
"""

import base64
import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import Request

from .config import HAPIO_SECRET, HAPIO_WEBHOOK_MAX_AGE_SECONDS
from .errors import SignatureInvalid

logger = logging.getLogger(__name__)

HAPIO_SIGNATURE_HEADER = "x-hapio-signature"
HAPIO_TIMESTAMP_HEADER = "x-hapio-timestamp"


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def compute_hmac_sha256_base64(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload and return base64 encoded"""
    signature = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(signature).decode("utf-8")


def verify_timestamp(timestamp: Optional[str], max_age: int = HAPIO_WEBHOOK_MAX_AGE_SECONDS) -> bool:
    """
    Verify webhook timestamp is within acceptable range.

    Args:
        timestamp: Unix timestamp as string
        max_age: Maximum age in seconds

    Returns:
        True if timestamp is valid or absent, False otherwise
    """
    if not timestamp:
        return True  # Hapio does not always send one

    try:
        webhook_time = int(timestamp)
        age = abs(int(time.time()) - webhook_time)

        if age > max_age:
            logger.warning(f"🚫 Webhook timestamp too old: {age}s (max: {max_age}s)")
            return False

        return True
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False


def _signed_messages(raw_body: bytes, timestamp: Optional[str]) -> list[bytes]:
    messages = [raw_body]
    if timestamp:
        ts = timestamp.encode("utf-8")
        messages.append(ts + b"." + raw_body)
        messages.append(ts + raw_body)
        messages.append(raw_body + ts)
    return messages


def signature_matches(secret: str, raw_body: bytes, signature: str, timestamp: Optional[str] = None) -> bool:
    """
    Check ``signature`` against every encoding Hapio has been observed to use.

    Accepted: hex (any case) or base64 digest, with or without a ``sha256=``
    prefix, over the body alone or over the body joined with the timestamp
    (``ts.body``, ``ts+body`` or ``body+ts``).
    """
    if not secret or not signature:
        return False

    received = signature.strip()
    if received.lower().startswith("sha256="):
        received = received[len("sha256="):]

    matched = False
    for message in _signed_messages(raw_body, timestamp):
        expected_hex = compute_hmac_sha256(secret, message)
        expected_b64 = compute_hmac_sha256_base64(secret, message)
        # No early exit so every candidate costs the same
        if constant_time_compare(expected_hex, received.lower()):
            matched = True
        if constant_time_compare(expected_b64, received):
            matched = True
    return matched


async def verify_hapio_webhook(request: Request, secret: Optional[str] = None) -> bytes:
    """
    Verify a Hapio webhook delivery and return the raw body.

    Raises SignatureInvalid when the secret is not configured, the signature
    header is missing, the timestamp is outside the window or no candidate
    signature matches. Nothing may be mutated before this returns.
    """
    secret = secret if secret is not None else HAPIO_SECRET
    raw_body = await request.body()
    signature_header = request.headers.get(HAPIO_SIGNATURE_HEADER, "")
    timestamp = request.headers.get(HAPIO_TIMESTAMP_HEADER)

    logger.debug("📥 Hapio webhook received")

    if not secret:
        logger.error("❌ HAPIO_SECRET is not configured; rejecting webhook")
        raise SignatureInvalid("Webhook secret not configured")

    if not signature_header:
        logger.warning("🚫 Hapio webhook missing signature header")
        raise SignatureInvalid("Missing webhook signature")

    if not verify_timestamp(timestamp):
        raise SignatureInvalid("Webhook timestamp expired")

    if not signature_matches(secret, raw_body, signature_header, timestamp):
        logger.error(
            f"🚫 Hapio webhook signature mismatch "
            f"(received length={len(signature_header.strip())}, body length={len(raw_body)})"
        )
        raise SignatureInvalid("Invalid webhook signature")

    logger.debug("✅ Hapio webhook signature verified")
    return raw_body


def create_webhook_signature(secret: str, payload: bytes, provider: str = "generic") -> str:
    """
    Create a webhook signature for testing or outgoing webhooks.

    Args:
        secret: Signing secret
        payload: Request body bytes
        provider: Provider format ('generic', 'hapio', 'hapio_base64')

    Returns:
        Signature string in provider's format
    """
    if provider == "hapio":
        return f"sha256={compute_hmac_sha256(secret, payload)}"
    elif provider == "hapio_base64":
        return compute_hmac_sha256_base64(secret, payload)
    else:
        return compute_hmac_sha256(secret, payload)
