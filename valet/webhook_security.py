"""
Webhook Security Module

Signature verification for the scheduling (Calendly) and payment (Stripe)
webhooks. Verification always runs over the raw request body, before any
JSON parsing, and fails closed:
- Constant-time signature comparison
- Timestamp validation (replay window of 5 minutes)
- Missing secret is a server misconfiguration, never a pass
"""

import base64
import hashlib
import hmac
import logging
import time
from enum import Enum
from typing import Optional

from fastapi import Request

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300

CALENDLY_SIGNATURE_HEADER = "Calendly-Webhook-Signature"
STRIPE_SIGNATURE_HEADER = "Stripe-Signature"


class SignatureFailure(str, Enum):
    MISSING_SIGNATURE = "missing_signature"
    BAD_FORMAT = "bad_format"
    STALE_TIMESTAMP = "stale_signature_timestamp"
    MISMATCH = "mismatch"
    MISCONFIGURED_SECRET = "misconfigured_secret"


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails"""

    def __init__(self, reason: SignatureFailure):
        self.reason = reason
        super().__init__(reason.value)

    @property
    def status_code(self) -> int:
        # A missing secret is our fault; everything else is the sender's
        if self.reason == SignatureFailure.MISCONFIGURED_SECRET:
            return 500
        return 401


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload (lowercase hex)"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def compute_hmac_sha256_base64(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload and return base64 encoded"""
    signature = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(signature).decode("utf-8")


def parse_timestamped_signature_header(header: str) -> tuple[Optional[str], Optional[str]]:
    """
    Split a ``t=<unix>,v1=<hex>`` header into (timestamp, signature).

    Unknown parts are ignored; a part without ``=`` makes the header malformed.
    """
    elements = {}
    for part in header.split(","):
        part = part.strip()
        if not part:
            continue
        if "=" not in part:
            raise WebhookSignatureError(SignatureFailure.BAD_FORMAT)
        key, value = part.split("=", 1)
        elements[key.strip()] = value.strip()
    return elements.get("t"), elements.get("v1")


def verify_timestamp(
    timestamp: Optional[str],
    max_age: int = MAX_WEBHOOK_AGE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """
    Verify webhook timestamp is within acceptable range.
    Prevents replay attacks by rejecting old (or far-future) webhooks.

    Args:
        timestamp: Unix timestamp as string
        max_age: Maximum skew in seconds
        now: Current unix time (defaults to time.time())

    Returns:
        True if timestamp is valid, False otherwise
    """
    if not timestamp:
        return False

    try:
        webhook_time = int(timestamp)
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False

    if webhook_time <= 0:
        logger.warning(f"🚫 Non-positive webhook timestamp: {timestamp}")
        return False

    current_time = int(now if now is not None else time.time())
    age = abs(current_time - webhook_time)
    if age > max_age:
        logger.warning(f"🚫 Webhook timestamp outside window: {age}s (max: {max_age}s)")
        return False

    return True


def verify_timestamped_signature(
    raw_body: bytes,
    header: Optional[str],
    secret: Optional[str],
    now: Optional[float] = None,
) -> None:
    """
    Verify a ``t=<unix>,v1=<hex>`` signature over ``"{t}.{raw_body}"``.

    Raises:
        WebhookSignatureError: with the first failing reason
    """
    if not secret:
        logger.error("❌ Webhook signing secret is not configured")
        raise WebhookSignatureError(SignatureFailure.MISCONFIGURED_SECRET)

    if not header:
        raise WebhookSignatureError(SignatureFailure.MISSING_SIGNATURE)

    timestamp, signature = parse_timestamped_signature_header(header)
    if not timestamp or not signature:
        raise WebhookSignatureError(SignatureFailure.BAD_FORMAT)

    try:
        if int(timestamp) <= 0:
            raise WebhookSignatureError(SignatureFailure.BAD_FORMAT)
    except ValueError:
        raise WebhookSignatureError(SignatureFailure.BAD_FORMAT) from None

    if not verify_timestamp(timestamp, now=now):
        raise WebhookSignatureError(SignatureFailure.STALE_TIMESTAMP)

    signed_payload = f"{timestamp}.".encode("utf-8") + raw_body
    expected_signature = compute_hmac_sha256(secret, signed_payload)

    if not constant_time_compare(expected_signature, signature.lower()):
        raise WebhookSignatureError(SignatureFailure.MISMATCH)


def verify_body_signature(raw_body: bytes, header: Optional[str], secret: Optional[str]) -> None:
    """
    Verify a base64 HMAC-SHA256 signature computed over the raw body.

    Raises:
        WebhookSignatureError: with the first failing reason
    """
    if not secret:
        logger.error("❌ Webhook signing secret is not configured")
        raise WebhookSignatureError(SignatureFailure.MISCONFIGURED_SECRET)

    if not header:
        raise WebhookSignatureError(SignatureFailure.MISSING_SIGNATURE)

    expected_signature = compute_hmac_sha256_base64(secret, raw_body)
    if not constant_time_compare(expected_signature, header.strip()):
        raise WebhookSignatureError(SignatureFailure.MISMATCH)


async def verify_calendly_webhook(
    request: Request, secret: Optional[str], now: Optional[float] = None
) -> bytes:
    """
    Verify Calendly webhook signature.

    Calendly uses:
    - Header: 'Calendly-Webhook-Signature' (format: "t=<unix>,v1=<hex_digest>")
    - Signed message: "<t>.<raw body>"

    Returns:
        The raw body, for parsing once verified
    """
    raw_body = await request.body()
    signature_header = request.headers.get(CALENDLY_SIGNATURE_HEADER, "")

    logger.debug("📥 Calendly webhook received")

    try:
        verify_timestamped_signature(raw_body, signature_header, secret, now=now)
    except WebhookSignatureError as e:
        logger.warning(f"🚫 Calendly webhook rejected: {e.reason.value}")
        raise

    logger.debug("✅ Calendly webhook signature verified")
    return raw_body


async def verify_stripe_webhook(request: Request, secret: Optional[str]) -> bytes:
    """
    Verify Stripe webhook signature.

    - Header: 'Stripe-Signature' (base64 HMAC-SHA256 of the raw body)

    Returns:
        The raw body, for parsing once verified
    """
    raw_body = await request.body()
    signature_header = request.headers.get(STRIPE_SIGNATURE_HEADER, "")

    logger.debug("📥 Stripe webhook received")

    try:
        verify_body_signature(raw_body, signature_header, secret)
    except WebhookSignatureError as e:
        logger.warning(f"🚫 Stripe webhook rejected: {e.reason.value}")
        raise

    logger.debug("✅ Stripe webhook signature verified")
    return raw_body


def create_webhook_signature(
    secret: str,
    payload: bytes,
    provider: str = "calendly",
    timestamp: Optional[int] = None,
) -> str:
    """
    Create a webhook signature for testing or local tooling.

    Args:
        secret: Signing secret
        payload: Request body bytes
        provider: Provider format ('calendly' or 'stripe')
        timestamp: Unix time to sign with (calendly only, defaults to now)

    Returns:
        Signature header value in provider's format
    """
    if provider == "stripe":
        return compute_hmac_sha256_base64(secret, payload)

    if timestamp is None:
        timestamp = int(time.time())
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return f"t={timestamp},v1={compute_hmac_sha256(secret, signed_payload)}"
