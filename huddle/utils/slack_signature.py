"""
Slack request signature verification.

Slack signs every Events API request with an HMAC SHA-256 over
``v0:<timestamp>:<raw body>`` using the app's signing secret and sends the
result in the ``X-Slack-Signature`` header as ``v0=<hex_digest>``.
"""

import hashlib
import hmac
import time
from typing import Optional

MAX_REQUEST_AGE_SECONDS = 60 * 5


def compute_slack_signature(body: bytes, timestamp: str, signing_secret: str) -> str:
    """Return the ``v0=...`` signature Slack would send for this body."""
    basestring = b"v0:" + timestamp.encode("utf-8") + b":" + body
    mac = hmac.new(
        signing_secret.encode("utf-8"),
        msg=basestring,
        digestmod=hashlib.sha256,
    )
    return f"v0={mac.hexdigest()}"


def validate_slack_signature(
    body: bytes,
    timestamp_header: Optional[str],
    signature_header: Optional[str],
    signing_secret: str,
    now: Optional[float] = None,
) -> bool:
    """
    Validate a Slack Events API request signature.

    Args:
        body: Raw request body as bytes
        timestamp_header: Value of ``X-Slack-Request-Timestamp``
        signature_header: Value of ``X-Slack-Signature``
        signing_secret: Slack app signing secret
        now: Current unix time (defaults to ``time.time()``)

    Returns:
        True if the signature is valid and the request is fresh.

    Example:
        >>> sig = compute_slack_signature(b"{}", "1700000000", "s3cret")
        >>> validate_slack_signature(b"{}", "1700000000", sig, "s3cret", now=1700000001)
        True
    """
    if not timestamp_header or not signature_header:
        return False
    if not signature_header.startswith("v0="):
        return False

    try:
        timestamp = int(timestamp_header)
    except ValueError:
        return False

    current = time.time() if now is None else now
    # Replay protection
    if abs(current - timestamp) > MAX_REQUEST_AGE_SECONDS:
        return False

    expected = compute_slack_signature(body, timestamp_header, signing_secret)
    return hmac.compare_digest(expected, signature_header)
