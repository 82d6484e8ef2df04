"""GitHub webhook signature verification.

GitHub signs the raw request body with HMAC-SHA256 using the webhook
secret and sends it as ``X-Hub-Signature-256: sha256=<hex>``.
"""

import hashlib
import hmac
from typing import Optional

SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Verify a GitHub webhook signature in constant time.

    Args:
        body: Raw request body bytes.
        signature: X-Hub-Signature-256 header value.
        secret: Webhook secret configured on the GitHub App.

    Returns:
        True only for a present, well-formed and matching signature.
    """
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(signature, compute_signature(body, secret))
