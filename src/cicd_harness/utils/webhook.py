"""
GitHub-style webhook signatures (HMAC-SHA256, hex, ``sha256=`` prefix).
"""
import hashlib
import hmac

from ..exceptions import WebhookSignatureError

SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, payload: bytes) -> str:
    """Return the header value GitHub would send for ``payload``."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: str, payload: bytes, signature: str) -> None:
    """
    Check a signature header against the raw payload.

    Raises:
        WebhookSignatureError: If the header does not match exactly
    """
    expected = compute_signature(secret, payload)
    if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
        raise WebhookSignatureError(
            "Invalid signature",
            context={"header": SIGNATURE_HEADER}
        )
