"""
Webhook signature validation - verify incoming webhooks are authentic.

Supported schemes (keyed by the platform in the webhook route):
- instagram, facebook: HMAC-SHA1 hex, "sha1=<hex>"
- tiktok, hubspot:     HMAC-SHA256 hex, "sha256=<hex>"
- salesforce:          HMAC-SHA256 digest, base64, no prefix
- pipedrive:           HMAC-SHA1 hex, no prefix
- anything else:       HMAC-SHA256 hex, "sha256=<hex>"
"""
import base64
import hashlib
import hmac
import logging
from typing import Callable, Mapping, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Checked in order; the first header present carries the claimed signature
SIGNATURE_HEADERS = ("X-Hub-Signature", "X-Signature", "X-Shopify-Hmac-Sha256")


def _hex_with_prefix(prefix: str, digestmod) -> Callable[[bytes, bytes], str]:
    def sign(key: bytes, body: bytes) -> str:
        return prefix + hmac.new(key, body, digestmod).hexdigest()
    return sign


def _base64_sha256(key: bytes, body: bytes) -> str:
    return base64.b64encode(hmac.new(key, body, hashlib.sha256).digest()).decode("ascii")


_DEFAULT_SCHEME = _hex_with_prefix("sha256=", hashlib.sha256)

SIGNATURE_SCHEMES: dict[str, Callable[[bytes, bytes], str]] = {
    "instagram": _hex_with_prefix("sha1=", hashlib.sha1),
    "facebook": _hex_with_prefix("sha1=", hashlib.sha1),
    "tiktok": _hex_with_prefix("sha256=", hashlib.sha256),
    "hubspot": _hex_with_prefix("sha256=", hashlib.sha256),
    "salesforce": _base64_sha256,
    "pipedrive": _hex_with_prefix("", hashlib.sha1),
}


class SignatureCheck(BaseModel):
    """Outcome of a verification attempt. `reason` is safe to log."""
    valid: bool
    reason: str


def _to_bytes(value) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def compute_signature(platform: str, secret: str, body: bytes) -> str:
    """Expected signature for `body` under the platform's scheme."""
    scheme = SIGNATURE_SCHEMES.get((platform or "").lower(), _DEFAULT_SCHEME)
    return scheme(_to_bytes(secret), _to_bytes(body))


def secure_compare(a: Optional[str], b: Optional[str]) -> bool:
    """Constant-time string comparison. Unequal lengths reject immediately."""
    if a is None or b is None:
        return False
    a_bytes, b_bytes = _to_bytes(a), _to_bytes(b)
    if len(a_bytes) != len(b_bytes):
        return False
    return hmac.compare_digest(a_bytes, b_bytes)


def extract_signature(headers: Mapping[str, str]) -> Optional[str]:
    """Return the claimed signature from the first signature header present."""
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def verify_signature(
    platform: str,
    body: bytes,
    signature: Optional[str],
    secret: Optional[str],
) -> SignatureCheck:
    """
    Verify a webhook body against the integration's shared secret.
    Fails closed when either the secret or the signature is missing.
    """
    if not secret:
        return SignatureCheck(valid=False, reason="integration has no webhook secret")
    if not signature:
        return SignatureCheck(valid=False, reason="missing signature header")

    expected = compute_signature(platform, secret, body)
    if not secure_compare(signature, expected):
        return SignatureCheck(valid=False, reason="signature mismatch")
    return SignatureCheck(valid=True, reason="ok")


def verification_bypassed() -> bool:
    """
    Unsigned webhooks are accepted only when ALLOW_UNSIGNED_WEBHOOKS is set
    outside production. The flag is ignored in production.
    """
    from leadhooks.config import get_settings
    settings = get_settings()
    if not settings.allow_unsigned_webhooks:
        return False
    if settings.app_env == "production":
        logger.error(
            "ALLOW_UNSIGNED_WEBHOOKS is set in production - ignoring it, "
            "signatures are still enforced"
        )
        return False
    return True


def compute_payload_hash(body: bytes) -> str:
    """SHA-256 of the raw payload, used in audit log lines."""
    return hashlib.sha256(body).hexdigest()
