"""Webhook and payment signature verification (constant-time HMAC-SHA256).

Every check runs over the exact bytes the provider signed, so callers must pass
the raw request body, captured before any JSON parsing. A provider whose secret
is not configured raises WebhookSecretNotConfigured instead of accepting.
"""

import base64
import hashlib
import hmac
from typing import Callable

from orderflow.core.config import Settings, get_settings
from orderflow.core.exceptions import WebhookSecretNotConfigured
from orderflow.core.logging import get_logger

log = get_logger(__name__)

SHOPIFY = "shopify"
QIKINK = "qikink"
RAZORPAY = "razorpay"
PRINT = "print"

# provider -> signature header (lowercase)
SIGNATURE_HEADERS = {
    SHOPIFY: "x-shopify-hmac-sha256",
    QIKINK: "x-qikink-signature",
    RAZORPAY: "x-razorpay-signature",
    PRINT: "x-print-signature",
}


def _digest(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def _matches(expected: str, signature: str | None) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))


def verify_shopify_webhook(payload: bytes, signature: str | None, secret: str) -> bool:
    """X-Shopify-Hmac-Sha256: base64 HMAC-SHA256 of the raw body."""
    expected = base64.b64encode(_digest(secret, payload)).decode("ascii")
    return _matches(expected, signature)


def verify_qikink_webhook(payload: bytes, signature: str | None, secret: str) -> bool:
    """X-Qikink-Signature: hex HMAC-SHA256 of the raw body."""
    return _matches(_digest(secret, payload).hex(), signature)


def verify_razorpay_webhook(payload: bytes, signature: str | None, secret: str) -> bool:
    """X-Razorpay-Signature: hex HMAC-SHA256 of the raw body."""
    return _matches(_digest(secret, payload).hex(), signature)


def razorpay_payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    return _digest(secret, f"{order_id}|{payment_id}".encode("utf-8")).hex()


def verify_razorpay_payment(order_id: str, payment_id: str, signature: str | None, secret: str) -> bool:
    """Checkout handler signature: hex HMAC-SHA256 of "order_id|payment_id"."""
    if not secret:
        raise WebhookSecretNotConfigured(RAZORPAY)
    return _matches(razorpay_payment_signature(order_id, payment_id, secret), signature)


_VERIFIERS: dict[str, tuple[Callable[[bytes, str | None, str], bool], Callable[[Settings], str]]] = {
    SHOPIFY: (verify_shopify_webhook, lambda s: s.shopify_webhook_secret),
    QIKINK: (verify_qikink_webhook, lambda s: s.qikink_signing_secret),
    RAZORPAY: (verify_razorpay_webhook, lambda s: s.razorpay_webhook_secret),
    PRINT: (verify_qikink_webhook, lambda s: s.print_webhook_secret),
}


def verify_webhook(
    provider: str,
    raw_body: bytes,
    signature: str | None,
    settings: Settings | None = None,
) -> bool:
    """Verify one delivery for the given provider. Raises if the provider has no secret."""
    if provider not in _VERIFIERS:
        log.warning("unknown_webhook_provider", provider=provider)
        return False
    verifier, secret_for = _VERIFIERS[provider]
    secret = secret_for(settings or get_settings())
    if not secret:
        log.error("webhook_secret_missing", provider=provider)
        raise WebhookSecretNotConfigured(provider)
    valid = verifier(raw_body, signature, secret)
    if not valid:
        log.warning("signature_rejected", provider=provider, has_signature=bool(signature))
    return valid
