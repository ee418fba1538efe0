"""Signature verification for inbound payment-provider webhooks.

Stripe signs ``"{timestamp}.{raw body}"`` with HMAC-SHA256 under the
endpoint secret and sends ``t=<timestamp>,v1=<hex digest>`` in the
signature header. The digest only matches the exact bytes that were sent,
so verification must run on the raw body, before anything parses it.
"""
import logging
from typing import Optional

import stripe
from pydantic import ValidationError

from storefront.config import WEBHOOK_TOLERANCE_SECONDS
from storefront.schemas import PaymentEvent

logger = logging.getLogger(__name__)


class VerificationError(Exception):
    """The webhook could not be trusted or understood."""


def verify(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    tolerance: int = WEBHOOK_TOLERANCE_SECONDS,
) -> PaymentEvent:
    if not secret:
        raise VerificationError("Webhook secret is not configured")
    if not signature_header:
        raise VerificationError("Missing signature header")

    try:
        payload = raw_body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise VerificationError("Payload is not valid UTF-8") from exc

    try:
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance)
    except stripe.SignatureVerificationError as exc:
        raise VerificationError(f"Invalid signature: {exc}") from exc

    try:
        event = PaymentEvent.model_validate_json(raw_body)
        # Surface a malformed intent here rather than in the reconciler
        event.payment_intent()
    except ValidationError as exc:
        raise VerificationError("Invalid payload") from exc

    logger.debug("Verified webhook event %s (%s)", event.id, event.type)
    return event
