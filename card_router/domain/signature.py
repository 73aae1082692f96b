"""Webhook signature verification via the Stripe SDK (issuer header format)"""

import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional

import stripe

from card_router.domain.exceptions import InvalidSignature


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    """HMAC-SHA256 over b"<timestamp>." + the exact raw payload bytes"""
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def generate_header(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a signature header value ("t=...,v1=...") the SDK will accept"""
    if timestamp is None:
        timestamp = int(time.time())
    signature = compute_signature(payload, secret, timestamp)
    return f"t={timestamp},{stripe.WebhookSignature.EXPECTED_SCHEME}={signature}"


class SignatureVerifier:
    """Authenticates inbound webhook payloads against a shared secret"""

    def __init__(self, secret: str, tolerance_seconds: int = 300):
        if not secret:
            raise ValueError("Webhook secret must not be empty")
        self.secret = secret
        self.tolerance_seconds = tolerance_seconds

    def verify(self, payload: bytes, sig_header: Optional[str]) -> str:
        """
        Check the signature over the raw bytes and return them decoded.

        Raises:
            InvalidSignature: on a missing/malformed header, a stale timestamp,
                a body that is not UTF-8, or when no signature matches
        """
        if not sig_header:
            raise InvalidSignature("Missing signature header")

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidSignature("Signed payload is not UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                text, sig_header, self.secret, tolerance=self.tolerance_seconds or None
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(str(e)) from e
        return text

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """Verify the payload and return it parsed as a JSON object"""
        text = self.verify(payload, sig_header)

        try:
            event = json.loads(text)
        except ValueError as e:
            raise InvalidSignature("Signed payload is not valid JSON") from e
        if not isinstance(event, dict):
            raise InvalidSignature("Signed payload is not a JSON object")
        return event
