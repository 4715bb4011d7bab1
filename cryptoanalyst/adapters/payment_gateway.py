"""
Payment gateway adapter.

Creates payment intents with the x402 payment processor and turns its webhook
deliveries into canonical ``WebhookEvent`` records. Webhook authenticity is an
HMAC-SHA256 over the raw request body, compared in constant time.

``SimulatedGateway`` issues local references without any network access; it is
selected when no gateway API key is configured (demo and tests).
"""

from __future__ import annotations

import hashlib
import hmac
import json
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from cryptoanalyst.adapters.abstract import CallbackUrls
from cryptoanalyst.domain.models import WebhookEvent
from cryptoanalyst.errors import GatewayError, InvalidWebhook
from cryptoanalyst.utils.logging import get_logger
from cryptoanalyst.utils.money import to_cents

log = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="


class X402PayGateway:
    """HTTP client for the x402 payment processor."""

    name: str = "x402"

    def __init__(self, client: httpx.AsyncClient, api_key: str, endpoint: str) -> None:
        self._client = client
        self._api_key = api_key
        self._endpoint = endpoint.rstrip("/")

    async def create_intent(
        self,
        payment_id: str,
        amount: Decimal,
        currency: str,
        callback_urls: CallbackUrls,
    ) -> str:
        payload = {
            "amount": to_cents(amount),
            "currency": currency,
            "reference": payment_id,
            "description": "CryptoAnalyst AI Analysis",
            "success_url": callback_urls["success_url"],
            "cancel_url": callback_urls["cancel_url"],
            "webhook_url": callback_urls["webhook_url"],
        }
        # Single attempt; intent creation is never retried.
        try:
            response = await self._client.post(
                f"{self._endpoint}/payments",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
            reference = response.json()["id"]
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            raise GatewayError(
                f"Payment intent creation failed for {payment_id}", payment_id=payment_id
            ) from exc
        return str(reference)


class SimulatedGateway:
    """Local gateway that accepts every intent; settlement arrives via ``complete_payment``."""

    name: str = "simulated"

    async def create_intent(
        self,
        payment_id: str,
        amount: Decimal,
        currency: str,
        callback_urls: CallbackUrls,
    ) -> str:
        log.info(
            "[SIMULATED INTENT]",
            extra={"payment_id": payment_id, "amount": str(amount), "currency": currency},
        )
        return f"sim_{payment_id}"


class HmacSignatureVerifier:
    """HMAC-SHA256 webhook signature check; fails closed without a secret."""

    def __init__(self, secret: Optional[str]) -> None:
        self._secret = secret.encode("utf-8") if secret else None

    def sign(self, raw_payload: bytes) -> str:
        if self._secret is None:
            raise ValueError("No webhook secret configured")
        return hmac.new(self._secret, raw_payload, hashlib.sha256).hexdigest()

    def verify(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        if self._secret is None or not signature:
            return False
        candidate = signature.strip()
        if candidate.startswith(SIGNATURE_PREFIX):
            candidate = candidate[len(SIGNATURE_PREFIX):]
        return hmac.compare_digest(candidate.encode("utf-8"), self.sign(raw_payload).encode("ascii"))


def parse_webhook_event(raw_payload: bytes) -> WebhookEvent:
    """
    Normalise a gateway notification.

    Raises
    ------
    InvalidWebhook
        If the body is not a JSON object, lacks ``reference`` or reports a status
        other than ``completed`` / ``failed``.
    """
    try:
        body: Any = json.loads(raw_payload)
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidWebhook("Webhook body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise InvalidWebhook("Webhook body must be a JSON object")
    try:
        return WebhookEvent.model_validate(body)
    except ValidationError as exc:
        raise InvalidWebhook(
            "Webhook payload failed validation",
            errors=[error["loc"] for error in exc.errors()],
        ) from exc


__all__ = [
    "SIGNATURE_PREFIX",
    "X402PayGateway",
    "SimulatedGateway",
    "HmacSignatureVerifier",
    "parse_webhook_event",
]
