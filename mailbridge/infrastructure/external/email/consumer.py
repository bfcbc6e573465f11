"""Downstream automation consumer client (JSON webhook)."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

import httpx

from mailbridge.core.config import Settings
from mailbridge.domain.exceptions import DownstreamDeliveryFailed
from mailbridge.shared.telemetry.logging import get_logger
from mailbridge.shared.telemetry.tracing import traced

logger = get_logger(__name__)

IDEMPOTENCY_HEADER = "X-Idempotency-Key"
SIGNATURE_HEADER = "X-Webhook-Signature-256"


def sign_payload(body: bytes, secret: str) -> str:
    """Return sha256=<hex> HMAC of the raw request body."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class DownstreamConsumerClient:
    """POSTs canonical messages to the downstream consumer.

    The consumer must be idempotent on provider_message_id; the same
    message can be delivered again after a stuck claim is re-driven.
    """

    def __init__(
        self,
        webhook_url: str,
        *,
        secret: str | None = None,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = webhook_url
        self._secret = secret
        self._timeout = timeout
        self._http_client = http_client

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> DownstreamConsumerClient:
        return cls(
            settings.downstream_webhook_url,
            secret=(
                settings.downstream_webhook_secret.get_secret_value()
                if settings.downstream_webhook_secret
                else None
            ),
            timeout=settings.downstream_timeout_seconds,
            http_client=http_client,
        )

    @traced("downstream.deliver")
    async def deliver(self, payload: dict[str, Any]) -> int:
        """Send one payload; returns the response status.

        Raises:
            DownstreamDeliveryFailed: URL not configured, network error, or non-2xx.
        """
        if not self._url:
            raise DownstreamDeliveryFailed(None, "DOWNSTREAM_WEBHOOK_URL is not configured")
        body = json.dumps(payload, separators=(",", ":")).encode()
        headers = {
            "Content-Type": "application/json",
            IDEMPOTENCY_HEADER: f"{payload['account_id']}:{payload['provider_message_id']}",
        }
        if self._secret:
            headers[SIGNATURE_HEADER] = sign_payload(body, self._secret)
        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    self._url, content=body, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._url, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise DownstreamDeliveryFailed(None, str(e)) from e
        if not response.is_success:
            logger.warning(
                "Downstream consumer rejected message %s: status=%d",
                payload.get("provider_message_id"),
                response.status_code,
            )
            raise DownstreamDeliveryFailed(response.status_code, response.text[:500])
        return response.status_code
