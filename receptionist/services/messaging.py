"""Outbound messaging: deliver one text reply to a customer.

The channel is a WhatsApp HTTP gateway that accepts ``POST /send/text`` with
``{"number", "text"}`` and authenticates with a per-instance ``token``
header.
"""

from __future__ import annotations

import logging

import httpx

from receptionist.config import MESSAGING_API_TOKEN, MESSAGING_BASE_URL
from receptionist.services.metrics import metrics

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10.0


class MessagingError(Exception):
    """Raised when the gateway rejects or cannot receive a message."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class MessagingClient:
    """Sends replies through the messaging gateway.

    ``send_text`` is not retried: a duplicate WhatsApp message is worse than
    a missed one, and the coordinator already logs delivery failures.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=(base_url or MESSAGING_BASE_URL).rstrip("/"),
            headers={"token": token if token is not None else MESSAGING_API_TOKEN},
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send_text(self, business_id: str, user_id: str, text: str) -> None:
        """Deliver *text* to *user_id*.  Raises ``MessagingError`` on failure."""
        try:
            with metrics.track("messaging", "send_text"):
                response = await self._client.post("/send/text", json={"number": user_id, "text": text})
                if response.status_code >= 400:
                    raise MessagingError(
                        f"Gateway error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
        except httpx.HTTPError as exc:
            raise MessagingError(f"Could not reach messaging gateway: {exc}") from exc
        logger.debug("Reply delivered to %s (business %s, %d chars)", user_id, business_id, len(text))
