"""Tests for the outbound messaging client."""

from __future__ import annotations

import json

import httpx
import pytest

from receptionist.services.messaging import MessagingClient, MessagingError


def _client(handler) -> MessagingClient:
    return MessagingClient("https://gateway.example.com/", "instance-token", transport=httpx.MockTransport(handler))


class TestSendText:
    @pytest.mark.asyncio
    async def test_posts_number_and_text(self):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"status": "sent"})

        await _client(handler).send_text("acme", "5522999990000", "Olá!")
        request = seen[0]
        assert request.url == "https://gateway.example.com/send/text"
        assert request.headers["token"] == "instance-token"
        assert json.loads(request.content) == {"number": "5522999990000", "text": "Olá!"}

    @pytest.mark.asyncio
    async def test_gateway_rejection_raises(self):
        client = _client(lambda request: httpx.Response(401, text="bad token"))
        with pytest.raises(MessagingError) as excinfo:
            await client.send_text("acme", "5522", "Olá!")
        assert excinfo.value.status_code == 401

    @pytest.mark.asyncio
    async def test_transport_failure_raises(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        with pytest.raises(MessagingError, match="Could not reach"):
            await _client(handler).send_text("acme", "5522", "Olá!")

    @pytest.mark.asyncio
    async def test_single_attempt_only(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        with pytest.raises(MessagingError):
            await _client(handler).send_text("acme", "5522", "Olá!")
        assert len(calls) == 1
