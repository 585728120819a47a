"""Shared test fixtures for the salon receptionist test suite."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("METRICS_ENABLED", "false")
    os.environ.setdefault("REDIS_URL", "")


# ── Scripted reasoning engine ────────────────────────────────────────


@dataclass
class ModelCall:
    messages: list
    sampling: Any
    tools: list | None
    bind_kwargs: dict


class ScriptedChatModel:
    """Stands in for ChatAnthropic: replays scripted replies in order.

    A scripted item may be an ``AIMessage``, a plain string (returned as an
    ``AIMessage``) or an exception instance (raised).  Every call is
    recorded in ``calls``.
    """

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[ModelCall] = []

    def factory(self, sampling):
        return _ModelHandle(self, sampling)

    async def respond(self, messages, sampling, tools, bind_kwargs):
        from langchain_core.messages import AIMessage

        self.calls.append(ModelCall(list(messages), sampling, tools, bind_kwargs))
        if not self.responses:
            raise RuntimeError("scripted model has no responses left")
        reply = self.responses.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return AIMessage(content=reply)
        return reply

    @property
    def tool_calls_made(self) -> list[ModelCall]:
        return [c for c in self.calls if c.tools]


class _ModelHandle:
    def __init__(self, model: ScriptedChatModel, sampling, tools=None, bind_kwargs=None) -> None:
        self._model = model
        self._sampling = sampling
        self._tools = tools
        self._bind_kwargs = bind_kwargs or {}

    def bind_tools(self, tools, **kwargs):
        return _ModelHandle(self._model, self._sampling, list(tools), kwargs)

    async def ainvoke(self, messages):
        return await self._model.respond(messages, self._sampling, self._tools, self._bind_kwargs)


def ai_tool(name: str, args: dict | None = None, call_id: str | None = None):
    """An assistant message requesting one tool call."""
    from langchain_core.messages import AIMessage

    return AIMessage(
        content="",
        tool_calls=[{"name": name, "args": args or {}, "id": call_id or f"call_{name}", "type": "tool_call"}],
    )


def answer_json(text: str, **metadata: Any) -> str:
    """A well-formed final answer envelope."""
    meta = {"intent": "booking", "confidence": 0.9, **metadata}
    return json.dumps({"text": text, "metadata": meta}, ensure_ascii=False)


@pytest.fixture
def scripted_model():
    """Factory fixture: ``scripted_model(*responses)`` → ``(invoker, model)``."""
    from receptionist.engine.invoker import ReasoningInvoker

    def _make(*responses: Any):
        model = ScriptedChatModel(*responses)
        return ReasoningInvoker(model_factory=model.factory), model

    return _make


# ── Collaborators ────────────────────────────────────────────────────


@pytest.fixture
def fixed_now() -> datetime:
    # 13:00 UTC is 10:00 in São Paulo
    return datetime(2025, 5, 13, 13, 0, tzinfo=UTC)


@pytest.fixture
def record_store():
    """A record-store double with async methods and sensible defaults."""
    store = MagicMock()
    store.get_business = AsyncMock(return_value=None)
    store.list_services = AsyncMock(return_value=[])
    store.is_admin = AsyncMock(return_value=False)
    store.available_dates = AsyncMock(return_value=[])
    store.available_times = AsyncMock(return_value=["09:30", "10:00", "14:00"])
    store.create_appointment = AsyncMock(return_value={"appointment_id": "apt-1"})
    store.list_appointments = AsyncMock(return_value=[])
    store.cancel_appointment = AsyncMock(return_value={"status": "cancelled"})
    store.reschedule_appointment = AsyncMock(return_value={"status": "scheduled"})
    store.request_human_agent = AsyncMock(return_value={"request_id": "req-1"})
    store.update_prompt = AsyncMock(return_value=None)
    store.add_service = AsyncMock(return_value={"service_id": "svc-1"})
    store.update_service = AsyncMock(return_value={"service_id": "svc-1"})
    store.list_all_appointments = AsyncMock(return_value=[])
    store.create_schedule_block = AsyncMock(return_value={"block_id": "blk-1"})
    return store


@pytest.fixture
def tool_ctx(record_store, fixed_now):
    from receptionist.profile import DEFAULT_PROFILE
    from receptionist.prompts import local_now
    from receptionist.tools.registry import ToolContext

    return ToolContext(
        business_id="acme",
        user_id="5522999990000",
        now=local_now(DEFAULT_PROFILE, fixed_now),
        store=record_store,
        profile=DEFAULT_PROFILE,
    )
