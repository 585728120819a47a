"""Tests for the reasoning-engine invoker."""

from __future__ import annotations

import pytest
from conftest import ScriptedChatModel, ai_tool
from langchain_core.messages import AIMessage, HumanMessage

from receptionist.engine.invoker import (
    CONVERSATIONAL,
    DETERMINISTIC,
    ReasoningEngineError,
    ReasoningInvoker,
    TextResult,
    ToolCallResult,
    message_text,
)

TOOLS = [{"name": "listServices", "description": "List services", "input_schema": {"type": "object"}}]


class TestInvoke:
    @pytest.mark.asyncio
    async def test_text_reply_becomes_text_result(self, scripted_model):
        invoker, _ = scripted_model("Olá!")
        result = await invoker.invoke([HumanMessage(content="oi")])
        assert result == TextResult("Olá!")

    @pytest.mark.asyncio
    async def test_tool_call_becomes_tool_call_result(self, scripted_model):
        invoker, model = scripted_model(ai_tool("listServices", {}, "call_1"))
        result = await invoker.invoke([HumanMessage(content="serviços?")], tools=TOOLS)
        assert result == ToolCallResult(name="listServices", args={}, call_id="call_1")
        assert model.calls[0].tools == TOOLS

    @pytest.mark.asyncio
    async def test_parallel_tool_calls_disabled_at_bind_time(self, scripted_model):
        invoker, model = scripted_model(ai_tool("listServices"))
        await invoker.invoke([HumanMessage(content="x")], tools=TOOLS)
        assert model.calls[0].bind_kwargs == {"parallel_tool_calls": False}

    @pytest.mark.asyncio
    async def test_only_first_tool_call_is_kept(self, scripted_model):
        reply = AIMessage(
            content="",
            tool_calls=[
                {"name": "createAppointment", "args": {"time": "14:00"}, "id": "a", "type": "tool_call"},
                {"name": "createAppointment", "args": {"time": "15:00"}, "id": "b", "type": "tool_call"},
            ],
        )
        invoker, _ = scripted_model(reply)
        result = await invoker.invoke([HumanMessage(content="x")], tools=TOOLS)
        assert isinstance(result, ToolCallResult)
        assert result.args == {"time": "14:00"}

    @pytest.mark.asyncio
    async def test_provider_error_raises_typed_error(self, scripted_model):
        invoker, _ = scripted_model(TimeoutError("upstream timeout"))
        with pytest.raises(ReasoningEngineError):
            await invoker.invoke([HumanMessage(content="x")])

    @pytest.mark.asyncio
    async def test_sampling_selects_model_per_config(self):
        model = ScriptedChatModel("a", "b")
        seen = []

        def factory(sampling):
            seen.append(sampling)
            return model.factory(sampling)

        invoker = ReasoningInvoker(model_factory=factory)
        await invoker.complete("x", sampling=DETERMINISTIC)
        await invoker.complete("y", sampling=DETERMINISTIC)
        assert seen == [DETERMINISTIC]
        assert model.calls[1].sampling.temperature == 0.0


class TestComplete:
    @pytest.mark.asyncio
    async def test_complete_wraps_string_prompt(self, scripted_model):
        invoker, model = scripted_model("analysis text")
        assert await invoker.complete("analyse this") == "analysis text"
        assert isinstance(model.calls[0].messages[0], HumanMessage)
        assert model.calls[0].tools is None

    @pytest.mark.asyncio
    async def test_complete_ignores_stray_tool_call(self, scripted_model):
        invoker, _ = scripted_model(ai_tool("listServices"))
        assert await invoker.complete("x") == ""


class TestSamplingDefaults:
    def test_deterministic_is_temperature_zero(self):
        assert DETERMINISTIC.temperature == 0.0

    def test_conversational_uses_main_model(self):
        from receptionist.config import MODEL_NAME

        assert CONVERSATIONAL.model == MODEL_NAME


class TestMessageText:
    def test_block_list_content_keeps_text_blocks(self):
        message = AIMessage(
            content=[
                {"type": "text", "text": "Olá, "},
                {"type": "tool_use", "id": "x", "name": "n", "input": {}},
                {"type": "text", "text": "tudo bem?"},
            ]
        )
        assert message_text(message) == "Olá, tudo bem?"
