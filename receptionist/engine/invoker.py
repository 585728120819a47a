"""Single-call adapter around the reasoning engine (Anthropic via LangChain).

Every stage that needs the model goes through ``ReasoningInvoker.invoke``:
one request, one normalised result.  Sampling is always explicit, so the
deterministic passes (analysis, repair, review, regeneration) can never
inherit the conversational temperature by accident.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from receptionist.config import (
    ANTHROPIC_API_KEY,
    CONVERSATION_TEMPERATURE,
    MAX_OUTPUT_TOKENS,
    MODEL_NAME,
    ROUTER_MODEL_NAME,
)
from receptionist.services.metrics import metrics

logger = logging.getLogger(__name__)


# ── Sampling ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SamplingConfig:
    """Model and sampling parameters for one call."""

    temperature: float
    max_tokens: int = MAX_OUTPUT_TOKENS
    model: str = MODEL_NAME


DETERMINISTIC = SamplingConfig(temperature=0.0, model=ROUTER_MODEL_NAME)
CONVERSATIONAL = SamplingConfig(temperature=CONVERSATION_TEMPERATURE, model=MODEL_NAME)


# ── Results ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TextResult:
    value: str


@dataclass(frozen=True)
class ToolCallResult:
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    call_id: str = ""


InvocationResult = TextResult | ToolCallResult


class ReasoningEngineError(Exception):
    """Transport or provider failure while calling the reasoning engine."""


# ── Helpers ──────────────────────────────────────────────────────────


def message_text(message: BaseMessage) -> str:
    """Extract plain text from a model message.

    Anthropic responses may carry a list of content blocks; only the text
    blocks are kept.
    """
    content = message.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def _default_model_factory(sampling: SamplingConfig) -> BaseChatModel:
    from langchain_anthropic import ChatAnthropic

    return ChatAnthropic(
        model=sampling.model,
        api_key=ANTHROPIC_API_KEY,
        temperature=sampling.temperature,
        max_tokens=sampling.max_tokens,
    )


# ── Invoker ──────────────────────────────────────────────────────────


class ReasoningInvoker:
    """Wraps a chat model and normalises its replies.

    *model_factory* builds one chat model per ``SamplingConfig``; models are
    cached so repeated calls in a turn share one client.
    """

    def __init__(self, model_factory: Callable[[SamplingConfig], BaseChatModel] | None = None) -> None:
        self._model_factory = model_factory or _default_model_factory
        self._models: dict[SamplingConfig, BaseChatModel] = {}

    def _model(self, sampling: SamplingConfig) -> BaseChatModel:
        if sampling not in self._models:
            self._models[sampling] = self._model_factory(sampling)
        return self._models[sampling]

    async def invoke(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[dict[str, Any]] | None = None,
        sampling: SamplingConfig = CONVERSATIONAL,
        operation: str = "invoke",
    ) -> InvocationResult:
        """Run one model call.

        Returns a ``ToolCallResult`` for the first requested tool (any extra
        calls are dropped) or a ``TextResult``.  Raises
        ``ReasoningEngineError`` on any provider failure.
        """
        model = self._model(sampling)
        runnable = model.bind_tools(list(tools), parallel_tool_calls=False) if tools else model

        t0 = time.perf_counter()
        try:
            response = await runnable.ainvoke(list(messages))
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", operation,
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            logger.warning("Reasoning engine call %s failed: %s", operation, exc)
            raise ReasoningEngineError(str(exc)) from exc

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", operation, latency_ms=elapsed)
        logger.debug("%s (%s) responded in %.0fms", operation, sampling.model, elapsed)

        tool_calls = getattr(response, "tool_calls", None) or []
        if tool_calls:
            if len(tool_calls) > 1:
                logger.warning(
                    "%s returned %d tool calls, keeping only %s",
                    operation, len(tool_calls), tool_calls[0]["name"],
                )
            call = tool_calls[0]
            return ToolCallResult(
                name=call["name"],
                args=dict(call.get("args") or {}),
                call_id=call.get("id") or f"call_{call['name']}",
            )

        if isinstance(response, AIMessage):
            return TextResult(message_text(response))
        return TextResult(str(getattr(response, "content", "") or ""))

    async def complete(
        self,
        prompt: str | Sequence[BaseMessage],
        sampling: SamplingConfig = DETERMINISTIC,
        operation: str = "complete",
    ) -> str:
        """Tool-free call returning plain text."""
        messages = [HumanMessage(content=prompt)] if isinstance(prompt, str) else list(prompt)
        result = await self.invoke(messages, tools=None, sampling=sampling, operation=operation)
        if isinstance(result, ToolCallResult):
            # No tools were offered; treat a stray tool call as an empty answer.
            logger.warning("%s returned a tool call without tools bound", operation)
            return ""
        return result.value
