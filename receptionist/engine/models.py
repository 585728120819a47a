"""Data model shared by the orchestration stages.

Persisted shapes (``ChatEntry``, ``ActionRecord``, ``Session``) and the
outbound ``FinalAnswer`` are pydantic models so they round-trip through JSON
for the session store and the response validator.  Turn-local shapes are
plain dataclasses.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Literal

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Role = Literal["user", "assistant"]


# ── Persisted session state ──────────────────────────────────────────


class ChatEntry(BaseModel):
    """One message in the persisted conversation history."""

    role: Role
    content: str
    timestamp: float = Field(default_factory=time.time)
    metadata: dict[str, Any] | None = None

    def to_message(self) -> BaseMessage:
        if self.role == "user":
            return HumanMessage(content=self.content)
        return AIMessage(content=self.content)


class ActionRecord(BaseModel):
    """Ground truth for one tool execution performed by the dispatcher."""

    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] = Field(default_factory=dict)
    success: bool = False


class Session(BaseModel):
    """Conversation state for one (business, user) pair."""

    session_key: str
    history: list[ChatEntry] = Field(default_factory=list)
    created_actions: list[ActionRecord] = Field(default_factory=list)

    def truncated(self, history_limit: int, action_limit: int) -> Session:
        """Return a copy holding only the most recent entries."""
        return Session(
            session_key=self.session_key,
            history=self.history[-history_limit:] if history_limit > 0 else [],
            created_actions=self.created_actions[-action_limit:] if action_limit > 0 else [],
        )


def session_key_for(business_id: str, user_id: str) -> str:
    """Stable composite key for a (business, end-user) pair."""
    return f"session:{business_id}:{user_id}"


# ── Final answer ─────────────────────────────────────────────────────


class AnswerMetadata(BaseModel):
    """Structured claims the reasoning engine makes about its own answer.

    Legacy Portuguese field names are accepted on input.
    """

    model_config = ConfigDict(populate_by_name=True)

    intent: str = Field(
        default="unknown",
        validation_alias=AliasChoices("intent", "intencao_detectada"),
    )
    mentioned_slots: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("mentioned_slots", "horarios_mencionados"),
    )
    booked_slots: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("booked_slots", "horarios_agendados"),
    )
    mentioned_services: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("mentioned_services", "servicos_mencionados"),
    )
    reference_date: str = Field(
        default="",
        validation_alias=AliasChoices("reference_date", "data_referencia"),
    )
    confidence: float = Field(
        default=0.0,
        validation_alias=AliasChoices("confidence", "confianca"),
    )

    @field_validator("mentioned_slots", "booked_slots", "mentioned_services", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value else []
        return value

    @field_validator("reference_date", "intent", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        return "" if value is None else value

    @classmethod
    def unknown(cls) -> AnswerMetadata:
        """Zero-confidence placeholder used by deterministic fallbacks."""
        return cls(intent="unknown", confidence=0.0)


class FinalAnswer(BaseModel):
    """The only artifact ever sent to the customer or stored as a reply."""

    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(min_length=1, validation_alias=AliasChoices("text", "resposta"))
    metadata: AnswerMetadata = Field(
        default_factory=AnswerMetadata,
        validation_alias=AliasChoices("metadata", "meta"),
    )

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must not be blank")
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_default(cls, value: Any) -> Any:
        return {} if value is None else value


# ── Plan & turn context ──────────────────────────────────────────────


@dataclass(frozen=True)
class PlannedAction:
    """An action the customer's message is believed to request."""

    service: str
    time: str
    date: str = "tomorrow"

    def describe(self) -> str:
        return f"Serviço: {self.service}, Horário: {self.time}, Data: {self.date}"


@dataclass(frozen=True)
class ContextBundle:
    """Immutable prompt context for one turn, built by the prompt composer."""

    system_prompt: str
    history: tuple[ChatEntry, ...]
    current_datetime: str


@dataclass
class TurnContext:
    """Working memory for one turn.

    ``entries`` holds only what happened during this turn (tool calls, tool
    results, injected instructions); the persisted history stays in the
    bundle.  ``scratch`` carries the preliminary analysis text.
    """

    bundle: ContextBundle
    inbound: str
    entries: list[BaseMessage] = field(default_factory=list)
    scratch: str = ""

    def _system_message(self) -> SystemMessage:
        content = self.bundle.system_prompt
        if self.scratch:
            content += (
                "\n\n# PRELIMINARY ANALYSIS (reference only)\n"
                f"{self.scratch}\n\n"
                "# TOOL INSTRUCTIONS\n"
                "- If the analysis found several actions, call the tools separately for each one.\n"
                "- For several bookings on the same day, do NOT use a combo service; book each service separately.\n"
                "- Check the arguments of every tool call carefully."
            )
        return SystemMessage(content=content)

    def _base_messages(self) -> list[BaseMessage]:
        return [
            self._system_message(),
            *(entry.to_message() for entry in self.bundle.history),
            HumanMessage(content=self.inbound),
        ]

    def messages(self) -> list[BaseMessage]:
        """Messages for a tool-enabled call, tool exchanges kept structured."""
        return self._base_messages() + list(self.entries)

    def transcript(self) -> list[BaseMessage]:
        """Messages with tool exchanges flattened to plain text.

        Used for tool-free calls (the final summary), which must not carry
        structured tool-use blocks.
        """
        lines: list[str] = []
        for entry in self.entries:
            if isinstance(entry, AIMessage) and entry.tool_calls:
                for call in entry.tool_calls:
                    lines.append(
                        f"Tool call {call['name']}({json.dumps(call.get('args') or {}, ensure_ascii=False)})"
                    )
            elif isinstance(entry, ToolMessage):
                lines.append(f"Tool result {entry.name or ''}: {entry.content}")
            elif entry.content:
                lines.append(str(entry.content))
        messages = self._base_messages()
        if lines:
            messages.append(AIMessage(content="Actions taken so far in this turn:\n" + "\n".join(lines)))
        return messages

    def add_tool_exchange(self, call_id: str, name: str, args: dict[str, Any], result: dict[str, Any]) -> None:
        self.entries.append(
            AIMessage(
                content="",
                tool_calls=[{"name": name, "args": args, "id": call_id, "type": "tool_call"}],
            )
        )
        self.entries.append(
            ToolMessage(
                content=json.dumps(result, ensure_ascii=False, default=str),
                tool_call_id=call_id,
                name=name,
            )
        )

    def add_instruction(self, text: str) -> None:
        self.entries.append(HumanMessage(content=text))
