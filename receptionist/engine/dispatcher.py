"""Action dispatcher: the bounded model ↔ tool loop for one turn.

State machine::

    AWAITING_MODEL ──text──────────────▶ DONE (draft)
          │  ▲
     tool │  │ result appended, pending actions re-injected
          ▼  │
    EXECUTING_TOOL
          │
          └─ ceiling reached ─▶ summary call (no tools) ─▶ DONE

Engine failures end the loop immediately with no draft; tool failures are
just results the model gets to see.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field

from receptionist.config import MAX_TOOL_ITERATIONS
from receptionist.engine.invoker import (
    CONVERSATIONAL,
    ReasoningEngineError,
    ReasoningInvoker,
    SamplingConfig,
    TextResult,
)
from receptionist.engine.models import ActionRecord, PlannedAction, TurnContext
from receptionist.profile import BusinessProfile
from receptionist.prompts import PENDING_ACTIONS_INSTRUCTION, SUMMARY_INSTRUCTION
from receptionist.tools.registry import ToolContext, ToolRegistry, is_success

logger = logging.getLogger(__name__)

RECONCILED_TOOLS = frozenset({"createAppointment"})
SERVICE_ARG = "serviceName"


class DispatchState(enum.Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOL = "executing_tool"
    DONE = "done"


@dataclass
class DispatchOutcome:
    draft: str | None
    records: list[ActionRecord] = field(default_factory=list)
    pending: list[PlannedAction] = field(default_factory=list)
    iterations: int = 0
    hit_ceiling: bool = False
    engine_failed: bool = False


def service_key(value: object, profile: BusinessProfile | None = None) -> str:
    """Comparison key for a service; aliases collapse onto the menu name."""
    name = profile.canonical_service(value) if profile is not None else str(value or "").strip()
    return name.casefold()


def pending_actions(
    plan: Sequence[PlannedAction],
    records: Sequence[ActionRecord],
    reconciled_tools: Collection[str] = RECONCILED_TOOLS,
    profile: BusinessProfile | None = None,
) -> list[PlannedAction]:
    """Planned actions with no attempt yet.

    A planned action counts as attempted once any reconciled tool ran with
    the same service, successful or not; one record covers one action.
    """
    attempts: dict[str, int] = {}
    for record in records:
        if record.tool_name in reconciled_tools:
            key = service_key(record.args.get(SERVICE_ARG), profile)
            attempts[key] = attempts.get(key, 0) + 1

    pending: list[PlannedAction] = []
    for action in plan:
        key = service_key(action.service, profile)
        if attempts.get(key, 0) > 0:
            attempts[key] -= 1
        else:
            pending.append(action)
    return pending


class ActionDispatcher:
    def __init__(
        self,
        invoker: ReasoningInvoker,
        registry: ToolRegistry,
        max_iterations: int = MAX_TOOL_ITERATIONS,
        reconciled_tools: Collection[str] = RECONCILED_TOOLS,
        sampling: SamplingConfig = CONVERSATIONAL,
    ) -> None:
        self._invoker = invoker
        self._registry = registry
        self._max_iterations = max_iterations
        self._reconciled_tools = frozenset(reconciled_tools)
        self._sampling = sampling

    async def run(
        self,
        context: TurnContext,
        plan: Sequence[PlannedAction],
        tool_ctx: ToolContext,
        privileged: bool = False,
    ) -> DispatchOutcome:
        """Drive the loop until the model answers in text or the ceiling hits."""
        catalog = self._registry.catalog(privileged=privileged)
        outcome = DispatchOutcome(draft=None)
        state = DispatchState.AWAITING_MODEL

        while state is not DispatchState.DONE:
            if outcome.iterations >= self._max_iterations:
                outcome.hit_ceiling = True
                outcome.draft = await self._summarize(context, outcome)
                state = DispatchState.DONE
                break

            outcome.iterations += 1
            try:
                result = await self._invoker.invoke(
                    context.messages(), tools=catalog, sampling=self._sampling, operation="dispatch",
                )
            except ReasoningEngineError:
                logger.error("Engine failed on iteration %d; ending turn without a draft", outcome.iterations)
                outcome.engine_failed = True
                state = DispatchState.DONE
                break

            if isinstance(result, TextResult):
                outcome.draft = result.value
                state = DispatchState.DONE
                break

            state = DispatchState.EXECUTING_TOOL
            logger.info("Iteration %d: executing %s", outcome.iterations, result.name)
            tool_result = await self._registry.execute(result.name, result.args, tool_ctx, privileged=privileged)
            context.add_tool_exchange(result.call_id, result.name, result.args, tool_result)
            outcome.records.append(
                ActionRecord(
                    tool_name=result.name,
                    args=result.args,
                    result=tool_result,
                    success=is_success(tool_result),
                )
            )

            outcome.pending = pending_actions(plan, outcome.records, self._reconciled_tools, tool_ctx.profile)
            if outcome.pending:
                context.add_instruction(
                    PENDING_ACTIONS_INSTRUCTION.format(
                        pending="\n".join(f"- {a.describe()}" for a in outcome.pending),
                    )
                )
            state = DispatchState.AWAITING_MODEL

        outcome.pending = pending_actions(plan, outcome.records, self._reconciled_tools, tool_ctx.profile)
        logger.debug(
            "Dispatch done: %d iteration(s), %d action(s), %d pending, ceiling=%s",
            outcome.iterations, len(outcome.records), len(outcome.pending), outcome.hit_ceiling,
        )
        return outcome

    async def _summarize(self, context: TurnContext, outcome: DispatchOutcome) -> str | None:
        logger.warning("Tool loop hit the ceiling of %d iterations", self._max_iterations)
        messages = context.transcript()
        context.add_instruction(SUMMARY_INSTRUCTION)
        messages.append(context.entries[-1])
        try:
            return await self._invoker.complete(messages, sampling=self._sampling, operation="summary")
        except ReasoningEngineError:
            outcome.engine_failed = True
            return None
