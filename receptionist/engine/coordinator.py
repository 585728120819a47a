"""Turn coordinator: one inbound message in, exactly one reply out.

Architecture:
  A linear LangGraph ``StateGraph`` runs the stages of a turn::

    compose → plan → dispatch → validate → review → persist → END

    1. **compose**   — load the session and business profile, build the
                       prompt context (latest history only)
    2. **plan**      — deterministic analysis pass + plan extraction
    3. **dispatch**  — bounded model ↔ tool loop
    4. **validate**  — parse/repair the draft, reconcile it with the
                       bookings that actually happened
    5. **review**    — availability ground-truth check + optional LLM review
    6. **persist**   — append the exchange to the session and save it

  After the graph finishes, ``send_reply`` is called exactly once.  No
  checkpointer is used: the session store is the only memory between turns,
  and every turn gets its own state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from receptionist.config import (
    PLAN_ANALYSIS_ENABLED,
    PROMPT_HISTORY_LIMIT,
    SESSION_ACTION_LIMIT,
    SESSION_HISTORY_LIMIT,
    SESSION_TTL_SECONDS,
)
from receptionist.engine.dispatcher import RECONCILED_TOOLS, ActionDispatcher, DispatchOutcome
from receptionist.engine.invoker import ReasoningInvoker
from receptionist.engine.models import (
    ActionRecord,
    AnswerMetadata,
    ChatEntry,
    ContextBundle,
    FinalAnswer,
    PlannedAction,
    Session,
    TurnContext,
    session_key_for,
)
from receptionist.engine.planner import PlanExtractor
from receptionist.engine.reviewer import ConsistencyReviewer
from receptionist.engine.validator import ResponseValidator, booking_summary, reconcile
from receptionist.profile import DEFAULT_PROFILE, BusinessProfile, load_profile
from receptionist.prompts import compose, local_now
from receptionist.services.metrics import metrics
from receptionist.services.session_store import SessionStore
from receptionist.tools.registry import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)

SendReply = Callable[[str, str, str], Awaitable[None]]
ProfileLoader = Callable[[str], Awaitable[BusinessProfile]]


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict, total=False):
    """Values flowing through the graph for one turn.

    Each node returns only the keys it sets; LangGraph merges them.
    """

    business_id: str
    user_id: str
    text: str
    privileged: bool
    now: datetime

    session: Session
    profile: BusinessProfile
    bundle: ContextBundle
    context: TurnContext
    plan: list[PlannedAction]
    dispatch: DispatchOutcome
    answer: FinalAnswer
    rewritten: bool


@dataclass
class TurnResult:
    answer: FinalAnswer
    records: list[ActionRecord] = field(default_factory=list)
    plan: list[PlannedAction] = field(default_factory=list)
    iterations: int = 0


class TurnCoordinator:
    """Runs one turn per ``handle_message`` call; never raises."""

    def __init__(
        self,
        invoker: ReasoningInvoker,
        registry: ToolRegistry,
        session_store: SessionStore,
        send_reply: SendReply,
        record_store: Any = None,
        profile_loader: ProfileLoader | None = None,
        *,
        planner: PlanExtractor | None = None,
        dispatcher: ActionDispatcher | None = None,
        validator: ResponseValidator | None = None,
        reviewer: ConsistencyReviewer | None = None,
        reconciled_tools: Collection[str] = RECONCILED_TOOLS,
        clock: Callable[[], datetime] | None = None,
        prompt_history_limit: int = PROMPT_HISTORY_LIMIT,
        history_limit: int = SESSION_HISTORY_LIMIT,
        action_limit: int = SESSION_ACTION_LIMIT,
        session_ttl: int = SESSION_TTL_SECONDS,
    ) -> None:
        self._session_store = session_store
        self._send_reply = send_reply
        self._record_store = record_store
        self._profile_loader = profile_loader or self._load_profile
        self._reconciled_tools = frozenset(reconciled_tools)
        self._planner = planner or PlanExtractor(invoker, enabled=PLAN_ANALYSIS_ENABLED)
        self._dispatcher = dispatcher or ActionDispatcher(invoker, registry, reconciled_tools=self._reconciled_tools)
        self._validator = validator or ResponseValidator(invoker)
        self._reviewer = reviewer or ConsistencyReviewer(invoker)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._prompt_history_limit = prompt_history_limit
        self._history_limit = history_limit
        self._action_limit = action_limit
        self._session_ttl = session_ttl
        self._graph = self._build_graph()

    async def _load_profile(self, business_id: str) -> BusinessProfile:
        if self._record_store is None:
            return DEFAULT_PROFILE
        return await load_profile(self._record_store, business_id)

    # ── Nodes ────────────────────────────────────────────────────────

    async def _compose_node(self, state: TurnState) -> dict:
        key = session_key_for(state["business_id"], state["user_id"])
        try:
            session = await self._session_store.get(key)
        except Exception as exc:
            logger.warning("Session load failed for %s, starting fresh: %s", key, exc)
            session = None
        session = session or Session(session_key=key)

        profile = await self._profile_loader(state["business_id"])
        now = local_now(profile, state["now"])
        bundle = compose(profile, session.history, now, history_limit=self._prompt_history_limit)
        context = TurnContext(bundle=bundle, inbound=state["text"])
        return {"session": session, "profile": profile, "now": now, "bundle": bundle, "context": context}

    async def _plan_node(self, state: TurnState) -> dict:
        analysis, plan = await self._planner.analyze(
            state["text"], state["session"].history, state["profile"].services, state["now"],
        )
        state["context"].scratch = analysis
        return {"plan": plan}

    async def _dispatch_node(self, state: TurnState) -> dict:
        tool_ctx = ToolContext(
            business_id=state["business_id"],
            user_id=state["user_id"],
            now=state["now"],
            store=self._record_store,
            profile=state["profile"],
        )
        outcome = await self._dispatcher.run(
            state["context"], state["plan"], tool_ctx, privileged=state.get("privileged", False),
        )
        return {"dispatch": outcome}

    async def _validate_node(self, state: TurnState) -> dict:
        outcome, profile = state["dispatch"], state["profile"]
        answer = await self._validator.validate(outcome.draft, profile)

        booked_any = any(r.success and r.tool_name in self._reconciled_tools for r in outcome.records)
        if outcome.draft is None and not booked_any:
            # Canned apology: nothing was confirmed, nothing to reconcile.
            return {"answer": answer, "rewritten": True}

        answer, rewritten = reconcile(answer, state["plan"], outcome.records, profile, self._reconciled_tools)
        if outcome.draft is None and not rewritten:
            # The apology would hide bookings that exist.
            answer = answer.model_copy(
                update={"text": booking_summary(outcome.records, profile, self._reconciled_tools)}
            )
        return {"answer": answer, "rewritten": rewritten or outcome.draft is None}

    async def _review_node(self, state: TurnState) -> dict:
        answer = await self._reviewer.check(
            state["answer"],
            state["dispatch"].records,
            state["bundle"].history,
            state["profile"],
            state["bundle"].system_prompt,
            skip_review=state.get("rewritten", False),
        )
        return {"answer": answer}

    async def _persist_node(self, state: TurnState) -> dict:
        session, answer = state["session"], state["answer"]
        timestamp = state["now"].timestamp()
        updated = Session(
            session_key=session.session_key,
            history=[
                *session.history,
                ChatEntry(role="user", content=state["text"], timestamp=timestamp),
                ChatEntry(
                    role="assistant",
                    content=answer.text,
                    timestamp=timestamp,
                    metadata=answer.metadata.model_dump(),
                ),
            ],
            created_actions=[*session.created_actions, *state["dispatch"].records],
        ).truncated(self._history_limit, self._action_limit)

        try:
            await self._session_store.set(session.session_key, updated, self._session_ttl)
        except Exception as exc:
            logger.error("Session save failed for %s: %s", session.session_key, exc)
        return {"session": updated}

    # ── Graph assembly ───────────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(TurnState)
        graph.add_node("compose", self._compose_node)
        graph.add_node("plan", self._plan_node)
        graph.add_node("dispatch", self._dispatch_node)
        graph.add_node("validate", self._validate_node)
        graph.add_node("review", self._review_node)
        graph.add_node("persist", self._persist_node)

        graph.set_entry_point("compose")
        graph.add_edge("compose", "plan")
        graph.add_edge("plan", "dispatch")
        graph.add_edge("dispatch", "validate")
        graph.add_edge("validate", "review")
        graph.add_edge("review", "persist")
        graph.add_edge("persist", END)
        return graph.compile()

    # ── Entry point ──────────────────────────────────────────────────

    async def handle_message(
        self,
        business_id: str,
        user_id: str,
        text: str,
        privileged: bool = False,
    ) -> TurnResult:
        """Process one inbound message and send exactly one reply."""
        t0 = time.perf_counter()
        try:
            final = await self._graph.ainvoke(
                {
                    "business_id": business_id,
                    "user_id": user_id,
                    "text": text,
                    "privileged": privileged,
                    "now": self._clock(),
                }
            )
            outcome: DispatchOutcome = final["dispatch"]
            result = TurnResult(
                answer=final["answer"],
                records=list(outcome.records),
                plan=list(final.get("plan") or []),
                iterations=outcome.iterations,
            )
            label = "rewritten" if final.get("rewritten") else "ok"
            if outcome.draft is None:
                label = "apology"
        except Exception:
            logger.exception("Turn failed for %s/%s", business_id, user_id)
            result = TurnResult(
                answer=FinalAnswer(text=DEFAULT_PROFILE.apology_message, metadata=AnswerMetadata.unknown()),
            )
            label = "error"

        try:
            await self._send_reply(business_id, user_id, result.answer.text)
        except Exception:
            logger.exception("Reply delivery failed for %s/%s", business_id, user_id)

        metrics.record_turn(label, result.iterations, (time.perf_counter() - t0) * 1000)
        return result
