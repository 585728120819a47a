"""Response validation, one-shot repair, and plan reconciliation.

``ResponseValidator.validate`` turns whatever the dispatcher produced into a
``FinalAnswer``; it always succeeds.  ``reconcile`` then overwrites the
answer's booking claims with what the tools actually did.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Collection, Sequence

from pydantic import ValidationError

from receptionist.engine.dispatcher import RECONCILED_TOOLS, SERVICE_ARG, service_key
from receptionist.engine.invoker import DETERMINISTIC, ReasoningEngineError, ReasoningInvoker
from receptionist.engine.models import ActionRecord, AnswerMetadata, FinalAnswer, PlannedAction
from receptionist.profile import BusinessProfile
from receptionist.prompts import REPAIR_PROMPT, RESPONSE_SCHEMA

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_MARKUP_RE = re.compile(
    r'^\s*[{\[]|```|"(?:text|metadata)"\s*:|</?(?:function_calls|invoke|tool_use)\b|\b[A-Za-z_]\w*\(\s*\{'
)
_decoder = json.JSONDecoder()


# ── Parsing ──────────────────────────────────────────────────────────


def _candidates(raw: str) -> list[str]:
    """Fenced blocks first, then the raw text itself."""
    return [m.group(1) for m in _FENCE_RE.finditer(raw)] + [raw]


def parse_answer(raw: str | None) -> FinalAnswer | None:
    """Find one JSON object in *raw* that validates as a ``FinalAnswer``.

    Every ``{`` is tried as a starting point, so prose around the object is
    ignored.  Returns ``None`` when nothing validates.
    """
    if not raw or not raw.strip():
        return None
    for text in _candidates(raw):
        index = text.find("{")
        while index != -1:
            try:
                obj, _ = _decoder.raw_decode(text, index)
            except json.JSONDecodeError:
                obj = None
            if isinstance(obj, dict):
                try:
                    return FinalAnswer.model_validate(obj)
                except ValidationError:
                    pass
            index = text.find("{", index + 1)
    return None


def contains_markup(text: str | None) -> bool:
    """True when *text* carries a JSON envelope, a code fence or tool-call syntax."""
    return bool(_MARKUP_RE.search(text or ""))


def plain_text(raw: str) -> str:
    """Customer-facing text out of a reply that may be an envelope, fenced or quoted."""
    answer = parse_answer(raw)
    if answer is not None:
        return answer.text.strip()
    text = _FENCE_RE.sub(lambda m: m.group(1), raw).strip()
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        text = text[1:-1].strip()
    return text


def _unnest(answer: FinalAnswer) -> FinalAnswer:
    # Some drafts wrap a second envelope inside "text".
    if not contains_markup(answer.text):
        return answer
    inner = parse_answer(answer.text)
    if inner is None or not inner.text.strip():
        return answer
    return answer.model_copy(update={"text": inner.text})


# ── Validation & repair ──────────────────────────────────────────────


class ResponseValidator:
    def __init__(self, invoker: ReasoningInvoker) -> None:
        self._invoker = invoker

    async def validate(self, raw: str | None, profile: BusinessProfile) -> FinalAnswer:
        """Parse, repair once if needed, and fall back deterministically."""
        if raw is None or not raw.strip():
            logger.warning("No draft produced; sending apology")
            return FinalAnswer(text=profile.apology_message, metadata=AnswerMetadata.unknown())

        answer = parse_answer(raw)
        if answer is not None:
            return _unnest(answer)

        logger.info("Draft is not a valid answer envelope; attempting one repair")
        prompt = REPAIR_PROMPT.format(schema=json.dumps(RESPONSE_SCHEMA, ensure_ascii=False), raw=raw)
        try:
            repaired = await self._invoker.complete(prompt, sampling=DETERMINISTIC, operation="repair")
        except ReasoningEngineError:
            repaired = None

        answer = parse_answer(repaired)
        if answer is not None:
            return _unnest(answer)

        logger.warning("Repair failed; shipping the raw draft with unknown metadata")
        return FinalAnswer(text=raw, metadata=AnswerMetadata.unknown())


# ── Reconciliation ───────────────────────────────────────────────────


def _join(items: Sequence[str]) -> str:
    if len(items) <= 1:
        return "".join(items)
    return ", ".join(items[:-1]) + " e " + items[-1]


def _successful(records: Sequence[ActionRecord], reconciled_tools: Collection[str]) -> list[ActionRecord]:
    return [r for r in records if r.tool_name in reconciled_tools and r.success]


def _booked_service(record: ActionRecord, profile: BusinessProfile) -> str:
    return profile.canonical_service(record.args.get(SERVICE_ARG) or record.result.get("service"))


def _describe_booking(record: ActionRecord, profile: BusinessProfile) -> str:
    service = _booked_service(record, profile) or "serviço"
    slot = record.result.get("time") or record.args.get("time")
    return f"{service} às {slot}" if slot else service


def booking_summary(
    records: Sequence[ActionRecord],
    profile: BusinessProfile,
    reconciled_tools: Collection[str] = RECONCILED_TOOLS,
) -> str:
    """Customer-facing confirmation of this turn's successful bookings."""
    done = _join([_describe_booking(r, profile) for r in _successful(records, reconciled_tools)])
    return f"Consegui agendar {done}. Se precisar de mais alguma coisa, é só me chamar!"


def reconcile(
    answer: FinalAnswer,
    plan: Sequence[PlannedAction],
    records: Sequence[ActionRecord],
    profile: BusinessProfile,
    reconciled_tools: Collection[str] = RECONCILED_TOOLS,
) -> tuple[FinalAnswer, bool]:
    """Align the answer with the bookings that really happened.

    ``booked_slots`` is always replaced by the times of this turn's
    successful bookings.  When the plan named actions that did not succeed,
    the text is rewritten to claim only the confirmed ones.  Returns the new
    answer and whether the text was rewritten.
    """
    booked = _successful(records, reconciled_tools)
    booked_slots: list[str] = []
    booked_services: list[str] = []
    for record in booked:
        slot = record.result.get("time") or record.args.get("time")
        if slot:
            booked_slots.append(str(slot))
        service = _booked_service(record, profile)
        if service:
            booked_services.append(service)

    mentioned = list(answer.metadata.mentioned_services)
    seen = {profile.canonical_service(s).casefold() for s in mentioned}
    for service in booked_services:
        if service.casefold() not in seen:
            mentioned.append(service)
            seen.add(service.casefold())

    metadata = answer.metadata.model_copy(update={"booked_slots": booked_slots, "mentioned_services": mentioned})
    if not plan:
        return answer.model_copy(update={"metadata": metadata}), False

    # Each successful booking confirms one planned action for the same service.
    confirmed: dict[str, int] = {}
    for service in booked_services:
        key = service_key(service, profile)
        confirmed[key] = confirmed.get(key, 0) + 1
    unconfirmed: list[PlannedAction] = []
    for action in plan:
        key = service_key(action.service, profile)
        if confirmed.get(key, 0) > 0:
            confirmed[key] -= 1
        else:
            unconfirmed.append(action)

    if not unconfirmed:
        return answer.model_copy(update={"metadata": metadata}), False

    if not booked:
        text = profile.retry_booking_message
    else:
        done = _join([_describe_booking(r, profile) for r in booked])
        rest = _join([f"{a.service} às {a.time}" for a in unconfirmed])
        text = (
            f"Consegui agendar {done}. Para {rest}, preciso que você confirme "
            "os horários novamente, por favor."
        )
    logger.info("Reconciliation rewrote the answer: %d planned, %d booked", len(plan), len(booked))
    return FinalAnswer(text=text, metadata=metadata), True
