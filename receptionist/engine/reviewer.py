"""Consistency review of the final answer before it is sent.

Two independent checks:

1. **Ground truth** — times the answer offers must come from a successful
   ``checkAvailableTimes`` call in this turn (or have just been booked).
   Violations trigger a bounded, deterministic regeneration; if that does
   not fix it the text becomes the profile's "let me re-check" message.
2. **LLM review** — an optional APPROVED/REJECTED pass that can replace the
   text with a corrected version.  Any failure ships the draft unchanged.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from receptionist.config import MAX_REGENERATIONS, REVIEW_ENABLED
from receptionist.engine.invoker import DETERMINISTIC, ReasoningEngineError, ReasoningInvoker
from receptionist.engine.models import ActionRecord, ChatEntry, FinalAnswer
from receptionist.engine.validator import contains_markup, parse_answer, plain_text
from receptionist.profile import BusinessProfile
from receptionist.prompts import REGENERATION_PROMPT, REVIEW_PROMPT

logger = logging.getLogger(__name__)

AVAILABILITY_TOOL = "checkAvailableTimes"
MIN_CORRECTION_LENGTH = 20

# Bold variants first: the plain forms are substrings of them.
CORRECTION_INDICATORS = (
    "**Corrected version:**",
    "Corrected version:",
    "Corrected answer:",
    "Resposta corrigida:",
    "**Versão Corrigida:**",
    "**Versão corrigida:**",
    "Versão Corrigida:",
    "Versão corrigida:",
    "VERSÃO CORRIGIDA:",
    "Versão revisada:",
    "Sugestão de correção:",
)
_QUOTED_RE = re.compile(r'"([^"]+)"')


@dataclass(frozen=True)
class ReviewVerdict:
    approved: bool
    corrected_text: str | None = None


# ── Ground-truth check ───────────────────────────────────────────────


def reported_availability(records: Sequence[ActionRecord]) -> set[str] | None:
    """Times returned by successful availability lookups, or ``None`` if none ran."""
    lookups = [r for r in records if r.tool_name == AVAILABILITY_TOOL and r.success]
    if not lookups:
        return None
    times: set[str] = set()
    for record in lookups:
        times.update(str(t) for t in record.result.get("times") or [])
    return times


def find_conflicts(answer: FinalAnswer, records: Sequence[ActionRecord]) -> list[str]:
    """Mentioned slots that neither the tools reported free nor were booked."""
    available = reported_availability(records)
    if available is None:
        return []
    allowed = available | set(answer.metadata.booked_slots)
    return [slot for slot in answer.metadata.mentioned_slots if slot not in allowed]


# ── LLM review parsing ───────────────────────────────────────────────


def extract_correction(review: str) -> str | None:
    """Pull the corrected text out of a REJECTED review.

    The correction may come back as a full answer envelope (the review
    prompt embeds the base prompt); only its ``text`` is kept.
    """
    for indicator in CORRECTION_INDICATORS:
        if indicator in review:
            corrected = plain_text(review.split(indicator, 1)[1])
            if corrected:
                return corrected
    envelope = parse_answer(review)
    if envelope is not None and envelope.text.strip():
        return envelope.text.strip()
    match = _QUOTED_RE.search(review)
    if match:
        return match.group(1).strip()
    return None


class ConsistencyReviewer:
    def __init__(
        self,
        invoker: ReasoningInvoker,
        max_regenerations: int = MAX_REGENERATIONS,
        review_enabled: bool = REVIEW_ENABLED,
    ) -> None:
        self._invoker = invoker
        self._max_regenerations = max_regenerations
        self._review_enabled = review_enabled

    async def enforce_ground_truth(
        self,
        answer: FinalAnswer,
        records: Sequence[ActionRecord],
        profile: BusinessProfile,
    ) -> tuple[FinalAnswer, bool]:
        """Regenerate until consistent or out of attempts.

        Returns the answer and whether it differs from the input.
        """
        conflicts = find_conflicts(answer, records)
        if not conflicts:
            return answer, False

        available = sorted(reported_availability(records) or ())
        current = answer
        for attempt in range(1, self._max_regenerations + 1):
            logger.info("Answer offers unavailable times %s; regeneration %d", conflicts, attempt)
            prompt = REGENERATION_PROMPT.format(
                conflicts=", ".join(conflicts),
                available=", ".join(available) or "(none)",
                answer=current.model_dump_json(),
            )
            try:
                raw = await self._invoker.complete(prompt, sampling=DETERMINISTIC, operation="regenerate")
            except ReasoningEngineError:
                break
            regenerated = parse_answer(raw)
            if regenerated is None:
                continue
            regenerated = regenerated.model_copy(
                update={
                    "metadata": regenerated.metadata.model_copy(
                        update={"booked_slots": list(answer.metadata.booked_slots)}
                    )
                }
            )
            current = regenerated
            conflicts = find_conflicts(current, records)
            if not conflicts:
                return current, True

        logger.warning("Answer still inconsistent with availability; asking customer to re-check")
        fallback = answer.model_copy(
            update={
                "text": profile.recheck_availability_message,
                "metadata": answer.metadata.model_copy(update={"mentioned_slots": []}),
            }
        )
        return fallback, True

    async def review(
        self,
        answer: FinalAnswer,
        history: Sequence[ChatEntry],
        profile: BusinessProfile,
        base_prompt: str,
    ) -> ReviewVerdict:
        """Ask the model to approve or correct the text.  Never raises."""
        prompt = REVIEW_PROMPT.format(
            base_prompt=base_prompt,
            answer=answer.text,
            history=json.dumps([{"role": e.role, "content": e.content} for e in history], ensure_ascii=False),
        )
        try:
            result = await self._invoker.complete(prompt, sampling=DETERMINISTIC, operation="review")
        except ReasoningEngineError:
            logger.warning("Review unavailable; shipping unreviewed answer")
            return ReviewVerdict(approved=True)

        verdict = result.strip()
        if not verdict or verdict.upper().startswith("APPROVED"):
            return ReviewVerdict(approved=True)

        corrected = extract_correction(verdict)
        if not corrected or len(corrected) < MIN_CORRECTION_LENGTH or contains_markup(corrected):
            logger.info("Review rejected the answer without a usable correction")
            return ReviewVerdict(approved=False, corrected_text=profile.apology_message)
        logger.info("Review rejected the answer; using corrected version")
        return ReviewVerdict(approved=False, corrected_text=corrected)

    async def check(
        self,
        answer: FinalAnswer,
        records: Sequence[ActionRecord],
        history: Sequence[ChatEntry],
        profile: BusinessProfile,
        base_prompt: str,
        skip_review: bool = False,
    ) -> FinalAnswer:
        """Ground-truth enforcement, then the optional LLM review.

        *skip_review* is set for deterministic rewrites, which must reach the
        customer verbatim.
        """
        answer, _ = await self.enforce_ground_truth(answer, records, profile)
        if answer.text == profile.recheck_availability_message:
            skip_review = True
        if skip_review or not self._review_enabled:
            return answer
        verdict = await self.review(answer, history, profile, base_prompt)
        if verdict.approved or not verdict.corrected_text:
            return answer
        return answer.model_copy(update={"text": verdict.corrected_text})
