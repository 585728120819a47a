"""Plan extraction: which actions does the customer's message ask for?

The analysis pass asks the cheap model, deterministically, to spell out
every requested action.  ``extract_plan`` then pattern-matches that text into
``PlannedAction`` values.  The plan is a hint for reconciliation, never a
source of truth: any failure simply yields an empty plan.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Sequence
from datetime import date, datetime

from receptionist.engine.invoker import DETERMINISTIC, ReasoningEngineError, ReasoningInvoker
from receptionist.engine.models import ChatEntry, PlannedAction
from receptionist.prompts import ANALYSIS_PROMPT
from receptionist.profile import ServiceOffering

logger = logging.getLogger(__name__)

DEFAULT_DATE = "tomorrow"

# 14:00, 14.30, 14h, 14h30, 9h; minutes are required after ":" or ".".
# Amounts after a currency sign (R$ 15.00) are not times.
_TIME_RE = re.compile(
    r"(?<![\d/:.$])(?<!\$\s)([01]?\d|2[0-3])(?:[:.]([0-5]\d)|h([0-5]\d)?)(?![\d/]|\.\d)",
    re.IGNORECASE,
)
_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_BR_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
_RELATIVE_DATES = {
    "hoje": "today",
    "today": "today",
    "amanhã": "tomorrow",
    "amanha": "tomorrow",
    "tomorrow": "tomorrow",
}
_RELATIVE_RE = re.compile(r"\b(" + "|".join(_RELATIVE_DATES) + r")\b", re.IGNORECASE)
_BOOKING_VERBS = re.compile(
    r"\b(agend\w*|marc\w*|reserv\w*|book\w*|schedul\w*|cancel\w*|desmarc\w*|remarc\w*|reagend\w*|"
    r"resched\w*|quero|gostaria|hor[aá]rio\w*|appointment)\b",
    re.IGNORECASE,
)


# ── Pattern matching ─────────────────────────────────────────────────


def _service_pattern(services: Sequence[ServiceOffering]) -> tuple[re.Pattern[str], dict[str, str]] | None:
    """Build one alternation over every name and alias, longest first."""
    lookup: dict[str, str] = {}
    for service in services:
        for alias in service.all_names():
            lookup.setdefault(alias.lower(), service.name)
    if not lookup:
        return None
    alternatives = sorted(lookup, key=len, reverse=True)
    pattern = re.compile(
        r"(?<!\w)(" + "|".join(re.escape(a) for a in alternatives) + r")(?!\w)",
        re.IGNORECASE,
    )
    return pattern, lookup


def find_services(text: str, services: Sequence[ServiceOffering]) -> list[str]:
    """Canonical service names in order of appearance (repeats kept)."""
    compiled = _service_pattern(services)
    if compiled is None:
        return []
    pattern, lookup = compiled
    return [lookup[m.group(1).lower()] for m in pattern.finditer(text)]


def find_times(text: str) -> list[str]:
    """Time-of-day tokens normalised to ``HH:MM``."""
    times: list[str] = []
    for match in _TIME_RE.finditer(text):
        hour, minute = match.group(1), match.group(2) or match.group(3) or "00"
        times.append(f"{int(hour):02d}:{minute}")
    return times


def find_dates(text: str) -> list[str]:
    """Date tokens normalised to ``today``/``tomorrow`` or ISO ``YYYY-MM-DD``."""
    found: list[tuple[int, str]] = []
    for match in _RELATIVE_RE.finditer(text):
        found.append((match.start(), _RELATIVE_DATES[match.group(1).lower()]))
    for match in _ISO_DATE_RE.finditer(text):
        try:
            found.append((match.start(), date(int(match[1]), int(match[2]), int(match[3])).isoformat()))
        except ValueError:
            continue
    for match in _BR_DATE_RE.finditer(text):
        try:
            found.append((match.start(), date(int(match[3]), int(match[2]), int(match[1])).isoformat()))
        except ValueError:
            continue
    return [value for _, value in sorted(found)]


def extract_plan(analysis: str, services: Sequence[ServiceOffering]) -> list[PlannedAction]:
    """Turn analysis text into planned actions.

    The i-th service is paired with the i-th time; extra services or times
    are ignored.  The date is the single distinct date mentioned, otherwise
    ``"tomorrow"``.  Never raises.
    """
    try:
        if not analysis:
            return []
        found_services = find_services(analysis, services)
        found_times = find_times(analysis)
        distinct_dates = list(dict.fromkeys(find_dates(analysis)))
        plan_date = distinct_dates[0] if len(distinct_dates) == 1 else DEFAULT_DATE
        return [
            PlannedAction(service=service, time=slot, date=plan_date)
            for service, slot in zip(found_services, found_times)
        ]
    except Exception:
        logger.exception("Plan extraction failed")
        return []


def looks_actionable(message: str, services: Sequence[ServiceOffering]) -> bool:
    """Cheap gate for the analysis pass."""
    if not message or not message.strip():
        return False
    return bool(
        find_services(message, services)
        or find_times(message)
        or find_dates(message)
        or _BOOKING_VERBS.search(message)
    )


# ── Analysis pass ────────────────────────────────────────────────────


def _history_excerpt(history: Iterable[ChatEntry], limit: int = 5) -> str:
    recent = list(history)[-limit:]
    return json.dumps([{"role": e.role, "content": e.content} for e in recent], ensure_ascii=False)


class PlanExtractor:
    """Runs the analysis call and extracts a plan from it."""

    def __init__(self, invoker: ReasoningInvoker, enabled: bool = True) -> None:
        self._invoker = invoker
        self._enabled = enabled

    async def analyze(
        self,
        message: str,
        history: Sequence[ChatEntry],
        services: Sequence[ServiceOffering],
        now: datetime,
    ) -> tuple[str, list[PlannedAction]]:
        """Return ``(analysis_text, plan)``; ``("", [])`` when skipped or failed."""
        if not self._enabled or not looks_actionable(message, services):
            return "", []

        prompt = ANALYSIS_PROMPT.format(
            message=message,
            history=_history_excerpt(history),
            services=", ".join(s.name for s in services) or "(unknown)",
            today=now.strftime("%Y-%m-%d (%A)"),
        )
        try:
            analysis = await self._invoker.complete(prompt, sampling=DETERMINISTIC, operation="analysis")
        except ReasoningEngineError as exc:
            logger.warning("Analysis pass failed, continuing without a plan: %s", exc)
            return "", []

        plan = extract_plan(analysis, services)
        logger.debug("Analysis produced %d planned action(s)", len(plan))
        return analysis, plan
