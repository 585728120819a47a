"""Prompt composition for the salon receptionist.

``compose`` is a pure function: business profile + session history + clock
in, immutable ``ContextBundle`` out.  The remaining templates are the
instructions used by the individual orchestration stages.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from receptionist.config import PROMPT_HISTORY_LIMIT
from receptionist.engine.models import ChatEntry, ContextBundle
from receptionist.profile import BusinessProfile

# The exact envelope every final answer must use.
RESPONSE_SCHEMA: dict = {
    "text": "<the message sent to the customer>",
    "metadata": {
        "intent": "<booking | cancellation | reschedule | availability | information | greeting | other>",
        "mentioned_slots": ["HH:MM"],
        "booked_slots": ["HH:MM"],
        "mentioned_services": ["<service name>"],
        "reference_date": "YYYY-MM-DD",
        "confidence": 0.0,
    },
}

SYSTEM_PROMPT_TEMPLATE = """{persona}

## Current Date & Time
Today is **{current_date}** ({current_day_of_week}). The current time is **{current_time}** ({timezone}).
Use this to resolve relative dates like "hoje", "amanhã", "today" or "tomorrow".

## Business
- Name: {name}
- Address: {address}
- Contact phone: {contact_phone}

## Opening Hours
{opening_hours}

## Services
{services}

## Policies
{extra_facts}

## Conversation Guidelines
- Reply in the customer's language ({language} unless the customer writes in another one).
- Be warm, professional and concise. This is a chat on a phone: keep it short.
- **NEVER** invent available times. Only offer times returned by `checkAvailableTimes`.
- **NEVER** say an appointment is booked unless `createAppointment` returned success.
- When the customer asks for several services or times, call the tools once per action.
- If a tool returns an error, explain the problem in plain words without technical detail.
- If you cannot help, offer to call a human with `requestHumanAgent`.

## Response Format
When you are done with the tools, reply with ONE JSON object and nothing else, exactly in this shape:
{schema}
`booked_slots` lists only times booked successfully in this turn. `confidence` is a number from 0 to 1.
"""


def _format_services(profile: BusinessProfile) -> str:
    if not profile.services:
        return "- (use `listServices` to fetch the menu)"
    return "\n".join(
        f"- {s.name}: {s.duration_minutes} min, R$ {s.price:.2f}"
        + (f" ({s.description})" if s.description else "")
        for s in profile.services
    )


def _bullets(items: Sequence[str], empty: str) -> str:
    return "\n".join(f"- {item}" for item in items) if items else f"- {empty}"


def local_now(profile: BusinessProfile, now: datetime | None = None) -> datetime:
    """Current time in the business time zone."""
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return now.astimezone(ZoneInfo(profile.timezone))


def get_system_prompt(profile: BusinessProfile, now: datetime | None = None) -> str:
    """Render the system prompt for *profile* with the clock injected."""
    local = local_now(profile, now)
    return SYSTEM_PROMPT_TEMPLATE.format(
        persona=profile.persona,
        current_date=local.strftime("%Y-%m-%d"),
        current_day_of_week=local.strftime("%A"),
        current_time=local.strftime("%H:%M"),
        timezone=profile.timezone,
        name=profile.name,
        address=profile.address or "(not informed)",
        contact_phone=profile.contact_phone or "(not informed)",
        opening_hours=_bullets(profile.opening_hours, "use `getBusinessHours`"),
        services=_format_services(profile),
        extra_facts=_bullets(profile.extra_facts, "none"),
        language=profile.language,
        schema=json.dumps(RESPONSE_SCHEMA, ensure_ascii=False, indent=2),
    )


def compose(
    profile: BusinessProfile,
    history: Sequence[ChatEntry],
    now: datetime | None = None,
    history_limit: int = PROMPT_HISTORY_LIMIT,
) -> ContextBundle:
    """Build the prompt context for one turn.

    Only the most recent *history_limit* entries are carried; the session
    itself is not touched.
    """
    local = local_now(profile, now)
    recent = tuple(history[-history_limit:]) if history_limit > 0 else ()
    return ContextBundle(
        system_prompt=get_system_prompt(profile, local),
        history=recent,
        current_datetime=local.isoformat(timespec="minutes"),
    )


# ── Stage instructions ───────────────────────────────────────────────

ANALYSIS_PROMPT = """Analyse the customer's latest message for a salon booking assistant.

Latest message:
"{message}"

Recent conversation:
{history}

Known services: {services}
Today is {today}.

Instructions:
1. Identify exactly what the customer is asking (booking, cancellation, reschedule, question, other).
2. Check whether the customer requests MULTIPLE ACTIONS in a single message.
3. If several services, times or dates are mentioned, describe each one separately.
4. For bookings, list every service with its time, using the exact service names above.

Reply in this format:
- Request type: [booking/cancellation/reschedule/question/other]
- Multiple actions: [yes/no]
- Actions:
  1. Service: <name>, Time: <HH:MM>, Date: <today/tomorrow/YYYY-MM-DD>
  2. ...
- Ambiguities: [list]
"""

PENDING_ACTIONS_INSTRUCTION = """The following requested actions have NOT been executed yet:
{pending}

Execute them now with the tools, one call per action. Do NOT ask the customer to confirm them again."""

SUMMARY_INSTRUCTION = """The tool budget for this message is exhausted. Do not call any more tools.
Summarise for the customer what was actually accomplished above and what still needs their input.
Reply with the JSON object described in the system prompt."""

REPAIR_PROMPT = """The text below was supposed to be a single JSON object with this shape:
{schema}

Reformat the SAME content into that JSON object. Preserve all information, do not add or drop facts.
Reply with the JSON object only.

Text:
{raw}"""

REGENERATION_PROMPT = """Your answer mentions these times, but they were not returned as available and were not booked:
{conflicts}

Times the tools reported as available: {available}

Rewrite the answer removing the inconsistent times. Keep the same friendly style and the same JSON format.

Original answer:
{answer}"""

REVIEW_PROMPT = """You are the quality reviewer for a salon assistant that chats with customers on WhatsApp.
Base prompt of the assistant:
{base_prompt}

---

Check the answer below:
1. It must not expose technical error information.
2. It must be consistent with the conversation.
3. It must give accurate, useful information.

If the answer is fine, reply only "APPROVED".
Otherwise reply "REJECTED", a short explanation and a corrected version prefixed with
"Corrected version:". Do not invent information; adjust only what is needed.

Answer to review: "{answer}"

Conversation: {history}"""
