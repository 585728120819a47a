"""Booking tools: availability, create, list, cancel, reschedule.

Each handler wraps a ``RecordStoreClient`` call and returns a small JSON
dict the model can quote back to the customer.  Store failures come back as
``{"error": ...}`` with a customer-safe message; the technical detail only
goes to the log.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import Any

from receptionist.services.record_store import RecordStoreError
from receptionist.tools.registry import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)

_RELATIVE_DAYS = {"hoje": 0, "today": 0, "amanhã": 1, "amanha": 1, "tomorrow": 1}
_BR_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_TIME_RE = re.compile(r"^([01]?\d|2[0-3])\s*(?::|h|\.)?\s*([0-5]\d)?$", re.IGNORECASE)


def resolve_date(value: str, now: datetime) -> str:
    """Resolve ``hoje``/``amanhã``/``today``/``tomorrow`` and ``DD/MM/YYYY``
    to ISO ``YYYY-MM-DD`` against *now*.  Anything else is returned as-is."""
    raw = (value or "").strip()
    offset = _RELATIVE_DAYS.get(raw.lower())
    if offset is not None:
        return (now.date() + timedelta(days=offset)).isoformat()
    match = _BR_DATE_RE.match(raw)
    if match:
        try:
            return date(int(match[3]), int(match[2]), int(match[1])).isoformat()
        except ValueError:
            return raw
    return raw


def normalize_time(value: str) -> str | None:
    """``14h`` / ``14.30`` / ``9:00`` → ``HH:MM``; ``None`` if unparseable."""
    match = _TIME_RE.match((value or "").strip())
    if not match:
        return None
    return f"{int(match[1]):02d}:{match[2] or '00'}"


def _is_iso_date(value: str) -> bool:
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _store_error(action: str, exc: RecordStoreError) -> dict[str, Any]:
    logger.error("Failed to %s: %s", action, exc)
    if exc.status_code and 400 <= exc.status_code < 500:
        return {"error": f"Could not {action}: the request was rejected."}
    return {"error": f"Could not {action} right now. Please try again in a moment."}


# ── Handlers ─────────────────────────────────────────────────────────


async def check_available_dates(
    ctx: ToolContext,
    serviceName: str | None = None,
    referenceMonth: str | None = None,
) -> dict[str, Any]:
    try:
        dates = await ctx.store.available_dates(ctx.business_id, serviceName, referenceMonth)
    except RecordStoreError as exc:
        return _store_error("check available dates", exc)
    available = [d for d in dates if d.get("hasAvailability", True)]
    return {"service": serviceName, "dates": available}


async def check_available_times(ctx: ToolContext, serviceName: str, date: str) -> dict[str, Any]:
    day = resolve_date(date, ctx.now)
    if not _is_iso_date(day):
        return {"error": f"Invalid date {date!r}; use YYYY-MM-DD."}
    try:
        times = await ctx.store.available_times(ctx.business_id, day, serviceName)
    except RecordStoreError as exc:
        return _store_error("check available times", exc)
    return {"service": serviceName, "date": day, "times": times}


async def create_appointment(
    ctx: ToolContext,
    serviceName: str,
    date: str,
    time: str,
    customerName: str | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    day = resolve_date(date, ctx.now)
    if not _is_iso_date(day):
        return {"error": f"Invalid date {date!r}; use YYYY-MM-DD."}
    slot = normalize_time(time)
    if slot is None:
        return {"error": f"Invalid time {time!r}; use HH:MM."}

    try:
        appointment = await ctx.store.create_appointment(
            ctx.business_id, ctx.user_id, serviceName, day, slot,
            customer_name=customerName, notes=notes,
        )
    except RecordStoreError as exc:
        return _store_error("create the appointment", exc)

    if isinstance(appointment, dict) and appointment.get("error"):
        return {"error": str(appointment["error"])}
    return {
        "success": True,
        "service": serviceName,
        "date": day,
        "time": slot,
        "appointment_id": (appointment or {}).get("appointment_id"),
    }


async def list_my_appointments(ctx: ToolContext) -> dict[str, Any]:
    try:
        appointments = await ctx.store.list_appointments(ctx.business_id, ctx.user_id)
    except RecordStoreError as exc:
        return _store_error("list your appointments", exc)
    return {"appointments": appointments, "count": len(appointments)}


async def cancel_appointment(ctx: ToolContext, appointmentDate: str, appointmentTime: str) -> dict[str, Any]:
    day = resolve_date(appointmentDate, ctx.now)
    slot = normalize_time(appointmentTime)
    if slot is None or not _is_iso_date(day):
        return {"error": "Invalid date or time for the appointment to cancel."}
    try:
        result = await ctx.store.cancel_appointment(ctx.business_id, ctx.user_id, day, slot)
    except RecordStoreError as exc:
        return _store_error("cancel the appointment", exc)
    if isinstance(result, dict) and result.get("error"):
        return {"error": str(result["error"])}
    return {"success": True, "date": day, "time": slot}


async def reschedule_appointment(
    ctx: ToolContext,
    originalDate: str,
    originalTime: str,
    newDate: str,
    newTime: str,
) -> dict[str, Any]:
    old_day, new_day = resolve_date(originalDate, ctx.now), resolve_date(newDate, ctx.now)
    old_slot, new_slot = normalize_time(originalTime), normalize_time(newTime)
    if None in (old_slot, new_slot) or not (_is_iso_date(old_day) and _is_iso_date(new_day)):
        return {"error": "Invalid date or time for rescheduling."}
    try:
        result = await ctx.store.reschedule_appointment(
            ctx.business_id, ctx.user_id, old_day, old_slot, new_day, new_slot,
        )
    except RecordStoreError as exc:
        return _store_error("reschedule the appointment", exc)
    if isinstance(result, dict) and result.get("error"):
        return {"error": str(result["error"])}
    return {"success": True, "from": f"{old_day} {old_slot}", "to": f"{new_day} {new_slot}"}


# ── Registration ─────────────────────────────────────────────────────

_DATE = {"type": "string", "description": "Date as YYYY-MM-DD (hoje/amanhã are also accepted)."}
_TIME = {"type": "string", "description": "Start time as HH:MM, e.g. 09:00 or 14:30."}
_SERVICE = {"type": "string", "description": "Exact service name as listed by listServices."}


def register(registry: ToolRegistry) -> None:
    registry.tool(
        "checkAvailableDates",
        "List the next dates with free slots, optionally for one service.",
        {
            "serviceName": {**_SERVICE, "description": "Service to check (optional)."},
            "referenceMonth": {"type": "string", "description": "Month as YYYY-MM (optional)."},
        },
    )(check_available_dates)
    registry.tool(
        "checkAvailableTimes",
        "List the free start times for a service on a date. Only offer times returned here.",
        {"serviceName": _SERVICE, "date": _DATE},
        required=("serviceName", "date"),
    )(check_available_times)
    registry.tool(
        "createAppointment",
        "Book one appointment for the current customer. Call once per service and time.",
        {
            "serviceName": _SERVICE,
            "date": _DATE,
            "time": _TIME,
            "customerName": {"type": "string", "description": "Customer's name, if known."},
            "notes": {"type": "string", "description": "Optional notes for the professional."},
        },
        required=("serviceName", "date", "time"),
    )(create_appointment)
    registry.tool(
        "listMyAppointments",
        "List the current customer's upcoming appointments.",
    )(list_my_appointments)
    registry.tool(
        "cancelAppointment",
        "Cancel the current customer's appointment at the given date and time.",
        {"appointmentDate": _DATE, "appointmentTime": _TIME},
        required=("appointmentDate", "appointmentTime"),
    )(cancel_appointment)
    registry.tool(
        "rescheduleAppointment",
        "Move the current customer's appointment to a new date and time.",
        {"originalDate": _DATE, "originalTime": _TIME, "newDate": _DATE, "newTime": _TIME},
        required=("originalDate", "originalTime", "newDate", "newTime"),
    )(reschedule_appointment)
