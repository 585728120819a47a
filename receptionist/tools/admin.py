"""Privileged tools, offered only when the sender is the business's admin.

The registry rejects these for ordinary customers with
``{"error": "permission denied"}`` before a handler ever runs.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from receptionist.services.record_store import RecordStoreError
from receptionist.tools.registry import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)


def _failed(action: str, exc: RecordStoreError) -> dict[str, Any]:
    logger.error("Admin action %s failed: %s", action, exc)
    return {"error": f"Could not {action}."}


async def view_current_prompt(ctx: ToolContext) -> dict[str, Any]:
    try:
        row = await ctx.store.get_business(ctx.business_id) or {}
    except RecordStoreError as exc:
        return _failed("load the current prompt", exc)
    prompt = (row.get("config") or {}).get("defaultPrompt")
    if not prompt and ctx.profile is not None:
        prompt = ctx.profile.persona
    return {"prompt": prompt or ""}


async def update_prompt(ctx: ToolContext, newPrompt: str) -> dict[str, Any]:
    try:
        await ctx.store.update_prompt(ctx.business_id, newPrompt)
    except RecordStoreError as exc:
        return _failed("update the prompt", exc)
    logger.info("Prompt updated for business %s by %s", ctx.business_id, ctx.user_id)
    return {"success": True}


async def list_services(ctx: ToolContext) -> dict[str, Any]:
    try:
        rows = await ctx.store.list_services(ctx.business_id, include_inactive=True)
    except RecordStoreError as exc:
        return _failed("list services", exc)
    return {"services": rows}


async def add_service(
    ctx: ToolContext,
    name: str,
    durationMinutes: int,
    price: float,
    description: str | None = None,
) -> dict[str, Any]:
    try:
        duration, amount = int(durationMinutes), float(price)
    except (TypeError, ValueError):
        return {"error": "durationMinutes and price must be numbers."}
    if duration <= 0 or amount < 0:
        return {"error": "durationMinutes must be positive and price cannot be negative."}
    try:
        row = await ctx.store.add_service(ctx.business_id, name, duration, amount, description or "")
    except RecordStoreError as exc:
        return _failed("add the service", exc)
    return {"success": True, "service": row}


async def update_service(
    ctx: ToolContext,
    currentServiceName: str,
    newName: str | None = None,
    durationMinutes: int | None = None,
    price: float | None = None,
    description: str | None = None,
    active: bool | None = None,
) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    if newName:
        changes["name"] = newName
    if durationMinutes is not None:
        changes["duration_minutes"] = int(durationMinutes)
    if price is not None:
        changes["price"] = float(price)
    if description is not None:
        changes["description"] = description
    if active is not None:
        changes["active"] = bool(active)
    if not changes:
        return {"error": "Nothing to update."}
    try:
        row = await ctx.store.update_service(ctx.business_id, currentServiceName, changes)
    except RecordStoreError as exc:
        return _failed("update the service", exc)
    if row is None:
        return {"error": f"Service {currentServiceName!r} not found."}
    return {"success": True, "service": row}


async def list_appointments(
    ctx: ToolContext,
    date: str | None = None,
    status: str | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    try:
        rows = await ctx.store.list_all_appointments(
            ctx.business_id, date=date, status=status, limit=int(limit or 20),
        )
    except RecordStoreError as exc:
        return _failed("list appointments", exc)
    return {"appointments": rows, "count": len(rows)}


async def create_schedule_block(ctx: ToolContext, title: str, startTimeIso: str, endTimeIso: str) -> dict[str, Any]:
    try:
        start, end = datetime.fromisoformat(startTimeIso), datetime.fromisoformat(endTimeIso)
    except ValueError:
        return {"error": "startTimeIso and endTimeIso must be ISO 8601 datetimes."}
    if end <= start:
        return {"error": "endTimeIso must be after startTimeIso."}
    try:
        row = await ctx.store.create_schedule_block(ctx.business_id, title, startTimeIso, endTimeIso)
    except RecordStoreError as exc:
        return _failed("create the schedule block", exc)
    return {"success": True, "block": row}


def register(registry: ToolRegistry) -> None:
    registry.tool(
        "admin_viewCurrentPrompt", "[Admin] Show the assistant's current base prompt.", privileged=True,
    )(view_current_prompt)
    registry.tool(
        "admin_updatePrompt",
        "[Admin] Replace the assistant's base prompt.",
        {"newPrompt": {"type": "string", "description": "The full new prompt."}},
        required=("newPrompt",),
        privileged=True,
    )(update_prompt)
    registry.tool(
        "admin_listServices", "[Admin] List every service, including inactive ones.", privileged=True,
    )(list_services)
    registry.tool(
        "admin_addService",
        "[Admin] Add a service to the menu.",
        {
            "name": {"type": "string"},
            "durationMinutes": {"type": "number"},
            "price": {"type": "number"},
            "description": {"type": "string"},
        },
        required=("name", "durationMinutes", "price"),
        privileged=True,
    )(add_service)
    registry.tool(
        "admin_updateService",
        "[Admin] Change a service's name, duration, price, description or active flag.",
        {
            "currentServiceName": {"type": "string"},
            "newName": {"type": "string"},
            "durationMinutes": {"type": "number"},
            "price": {"type": "number"},
            "description": {"type": "string"},
            "active": {"type": "boolean"},
        },
        required=("currentServiceName",),
        privileged=True,
    )(update_service)
    registry.tool(
        "admin_listAppointments",
        "[Admin] List appointments, optionally filtered by date (YYYY-MM-DD) and status.",
        {
            "date": {"type": "string"},
            "status": {"type": "string", "description": "scheduled, confirmed, cancelled, completed, no_show or all."},
            "limit": {"type": "number"},
        },
        privileged=True,
    )(list_appointments)
    registry.tool(
        "admin_createScheduleBlock",
        "[Admin] Block a period of the agenda (holiday, break, maintenance).",
        {
            "title": {"type": "string"},
            "startTimeIso": {"type": "string", "description": "ISO 8601 start, e.g. 2025-05-10T12:00:00"},
            "endTimeIso": {"type": "string", "description": "ISO 8601 end."},
        },
        required=("title", "startTimeIso", "endTimeIso"),
        privileged=True,
    )(create_schedule_block)
