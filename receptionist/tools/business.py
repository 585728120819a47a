"""Business information tools: services, opening hours, contact details and
handing the conversation over to a human."""

from __future__ import annotations

import logging
from typing import Any

from receptionist.services.record_store import RecordStoreError
from receptionist.tools.registry import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)


def _profile_services(ctx: ToolContext) -> list[dict[str, Any]]:
    if ctx.profile is None:
        return []
    return [
        {"name": s.name, "duration_minutes": s.duration_minutes, "price": s.price, "description": s.description}
        for s in ctx.profile.services
    ]


async def list_services(ctx: ToolContext) -> dict[str, Any]:
    """Active services from the store; the profile's menu if the store is down."""
    try:
        rows = await ctx.store.list_services(ctx.business_id)
    except RecordStoreError as exc:
        logger.warning("listServices falling back to profile menu: %s", exc)
        services = _profile_services(ctx)
        if not services:
            return {"error": "Could not load the service list right now."}
        return {"services": services}

    services = [
        {
            "name": row.get("name"),
            "duration_minutes": row.get("duration_minutes"),
            "price": row.get("price"),
            "description": row.get("description") or "",
        }
        for row in rows
    ]
    return {"services": services or _profile_services(ctx)}


async def get_business_hours(ctx: ToolContext) -> dict[str, Any]:
    try:
        row = await ctx.store.get_business(ctx.business_id)
    except RecordStoreError as exc:
        logger.warning("getBusinessHours falling back to profile: %s", exc)
        row = None
    hours = ((row or {}).get("config") or {}).get("businessHours")
    if hours:
        return {"business_hours": hours}
    if ctx.profile is not None and ctx.profile.opening_hours:
        return {"business_hours": list(ctx.profile.opening_hours)}
    return {"error": "Opening hours are not configured."}


async def get_business_info(ctx: ToolContext) -> dict[str, Any]:
    try:
        row = await ctx.store.get_business(ctx.business_id) or {}
    except RecordStoreError as exc:
        logger.warning("getBusinessInfo falling back to profile: %s", exc)
        row = {}
    config = row.get("config") or {}
    profile = ctx.profile
    info = {
        "name": row.get("name") or (profile.name if profile else None),
        "address": config.get("address") or (profile.address if profile else None),
        "phone": config.get("phone") or config.get("contactPhone") or (profile.contact_phone if profile else None),
        "description": config.get("description"),
        "payment_methods": config.get("paymentMethods"),
    }
    if profile is not None and profile.extra_facts:
        info["policies"] = list(profile.extra_facts)
    info = {k: v for k, v in info.items() if v}
    if not info:
        return {"error": "Business information is not available."}
    return info


async def request_human_agent(ctx: ToolContext, reason: str | None = None) -> dict[str, Any]:
    try:
        await ctx.store.request_human_agent(ctx.business_id, ctx.user_id, reason or "customer request")
    except RecordStoreError as exc:
        logger.error("Failed to request a human agent for %s: %s", ctx.user_id, exc)
        return {"error": "Could not reach the team right now."}
    logger.info("Human agent requested for %s (business %s)", ctx.user_id, ctx.business_id)
    return {"success": True, "message": "A team member has been notified and will reply soon."}


def register(registry: ToolRegistry) -> None:
    registry.tool("listServices", "List the services offered, with duration and price.")(list_services)
    registry.tool("getBusinessHours", "Get the opening hours of the business.")(get_business_hours)
    registry.tool("getBusinessInfo", "Get the business's name, address, phone and policies.")(get_business_info)
    registry.tool(
        "requestHumanAgent",
        "Hand the conversation to a human when you cannot help or the customer asks for a person.",
        {"reason": {"type": "string", "description": "Why a human is needed (optional)."}},
    )(request_human_agent)
