"""Tool registry: name → handler + JSON schema + privilege flag.

Handlers are plain async functions ``handler(ctx, **args) -> dict``.  A
handler reports failure by returning ``{"error": "..."}``; the registry
turns every other failure mode (unknown name, missing privilege, missing
arguments, exceptions) into the same shape, so ``execute`` never raises.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from receptionist.profile import BusinessProfile

logger = logging.getLogger(__name__)

PERMISSION_DENIED = "permission denied"

ToolHandler = Callable[..., Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class ToolContext:
    """Per-turn values every handler may need."""

    business_id: str
    user_id: str
    now: datetime
    store: Any
    profile: BusinessProfile | None = None


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    handler: ToolHandler
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    privileged: bool = False

    def as_catalog_entry(self) -> dict[str, Any]:
        """Anthropic tool definition (``name``, ``description``, ``input_schema``)."""
        return {"name": self.name, "description": self.description, "input_schema": self.parameters}


def is_success(result: dict[str, Any]) -> bool:
    return isinstance(result, dict) and "error" not in result


def _schema(properties: dict[str, Any] | None = None, required: Iterable[str] = ()) -> dict[str, Any]:
    return {"type": "object", "properties": properties or {}, "required": list(required)}


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> ToolSpec:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec
        return spec

    def tool(
        self,
        name: str,
        description: str,
        properties: dict[str, Any] | None = None,
        required: Iterable[str] = (),
        privileged: bool = False,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of ``register``."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.register(
                ToolSpec(
                    name=name,
                    description=description,
                    handler=handler,
                    parameters=_schema(properties, required),
                    privileged=privileged,
                )
            )
            return handler

        return decorator

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self, privileged: bool = False) -> list[str]:
        return [s.name for s in self._tools.values() if privileged or not s.privileged]

    def catalog(self, privileged: bool = False) -> list[dict[str, Any]]:
        """Tool definitions visible to the caller; privileged tools only for admins."""
        return [s.as_catalog_entry() for s in self._tools.values() if privileged or not s.privileged]

    async def execute(
        self,
        name: str,
        args: dict[str, Any] | None,
        ctx: ToolContext,
        privileged: bool = False,
    ) -> dict[str, Any]:
        """Run one tool and return its result or a structured ``{"error"}``."""
        spec = self._tools.get(name)
        if spec is None:
            logger.warning("Model requested unknown tool %s", name)
            return {"error": f"unknown tool: {name}"}
        if spec.privileged and not privileged:
            logger.warning("Denied privileged tool %s for %s", name, ctx.user_id)
            return {"error": PERMISSION_DENIED}

        args = dict(args or {})
        missing = [p for p in spec.parameters.get("required", []) if args.get(p) in (None, "")]
        if missing:
            return {"error": f"missing required argument(s): {', '.join(missing)}"}

        known = spec.parameters.get("properties", {})
        unexpected = [k for k in args if k not in known]
        for key in unexpected:
            args.pop(key)
        if unexpected:
            logger.debug("Dropped unexpected argument(s) for %s: %s", name, unexpected)

        try:
            result = await spec.handler(ctx, **args)
        except Exception as exc:
            logger.exception("Tool %s raised", name)
            return {"error": f"{name} failed: {type(exc).__name__}"}

        if not isinstance(result, dict):
            return {"result": result}
        return result


def build_default_registry() -> ToolRegistry:
    """Registry with every customer-facing and admin tool registered."""
    from receptionist.tools import admin, appointments, business

    registry = ToolRegistry()
    for module in (business, appointments, admin):
        module.register(registry)
    return registry
