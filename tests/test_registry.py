"""Tests for the tool registry."""

from __future__ import annotations

import pytest

from receptionist.tools.registry import (
    PERMISSION_DENIED,
    ToolRegistry,
    build_default_registry,
    is_success,
)


@pytest.fixture
def registry():
    reg = ToolRegistry()

    @reg.tool("echo", "Echo the text back.", {"text": {"type": "string"}}, required=("text",))
    async def echo(ctx, text):
        return {"echo": text, "user": ctx.user_id}

    @reg.tool("explode", "Always fails.")
    async def explode(ctx):
        raise RuntimeError("handler bug")

    @reg.tool("bare", "Returns a non-dict.")
    async def bare(ctx):
        return ["a", "b"]

    @reg.tool("secret", "Admin only.", privileged=True)
    async def secret(ctx):
        return {"ok": True}

    return reg


class TestRegistration:
    def test_duplicate_name_is_rejected(self, registry):
        with pytest.raises(ValueError, match="already registered"):
            registry.tool("echo", "again")(lambda ctx: None)

    def test_catalog_hides_privileged_tools(self, registry):
        names = [entry["name"] for entry in registry.catalog()]
        assert "secret" not in names
        assert "echo" in names

    def test_privileged_catalog_includes_everything(self, registry):
        assert registry.names(privileged=True) == ["echo", "explode", "bare", "secret"]

    def test_catalog_entry_shape(self, registry):
        entry = next(e for e in registry.catalog() if e["name"] == "echo")
        assert entry["description"] == "Echo the text back."
        assert entry["input_schema"]["required"] == ["text"]
        assert entry["input_schema"]["properties"]["text"] == {"type": "string"}


class TestExecute:
    @pytest.mark.asyncio
    async def test_runs_handler_with_context(self, registry, tool_ctx):
        result = await registry.execute("echo", {"text": "oi"}, tool_ctx)
        assert result == {"echo": "oi", "user": "5522999990000"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry, tool_ctx):
        result = await registry.execute("teleport", {}, tool_ctx)
        assert result == {"error": "unknown tool: teleport"}

    @pytest.mark.asyncio
    async def test_privileged_tool_denied_for_customer(self, registry, tool_ctx):
        result = await registry.execute("secret", {}, tool_ctx, privileged=False)
        assert result == {"error": PERMISSION_DENIED}

    @pytest.mark.asyncio
    async def test_privileged_tool_allowed_for_admin(self, registry, tool_ctx):
        assert await registry.execute("secret", {}, tool_ctx, privileged=True) == {"ok": True}

    @pytest.mark.asyncio
    async def test_missing_required_argument(self, registry, tool_ctx):
        result = await registry.execute("echo", {}, tool_ctx)
        assert result == {"error": "missing required argument(s): text"}

    @pytest.mark.asyncio
    async def test_unexpected_arguments_are_dropped(self, registry, tool_ctx):
        result = await registry.execute("echo", {"text": "oi", "extra": 1}, tool_ctx)
        assert result["echo"] == "oi"

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error(self, registry, tool_ctx):
        result = await registry.execute("explode", None, tool_ctx)
        assert result == {"error": "explode failed: RuntimeError"}
        assert not is_success(result)

    @pytest.mark.asyncio
    async def test_non_dict_result_is_wrapped(self, registry, tool_ctx):
        assert await registry.execute("bare", {}, tool_ctx) == {"result": ["a", "b"]}


class TestDefaultRegistry:
    def test_customer_catalog(self):
        names = build_default_registry().names()
        assert {"listServices", "checkAvailableTimes", "createAppointment", "cancelAppointment"} <= set(names)
        assert not any(name.startswith("admin_") for name in names)

    def test_admin_tools_are_privileged(self):
        registry = build_default_registry()
        admin = [n for n in registry.names(privileged=True) if n.startswith("admin_")]
        assert len(admin) == 7
        assert all(registry.get(n).privileged for n in admin)
