"""
Unit тесты для ToolRegistry.
"""

import asyncio

import pytest

from cbo_bro.core.errors import ToolError, ToolPermissionError, ToolTimeoutError, UnknownToolError
from cbo_bro.models.session import default_permissions
from cbo_bro.services.tools import ToolRegistry


@pytest.fixture
def registry():
    return ToolRegistry.with_defaults(timeout=0.05)


def test_required_permissions(registry):
    assert registry.required_permission("notion.search") == "notion.read"
    assert registry.required_permission("notion.create") == "notion.write"
    assert registry.required_permission("supabase.query") == "supabase.read"
    assert registry.required_permission("supabase.insert") == "supabase.write"
    assert registry.required_permission("shell.exec") is None


def test_has_permission_with_default_context(registry):
    permissions = default_permissions()

    assert registry.has_permission("notion.search", permissions)
    assert not registry.has_permission("notion.create", permissions)
    assert not registry.has_permission("shell.exec", permissions)


@pytest.mark.asyncio
async def test_execute_pending_integration(registry):
    result = await registry.execute("notion.search", {"query": "q3"}, default_permissions())

    assert result == {
        "type": "notion.search",
        "status": "pending",
        "message": "Notion search integration pending",
    }


@pytest.mark.asyncio
async def test_execute_unknown_tool(registry):
    with pytest.raises(UnknownToolError):
        await registry.execute("shell.exec", {}, default_permissions())


@pytest.mark.asyncio
async def test_execute_without_permission(registry):
    with pytest.raises(ToolPermissionError) as exc_info:
        await registry.execute("supabase.insert", {}, default_permissions())

    assert exc_info.value.message == "Permission denied for tool: supabase.insert"


@pytest.mark.asyncio
async def test_execute_timeout(registry):
    async def slow(params):
        await asyncio.sleep(1)

    registry.register("slow.tool", "notion.read", slow)

    with pytest.raises(ToolTimeoutError):
        await registry.execute("slow.tool", {}, default_permissions())


@pytest.mark.asyncio
async def test_execute_wraps_handler_errors(registry):
    async def broken(params):
        raise KeyError("query")

    registry.register("broken.tool", "notion.read", broken)

    with pytest.raises(ToolError) as exc_info:
        await registry.execute("broken.tool", {}, default_permissions())

    assert exc_info.value.tool == "broken.tool"
