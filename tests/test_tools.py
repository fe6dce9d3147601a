from typing import Any, Dict

import pytest

from chatbridge.agent import ToolRegistry
from chatbridge.models import ToolDefinition


async def _echo(tool_input: Dict[str, Any]) -> Dict[str, Any]:
    return tool_input


def test_register_returns_definition() -> None:
    """register stores the executor and returns its definition."""
    registry = ToolRegistry()
    schema = {"type": "object", "properties": {"text": {"type": "string"}}}
    definition = registry.register("echo", _echo, input_schema=schema, description="Echo input")

    assert definition == ToolDefinition(name="echo", input_schema=schema, description="Echo input")
    assert registry.definitions == [definition]
    assert registry.executors == {"echo": _echo}
    assert "echo" in registry


def test_default_schema_is_empty_object() -> None:
    """Tools without a schema get an empty object schema."""
    registry = ToolRegistry()
    definition = registry.register("echo", _echo)
    assert definition.to_dict() == {
        "name": "echo",
        "input_schema": {"type": "object", "properties": {}},
    }


def test_decorator_registers() -> None:
    """The tool decorator registers the function."""
    registry = ToolRegistry()

    @registry.tool("shout", description="Upper-case text")
    async def shout(tool_input: Dict[str, Any]) -> str:
        return str(tool_input.get("text", "")).upper()

    assert registry.executors["shout"] is shout
    assert registry.definitions[0].to_dict()["description"] == "Upper-case text"


def test_web_search_name_is_reserved() -> None:
    """web_search cannot be registered locally."""
    with pytest.raises(ValueError, match="reserved"):
        ToolRegistry().register("web_search", _echo)


def test_duplicate_name_rejected() -> None:
    """Registering a name twice raises ValueError."""
    registry = ToolRegistry()
    registry.register("echo", _echo)
    with pytest.raises(ValueError, match="already registered"):
        registry.register("echo", _echo)


def test_sync_executor_rejected() -> None:
    """Executors must be async functions."""
    def sync_tool(tool_input: Dict[str, Any]) -> int:
        return 1

    with pytest.raises(ValueError, match="async"):
        ToolRegistry().register("sync", sync_tool)  # type: ignore[arg-type]


def test_executors_is_a_copy() -> None:
    """Mutating executors does not change the registry."""
    registry = ToolRegistry()
    registry.register("echo", _echo)
    registry.executors.pop("echo")
    assert "echo" in registry
