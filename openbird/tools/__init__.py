"""Tools package for openbird."""

from openbird.exceptions import ConfigurationError
from openbird.tools.registry import (
    ErrorResult,
    ExecutionContext,
    FunctionTool,
    GenericResult,
    ShellResult,
    Tool,
    ToolRegistry,
    ToolResult,
    result_to_message,
    result_to_payload,
)
from openbird.tools.shell import ShellTool
from openbird.tools.read import ReadTool
from openbird.tools.write import WriteTool

BUILTIN_TOOLS: dict[str, type[Tool]] = {
    ShellTool.name: ShellTool,
    ReadTool.name: ReadTool,
    WriteTool.name: WriteTool,
}


def create_default_registry(enabled: list[str] | None = None) -> ToolRegistry:
    """Build a registry holding the enabled built-in tools.

    Args:
        enabled: Tool names to register; defaults to the configured list
    """
    if enabled is None:
        from openbird.config import get_config

        enabled = get_config().tools.enabled
    registry = ToolRegistry()
    for name in enabled:
        tool_cls = BUILTIN_TOOLS.get(name)
        if tool_cls is None:
            raise ConfigurationError(f"Unknown built-in tool: {name}")
        registry.register(tool_cls())
    return registry


__all__ = [
    "BUILTIN_TOOLS",
    "ErrorResult",
    "ExecutionContext",
    "FunctionTool",
    "GenericResult",
    "ShellResult",
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "create_default_registry",
    "result_to_message",
    "result_to_payload",
    "ReadTool",
    "ShellTool",
    "WriteTool",
]
