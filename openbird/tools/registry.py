"""Tool registry, base tool class and tool result variants."""

import asyncio
import inspect
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Literal, Union

from pydantic import BaseModel, Field

from openbird.cancellation import CancellationToken
from openbird.exceptions import (
    CancellationRequested,
    CapabilityError,
    ToolNotFoundError,
    ValidationError,
)
from openbird.logging import get_logger

log = get_logger(__name__)


class ShellResult(BaseModel):
    """Outcome of a shell command."""

    kind: Literal["shell"] = "shell"
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None


class GenericResult(BaseModel):
    """Free-form value returned by a non-shell tool."""

    kind: Literal["generic"] = "generic"
    value: Any = None


class ErrorResult(BaseModel):
    """Tool failure reported back to the model."""

    kind: Literal["error"] = "error"
    message: str = "Tool execution failed"


ToolResult = Union[ShellResult, GenericResult, ErrorResult]


def result_to_message(result: ToolResult) -> str:
    """Render a tool result as the content of a ``tool`` message."""
    if isinstance(result, ShellResult):
        parts: list[str] = []
        if result.stdout:
            parts.append(f"stdout:\n{result.stdout.rstrip()}")
        if result.stderr:
            parts.append(f"stderr:\n{result.stderr.rstrip()}")
        parts.append(f"exit code: {result.exit_code}")
        return "\n".join(parts)
    if isinstance(result, ErrorResult):
        return f"Error: {result.message}"
    return json.dumps(result.value, default=str)


def result_to_payload(result: ToolResult) -> dict[str, Any]:
    """Render a tool result for a ``tool_done`` event."""
    if isinstance(result, ErrorResult):
        return {"error": result.message}
    if isinstance(result, ShellResult):
        return {"stdout": result.stdout, "stderr": result.stderr, "exit_code": result.exit_code}
    if isinstance(result.value, dict):
        return dict(result.value)
    return {"value": result.value}


@dataclass
class ExecutionContext:
    """What a running tool may use besides its arguments."""

    emit: Callable[[BaseModel], None]
    cancel: CancellationToken | None = None
    session_id: str = ""
    cwd: Path | None = None

    def resolve_path(self, raw: str) -> Path:
        """Anchor relative paths at the context working directory."""
        path = Path(raw).expanduser()
        if not path.is_absolute() and self.cwd is not None:
            path = self.cwd / path
        return path


class ParameterSpec(BaseModel):
    """One declared tool parameter."""

    type: str = "string"
    required: bool = False
    description: str = ""
    enum: list[Any] | None = None


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, dict[str, Any]] = {}

    @property
    def action(self) -> Callable[..., Awaitable[ToolResult]] | None:
        return self.execute

    @abstractmethod
    async def execute(self, arguments: dict[str, Any], context: ExecutionContext) -> ToolResult:
        """Execute the tool.

        Args:
            arguments: Tool-specific arguments
            context: Event emitter, cancellation token and working directory

        Returns:
            One of the tool result variants
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the function-calling definition for the model.

        Returns:
            Ollama/OpenAI function-style definition
        """
        properties: dict[str, Any] = {}
        required: list[str] = []
        for key, raw in (self.parameters or {}).items():
            spec = ParameterSpec(**raw)
            entry: dict[str, Any] = {
                "type": spec.type,
                "description": spec.description,
            }
            if spec.enum:
                entry["enum"] = list(spec.enum)
            properties[key] = entry
            if spec.required:
                required.append(key)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }


class FunctionTool(Tool):
    """Tool built from a plain (sync or async) callable."""

    def __init__(
        self,
        name: str,
        action: Callable[[dict[str, Any], ExecutionContext], Any] | None,
        description: str = "",
        parameters: dict[str, dict[str, Any]] | None = None,
    ):
        self.name = name
        self.description = description
        self.parameters = dict(parameters or {})
        self._action = action

    @property
    def action(self) -> Callable[..., Any] | None:
        return self._action

    async def execute(self, arguments: dict[str, Any], context: ExecutionContext) -> ToolResult:
        if self._action is None:
            raise CapabilityError(self.name, "Tool has no action")
        value = self._action(arguments, context)
        if inspect.isawaitable(value):
            value = await value
        if isinstance(value, (ShellResult, GenericResult, ErrorResult)):
            return value
        return GenericResult(value=value)


class ToolRegistry:
    """Registry for managing available tools.

    Registering a name that already exists replaces the previous entry.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register

        Raises:
            ValidationError if the tool has no name or no action
        """
        name = str(getattr(tool, "name", "") or "").strip()
        if not name:
            raise ValidationError("Tool must have a name")
        if not callable(getattr(tool, "action", None)):
            raise ValidationError(f"Tool '{name}' must have an action")

        if name in self._tools:
            log.debug("Replacing tool", tool=name)
        else:
            log.debug("Registering tool", tool=name)
        self._tools[name] = tool

    def get(self, name: str) -> Tool | None:
        """Get a tool by name, or None when not registered."""
        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def all(self) -> list[Tool]:
        """All tools in registration order."""
        return list(self._tools.values())

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def describe_all(self) -> list[dict[str, Any]]:
        """Function-calling schema for every registered tool."""
        return [tool.get_definition() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        context: ExecutionContext,
    ) -> ToolResult:
        """Execute a tool by name.

        Returns:
            ToolResult from execution

        Raises:
            ToolNotFoundError if the tool is not registered
            CapabilityError if the tool raised
            CancellationRequested if the run was cancelled during execution
        """
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        try:
            log.info("Executing tool", tool=name, args=arguments)
            result = await tool.execute(dict(arguments or {}), context)
        except (CancellationRequested, asyncio.CancelledError, CapabilityError):
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise CapabilityError(name, str(e)) from e

        if not isinstance(result, (ShellResult, GenericResult, ErrorResult)):
            result = GenericResult(value=result)
        log.info("Tool executed", tool=name, kind=result.kind)
        return result
