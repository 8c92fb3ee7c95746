"""Read tool for reading file contents."""

from typing import Any

from openbird.logging import get_logger
from openbird.tools.registry import ErrorResult, ExecutionContext, GenericResult, Tool

log = get_logger(__name__)


class ReadTool(Tool):
    """Read file contents."""

    name = "read_file"
    description = "Read the contents of a file"
    parameters = {
        "path": {
            "type": "string",
            "required": True,
            "description": "Absolute or relative file path",
        },
        "offset": {
            "type": "number",
            "description": "Line number to start reading from (1-indexed)",
        },
        "limit": {
            "type": "number",
            "description": "Maximum number of lines to read",
        },
    }

    async def execute(self, arguments: dict[str, Any], context: ExecutionContext) -> GenericResult | ErrorResult:
        """Read a file.

        Args:
            arguments: ``path`` plus optional ``offset``/``limit`` line window
            context: Execution context used to anchor relative paths

        Returns:
            GenericResult with ``content`` and ``size``
        """
        raw_path = str(arguments.get("path", "") or "").strip()
        if not raw_path:
            return ErrorResult(message="path is required")

        file_path = context.resolve_path(raw_path)
        if not file_path.exists():
            return ErrorResult(message=f"File not found: {raw_path}")
        if not file_path.is_file():
            return ErrorResult(message=f"Not a file: {raw_path}")

        content = file_path.read_text(encoding="utf-8", errors="replace")

        offset = int(arguments.get("offset") or 0)
        limit = int(arguments.get("limit") or 0)
        if offset or limit:
            lines = content.splitlines()
            if offset:
                lines = lines[offset - 1:]
            if limit:
                lines = lines[:limit]
            content = "\n".join(lines)

        log.debug("Read file", path=str(file_path), size=len(content))
        return GenericResult(value={"content": content, "size": len(content)})
