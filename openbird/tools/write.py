"""Write tool for writing file contents."""

from typing import Any

from openbird.logging import get_logger
from openbird.tools.registry import ErrorResult, ExecutionContext, GenericResult, Tool

log = get_logger(__name__)


class WriteTool(Tool):
    """Write content to files."""

    name = "write_file"
    description = "Write content to a file (creates or overwrites)"
    parameters = {
        "path": {
            "type": "string",
            "required": True,
            "description": "Absolute or relative file path",
        },
        "content": {
            "type": "string",
            "required": True,
            "description": "The content to write",
        },
        "append": {
            "type": "boolean",
            "description": "Append to the file instead of overwriting it",
        },
    }

    async def execute(self, arguments: dict[str, Any], context: ExecutionContext) -> GenericResult | ErrorResult:
        """Write content to a file, creating parent directories."""
        raw_path = str(arguments.get("path", "") or "").strip()
        if not raw_path:
            return ErrorResult(message="path is required")
        if "content" not in arguments:
            return ErrorResult(message="content is required")
        content = str(arguments.get("content") or "")

        file_path = context.resolve_path(raw_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        mode = "a" if arguments.get("append") else "w"
        with open(file_path, mode, encoding="utf-8") as f:
            f.write(content)

        log.debug("Wrote file", path=str(file_path), mode=mode)
        return GenericResult(value={
            "written": True,
            "path": str(file_path),
            "bytes": len(content.encode("utf-8")),
        })
