"""Ollama backend client - direct streaming HTTP calls to the Ollama API."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from openbird.cancellation import CancellationToken
from openbird.exceptions import BackendUnavailableError, CancellationRequested
from openbird.logging import get_logger

log = get_logger(__name__)


OLLAMA_DEFAULT_BASE_URL = "http://localhost:11434"

_METRIC_KEYS = (
    "total_duration",
    "load_duration",
    "prompt_eval_count",
    "prompt_eval_duration",
    "eval_count",
    "eval_duration",
)


@dataclass
class ToolCall:
    """A tool call requested by the model, native or recovered from text."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str = ""

    def summary(self) -> dict[str, Any]:
        return {"name": self.name, "arguments": dict(self.arguments)}


@dataclass
class ChatResult:
    """Complete result of one streamed chat call."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    metrics: dict[str, Any] | None = None


def coerce_arguments(raw: Any) -> dict[str, Any]:
    """Backends may send arguments as an object or a JSON-encoded string."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return {"raw": raw}
        if isinstance(decoded, dict):
            return decoded
        return {"raw": raw}
    return {}


def parse_tool_calls(raw_calls: list[dict[str, Any]] | None) -> list[ToolCall]:
    """Normalize backend ``message.tool_calls`` into ToolCall objects."""
    calls: list[ToolCall] = []
    for idx, raw in enumerate(raw_calls or []):
        function = raw.get("function", {}) if isinstance(raw, dict) else {}
        name = str(function.get("name", "") or "").strip()
        if not name:
            continue
        calls.append(ToolCall(
            id=str(raw.get("id") or f"call_{idx}"),
            name=name,
            arguments=coerce_arguments(function.get("arguments")),
        ))
    return calls


class LLMClient(ABC):
    """Abstract model backend."""

    @abstractmethod
    async def chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        on_chunk: Callable[[str], None] | None = None,
        cancel: CancellationToken | None = None,
    ) -> ChatResult:
        pass

    @abstractmethod
    async def list_models(self) -> list[str]:
        pass

    async def close(self) -> None:
        return None


class OllamaClient(LLMClient):
    """Direct Ollama API client."""

    def __init__(
        self,
        base_url: str = OLLAMA_DEFAULT_BASE_URL,
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL
            timeout: Read timeout in seconds for a single response
            transport: Optional httpx transport (tests use a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
            follow_redirects=True,
            transport=transport,
        )

    @staticmethod
    def _convert_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Keep only the fields the Ollama chat API understands."""
        result = []
        for msg in messages:
            role = msg.get("role")
            if role not in {"system", "user", "assistant", "tool"}:
                continue
            entry: dict[str, Any] = {"role": role, "content": msg.get("content") or ""}
            if role == "assistant" and msg.get("tool_calls"):
                entry["tool_calls"] = [
                    {"function": {"name": call.get("name", ""), "arguments": call.get("arguments", {})}}
                    for call in msg["tool_calls"]
                ]
            if role == "tool" and msg.get("tool_name"):
                entry["tool_name"] = msg["tool_name"]
            result.append(entry)
        return result

    async def chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        on_chunk: Callable[[str], None] | None = None,
        cancel: CancellationToken | None = None,
    ) -> ChatResult:
        """Stream a chat completion.

        Text fragments are passed to ``on_chunk`` in arrival order. Tool
        calls arrive as a complete array in a single record.

        Raises:
            BackendUnavailableError for any transport, HTTP or framing failure
            CancellationRequested when ``cancel`` fires mid-stream
        """
        url = f"{self.base_url}/api/chat"
        body: dict[str, Any] = {
            "model": model,
            "messages": self._convert_messages(messages),
            "stream": True,
        }
        if tools:
            body["tools"] = tools

        content_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        metrics: dict[str, Any] | None = None

        def handle_record(record: dict[str, Any]) -> None:
            nonlocal tool_calls, metrics
            message = record.get("message") or {}
            fragment = message.get("content")
            if fragment:
                content_parts.append(fragment)
                if on_chunk is not None:
                    on_chunk(fragment)
            if message.get("tool_calls"):
                tool_calls = parse_tool_calls(message["tool_calls"])
            if record.get("done"):
                metrics = {key: record.get(key) for key in _METRIC_KEYS}

        try:
            log.debug("Calling Ollama", model=model, url=url, msg_count=len(body["messages"]))
            async with self.client.stream("POST", url, json=body) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise BackendUnavailableError(
                        f"Ollama error ({response.status_code}): {error_text}",
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    if not line.strip():
                        continue
                    try:
                        record = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(record, dict):
                        handle_record(record)
        except (BackendUnavailableError, CancellationRequested):
            raise
        except httpx.HTTPError as e:
            raise BackendUnavailableError(f"Ollama unreachable: {e}") from e

        return ChatResult(content="".join(content_parts), tool_calls=tool_calls, metrics=metrics)

    async def list_models(self) -> list[str]:
        """Return the names of locally available models."""
        try:
            response = await self.client.get(f"{self.base_url}/api/tags")
        except httpx.HTTPError as e:
            raise BackendUnavailableError(f"Ollama unreachable: {e}") from e
        if not response.is_success:
            raise BackendUnavailableError(
                f"Ollama unreachable ({response.status_code})",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise BackendUnavailableError(f"Ollama response decode error: {e}") from e
        return [str(m.get("name", "")) for m in data.get("models", []) if m.get("name")]

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_client(base_url: str | None = None, timeout: float | None = None) -> OllamaClient:
    """Create an Ollama client from explicit values or the active config."""
    from openbird.config import get_config

    cfg = get_config()
    return OllamaClient(
        base_url=base_url or cfg.model.base_url or OLLAMA_DEFAULT_BASE_URL,
        timeout=timeout if timeout is not None else cfg.model.timeout,
    )
