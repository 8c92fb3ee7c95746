"""Recover intended actions from free-form model text.

Shell commands are recognised in three forms, tried in order; the first
form that yields at least one non-empty command wins and later forms are
not consulted:

1. ``<cmd>...</cmd>`` tags
2. ``CMD: <command>`` control lines
3. fenced code blocks tagged ``bash``, ``sh`` or ``shell``

Every command is collapsed to the first non-blank line of its block, with
surrounding backticks and one leading ``$ `` prompt removed.

Separately, ``extract_json_tool_calls`` recovers function-call objects that
a model wrote out as JSON text instead of using native tool calling.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from openbird.llm import ToolCall, coerce_arguments

_TAG_RE = re.compile(r"<cmd>\s*([\s\S]*?)\s*</cmd>", re.IGNORECASE)
_CONTROL_LINE_RE = re.compile(r"^\s*CMD:\s*(.*)$", re.IGNORECASE)
_FENCE_RE = re.compile(r"```(?:bash|sh|shell)[ \t]*\r?\n([\s\S]*?)```", re.IGNORECASE)
_LINE_SPLIT_RE = re.compile(r"\r?\n")
_PROMPT_RE = re.compile(r"^\$\s+")
_BACKTICKS_RE = re.compile(r"^`+|`+$")

_NAME_KEYS = ("name", "tool")
_ARGUMENT_KEYS = ("arguments", "params", "parameters")


@dataclass(frozen=True)
class ParsedCommand:
    action: str


@dataclass
class ParseResult:
    """Explanation text plus the commands recovered from it.

    ``stage`` names the form that produced the commands (``tag``,
    ``control`` or ``fence``), or is None when nothing was recovered.
    """

    explanation: str
    commands: list[ParsedCommand] = field(default_factory=list)
    stage: str | None = None

    def to_tool_calls(self, tool_name: str = "bash") -> list[ToolCall]:
        return [
            ToolCall(id=f"recovered_{idx}", name=tool_name, arguments={"command": command.action})
            for idx, command in enumerate(self.commands)
        ]


def normalize_command(raw: str | None) -> str:
    """Reduce a recovered block to a single runnable command line."""
    if not isinstance(raw, str):
        return ""
    text = _BACKTICKS_RE.sub("", raw.strip()).strip()
    lines = [line.strip() for line in _LINE_SPLIT_RE.split(text)]
    lines = [line for line in lines if line]
    if not lines:
        return ""
    return _PROMPT_RE.sub("", lines[0], count=1).strip()


def _strip_tags(text: str) -> tuple[str, list[ParsedCommand], int]:
    commands: list[ParsedCommand] = []
    hits = 0

    def replace(match: re.Match[str]) -> str:
        nonlocal hits
        hits += 1
        action = normalize_command(match.group(1))
        if action:
            commands.append(ParsedCommand(action))
        return ""

    return _TAG_RE.sub(replace, text), commands, hits


def _strip_control_lines(text: str) -> tuple[str, list[ParsedCommand], int]:
    commands: list[ParsedCommand] = []
    kept: list[str] = []
    hits = 0
    for line in _LINE_SPLIT_RE.split(text):
        match = _CONTROL_LINE_RE.match(line)
        if match:
            hits += 1
            action = normalize_command(match.group(1))
            if action:
                commands.append(ParsedCommand(action))
            continue
        kept.append(line)
    return "\n".join(kept), commands, hits


def _strip_fences(text: str) -> tuple[str, list[ParsedCommand], int]:
    commands: list[ParsedCommand] = []
    hits = 0

    def replace(match: re.Match[str]) -> str:
        nonlocal hits
        hits += 1
        action = normalize_command(match.group(1))
        if action:
            commands.append(ParsedCommand(action))
        return ""

    return _FENCE_RE.sub(replace, text), commands, hits


_STAGES = (
    ("tag", _strip_tags),
    ("control", _strip_control_lines),
    ("fence", _strip_fences),
)


def parse_response(text: str | None) -> ParseResult:
    """Split model output into explanation text and recovered commands.

    A stage whose matches are all empty still has its matches removed from
    the explanation, but does not stop the next stage from running.
    """
    remaining = text or ""
    for stage, strip in _STAGES:
        remaining, commands, hits = strip(remaining)
        if hits and commands:
            return ParseResult(explanation=remaining.strip(), commands=commands, stage=stage)
    return ParseResult(explanation=remaining.strip())


def extract_commands(text: str | None) -> list[str]:
    """Only the command strings of ``parse_response``."""
    return [command.action for command in parse_response(text).commands]


def _iter_json_objects(text: str) -> Iterator[dict[str, Any]]:
    """Yield every top-level JSON object embedded in text; skip malformed ones."""
    decoder = json.JSONDecoder()
    idx = 0
    while True:
        start = text.find("{", idx)
        if start < 0:
            return
        try:
            value, end = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            idx = start + 1
            continue
        idx = end
        if isinstance(value, dict):
            yield value


def _call_from_object(obj: dict[str, Any]) -> ToolCall | None:
    if isinstance(obj.get("function"), dict):
        obj = obj["function"]
    name = next((obj[key] for key in _NAME_KEYS if isinstance(obj.get(key), str)), "")
    name = name.strip()
    if not name:
        return None
    for key in _ARGUMENT_KEYS:
        if key in obj and isinstance(obj[key], (dict, str)):
            return ToolCall(name=name, arguments=coerce_arguments(obj[key]))
    return None


def extract_json_tool_calls(text: str | None, known_tools: Iterable[str] | None = None) -> list[ToolCall]:
    """Recover ``{"name": ..., "arguments": {...}}`` style calls written as text.

    ``tool`` is accepted for ``name`` and ``params``/``parameters`` for
    ``arguments``; ``{"tool_calls": [...]}`` wrappers are unpacked. When
    ``known_tools`` is given, calls to other names are dropped.
    """
    if not text:
        return []
    allowed = set(known_tools) if known_tools is not None else None
    calls: list[ToolCall] = []
    for obj in _iter_json_objects(text):
        candidates = obj.get("tool_calls") if isinstance(obj.get("tool_calls"), list) else [obj]
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            call = _call_from_object(candidate)
            if call is None:
                continue
            if allowed is not None and call.name not in allowed:
                continue
            call.id = f"text_{len(calls)}"
            calls.append(call)
    return calls
