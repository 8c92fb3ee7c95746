"""Session event types and the per-session event bus."""

import json
from typing import Annotated, Any, Callable, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from openbird.logging import get_logger

log = get_logger(__name__)


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    status: str


class StepStartEvent(BaseModel):
    type: Literal["step_start"] = "step_start"
    iteration: int


class AIChunkEvent(BaseModel):
    type: Literal["ai_chunk"] = "ai_chunk"
    content: str


class CallSummary(BaseModel):
    """A capability call as reported to subscribers."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class AIDoneEvent(BaseModel):
    type: Literal["ai_done"] = "ai_done"
    explanation: str = ""
    tool_calls: list[CallSummary] = Field(default_factory=list)
    metrics: dict[str, Any] | None = None


class ToolStartEvent(BaseModel):
    type: Literal["tool_start"] = "tool_start"
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    iteration: int


class ToolOutputEvent(BaseModel):
    type: Literal["tool_output"] = "tool_output"
    tool: str
    stream: Literal["stdout", "stderr"]
    data: str


class ToolDoneEvent(BaseModel):
    type: Literal["tool_done"] = "tool_done"
    name: str
    result: dict[str, Any] = Field(default_factory=dict)


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


Event = Annotated[
    Union[
        StatusEvent,
        StepStartEvent,
        AIChunkEvent,
        AIDoneEvent,
        ToolStartEvent,
        ToolOutputEvent,
        ToolDoneEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[Event] = TypeAdapter(Event)

EventSink = Callable[[str], None]


def parse_event(data: str | dict[str, Any]) -> Event:
    """Decode one serialized event back into its typed model."""
    if isinstance(data, str):
        return _event_adapter.validate_json(data)
    return _event_adapter.validate_python(data)


def format_sse(payload: dict[str, Any] | str) -> str:
    """Render one ``data:`` record of an event stream."""
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n\n"


class EventBus:
    """Fan-out of one session's events to any number of sinks.

    Each event is serialized once and the identical string is handed to
    every sink subscribed at emission time. A sink that raises is dropped.
    Subscribing or unsubscribing while an emission is in progress is safe;
    the emission iterates over a snapshot of the current sinks, and a sink
    removed part way through receives nothing further from it.
    """

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self._sinks: list[EventSink] = []

    def __len__(self) -> int:
        return len(self._sinks)

    def subscribe(self, sink: EventSink) -> Callable[[], None]:
        """Add a sink; returns the matching unsubscribe function."""
        self._sinks.append(sink)

        def unsubscribe() -> None:
            self.unsubscribe(sink)

        return unsubscribe

    def unsubscribe(self, sink: EventSink) -> None:
        try:
            self._sinks.remove(sink)
        except ValueError:
            pass

    def emit(self, event: BaseModel) -> None:
        data = event.model_dump_json()
        for sink in list(self._sinks):
            if sink not in self._sinks:
                continue
            try:
                sink(data)
            except Exception as e:
                log.warning(
                    "Dropping event listener after delivery failure",
                    session_id=self.session_id,
                    event_type=getattr(event, "type", ""),
                    error=str(e),
                )
                self.unsubscribe(sink)
