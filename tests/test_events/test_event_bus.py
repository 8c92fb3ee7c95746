import json

import pytest

from openbird.cancellation import CancellationToken
from openbird.events import (
    AIDoneEvent,
    EventBus,
    StatusEvent,
    ToolOutputEvent,
    format_sse,
    parse_event,
)
from openbird.exceptions import CancellationRequested


def test_bus_delivers_same_string_to_all_sinks():
    bus = EventBus("s1")
    received: list[list[str]] = [[], []]
    bus.subscribe(received[0].append)
    bus.subscribe(received[1].append)

    bus.emit(StatusEvent(status="running"))

    assert received[0] == received[1] == ['{"type":"status","status":"running"}']


def test_failing_sink_is_dropped_and_others_still_receive():
    bus = EventBus("s1")
    good: list[str] = []

    def bad(data: str) -> None:
        raise BrokenPipeError("client went away")

    bus.subscribe(bad)
    bus.subscribe(good.append)

    bus.emit(StatusEvent(status="running"))
    bus.emit(StatusEvent(status="done"))

    assert len(bus) == 1
    assert len(good) == 2


def test_unsubscribe_during_emit_is_safe():
    bus = EventBus()
    seen: list[str] = []
    holder: dict = {}

    def once(data: str) -> None:
        seen.append(data)
        holder["unsubscribe"]()

    holder["unsubscribe"] = bus.subscribe(once)
    bus.subscribe(seen.append)

    bus.emit(StatusEvent(status="running"))
    bus.emit(StatusEvent(status="done"))

    assert len(seen) == 3
    assert len(bus) == 1


def test_sink_removed_mid_emit_misses_that_event():
    bus = EventBus()
    late: list[str] = []
    holder: dict = {}

    def first(data: str) -> None:
        holder["unsubscribe_late"]()

    bus.subscribe(first)
    holder["unsubscribe_late"] = bus.subscribe(late.append)

    bus.emit(StatusEvent(status="running"))

    assert late == []
    assert len(bus) == 1


def test_parse_event_round_trips_discriminated_union():
    event = AIDoneEvent(explanation="x", tool_calls=[{"name": "bash", "arguments": {"command": "ls"}}])

    decoded = parse_event(event.model_dump_json())

    assert decoded == event
    assert isinstance(parse_event({"type": "tool_output", "tool": "bash", "stream": "stdout", "data": "a"}), ToolOutputEvent)


def test_format_sse_record():
    assert format_sse({"type": "exit", "code": 0}) == 'data: {"type": "exit", "code": 0}\n\n'
    assert format_sse('{"a":1}') == 'data: {"a":1}\n\n'


@pytest.mark.asyncio
async def test_cancellation_token_fires_listeners_once():
    token = CancellationToken()
    calls: list[str] = []
    token.add_listener(lambda: calls.append("a"))
    remove = token.add_listener(lambda: calls.append("b"))
    remove()

    token.cancel("stop requested")
    token.cancel("again")

    assert calls == ["a"]
    assert token.cancelled
    assert token.reason == "stop requested"
    await token.wait()
    with pytest.raises(CancellationRequested, match="stop requested"):
        token.raise_if_cancelled()


@pytest.mark.asyncio
async def test_listener_added_after_cancel_fires_immediately():
    token = CancellationToken()
    token.cancel()
    calls: list[int] = []

    token.add_listener(lambda: calls.append(1))

    assert calls == [1]
    assert json.loads(format_sse({"ok": True})[6:]) == {"ok": True}
