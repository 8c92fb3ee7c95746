"""In-memory session store.

Sessions live until the process exits. The store is the only place that
adds sessions; while a run is in flight its agent loop is the only writer
of the session's messages, status and iteration counter.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from pydantic import BaseModel

from openbird.cancellation import CancellationToken
from openbird.events import EventBus, EventSink, StatusEvent
from openbird.exceptions import SessionBusyError, SessionNotFoundError, ValidationError
from openbird.logging import get_logger

if TYPE_CHECKING:
    from openbird.agent import Agent

log = get_logger(__name__)

DEFAULT_MAX_ITERATIONS = 20

_MESSAGE_ROLES = {"system", "user", "assistant", "tool"}


def _utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    STOPPED = "stopped"
    ERROR = "error"
    MAX_ITERATIONS = "max_iterations"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = {
    SessionStatus.DONE,
    SessionStatus.STOPPED,
    SessionStatus.ERROR,
    SessionStatus.MAX_ITERATIONS,
}


@dataclass
class Session:
    """One task conversation."""

    id: str
    model: str
    status: SessionStatus = SessionStatus.IDLE
    messages: list[dict[str, Any]] = field(default_factory=list)
    iteration: int = 0
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    host: str | None = None
    format_retries_used: int = 0
    error: str | None = None
    created_at: str = field(default_factory=_utcnow_iso)
    bus: EventBus = field(default_factory=EventBus, repr=False)
    cancel: CancellationToken | None = field(default=None, repr=False)
    task: asyncio.Task[None] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.bus.session_id = self.id

    @property
    def is_running(self) -> bool:
        return self.status == SessionStatus.RUNNING

    def add_message(self, role: str, content: str, **extra: Any) -> dict[str, Any]:
        """Append a message; history is never reordered or deduplicated."""
        message: dict[str, Any] = {"role": role, "content": content}
        message.update({key: value for key, value in extra.items() if value is not None})
        self.messages.append(message)
        return message

    def emit(self, event: BaseModel) -> None:
        self.bus.emit(event)

    def set_status(self, status: SessionStatus) -> None:
        """Change status and announce it to subscribers."""
        self.status = status
        self.emit(StatusEvent(status=status.value))

    def snapshot(self) -> dict[str, Any]:
        """Point-in-time view for status queries."""
        return {
            "id": self.id,
            "status": self.status.value,
            "iteration": self.iteration,
            "model": self.model,
            "messages": [dict(message) for message in self.messages],
        }


def _validate_history(history: list[Any] | None) -> list[dict[str, Any]]:
    if history is None:
        return []
    if not isinstance(history, list):
        raise ValidationError("history must be a list of messages")
    seeded: list[dict[str, Any]] = []
    for entry in history:
        if not isinstance(entry, dict) or entry.get("role") not in _MESSAGE_ROLES:
            raise ValidationError("history entries must be objects with a valid role")
        seeded.append(dict(entry))
    return seeded


class SessionStore:
    """Owns all live sessions and launches their agent loops."""

    def __init__(self, agent: Agent, max_iterations: int = DEFAULT_MAX_ITERATIONS):
        self.agent = agent
        self.max_iterations = max(1, int(max_iterations))
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create_session(
        self,
        model: str,
        history: list[Any] | None = None,
        host: str | None = None,
        max_iterations: int | None = None,
    ) -> Session:
        """Allocate an idle session; the loop is not started."""
        model = str(model or "").strip()
        if not model:
            raise ValidationError("model is required")
        session = Session(
            id=str(uuid.uuid4()),
            model=model,
            messages=_validate_history(history),
            max_iterations=max(1, int(max_iterations or self.max_iterations)),
            host=(host or "").strip() or None,
        )
        self._sessions[session.id] = session
        log.info("Session created", session_id=session.id, model=model)
        return session

    def find_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def get_session(self, session_id: str) -> Session:
        """Get a session by id.

        Raises:
            SessionNotFoundError if no such session exists
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def start_session(self, session_id: str, message: str) -> asyncio.Task[None]:
        """Append the user message and launch the loop without waiting for it.

        Must be called from inside a running event loop.
        """
        session = self.get_session(session_id)
        if session.is_running:
            raise SessionBusyError(session_id)
        message = str(message or "")
        if not message.strip():
            raise ValidationError("message is required")

        session.add_message("user", message)
        session.error = None
        session.cancel = CancellationToken()
        session.set_status(SessionStatus.RUNNING)
        session.task = asyncio.create_task(self._run(session), name=f"openbird-session-{session.id}")
        log.info("Session started", session_id=session.id, iteration=session.iteration)
        return session.task

    def continue_session(self, session_id: str, message: str) -> asyncio.Task[None]:
        """Start another run on an existing session, keeping its history."""
        session = self.get_session(session_id)
        if session.is_running:
            raise SessionBusyError(session_id)
        session.iteration = 0
        session.format_retries_used = 0
        return self.start_session(session_id, message)

    def stop_session(self, session_id: str) -> bool:
        """Signal cancellation; returns False when nothing was running."""
        session = self.get_session(session_id)
        if session.cancel is None or not session.is_running:
            return False
        log.info("Stopping session", session_id=session_id)
        session.cancel.cancel()
        return True

    def subscribe(self, session_id: str, sink: EventSink) -> Callable[[], None]:
        """Receive the session's live events; no history is replayed."""
        return self.get_session(session_id).bus.subscribe(sink)

    def snapshot(self, session_id: str) -> dict[str, Any]:
        return self.get_session(session_id).snapshot()

    async def wait(self, session_id: str) -> Session:
        """Wait for the session's current run, if any, to finish."""
        session = self.get_session(session_id)
        if session.task is not None:
            await asyncio.shield(session.task)
        return session

    async def _run(self, session: Session) -> None:
        try:
            await self.agent.run(session)
        finally:
            session.cancel = None

    async def shutdown(self) -> None:
        """Stop every running session and wait for the loops to settle."""
        tasks = []
        for session in self._sessions.values():
            if session.is_running and session.cancel is not None:
                session.cancel.cancel("Server shutting down")
            if session.task is not None and not session.task.done():
                tasks.append(session.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.agent.close()
