"""Agent loop: model call, interpret, execute tools, repeat."""

import asyncio
from typing import Any

from openbird.cancellation import CancellationToken
from openbird.config import get_config
from openbird.events import (
    AIChunkEvent,
    AIDoneEvent,
    CallSummary,
    ErrorEvent,
    StepStartEvent,
    ToolDoneEvent,
    ToolStartEvent,
)
from openbird.exceptions import CancellationRequested, CapabilityError
from openbird.instructions import AGENT_SYSTEM_PROMPT, FORMAT_RETRY_PROMPT, InstructionLoader
from openbird.llm import ChatResult, LLMClient, OllamaClient, ToolCall, create_client
from openbird.logging import bind_session, get_logger
from openbird.parser import extract_json_tool_calls, parse_response
from openbird.session import Session, SessionStatus
from openbird.tools import (
    ErrorResult,
    ExecutionContext,
    ShellResult,
    ShellTool,
    ToolRegistry,
    create_default_registry,
    result_to_message,
    result_to_payload,
)

log = get_logger(__name__)


class Agent:
    """Drives sessions through the plan, act, observe loop.

    One Agent serves every session of a store. It holds only shared,
    read-only collaborators (backend client, tool registry, prompts);
    all per-run state lives on the Session.
    """

    def __init__(
        self,
        client: LLMClient | None = None,
        tools: ToolRegistry | None = None,
        instructions: InstructionLoader | None = None,
        tools_enabled: bool | None = None,
        format_retries: int | None = None,
    ):
        """Initialize the agent.

        Args:
            client: Model backend; defaults to an Ollama client from config
            tools: Tool registry; defaults to the configured built-ins
            instructions: Prompt template loader
            tools_enabled: Whether to offer the function-calling schema
            format_retries: How many times to nudge a model that never ran a command
        """
        cfg = get_config()
        self.client = client or create_client()
        self.tools = tools if tools is not None else create_default_registry()
        self.instructions = instructions or InstructionLoader()
        self.tools_enabled = cfg.model.tools_enabled if tools_enabled is None else tools_enabled
        self.format_retries = max(0, cfg.agent.format_retries if format_retries is None else format_retries)
        self._host_clients: dict[str, LLMClient] = {}

    def system_message(self) -> dict[str, Any]:
        return {"role": "system", "content": self.instructions.load(AGENT_SYSTEM_PROMPT)}

    def _client_for(self, session: Session) -> LLMClient:
        """Sessions may name their own backend host."""
        if not session.host:
            return self.client
        client = self._host_clients.get(session.host)
        if client is None:
            client = OllamaClient(base_url=session.host, timeout=get_config().model.timeout)
            self._host_clients[session.host] = client
        return client

    async def run(self, session: Session) -> None:
        """Run the loop until the session reaches a terminal status.

        Never raises for loop failures; they end up as session status and
        events. Task cancellation is recorded as ``stopped`` and re-raised.
        """
        token = session.cancel or CancellationToken()
        session.cancel = token
        with bind_session(session.id, model=session.model):
            try:
                await self._loop(session, token)
            except CancellationRequested:
                self._finish_stopped(session)
            except asyncio.CancelledError:
                self._finish_stopped(session)
                raise
            except Exception as e:
                if token.cancelled:
                    self._finish_stopped(session)
                    return
                self._finish_failed(session, e)

    @staticmethod
    def _finish_failed(session: Session, error: Exception) -> None:
        log.error("Agent run failed", error=str(error))
        session.error = str(error)
        session.emit(ErrorEvent(message=str(error)))
        session.set_status(SessionStatus.ERROR)

    @staticmethod
    def _finish_stopped(session: Session) -> None:
        log.info("Session stopped", iteration=session.iteration)
        session.set_status(SessionStatus.STOPPED)

    async def _loop(self, session: Session, token: CancellationToken) -> None:
        while session.status == SessionStatus.RUNNING and session.iteration < session.max_iterations:
            token.raise_if_cancelled()

            session.iteration += 1
            log.info("Turn started", iteration=session.iteration)
            session.emit(StepStartEvent(iteration=session.iteration))

            reply = await self._call_model(session, token)
            calls, explanation = self._interpret(reply)

            if calls:
                session.add_message(
                    "assistant",
                    reply.content,
                    tool_calls=[call.summary() for call in calls],
                )
                session.emit(AIDoneEvent(
                    explanation=explanation,
                    tool_calls=[CallSummary(**call.summary()) for call in calls],
                    metrics=reply.metrics,
                ))
                for call in calls:
                    token.raise_if_cancelled()
                    await self._dispatch(session, call, token)
                token.raise_if_cancelled()
                continue

            session.add_message("assistant", reply.content)
            session.emit(AIDoneEvent(explanation=reply.content, tool_calls=[], metrics=reply.metrics))

            if self._should_retry_format(session):
                session.format_retries_used += 1
                session.add_message("user", self.instructions.load(FORMAT_RETRY_PROMPT))
                continue

            session.set_status(SessionStatus.DONE)
            log.info("Session done", iteration=session.iteration)
            return

        if session.status == SessionStatus.RUNNING:
            log.info("Iteration cap reached", max_iterations=session.max_iterations)
            session.set_status(SessionStatus.MAX_ITERATIONS)

    async def _call_model(self, session: Session, token: CancellationToken) -> ChatResult:
        """Stream one model reply; a cancel signal interrupts the wait."""
        messages = [self.system_message(), *session.messages]
        schema = self.tools.describe_all() if self._offers_tools() else None
        client = self._client_for(session)

        chat_task = asyncio.create_task(client.chat(
            session.model,
            messages,
            tools=schema,
            on_chunk=lambda chunk: session.emit(AIChunkEvent(content=chunk)),
            cancel=token,
        ))
        cancel_task = asyncio.create_task(token.wait())
        try:
            done, _ = await asyncio.wait({chat_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
            if chat_task in done:
                return chat_task.result()
            chat_task.cancel()
            try:
                await chat_task
            except (asyncio.CancelledError, Exception):
                pass
            raise CancellationRequested(token.reason or "Agent aborted")
        except asyncio.CancelledError:
            chat_task.cancel()
            raise
        finally:
            if not cancel_task.done():
                cancel_task.cancel()

    def _offers_tools(self) -> bool:
        return self.tools_enabled and len(self.tools) > 0

    def _interpret(self, reply: ChatResult) -> tuple[list[ToolCall], str]:
        """Pick this turn's calls: native, then JSON-in-text, then command text.

        JSON-in-text is only read as a call when the schema was offered;
        otherwise it is just an example in prose.
        """
        if reply.tool_calls:
            return list(reply.tool_calls), reply.content.strip()

        if self._offers_tools():
            recovered = extract_json_tool_calls(reply.content, known_tools=self.tools.list_tools())
            if recovered:
                return recovered, reply.content.strip()

        if ShellTool.name in self.tools:
            parsed = parse_response(reply.content)
            if parsed.commands:
                return parsed.to_tool_calls(ShellTool.name), parsed.explanation

        return [], reply.content

    async def _dispatch(self, session: Session, call: ToolCall, token: CancellationToken) -> None:
        """Execute one call; tool failures become error results, never loop failures."""
        session.emit(ToolStartEvent(name=call.name, arguments=call.arguments, iteration=session.iteration))
        context = ExecutionContext(emit=session.emit, cancel=token, session_id=session.id)
        try:
            result = await self.tools.execute(call.name, call.arguments, context)
        except CapabilityError as e:
            result = ErrorResult(message=str(e))

        session.emit(ToolDoneEvent(name=call.name, result=result_to_payload(result)))

        content = result_to_message(result)
        if isinstance(result, ShellResult):
            content = f"[Command executed: {call.arguments.get('command', '')}]\n{content}"
        session.add_message("tool", content, tool_name=call.name)

    def _should_retry_format(self, session: Session) -> bool:
        if session.format_retries_used >= self.format_retries:
            return False
        return not any(
            msg.get("role") == "tool" and msg.get("tool_name") == ShellTool.name
            for msg in session.messages
        )

    async def close(self) -> None:
        """Close backend clients."""
        for client in self._host_clients.values():
            await client.close()
        self._host_clients.clear()
        await self.client.close()
