"""HTTP surface for openbird: session control and event streams."""

import asyncio
import json
import signal
from typing import Any, Callable

from aiohttp import web

from openbird.agent import Agent
from openbird.cancellation import CancellationToken
from openbird.config import Config
from openbird.events import ToolOutputEvent, format_sse
from openbird.exceptions import (
    BackendUnavailableError,
    SessionBusyError,
    SessionNotFoundError,
    ValidationError,
)
from openbird.instructions import CHAT_SYSTEM_PROMPT, InstructionLoader
from openbird.logging import get_logger
from openbird.session import SessionStatus, SessionStore
from openbird.tools import ExecutionContext, ShellResult, ShellTool

log = get_logger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

_TERMINAL_STATUS_VALUES = {status.value for status in SessionStatus if status.is_terminal}


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError) as e:
        raise ValidationError("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    return body


class WebServer:
    """Routes session control requests to a SessionStore."""

    def __init__(
        self,
        store: SessionStore,
        shell: ShellTool | None = None,
        instructions: InstructionLoader | None = None,
    ):
        self.store = store
        self.shell = shell or ShellTool()
        self.instructions = instructions or InstructionLoader()

    async def start_agent(self, request: web.Request) -> web.Response:
        """POST /api/agent/start: create-and-start, or continue with ``sessionId``."""
        try:
            body = await _read_json(request)
        except ValidationError as e:
            return _error(str(e), 400)

        model = str(body.get("model") or "").strip()
        message = str(body.get("message") or "")
        if not model or not message.strip():
            return _error("model and message are required", 400)

        session_id = body.get("sessionId")
        try:
            if session_id:
                self.store.continue_session(str(session_id), message)
                return web.json_response({"sessionId": session_id})
            session = self.store.create_session(model, history=body.get("history"), host=body.get("host"))
            self.store.start_session(session.id, message)
        except SessionNotFoundError:
            return _error("Session not found", 404)
        except SessionBusyError:
            return _error("Session is already running", 409)
        except ValidationError as e:
            return _error(str(e), 400)
        return web.json_response({"sessionId": session.id})

    async def agent_events(self, request: web.Request) -> web.StreamResponse:
        """GET /api/agent/{id}/events: current status, then live events."""
        session = self.store.find_session(request.match_info["id"])
        if session is None:
            return _error("Session not found", 404)

        response = web.StreamResponse(headers=SSE_HEADERS)
        await response.prepare(request)

        queue: asyncio.Queue[str] = asyncio.Queue()
        unsubscribe = session.bus.subscribe(queue.put_nowait)
        try:
            await response.write(format_sse({"type": "status", "status": session.status.value}).encode())
            if session.status.is_terminal:
                return response
            while True:
                data = await queue.get()
                await response.write(format_sse(data).encode())
                event = json.loads(data)
                if event.get("type") == "status" and event.get("status") in _TERMINAL_STATUS_VALUES:
                    break
        except ConnectionResetError:
            log.debug("Event stream client disconnected", session_id=session.id)
        finally:
            unsubscribe()
        return response

    async def stop_agent(self, request: web.Request) -> web.Response:
        """POST /api/agent/{id}/stop"""
        try:
            self.store.stop_session(request.match_info["id"])
        except SessionNotFoundError:
            return _error("Session not found", 404)
        return web.json_response({"ok": True})

    async def agent_status(self, request: web.Request) -> web.Response:
        """GET /api/agent/{id}/status"""
        try:
            snapshot = self.store.snapshot(request.match_info["id"])
        except SessionNotFoundError:
            return _error("Session not found", 404)
        return web.json_response(snapshot, dumps=lambda obj: json.dumps(obj, default=str))

    async def list_models(self, request: web.Request) -> web.Response:
        """GET /api/models"""
        try:
            models = await self.store.agent.client.list_models()
        except BackendUnavailableError as e:
            return _error(str(e), 502)
        return web.json_response({"models": models})

    @staticmethod
    async def _relay(
        response: web.StreamResponse,
        producer: asyncio.Task,
        queue: asyncio.Queue,
        render: Callable[[Any], dict[str, Any]],
    ) -> None:
        """Write queued items as SSE records until the producer is done and the queue drained."""
        while not producer.done() or not queue.empty():
            if not queue.empty():
                await response.write(format_sse(render(queue.get_nowait())).encode())
                continue
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, producer}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                await response.write(format_sse(render(getter.result())).encode())
            else:
                getter.cancel()

    async def run_command(self, request: web.Request) -> web.StreamResponse:
        """POST /api/run: stream one shell command's output, then its exit code."""
        try:
            body = await _read_json(request)
        except ValidationError as e:
            return _error(str(e), 400)
        command = str(body.get("command") or "").strip()
        if not command:
            return _error("command is required", 400)

        response = web.StreamResponse(headers=SSE_HEADERS)
        await response.prepare(request)

        queue: asyncio.Queue[ToolOutputEvent] = asyncio.Queue()
        token = CancellationToken()
        context = ExecutionContext(emit=queue.put_nowait, cancel=token)
        execution = asyncio.create_task(self.shell.execute({"command": command}, context))

        try:
            await self._relay(response, execution, queue, lambda e: {"type": e.stream, "data": e.data})
            result = execution.result()
            code = result.exit_code if isinstance(result, ShellResult) else 1
            await response.write(format_sse({"type": "exit", "code": code}).encode())
        except ConnectionResetError:
            log.debug("Run client disconnected", command=command)
        finally:
            if not execution.done():
                token.cancel("Client disconnected")
                await asyncio.wait({execution})
        return response

    async def chat(self, request: web.Request) -> web.StreamResponse:
        """POST /api/chat: stream a plain chat reply as ``{content}`` records.

        A backend failure is reported in-stream as ``{error}``; the stream
        always ends with ``{done: true}``.
        """
        try:
            body = await _read_json(request)
        except ValidationError as e:
            return _error(str(e), 400)
        model = str(body.get("model") or "").strip()
        prompt = str(body.get("prompt") or "")
        if not model or not prompt.strip():
            return _error("model and prompt are required", 400)

        messages = [
            {"role": "system", "content": self.instructions.load(CHAT_SYSTEM_PROMPT)},
            {"role": "user", "content": prompt},
        ]
        response = web.StreamResponse(headers=SSE_HEADERS)
        await response.prepare(request)

        queue: asyncio.Queue[str] = asyncio.Queue()
        token = CancellationToken()
        reply = asyncio.create_task(
            self.store.agent.client.chat(model, messages, on_chunk=queue.put_nowait, cancel=token)
        )
        try:
            await self._relay(response, reply, queue, lambda chunk: {"content": chunk})
            try:
                reply.result()
            except BackendUnavailableError as e:
                log.warning("Chat backend failed", model=model, error=str(e))
                await response.write(format_sse({"error": str(e)}).encode())
            await response.write(format_sse({"done": True}).encode())
        except ConnectionResetError:
            log.debug("Chat client disconnected", model=model)
        finally:
            if not reply.done():
                token.cancel("Client disconnected")
                reply.cancel()
                await asyncio.wait({reply})
        return response

    async def _on_shutdown(self, app: web.Application) -> None:
        await self.store.shutdown()

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/agent/start", self.start_agent)
        app.router.add_get("/api/agent/{id}/events", self.agent_events)
        app.router.add_post("/api/agent/{id}/stop", self.stop_agent)
        app.router.add_get("/api/agent/{id}/status", self.agent_status)
        app.router.add_get("/api/models", self.list_models)
        app.router.add_post("/api/run", self.run_command)
        app.router.add_post("/api/chat", self.chat)
        app.on_shutdown.append(self._on_shutdown)
        return app


def create_server(config: Config) -> WebServer:
    """Wire a WebServer from configuration."""
    store = SessionStore(Agent(), max_iterations=config.agent.max_iterations)
    return WebServer(store)


async def _run_server(config: Config, host: str | None = None, port: int | None = None) -> None:
    """Run the web server until SIGINT/SIGTERM."""
    server = create_server(config)
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, OSError):
            pass

    app = server.create_app()
    runner = web.AppRunner(app)
    await runner.setup()

    bind_host = host or config.web.host
    bind_port = port or config.web.port
    site = web.TCPSite(runner, bind_host, bind_port)
    await site.start()

    log.info("Web server started", host=bind_host, port=bind_port)
    print(f"openbird running at http://{bind_host}:{bind_port}")

    await stop_event.wait()

    print("\nShutting down...")
    await runner.cleanup()


def run_web_server(config: Config, host: str | None = None, port: int | None = None) -> None:
    """Entry point for running the web server."""
    try:
        asyncio.run(_run_server(config, host=host, port=port))
    except KeyboardInterrupt:
        pass
