"""Main entry point for openbird."""

import asyncio
import signal

import typer
from rich.console import Console

from openbird.agent import Agent
from openbird.config import Config, get_config, set_config
from openbird.events import (
    AIChunkEvent,
    AIDoneEvent,
    ErrorEvent,
    StatusEvent,
    StepStartEvent,
    ToolDoneEvent,
    ToolOutputEvent,
    parse_event,
)
from openbird.exceptions import BackendUnavailableError
from openbird.instructions import CHAT_SYSTEM_PROMPT, InstructionLoader
from openbird.llm import LLMClient, create_client
from openbird.logging import configure_logging
from openbird.session import SessionStore

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

cli = typer.Typer(help="openbird - drive local Ollama models as a shell agent", no_args_is_help=True)

_MODEL_OPTION = typer.Option("", "-m", "--model", help="Model to use (defaults to config)")


@cli.callback()
def setup(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Load configuration and set up logging before any command."""
    cfg = Config.load(config or None)
    set_config(cfg)
    configure_logging("DEBUG" if verbose else None)


def _model_or_default(model: str) -> str:
    return model.strip() or get_config().model.default_model


def _chat_messages(loader: InstructionLoader) -> list[dict[str, str]]:
    return [{"role": "system", "content": loader.load(CHAT_SYSTEM_PROMPT)}]


def _write_chunk(chunk: str) -> None:
    console.print(chunk, end="", markup=False)


@cli.command()
def serve(
    host: str = typer.Option("", "--host", help="Bind address (defaults to config)"),
    port: int = typer.Option(0, "--port", help="Port (defaults to config)"),
) -> None:
    """Run the HTTP server."""
    from openbird.web_server import run_web_server

    run_web_server(get_config(), host=host or None, port=port or None)


async def _list_models(client: LLMClient) -> list[str]:
    try:
        return await client.list_models()
    finally:
        await client.close()


@cli.command()
def models() -> None:
    """List models available on the backend."""
    try:
        names = asyncio.run(_list_models(create_client()))
    except BackendUnavailableError:
        err_console.print("[red]Error: Could not connect to Ollama. Is it running?[/red]")
        raise typer.Exit(code=1)
    console.print("Available Ollama models:")
    for name in names:
        console.print(f"  - {name}", markup=False)


async def _ask(client: LLMClient, model: str, prompt: str) -> None:
    messages = _chat_messages(InstructionLoader())
    messages.append({"role": "user", "content": prompt})
    try:
        console.print(f"[cyan]\\[{model}][/cyan] ", end="")
        await client.chat(model, messages, on_chunk=_write_chunk)
        console.print()
    finally:
        await client.close()


@cli.command()
def ask(
    prompt: list[str] = typer.Argument(..., help="Prompt text"),
    model: str = _MODEL_OPTION,
) -> None:
    """Send a one-shot prompt and stream the reply."""
    try:
        asyncio.run(_ask(create_client(), _model_or_default(model), " ".join(prompt)))
    except BackendUnavailableError as e:
        err_console.print(f"\nError: {e}", style="red", markup=False)
        raise typer.Exit(code=1)


async def _chat_loop(client: LLMClient, model: str) -> None:
    messages = _chat_messages(InstructionLoader())
    console.print(f"[cyan]openbird[/cyan] connected to [yellow]{model}[/yellow]")
    console.print("Type your message. Use /quit to exit, /clear to reset, /model <name> to switch.\n")

    try:
        while True:
            try:
                line = await asyncio.to_thread(console.input, "[green]you>[/green] ")
            except EOFError:
                break
            text = line.strip()
            if not text:
                continue

            if text in ("/quit", "/exit"):
                console.print("Bye!")
                break

            if text == "/clear":
                del messages[1:]
                console.print("Chat history cleared.\n")
                continue

            if text.startswith("/model"):
                parts = text.split()
                if len(parts) > 1:
                    model = parts[1]
                    console.print(f"Switched to [yellow]{model}[/yellow]\n")
                else:
                    try:
                        names = await client.list_models()
                    except BackendUnavailableError as e:
                        err_console.print(f"Error: {e}", style="red", markup=False)
                        continue
                    console.print(f"Available models: {', '.join(names)}\n", markup=False)
                continue

            messages.append({"role": "user", "content": text})
            console.print("[cyan]openbird>[/cyan] ", end="")
            try:
                reply = await client.chat(model, messages, on_chunk=_write_chunk)
            except BackendUnavailableError as e:
                messages.pop()
                err_console.print(f"\nError: {e}\n", style="red", markup=False)
                continue
            console.print("\n")
            messages.append({"role": "assistant", "content": reply.content})
    finally:
        await client.close()


@cli.command()
def chat(model: str = _MODEL_OPTION) -> None:
    """Start an interactive chat."""
    try:
        asyncio.run(_chat_loop(create_client(), _model_or_default(model)))
    except KeyboardInterrupt:
        console.print("\nBye!")


def render_event(data: str) -> None:
    """Print one session event to the terminal."""
    event = parse_event(data)
    if isinstance(event, StepStartEvent):
        console.rule(f"step {event.iteration}", style="dim")
    elif isinstance(event, AIChunkEvent):
        _write_chunk(event.content)
    elif isinstance(event, AIDoneEvent):
        console.print()
        for call in event.tool_calls:
            command = call.arguments.get("command")
            label = f"$ {command}" if command else f"{call.name} {call.arguments}"
            console.print(label, style="bold yellow", markup=False)
    elif isinstance(event, ToolOutputEvent):
        console.print(event.data, end="", markup=False, style="red" if event.stream == "stderr" else None)
    elif isinstance(event, ToolDoneEvent):
        if "exit_code" in event.result:
            console.print(f"[dim]exit code: {event.result['exit_code']}[/dim]")
        elif "error" in event.result:
            console.print(str(event.result["error"]), style="red", markup=False)
    elif isinstance(event, ErrorEvent):
        err_console.print(f"Error: {event.message}", style="red", markup=False)
    elif isinstance(event, StatusEvent) and event.status != "running":
        console.print(f"[bold]status:[/bold] {event.status}")


async def _run_agent(task: str, model: str, max_iterations: int | None) -> str:
    store = SessionStore(Agent(), max_iterations=max_iterations or get_config().agent.max_iterations)
    session = store.create_session(model)
    store.subscribe(session.id, render_event)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, store.stop_session, session.id)
    except (NotImplementedError, OSError):
        pass

    try:
        store.start_session(session.id, task)
        await store.wait(session.id)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, OSError):
            pass
        await store.shutdown()
    return session.status.value


@cli.command()
def agent(
    task: list[str] = typer.Argument(..., help="Task for the agent"),
    model: str = _MODEL_OPTION,
    max_iterations: int = typer.Option(0, "--max-iterations", help="Turn cap (defaults to config)"),
) -> None:
    """Run an agent session in the terminal; Ctrl+C stops it."""
    status = asyncio.run(_run_agent(" ".join(task), _model_or_default(model), max_iterations or None))
    if status == "error":
        raise typer.Exit(code=1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
