"""threadpal command line interface."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from pathlib import Path

import typer
from loguru import logger

from threadpal.app.bootstrap import build_runtime
from threadpal.app.runtime import AppRuntime, TurnOverrides
from threadpal.channels import ChannelManager, MessageBus, TelegramChannel, TelegramConfig
from threadpal.errors import InvocationError, format_error
from threadpal.logging_utils import configure_logging

app = typer.Typer(name="threadpal", help="Route chat threads to coding agents.", add_completion=False)

HomeOption = typer.Option(None, "--home", help="State directory (defaults to THREADPAL_HOME)")


@app.command()
def run(
    message: str = typer.Argument(..., help="Message to send"),
    chat_id: str = typer.Option("local", "--chat-id", help="Conversation id"),
    topic: str | None = typer.Option(None, "--topic", help="Topic inside the conversation"),
    agent: str | None = typer.Option(None, "--agent", help="Backend for this turn"),
    model: str | None = typer.Option(None, "--model", help="Model override"),
    thinking: str | None = typer.Option(None, "--thinking", help="Reasoning effort override"),
    home: Path | None = HomeOption,
) -> None:
    """Run one turn and print the reply."""

    configure_logging()
    runtime = build_runtime(home=home)
    overrides = TurnOverrides(agent=agent, model=model, reasoning_effort=thinking)
    try:
        reply = asyncio.run(runtime.run_turn(chat_id, topic, message, overrides))
    except InvocationError as exc:
        typer.echo(format_error("Error processing response.", exc), err=True)
        raise typer.Exit(1) from exc
    typer.echo(reply)


@app.command()
def reset(
    chat_id: str = typer.Option("local", "--chat-id", help="Conversation id"),
    topic: str | None = typer.Option(None, "--topic", help="Topic inside the conversation"),
    agent: str | None = typer.Option(None, "--agent", help="Backend whose session is dropped"),
    home: Path | None = HomeOption,
) -> None:
    """Forget the stored session for one topic."""

    runtime = build_runtime(home=home)
    removed = runtime.reset_session(chat_id, topic, agent)
    typer.echo("Session reset." if removed else "No session to reset.")


@app.command()
def agents(home: Path | None = HomeOption) -> None:
    """List available backends."""

    runtime = build_runtime(home=home)
    for adapter in runtime.registry:
        marker = "*" if adapter.id == runtime.registry.default else " "
        typer.echo(f"{marker} {adapter.id}\t{adapter.label}")


@app.command()
def memory(
    query: str = typer.Argument(..., help="Search text"),
    chat_id: str = typer.Option("local", "--chat-id", help="Conversation id"),
    topic: str | None = typer.Option(None, "--topic", help="Topic inside the conversation"),
    agent: str | None = typer.Option(None, "--agent", help="Backend for same-thread ranking"),
    limit: int | None = typer.Option(None, "--limit", min=1, max=30, help="Maximum hits"),
    home: Path | None = HomeOption,
) -> None:
    """Search captured conversation memory."""

    runtime = build_runtime(home=home)
    agent_id = runtime.resolve_agent(chat_id, topic, agent).id
    rendered = runtime.search_memory(chat_id, topic, agent_id, query, limit=limit)
    typer.echo(rendered or "(no memory hits)")


@app.command()
def telegram(home: Path | None = HomeOption) -> None:
    """Serve the Telegram bot until interrupted."""

    configure_logging(profile="serve")
    runtime = build_runtime(home=home)
    token = runtime.settings.telegram_token
    if not token:
        typer.echo("THREADPAL_TELEGRAM_TOKEN is not set.", err=True)
        raise typer.Exit(1)
    asyncio.run(_serve_telegram(runtime, TelegramConfig(token=token, allow_from=runtime.settings.telegram_allow_from)))


async def _serve_telegram(runtime: AppRuntime, config: TelegramConfig) -> None:
    bus = MessageBus()
    manager = ChannelManager(bus, runtime)
    manager.register(TelegramChannel(bus, config))
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    await manager.start()
    logger.info("telegram.serve.started channels={}", ",".join(manager.enabled_channels()))
    try:
        await stop_event.wait()
    finally:
        await manager.stop()
        await runtime.queue.join()
        logger.info("telegram.serve.stopped")
