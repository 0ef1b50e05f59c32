"""Channel manager."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable

from loguru import logger

from threadpal.app.runtime import AppRuntime
from threadpal.channels.base import BaseChannel
from threadpal.channels.bus import MessageBus
from threadpal.channels.events import InboundMessage, OutboundMessage
from threadpal.errors import format_error

TURN_ERROR_LABEL = "Error processing response."
NO_RESPONSE = "(no response)"
CLEAR_AGENT_VALUES = frozenset({"default", "reset", "clear"})


class ChannelManager:
    """Coordinate inbound routing and outbound dispatch for channels.

    Inbound messages are queued per topic key so one conversation never has
    two backend calls in flight.
    """

    def __init__(self, bus: MessageBus, runtime: AppRuntime) -> None:
        self.bus = bus
        self.runtime = runtime
        self._channels: dict[str, BaseChannel] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._unsub_inbound: Callable[[], None] | None = None
        self._unsub_outbound: Callable[[], None] | None = None

    def register(self, channel: BaseChannel) -> None:
        self._channels[channel.name] = channel

    @property
    def channels(self) -> dict[str, BaseChannel]:
        return dict(self._channels)

    def enabled_channels(self) -> Iterable[str]:
        return self._channels.keys()

    async def start(self) -> None:
        self.runtime.set_bus(self.bus)
        self._unsub_inbound = self.bus.on_inbound(self._handle_inbound)
        self._unsub_outbound = self.bus.on_outbound(self._handle_outbound)
        for channel in self._channels.values():
            self._tasks.append(asyncio.create_task(channel.start()))

    async def stop(self) -> None:
        for channel in self._channels.values():
            await channel.stop()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                continue
        self._tasks.clear()
        if self._unsub_inbound is not None:
            self._unsub_inbound()
            self._unsub_inbound = None
        if self._unsub_outbound is not None:
            self._unsub_outbound()
            self._unsub_outbound = None

    async def _handle_inbound(self, message: InboundMessage) -> None:
        self.runtime.queue.enqueue(message.topic_key, lambda: self._process_inbound(message))

    async def _handle_outbound(self, message: OutboundMessage) -> None:
        channel = self._channels.get(message.channel)
        if channel is None:
            logger.warning("channel.outbound.unknown channel={}", message.channel)
            return
        try:
            await channel.send(message)
        except Exception:
            logger.exception("channel.outbound.error channel={} chat_id={}", message.channel, message.chat_id)

    async def _process_inbound(self, message: InboundMessage) -> None:
        if message.command:
            reply = self._run_command(message)
        else:
            reply = await self._run_turn(message)
        await self.bus.publish_outbound(
            OutboundMessage(
                channel=message.channel,
                chat_id=message.chat_id,
                content=reply,
                topic_id=message.topic_id,
                metadata={"topic_key": message.topic_key},
                reply_to_message_id=message.metadata.get("message_id"),
            )
        )

    async def _run_turn(self, message: InboundMessage) -> str:
        try:
            reply = await self.runtime.run_turn(message.chat_id, message.topic_id, message.content)
        except Exception as exc:
            logger.exception("channel.turn.error key={}", message.topic_key)
            return format_error(TURN_ERROR_LABEL, exc)
        if self.runtime.settings.is_silent(reply):
            logger.info("channel.turn.silent key={}", message.topic_key)
            return ""
        return reply.strip() or NO_RESPONSE

    def _run_command(self, message: InboundMessage) -> str:
        command = (message.command or "").lower()
        value = message.content.strip()
        if command == "reset":
            self.runtime.reset_session(message.chat_id, message.topic_id)
            return "Session reset."
        if command == "agent":
            return self._agent_command(message, value)
        if command in ("model", "thinking"):
            return self._setting_command(command, value)
        return f"Unknown command: /{command}"

    def _agent_command(self, message: InboundMessage, value: str) -> str:
        registry = self.runtime.registry
        if not value:
            current = self.runtime.resolve_agent(message.chat_id, message.topic_id)
            return f"Current agent: {current.label}\nAvailable: {', '.join(registry.ids())}"
        lowered = value.lower()
        if lowered not in CLEAR_AGENT_VALUES and not registry.is_known(lowered):
            return f"Unknown agent: {value}\nAvailable: {', '.join(registry.ids())}"
        try:
            agent_id = self.runtime.set_topic_agent(
                message.chat_id,
                message.topic_id,
                None if lowered in CLEAR_AGENT_VALUES else lowered,
            )
        except OSError as exc:
            logger.exception("channel.command.error command=agent")
            return format_error("Failed to persist agent.", exc)
        return f"Agent set to {registry.label(agent_id)}."

    def _setting_command(self, command: str, value: str) -> str:
        noun = "thinking level" if command == "thinking" else "model"
        if not value:
            current = self.runtime.config_store.read().get(command)
            if current:
                return f"Current {noun}: {current}"
            return f"No {noun} set. Use /{command} <value>."
        try:
            if command == "thinking":
                self.runtime.set_thinking(value)
            else:
                self.runtime.set_model(value)
        except OSError as exc:
            logger.exception("channel.command.error command={}", command)
            return format_error(f"Failed to persist {noun}.", exc)
        return f"{noun[0].upper()}{noun[1:]} set to {value}."
