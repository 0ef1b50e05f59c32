"""Base channel interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from threadpal.channels.bus import MessageBus
from threadpal.channels.events import InboundMessage, OutboundMessage


class BaseChannel(ABC):
    """A chat front-end: publishes what users send, delivers what the runtime replies."""

    name: str = "base"

    def __init__(self, bus: MessageBus) -> None:
        self.bus = bus
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @abstractmethod
    async def start(self) -> None:
        """Start receiving messages. May block until ``stop`` is called."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop receiving and release transport resources."""

    @abstractmethod
    async def send(self, message: OutboundMessage) -> None:
        """Deliver one outbound message."""

    async def publish_inbound(self, message: InboundMessage) -> None:
        await self.bus.publish_inbound(message)
