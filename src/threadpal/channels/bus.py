"""Signal-based channel bus."""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from typing import Any, TypeAlias, TypeVar

from blinker import Signal

from threadpal.channels.events import InboundMessage, OutboundMessage

M = TypeVar("M")

Handler: TypeAlias = Callable[[M], Coroutine[Any, Any, None]]


def _subscribe(signal: Signal, handler: Handler[M]) -> Callable[[], None]:
    async def _receiver(_sender: Any, *, message: M) -> None:
        await handler(message)

    signal.connect(_receiver, weak=False)
    return lambda: signal.disconnect(_receiver)


class MessageBus:
    """In-process message bus over two blinker signals, inbound and outbound.

    Publishing awaits every connected receiver; subscribing returns an
    unsubscribe callable.
    """

    def __init__(self) -> None:
        self.inbound = Signal("threadpal.inbound")
        self.outbound = Signal("threadpal.outbound")

    async def publish_inbound(self, message: InboundMessage) -> None:
        await self.inbound.send_async(self, message=message)

    async def publish_outbound(self, message: OutboundMessage) -> None:
        await self.outbound.send_async(self, message=message)

    def on_inbound(self, handler: Handler[InboundMessage]) -> Callable[[], None]:
        return _subscribe(self.inbound, handler)

    def on_outbound(self, handler: Handler[OutboundMessage]) -> Callable[[], None]:
        return _subscribe(self.outbound, handler)
