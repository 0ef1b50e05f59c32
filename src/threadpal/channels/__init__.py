"""Channel adapters and bus exports."""

from threadpal.channels.base import BaseChannel
from threadpal.channels.bus import MessageBus
from threadpal.channels.events import InboundMessage, OutboundMessage
from threadpal.channels.manager import ChannelManager
from threadpal.channels.telegram import TelegramChannel, TelegramConfig

__all__ = [
    "BaseChannel",
    "ChannelManager",
    "InboundMessage",
    "MessageBus",
    "OutboundMessage",
    "TelegramChannel",
    "TelegramConfig",
]
