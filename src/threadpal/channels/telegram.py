"""Telegram channel adapter."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from loguru import logger
from telegram import Message, MessageEntity, Update
from telegram.constants import ChatType
from telegram.error import BadRequest
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters
from telegramify_markdown import markdownify as md

from threadpal.channels.base import BaseChannel
from threadpal.channels.bus import MessageBus
from threadpal.channels.events import InboundMessage, OutboundMessage
from threadpal.sessions.keys import build_topic_key

MAX_CHUNK_LENGTH = 3500
TYPING_INTERVAL_SECONDS = 4
ROUTED_COMMANDS = ("reset", "agent", "model", "thinking")
BOT_PREFIX = "/bot "
MENTION_ENTITIES = [MessageEntity.MENTION, MessageEntity.TEXT_MENTION]


def chunk_text(text: str, size: int = MAX_CHUNK_LENGTH) -> list[str]:
    return [text[i : i + size] for i in range(0, len(text), size)]


class AddressedToBotFilter(filters.MessageFilter):
    """Private chats pass every non-command text; groups only pass text addressed to the bot."""

    def filter(self, message: Message) -> bool:
        if not message.text:
            return False
        if message.chat.type == ChatType.PRIVATE:
            return not filters.COMMAND.filter(message)
        if message.chat.type not in (ChatType.GROUP, ChatType.SUPERGROUP):
            return False
        if message.text.startswith(BOT_PREFIX):
            return True
        bot = message.get_bot()
        return self._mentions(message, bot.id, bot.username) or self._replies_to(message, bot.id)

    @staticmethod
    def _mentions(message: Message, bot_id: int, username: str | None) -> bool:
        handle = f"@{username}".lower() if username else None
        for entity, value in message.parse_entities(MENTION_ENTITIES).items():
            if entity.type == MessageEntity.TEXT_MENTION:
                if entity.user is not None and entity.user.id == bot_id:
                    return True
            elif handle is not None and value.lower() == handle:
                return True
        return False

    @staticmethod
    def _replies_to(message: Message, bot_id: int) -> bool:
        original = message.reply_to_message
        return original is not None and original.from_user is not None and original.from_user.id == bot_id


@dataclass(frozen=True)
class TelegramConfig:
    token: str
    allow_from: set[str]


def _topic_of(message: Any) -> str | None:
    # Reply threads outside forums also carry message_thread_id.
    thread_id = getattr(message, "message_thread_id", None)
    if thread_id is None or not getattr(message, "is_topic_message", True):
        return None
    return str(thread_id)


class TelegramChannel(BaseChannel):
    """Long-polling Telegram adapter. Forum topics map to conversation topics."""

    name = "telegram"

    def __init__(self, bus: MessageBus, config: TelegramConfig) -> None:
        super().__init__(bus)
        self._config = config
        self._app: Application | None = None
        self._stopped = asyncio.Event()
        self._typing_tasks: dict[str, asyncio.Task[None]] = {}

    def _build_application(self) -> Application:
        application = Application.builder().token(self._config.token).build()
        application.add_handlers([
            CommandHandler("start", self._on_start),
            CommandHandler("help", self._on_help),
            *(CommandHandler(command, self._on_command, block=False) for command in ROUTED_COMMANDS),
            MessageHandler(AddressedToBotFilter(), self._on_text, block=False),
        ])
        return application

    async def start(self) -> None:
        if not self._config.token:
            raise RuntimeError("telegram token is empty")
        logger.info("telegram.channel.start allow_from_count={}", len(self._config.allow_from))
        self._stopped.clear()
        self._running = True
        self._app = self._build_application()
        await self._app.initialize()
        await self._app.start()
        if self._app.updater is not None:
            await self._app.updater.start_polling(drop_pending_updates=True, allowed_updates=[Update.MESSAGE])
            logger.info("telegram.channel.polling")
        await self._stopped.wait()

    async def stop(self) -> None:
        self._running = False
        self._stopped.set()
        while self._typing_tasks:
            _, task = self._typing_tasks.popitem()
            task.cancel()
        app, self._app = self._app, None
        if app is None:
            return
        if app.updater is not None and app.updater.running:
            await app.updater.stop()
        await app.stop()
        await app.shutdown()
        logger.info("telegram.channel.stopped")

    async def send(self, message: OutboundMessage) -> None:
        if self._app is None:
            return
        self._stop_typing(message.chat_id, message.topic_id)
        reply_to = message.reply_to_message_id
        for chunk in chunk_text(message.content.strip()):
            await self._send_chunk(message, chunk, reply_to)
            reply_to = None

    async def _send_chunk(self, message: OutboundMessage, chunk: str, reply_to: int | None) -> None:
        assert self._app is not None
        kwargs: dict[str, Any] = {"chat_id": int(message.chat_id)}
        if message.topic_id is not None:
            kwargs["message_thread_id"] = int(message.topic_id)
        if reply_to is not None:
            kwargs["reply_to_message_id"] = reply_to
        try:
            await self._app.bot.send_message(text=md(chunk), parse_mode="MarkdownV2", **kwargs)
        except BadRequest as exc:
            logger.warning("telegram.channel.markdown_rejected chat_id={} error={}", message.chat_id, exc)
            await self._app.bot.send_message(text=chunk, parse_mode=None, **kwargs)

    async def _on_start(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.message is None:
            return
        await update.message.reply_text("Ready. Send a message and I will pass it to the current agent.")

    async def _on_help(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.message is None:
            return
        await update.message.reply_text(
            "Commands:\n"
            "/reset - start a new session in this topic\n"
            "/agent [name|default] - show or pin the agent for this topic\n"
            "/model [name] - show or set the model\n"
            "/thinking [level] - show or set the reasoning effort\n\n"
            "All plain text is routed to the current agent."
        )

    def _is_allowed(self, update: Update) -> bool:
        user = update.effective_user
        if user is None:
            return False
        if not self._config.allow_from:
            return True
        sender_tokens = {str(user.id)}
        if user.username:
            sender_tokens.add(user.username)
        return not sender_tokens.isdisjoint(self._config.allow_from)

    async def _on_command(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        if message is None or update.effective_user is None:
            return
        if not self._is_allowed(update):
            await message.reply_text("Access denied.")
            return
        head, _, argument = (message.text or "").strip().partition(" ")
        command = head.lstrip("/").split("@", 1)[0].lower()
        logger.info("telegram.channel.command chat_id={} command={}", message.chat_id, command)
        await self.publish_inbound(
            InboundMessage(
                channel=self.name,
                sender_id=str(update.effective_user.id),
                chat_id=str(message.chat_id),
                content=argument.strip(),
                topic_id=_topic_of(message),
                command=command,
            )
        )

    async def _on_text(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.message is None or update.effective_user is None:
            return
        if not self._is_allowed(update):
            await update.message.reply_text("Access denied.")
            return

        user = update.effective_user
        chat_id = str(update.message.chat_id)
        topic_id = _topic_of(update.message)
        text = (update.message.text or "").removeprefix(BOT_PREFIX).strip()
        if not text:
            return

        logger.info(
            "telegram.channel.inbound chat_id={} sender_id={} username={} content={}",
            chat_id,
            user.id,
            user.username or "",
            text[:100],
        )

        self._start_typing(chat_id, topic_id)
        try:
            await self.publish_inbound(
                InboundMessage(
                    channel=self.name,
                    sender_id=str(user.id),
                    chat_id=chat_id,
                    content=text,
                    topic_id=topic_id,
                    metadata={
                        "username": user.username or "",
                        "message_id": update.message.message_id,
                    },
                )
            )
        except Exception:
            self._stop_typing(chat_id, topic_id)
            raise

    def _start_typing(self, chat_id: str, topic_id: str | None) -> None:
        key = build_topic_key(chat_id, topic_id)
        self._stop_typing(chat_id, topic_id)
        self._typing_tasks[key] = asyncio.create_task(self._typing_loop(chat_id, topic_id))

    def _stop_typing(self, chat_id: str, topic_id: str | None) -> None:
        task = self._typing_tasks.pop(build_topic_key(chat_id, topic_id), None)
        if task is not None:
            task.cancel()

    async def _typing_loop(self, chat_id: str, topic_id: str | None) -> None:
        kwargs: dict[str, Any] = {"chat_id": int(chat_id), "action": "typing"}
        if topic_id is not None:
            kwargs["message_thread_id"] = int(topic_id)
        try:
            while self._app is not None:
                await self._app.bot.send_chat_action(**kwargs)
                await asyncio.sleep(TYPING_INTERVAL_SECONDS)
        except asyncio.CancelledError:
            return
        except Exception:
            logger.exception("telegram.channel.typing_loop.error chat_id={} topic_id={}", chat_id, topic_id)
            return
