"""
Telegram Bot: aiogram v3 transport for owner commands and pushes.

Features:
- Text commands (register / create / checkin / list / deactivate <id>)
- Inline keyboard postbacks (``action=checkin``, ``action=deactivate&vaultId=...``)
- Outbound push for reminders and activation alerts, registered with the
  notification port via ``set_telegram_sender``
- HTML parse mode (more reliable than Markdown for Telegram)

The chat id is the owner's contact ref.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from aiogram import Bot, Dispatcher, F
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.filters import Command
from aiogram.types import (
    BotCommand,
    CallbackQuery,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Message,
)

from keeper.notify.port import set_telegram_sender
from keeper.notify.render import RenderedMessage, render_message

if TYPE_CHECKING:
    from keeper.config import TelegramConfig
    from keeper.engine.dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


def build_keyboard(rendered: RenderedMessage) -> InlineKeyboardMarkup | None:
    """Inline keyboard for a rendered message, or None when it has no buttons."""
    if not rendered.buttons:
        return None
    rows: list[list[InlineKeyboardButton]] = []
    for row in rendered.buttons:
        rows.append(
            [
                InlineKeyboardButton(text=b.text, url=b.url)
                if b.url
                else InlineKeyboardButton(text=b.text, callback_data=b.callback_data)
                for b in row
            ]
        )
    return InlineKeyboardMarkup(inline_keyboard=rows)


class TelegramBot:
    """Aiogram v3 Telegram bot for Secret Keeper."""

    def __init__(self, config: TelegramConfig, dispatcher: CommandDispatcher) -> None:
        self.config = config
        self.dispatcher = dispatcher
        self.bot = Bot(
            token=config.bot_token,
            default=DefaultBotProperties(parse_mode=ParseMode.HTML),
        )
        self.dp = Dispatcher()
        self._setup_handlers()

        # Register push function for the notification port
        set_telegram_sender(self.push)

    def _setup_handlers(self) -> None:
        """Register all message and callback handlers."""

        @self.dp.message(Command("start"))
        async def cmd_start(message: Message) -> None:
            await self._reply(message, await self.dispatcher.handle_text(str(message.chat.id), ""))

        # ── Inline keyboard callbacks ──

        @self.dp.callback_query(F.data.startswith("action="))
        async def on_action(callback: CallbackQuery) -> None:
            if not callback.data or not callback.message:
                return
            chat_id = str(callback.message.chat.id)
            reply = await self.dispatcher.handle_action(chat_id, callback.data)
            if reply is None:
                await callback.answer("Unknown action")
                return
            await callback.answer()
            await self.push(chat_id, render_message(reply))

        # ── Text commands ──

        @self.dp.message(F.text)
        async def handle_text(message: Message) -> None:
            if not message.text or not message.from_user:
                return
            chat_id = str(message.chat.id)
            logger.info(
                "Telegram message from %s (chat %s): %s",
                message.from_user.first_name,
                chat_id,
                message.text[:100],
            )
            reply = await self.dispatcher.handle_text(chat_id, message.text)
            await self._reply(message, reply)

    async def _reply(self, message: Message, content) -> None:
        rendered = render_message(content)
        await message.answer(rendered.text, reply_markup=build_keyboard(rendered))

    async def push(self, chat_id: str, rendered: RenderedMessage) -> None:
        """Send a rendered message to a chat, splitting long text."""
        chunks = self._split_message(rendered.text)
        keyboard = build_keyboard(rendered)
        for i, chunk in enumerate(chunks):
            # Buttons go on the last chunk
            markup = keyboard if i == len(chunks) - 1 else None
            await self.bot.send_message(chat_id=int(chat_id), text=chunk, reply_markup=markup)

    def _split_message(self, text: str) -> list[str]:
        """Split text into chunks that fit Telegram's limit."""
        if len(text) <= MAX_MESSAGE_LENGTH:
            return [text]

        chunks = []
        while text:
            if len(text) <= MAX_MESSAGE_LENGTH:
                chunks.append(text)
                break

            split_pos = text.rfind("\n", 0, MAX_MESSAGE_LENGTH)
            if split_pos == -1 or split_pos < MAX_MESSAGE_LENGTH // 2:
                split_pos = MAX_MESSAGE_LENGTH

            chunks.append(text[:split_pos])
            text = text[split_pos:].lstrip("\n")

        return chunks

    async def start_polling(self) -> None:
        """Start the bot in long-polling mode."""
        if not self.config.bot_token:
            logger.warning("No bot token configured, Telegram bot disabled")
            while True:
                await asyncio.sleep(3600)

        try:
            await self.bot.set_my_commands(
                [
                    BotCommand(command="register", description="Create a vault"),
                    BotCommand(command="checkin", description="I'm still here"),
                    BotCommand(command="list", description="Show my vaults"),
                ]
            )
        except Exception as e:
            logger.warning("Failed to set bot commands: %s", e)

        logger.info("Starting Telegram bot polling...")
        try:
            await self.dp.start_polling(self.bot)
        except Exception as e:
            logger.error("Telegram polling failed: %s", e, exc_info=True)
            raise

    async def stop(self) -> None:
        """Stop the bot gracefully."""
        set_telegram_sender(None)
        with contextlib.suppress(Exception):
            await self.bot.session.close()
