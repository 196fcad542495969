"""Delivery of renders to the chat platform."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError

from .errors import TransportError
from .render import Keyboard, Render

logger = logging.getLogger(__name__)


class EditOutcome(str, Enum):
    EDITED = "edited"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class ChatTransport(Protocol):
    async def send_message(self, identity: str, render: Render) -> int: ...

    async def edit_message(self, identity: str, message_id: int, render: Render) -> EditOutcome: ...

    async def delete_message(self, identity: str, message_id: int) -> bool: ...

    async def acknowledge_callback(self, callback_id: str, text: str | None = None, alert: bool = False) -> None: ...


def to_markup(keyboard: Keyboard) -> InlineKeyboardMarkup | None:
    if not keyboard:
        return None
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton(button.label, url=button.url)
                if button.url
                else InlineKeyboardButton(button.label, callback_data=button.callback.token)
                for button in row
            ]
            for row in keyboard
        ]
    )


class TelegramTransport:
    """:class:`ChatTransport` over a python-telegram-bot ``Bot``.

    ``send_message`` raises :class:`TransportError`; edits report an
    :class:`EditOutcome`; deletions and callback acknowledgements never raise.
    """

    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def send_message(self, identity: str, render: Render) -> int:
        try:
            message = await self.bot.send_message(
                chat_id=identity,
                text=render.text,
                parse_mode=ParseMode.MARKDOWN,
                reply_markup=to_markup(render.keyboard),
            )
        except TelegramError as exc:
            logger.warning("Failed to send message to %s: %s", identity, exc)
            raise TransportError(str(exc)) from exc
        return message.message_id

    async def edit_message(self, identity: str, message_id: int, render: Render) -> EditOutcome:
        try:
            await self.bot.edit_message_text(
                chat_id=identity,
                message_id=message_id,
                text=render.text,
                parse_mode=ParseMode.MARKDOWN,
                reply_markup=to_markup(render.keyboard),
            )
        except BadRequest as exc:
            if "message is not modified" in str(exc).lower():
                return EditOutcome.UNCHANGED
            logger.info("Editing message %s for %s failed: %s", message_id, identity, exc)
            return EditOutcome.FAILED
        except TelegramError as exc:
            logger.warning("Editing message %s for %s failed: %s", message_id, identity, exc)
            return EditOutcome.FAILED
        return EditOutcome.EDITED

    async def delete_message(self, identity: str, message_id: int) -> bool:
        try:
            return bool(await self.bot.delete_message(chat_id=identity, message_id=message_id))
        except TelegramError as exc:
            logger.debug("Could not delete message %s for %s: %s", message_id, identity, exc)
            return False

    async def acknowledge_callback(self, callback_id: str, text: str | None = None, alert: bool = False) -> None:
        try:
            await self.bot.answer_callback_query(callback_id, text=text, show_alert=alert)
        except TelegramError as exc:
            logger.warning("Failed to answer callback %s: %s", callback_id, exc)
