"""Telegram bot entry point (long polling)."""

from __future__ import annotations

import logging

from telegram import Update
from telegram.ext import Application, ApplicationBuilder, CallbackQueryHandler, ContextTypes, MessageHandler, filters

from .config import Settings, get_settings
from .db import Base, engine
from .dispatcher import CallbackEvent, Event, TextEvent
from .migrations import run_migrations
from .services import build_services
from .transport import TelegramTransport

logger = logging.getLogger(__name__)

DISPATCHER_KEY = "dispatcher"


def event_from_update(update: Update) -> Event | None:
    """Reduce an update to the event the dispatcher understands, if any."""
    query = update.callback_query
    if query is not None:
        if query.message is None or not query.data:
            return None
        return CallbackEvent(
            identity=str(query.message.chat.id),
            message_id=query.message.message_id,
            token=query.data,
            username=query.from_user.username if query.from_user else None,
            callback_id=query.id,
        )

    message = update.message
    if message is None or not message.text:
        return None
    user = message.from_user
    return TextEvent(
        identity=str(message.chat.id),
        message_id=message.message_id,
        text=message.text,
        username=user.username if user else None,
        first_name=user.first_name if user else None,
    )


async def handle_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    event = event_from_update(update)
    if event is None:
        return
    await context.application.bot_data[DISPATCHER_KEY].dispatch(event)


def build_application(settings: Settings | None = None) -> Application:
    settings = settings or get_settings()
    if not settings.telegram_bot_token:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is missing from configuration.")

    application = ApplicationBuilder().token(settings.telegram_bot_token).build()
    services = build_services(settings, transport=TelegramTransport(application.bot))
    application.bot_data[DISPATCHER_KEY] = services.dispatcher

    application.add_handler(CallbackQueryHandler(handle_update))
    # Commands go through the same handler; the engine owns the command table.
    application.add_handler(MessageHandler(filters.TEXT, handle_update))
    return application


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    settings = get_settings()
    if not settings.telegram_bot_token:
        raise SystemExit("Please set TELEGRAM_BOT_TOKEN in the environment to run the bot.")
    Base.metadata.create_all(bind=engine)
    run_migrations(engine)
    application = build_application(settings)
    logger.info("Starting Telegram bot...")
    application.run_polling(drop_pending_updates=True)


if __name__ == "__main__":
    main()
