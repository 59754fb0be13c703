"""
Main Telegram bot handler.

Uses python-telegram-bot library with webhook mode.
"""

from telegram import Update
from telegram.ext import Application, CommandHandler, MessageHandler, filters

from ledger_bot.config import get_settings
from ledger_bot.errors import ConfigurationError
from ledger_bot.services.dedup import get_seen_updates
from .logging_config import bot_logger as logger
from .handlers import (
    handle_start_command,
    handle_help_command,
    handle_text_message,
    handle_error,
)


# Global application instance (initialized once)
_application: Application | None = None


def get_bot_application() -> Application:
    """Get or create telegram bot application."""
    global _application

    if _application is None:
        settings = get_settings()
        if not settings.telegram_bot_token:
            raise ConfigurationError("TELEGRAM_BOT_TOKEN is not set")

        _application = (
            Application.builder()
            .token(settings.telegram_bot_token)
            .build()
        )

        _application.add_handler(CommandHandler("start", handle_start_command))
        _application.add_handler(CommandHandler("help", handle_help_command))

        # All other text, including /myid and /我, goes to the ledger.
        # Edited messages are ignored so an edit never records twice.
        _application.add_handler(
            MessageHandler(filters.UpdateType.MESSAGE & filters.TEXT, handle_text_message)
        )

        _application.add_error_handler(handle_error)

        logger.info("Telegram bot application initialized")

    return _application


async def handle_telegram_update(update_data: dict) -> bool:
    """
    Process incoming webhook update from Telegram.

    This is called by FastAPI webhook endpoint as a background task.
    The update_id is marked as seen first; a repeated delivery is dropped.

    Returns:
        True if the update was processed, False if dropped or invalid.
    """
    update_id = update_data.get("update_id")
    if update_id is not None:
        try:
            first_delivery = await get_seen_updates().mark_seen(update_id)
        except Exception as e:
            logger.warning(f"Dedup check failed for update_id={update_id}, processing anyway: {e}")
            first_delivery = True

        if not first_delivery:
            logger.info(f"Dropping repeated update_id={update_id}")
            return False

    try:
        app = get_bot_application()

        # Convert dict to Update object
        update = Update.de_json(update_data, app.bot)

        if not update:
            logger.warning("Received invalid update data")
            return False

        await app.process_update(update)
        return True

    except Exception as e:
        logger.error(f"Failed to process update: {e}", exc_info=True)
        return False


async def initialize_bot() -> None:
    """
    Initialize bot application (call on startup).
    """
    app = get_bot_application()
    await app.initialize()
    logger.info("Bot initialized successfully")


async def shutdown_bot() -> None:
    """
    Shutdown bot application (call on shutdown).
    """
    global _application
    if _application:
        await _application.shutdown()
        logger.info("Bot shut down")
