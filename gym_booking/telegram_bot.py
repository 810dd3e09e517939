"""
Studio Booking Bot - Main Entry Point
Minimal bot setup that wires together all commands and handlers.
"""
import logging
from telegram import BotCommand
from telegram.ext import Application, CommandHandler, CallbackQueryHandler

from gym_booking.config import get_config
from gym_booking.database import init_database

# Import commands
from gym_booking.commands.start import start_command
from gym_booking.commands.booking import events_command, mybookings_command, slots_command

# Import handlers
from gym_booking.handlers.buttons import button_callback

from gym_booking.services.notification_service import cleanup_notifications

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
logger = logging.getLogger(__name__)


async def post_init(application: Application) -> None:
    """Post-initialization callback - set bot commands"""
    commands = [
        BotCommand("start", "Show your subscription"),
        BotCommand("slots", "Book an available slot"),
        BotCommand("mybookings", "View or cancel your bookings"),
        BotCommand("events", "This week's activity (staff)"),
    ]
    await application.bot.set_my_commands(commands)
    logger.info("Bot commands set")


async def post_shutdown(application: Application) -> None:
    await cleanup_notifications()


def main() -> None:
    """Start the bot"""
    config = get_config()

    # Initialize database
    logger.info("Initializing database...")
    init_database()

    # Create application
    application = (
        Application.builder()
        .token(config.require_bot_token())
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    # Register command handlers
    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("slots", slots_command))
    application.add_handler(CommandHandler("mybookings", mybookings_command))
    application.add_handler(CommandHandler("events", events_command))

    # Register button callback handler
    application.add_handler(CallbackQueryHandler(button_callback))

    # Start bot
    logger.info("Starting bot...")
    application.run_polling(allowed_updates=["message", "callback_query"])


if __name__ == '__main__':
    main()
