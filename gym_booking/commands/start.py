"""
/start command - Greet the member and show their balance
"""

import logging
from telegram import Update
from telegram.ext import ContextTypes

from gym_booking.commands.formatting import NOT_LINKED_MESSAGE
from gym_booking.identity import resolve_caller

logger = logging.getLogger(__name__)


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the /start command"""
    telegram_id = update.effective_user.id
    caller = resolve_caller(telegram_id)

    if caller is None:
        await update.message.reply_text(NOT_LINKED_MESSAGE)
        return

    welcome_msg = (
        "👋 <b>Welcome to the studio booking bot!</b>\n\n"
        f"🎟 Remaining accesses: <b>{caller.remaining_accesses}</b>\n"
        f"📆 Subscription valid until: <b>{caller.expires_at:%d/%m/%Y}</b>\n"
        f"👥 Subscription type: <b>{caller.sub_type.value}</b>\n\n"
        "⚡ <b>Commands:</b>\n"
        "• Available slots: /slots\n"
        "• Your bookings: /mybookings"
    )
    if caller.is_admin:
        welcome_msg += "\n• This week's activity: /events"

    await update.message.reply_text(welcome_msg, parse_mode="HTML")
