"""
/slots, /mybookings and /events commands
"""

import logging
from datetime import datetime, timezone
from telegram import Update
from telegram.ext import ContextTypes

from gym_booking.calendar_rules import from_db_time
from gym_booking.commands.formatting import (
    MAX_BUTTONS,
    NOT_LINKED_MESSAGE,
    bookings_keyboard,
    error_message,
    format_slot,
    slots_keyboard,
)
from gym_booking.errors import BookingError
from gym_booking.identity import resolve_caller
from gym_booking.services.booking_service import get_booking_service

logger = logging.getLogger(__name__)


async def slots_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Show the next bookable slots as buttons"""
    caller = resolve_caller(update.effective_user.id)
    if caller is None:
        await update.message.reply_text(NOT_LINKED_MESSAGE)
        return

    try:
        slots = get_booking_service().get_available_slots(caller)
    except BookingError as e:
        logger.warning(f"Slots for user {caller.user_id} refused: {e.kind.value}")
        await update.message.reply_text(error_message(e))
        return

    if not slots:
        await update.message.reply_text("😕 No slots available right now.")
        return

    message = f"📅 <b>Available slots</b> ({len(slots)} in total)\n\nTap a slot to book it:"
    if len(slots) > MAX_BUTTONS:
        message += f"\n<i>Showing the first {MAX_BUTTONS}.</i>"

    await update.message.reply_text(
        message, reply_markup=slots_keyboard(slots), parse_mode="HTML"
    )


async def mybookings_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """List upcoming bookings with cancel buttons"""
    caller = resolve_caller(update.effective_user.id)
    if caller is None:
        await update.message.reply_text(NOT_LINKED_MESSAGE)
        return

    try:
        bookings = get_booking_service().get_current(caller)
    except BookingError as e:
        await update.message.reply_text(error_message(e))
        return

    now = datetime.now(timezone.utc)
    upcoming = sorted(
        (b for b in bookings if from_db_time(b.starts_at) > now),
        key=lambda b: b.starts_at,
    )
    if not upcoming:
        await update.message.reply_text("📭 You have no upcoming bookings.\n\nUse /slots to book one.")
        return

    lines = "\n".join(f"• {format_slot(b.starts_at)}" for b in upcoming)
    message = (
        "📋 <b>Your bookings</b>\n\n"
        f"{lines}\n\n"
        "ℹ️ Cancelling more than 3 hours ahead returns the access."
    )
    await update.message.reply_text(
        message, reply_markup=bookings_keyboard(upcoming), parse_mode="HTML"
    )


async def events_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Admin: booking activity since Monday"""
    caller = resolve_caller(update.effective_user.id)
    if caller is None:
        await update.message.reply_text(NOT_LINKED_MESSAGE)
        return

    try:
        events = get_booking_service().get_latest_events(caller)
    except BookingError as e:
        await update.message.reply_text(error_message(e))
        return

    if not events:
        await update.message.reply_text("📭 No booking activity this week.")
        return

    icons = {"CREATED": "🟢", "DELETED": "🔴"}
    lines = []
    for event in events:
        name = event.user.full_name if event.user else f"user {event.user_id}"
        lines.append(
            f"{icons.get(event.type.value, '•')} {name}: {format_slot(event.starts_at)}"
        )

    await update.message.reply_text(
        "📈 <b>This week</b>\n\n" + "\n".join(lines), parse_mode="HTML"
    )
