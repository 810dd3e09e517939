"""
Button callback handlers for Telegram inline keyboards.
Handles booking and cancellation buttons.
"""

import logging
from datetime import datetime

from telegram import Update
from telegram.ext import ContextTypes

from gym_booking.commands.formatting import NOT_LINKED_MESSAGE, error_message, format_slot
from gym_booking.errors import BookingError
from gym_booking.identity import resolve_caller
from gym_booking.services.booking_service import get_booking_service

logger = logging.getLogger(__name__)


async def book_slot(query, telegram_id: int, iso_instant: str) -> None:
    caller = resolve_caller(telegram_id)
    if caller is None:
        await query.edit_message_text(NOT_LINKED_MESSAGE)
        return

    try:
        starts_at = datetime.fromisoformat(iso_instant)
    except ValueError:
        logger.warning(f"Malformed slot in callback data: {iso_instant}")
        await query.edit_message_text("🚫 This slot cannot be booked.")
        return

    try:
        await get_booking_service().create(caller, starts_at)
    except BookingError as e:
        logger.warning(f"Booking of {iso_instant} by user {caller.user_id} refused: {e.kind.value}")
        await query.edit_message_text(error_message(e))
        return

    await query.edit_message_text(
        f"✅ <b>Booked!</b>\n\n📅 {format_slot(starts_at)}\n\nSee you there.",
        parse_mode="HTML",
    )


async def cancel_booking(query, telegram_id: int, raw_id: str) -> None:
    caller = resolve_caller(telegram_id)
    if caller is None:
        await query.edit_message_text(NOT_LINKED_MESSAGE)
        return

    try:
        booking_id = int(raw_id)
    except ValueError:
        await query.edit_message_text("❓ Booking not found.")
        return

    try:
        refunded = await get_booking_service().delete(caller, booking_id)
    except BookingError as e:
        await query.edit_message_text(error_message(e))
        return

    message = "🗑 <b>Booking cancelled.</b>\n\n"
    if refunded:
        message += "🎟 Your access has been returned."
    else:
        message += "⏰ Cancelled less than 3 hours ahead: the access is not returned."
    await query.edit_message_text(message, parse_mode="HTML")


async def button_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Route inline button presses"""
    query = update.callback_query
    await query.answer()

    data = query.data or ""
    telegram_id = update.effective_user.id

    if data.startswith("book_"):
        await book_slot(query, telegram_id, data[len("book_"):])
    elif data.startswith("cancel_"):
        await cancel_booking(query, telegram_id, data[len("cancel_"):])
    else:
        logger.warning(f"Unknown callback data: {data}")
