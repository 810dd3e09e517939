"""
Message formatting shared by commands and button handlers
"""

from datetime import datetime
from typing import List

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from gym_booking.calendar_rules import to_local
from gym_booking.config import get_config
from gym_booking.db_models import Booking
from gym_booking.errors import BookingError, ErrorKind

# Inline keyboards stay readable up to this many buttons
MAX_BUTTONS = 10

ERROR_MESSAGES = {
    ErrorKind.UNAUTHORIZED: "⛔ Your subscription has expired or you have no accesses left.",
    ErrorKind.BAD_REQUEST: "🚫 This slot cannot be booked.",
    ErrorKind.CONFLICT: "😕 This slot is already full.",
    ErrorKind.NOT_FOUND: "❓ Booking not found. It may have been cancelled already.",
    ErrorKind.INTERNAL: "⚠️ Something went wrong. Please try again later.",
}

NOT_LINKED_MESSAGE = (
    "❌ Your Telegram account is not linked to a membership.\n\n"
    "Ask the studio staff to link it, then use /start again."
)


def format_slot(instant: datetime) -> str:
    """Slot start as dd/mm HH:MM in the studio timezone"""
    return to_local(instant, get_config().zone).strftime("%a %d/%m %H:%M")


def error_message(error: BookingError) -> str:
    return ERROR_MESSAGES.get(error.kind, ERROR_MESSAGES[ErrorKind.INTERNAL])


def slots_keyboard(slots: List[datetime]) -> InlineKeyboardMarkup:
    """One 'book' button per slot; callback data carries the ISO instant"""
    keyboard = [
        [InlineKeyboardButton(f"📅 {format_slot(slot)}", callback_data=f"book_{slot.isoformat()}")]
        for slot in slots[:MAX_BUTTONS]
    ]
    return InlineKeyboardMarkup(keyboard)


def bookings_keyboard(bookings: List[Booking]) -> InlineKeyboardMarkup:
    keyboard = [
        [
            InlineKeyboardButton(
                f"❌ Cancel {format_slot(booking.starts_at)}",
                callback_data=f"cancel_{booking.id}",
            )
        ]
        for booking in bookings[:MAX_BUTTONS]
    ]
    return InlineKeyboardMarkup(keyboard)
