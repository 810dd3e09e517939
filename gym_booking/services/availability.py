"""
Availability resolver - which slots a given member may book right now.

Calendar-eligible hourly instants in the booking horizon, minus slots that
are disabled, full for the member's subscription type, or already booked by
the member.
"""

import calendar
import logging
from datetime import datetime, time, timedelta
from typing import List, Tuple
from zoneinfo import ZoneInfo

from sqlmodel import Session

from gym_booking.calendar_rules import from_db_time, hourly_instants, is_bookable
from gym_booking.capacity import capacity_threshold
from gym_booking.db_models import User
from gym_booking.errors import UnauthorizedError
from gym_booking.repositories import SlotRepository

logger = logging.getLogger(__name__)

# From this local hour on, tomorrow is no longer offered
SAME_DAY_CUTOFF_HOUR = 17

# Within this many final days of a month the horizon also covers next month
MONTH_END_LOOKAHEAD_DAYS = 7


def _end_of_month(year: int, month: int, zone: ZoneInfo) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, last_day, 23, 59, 59, 999999, tzinfo=zone)


def compute_horizon(now: datetime, zone: ZoneInfo) -> Tuple[datetime, datetime]:
    """
    Booking horizon for the given instant.

    Start is local midnight tomorrow, or the day after tomorrow once the
    same-day cutoff has passed. End is the end of the current month, pushed
    to the end of next month during the month's last week.
    """
    local_now = now.astimezone(zone)
    days_ahead = 2 if local_now.hour >= SAME_DAY_CUTOFF_HOUR else 1
    start_day = local_now.date() + timedelta(days=days_ahead)
    start = datetime.combine(start_day, time(0, 0), tzinfo=zone)

    year, month = local_now.year, local_now.month
    days_in_month = calendar.monthrange(year, month)[1]
    if local_now.day > days_in_month - MONTH_END_LOOKAHEAD_DAYS:
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    end = _end_of_month(year, month, zone)

    return start, end


def candidate_slots(start: datetime, end: datetime, zone: ZoneInfo) -> List[datetime]:
    """Every calendar-bookable hourly instant in [start, end]"""
    return [instant for instant in hourly_instants(start, end, zone) if is_bookable(instant)]


def ensure_can_book(user: User, now: datetime) -> None:
    """
    Raises:
        UnauthorizedError: If the balance is exhausted or the subscription expired
    """
    if user.remaining_accesses <= 0:
        raise UnauthorizedError("No remaining accesses")
    if now >= from_db_time(user.expires_at):
        raise UnauthorizedError("Subscription expired")


def get_available_slots(
    session: Session, user: User, now: datetime, zone: ZoneInfo
) -> List[datetime]:
    """
    Slots offered to `user`, ascending, as aware datetimes in `zone`.

    Raises:
        UnauthorizedError: If the member may not book at all
    """
    ensure_can_book(user, now)

    start, end = compute_horizon(now, zone)
    candidates = candidate_slots(start, end, zone)

    slot_repo = SlotRepository(session)
    excluded = slot_repo.get_excluded_starts(
        capacity_threshold(user.sub_type), start, user.id
    )

    available = [instant for instant in candidates if instant not in excluded]
    logger.debug(
        f"User {user.id}: {len(available)} of {len(candidates)} slots available "
        f"between {start.isoformat()} and {end.isoformat()}"
    )
    return sorted(available)
