"""
Daily reminder job - mails every member booked today.

Meant to run once a morning from cron:

    gym-booking-reminders
"""

import logging
import smtplib
from datetime import datetime, time, timedelta, timezone
from typing import Callable, ContextManager, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlmodel import Session

from gym_booking.calendar_rules import to_local
from gym_booking.config import BookingConfig, get_config
from gym_booking.database import close_database, get_session, init_database
from gym_booking.db_models import Booking, BookingType
from gym_booking.repositories import BookingRepository
from gym_booking.services.notification_service import Mailer

logger = logging.getLogger(__name__)


def reminder_email(first_name: str, starts_at: datetime, zone: ZoneInfo) -> Tuple[str, str]:
    """Subject and HTML body of one reminder"""
    when = to_local(starts_at, zone).strftime("%d/%m/%Y at %H:%M")
    subject = "Booking reminder"
    body = (
        f"<p>Hi {first_name},</p>"
        f"<p>this is a reminder of your booking on <b>{when}</b>.</p>"
        "<p>See you there!</p>"
    )
    return subject, body


def todays_bookings(session: Session, now: datetime, zone: ZoneInfo) -> List[Booking]:
    """Member bookings on the local calendar day of `now`, users loaded"""
    today = to_local(now, zone).date()
    start = datetime.combine(today, time(0, 0), tzinfo=zone)
    end = datetime.combine(today + timedelta(days=1), time(0, 0), tzinfo=zone)
    return BookingRepository(session).get_by_interval(
        start, end - timedelta(microseconds=1), booking_type=BookingType.SIMPLE
    )


def send_reminders(
    session_factory: Callable[[], ContextManager[Session]] = get_session,
    mailer: Optional[Mailer] = None,
    config: Optional[BookingConfig] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Send one reminder per booking today.

    Returns:
        Number of reminders sent. A failed email is logged and skipped.
    """
    config = config or get_config()
    mailer = mailer or Mailer(config)
    now = now or datetime.now(timezone.utc)

    if not mailer.enabled:
        logger.warning("Email is disabled - no reminders sent")
        return 0

    with session_factory() as session:
        bookings = todays_bookings(session, now, config.zone)

    sent = 0
    for booking in bookings:
        user = booking.user
        subject, body = reminder_email(user.first_name, booking.starts_at, config.zone)
        logger.info(f"Sending reminder to {user.email}")
        try:
            mailer.send(user.email, subject, body)
            sent += 1
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Reminder to {user.email} failed: {e}")

    logger.info(f"Sent {sent} of {len(bookings)} reminders")
    return sent


def main() -> None:
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=logging.INFO
    )
    init_database()
    try:
        send_reminders()
    finally:
        close_database()


if __name__ == '__main__':
    main()
