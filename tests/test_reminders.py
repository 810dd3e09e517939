"""
Tests for the daily reminder job
"""

import smtplib
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from gym_booking.config import BookingConfig
from gym_booking.reminders import reminder_email, send_reminders
from gym_booking.services.notification_service import Mailer

from conftest import ROME, caller_for, rome

BOOKED_AT = rome(2024, 3, 1, 10)
MORNING = rome(2024, 3, 4, 6)


@pytest.fixture(name="mail_config")
def mail_config_fixture():
    return BookingConfig(
        _env_file=None,
        email_enabled=True,
        smtp_host="smtp.test",
        email_from="bookings@studio.test",
    )


async def book_monday(service, make_user, admin):
    """Two member bookings today, one tomorrow and a disabled hour today"""
    early, late = make_user(), make_user()
    await service.create(caller_for(early), rome(2024, 3, 4, 9), now=BOOKED_AT)
    await service.create(caller_for(late), rome(2024, 3, 4, 21), now=BOOKED_AT)
    await service.create(caller_for(early), rome(2024, 3, 5, 9), now=BOOKED_AT)
    await service.admin_create(
        caller_for(admin), rome(2024, 3, 4, 12), rome(2024, 3, 4, 13), disable=True, now=BOOKED_AT
    )
    return early, late


def test_reminder_email_uses_local_time():
    subject, body = reminder_email("Giulia", rome(2024, 3, 4, 9), ROME)

    assert subject == "Booking reminder"
    assert "Hi Giulia" in body
    assert "04/03/2024 at 09:00" in body


class TestSendReminders:
    """Tests for the reminder run"""

    @pytest.mark.asyncio
    async def test_one_email_per_booking_today(self, service, make_user, admin, session_factory, mail_config):
        early, late = await book_monday(service, make_user, admin)

        with patch("gym_booking.services.notification_service.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            server.has_extn.return_value = False

            sent = send_reminders(
                session_factory=session_factory, config=mail_config, now=MORNING
            )

        assert sent == 2
        recipients = [call.args[1] for call in server.sendmail.call_args_list]
        assert recipients == [[early.email], [late.email]]

    @pytest.mark.asyncio
    async def test_failed_email_is_skipped(self, service, make_user, admin, session_factory, mail_config):
        early, late = await book_monday(service, make_user, admin)

        with patch("gym_booking.services.notification_service.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            server.has_extn.return_value = False
            server.sendmail.side_effect = [
                smtplib.SMTPRecipientsRefused({early.email: (550, b"unknown")}),
                {},
            ]

            sent = send_reminders(
                session_factory=session_factory, config=mail_config, now=MORNING
            )

        assert sent == 1
        assert server.sendmail.call_count == 2

    @pytest.mark.asyncio
    async def test_day_follows_studio_timezone(self, service, make_user, admin, session_factory, mail_config):
        """23:30 UTC on Sunday is already Monday in Rome"""
        await book_monday(service, make_user, admin)
        with patch("gym_booking.services.notification_service.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.__enter__.return_value.has_extn.return_value = False

            sent = send_reminders(
                session_factory=session_factory,
                config=mail_config,
                now=datetime(2024, 3, 3, 23, 30, tzinfo=timezone.utc),
            )

        assert sent == 2

    def test_disabled_email_sends_nothing(self, session_factory):
        config = BookingConfig(_env_file=None, email_enabled=False)

        with patch("gym_booking.services.notification_service.smtplib.SMTP") as smtp_cls:
            sent = send_reminders(session_factory=session_factory, config=config, now=MORNING)

        assert sent == 0
        smtp_cls.assert_not_called()

    def test_no_bookings(self, session_factory, mail_config):
        with patch("gym_booking.services.notification_service.smtplib.SMTP") as smtp_cls:
            sent = send_reminders(
                session_factory=session_factory, mailer=Mailer(mail_config), config=mail_config, now=MORNING
            )

        assert sent == 0
        smtp_cls.assert_not_called()
