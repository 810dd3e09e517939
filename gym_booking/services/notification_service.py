"""
Notification dispatcher - fan-out of committed booking changes.

Publishes a live message to connected clients, mails the operations inbox
and asks admin calendars to refresh. Runs after the transaction commits and
never raises: a failed side channel is logged only.
"""

import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import httpx

from gym_booking.calendar_rules import to_local
from gym_booking.config import BookingConfig, get_config
from gym_booking.db_models import EventType
from gym_booking.models import Notification

logger = logging.getLogger(__name__)

BOOKING_CHANNEL = "booking"
CALENDAR_CHANNEL = "calendar"
REFRESH_EVENT = "refresh"

EVENT_NAMES = {
    EventType.CREATED: "created",
    EventType.DELETED: "deleted",
}


class Broadcaster:
    """
    Publish JSON events to the real-time broadcast service over HTTP.

    At-most-once: errors and timeouts are logged, never retried.
    """

    def __init__(self, config: Optional[BookingConfig] = None):
        self.config = config or get_config()
        self.url = self.config.broadcast_url
        self.enabled = self.config.broadcast_enabled
        self.client: Optional[httpx.AsyncClient] = None

        if self.enabled:
            self.client = httpx.AsyncClient(timeout=self.config.broadcast_timeout)
            logger.info(f"Broadcast enabled - publishing to {self.url}")
        else:
            logger.info("Broadcast disabled")

    async def publish(self, channel: str, event_name: str, payload: Dict[str, Any]) -> bool:
        """
        Publish one event. Returns True when the broadcaster accepted it.

        Note:
            This method never raises exceptions - failures are logged only.
        """
        if not self.enabled or self.client is None:
            return False

        headers = {"Content-Type": "application/json"}
        if self.config.broadcast_token:
            headers["Authorization"] = f"Bearer {self.config.broadcast_token}"

        try:
            response = await self.client.post(
                self.url,
                json={"channel": channel, "event": event_name, "data": payload},
                headers=headers,
            )
            if response.status_code >= 300:
                logger.warning(
                    f"Broadcast {channel}/{event_name} rejected: {response.status_code} - {response.text}"
                )
                return False
            logger.debug(f"Broadcast {channel}/{event_name}: {payload}")
            return True
        except httpx.TimeoutException:
            logger.warning(f"Broadcast timeout for {channel}/{event_name}")
        except Exception as e:
            logger.error(f"Broadcast error for {channel}/{event_name}: {e}")
        return False

    async def close(self):
        """Close the HTTP client"""
        if self.client:
            await self.client.aclose()
            self.client = None


class Mailer:
    """Plain SMTP sender (STARTTLS when the server offers it)"""

    def __init__(self, config: Optional[BookingConfig] = None):
        self.config = config or get_config()
        self.enabled = self.config.email_enabled

    def send(self, to: str, subject: str, html_body: str) -> None:
        """Send one HTML email. Raises on SMTP errors."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.config.email_from
        msg["To"] = to
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=10) as server:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls(context=ssl.create_default_context())
                server.ehlo()
            if self.config.smtp_username:
                server.login(self.config.smtp_username, self.config.smtp_password or "")
            server.sendmail(self.config.email_from, [to], msg.as_string())

        logger.info(f"Email sent to {to}: {subject}")


def booking_email(notification: Notification, zone: ZoneInfo) -> tuple[str, str]:
    """Subject and HTML body for the operations inbox"""
    when = to_local(notification.starts_at, zone).strftime("%d/%m/%Y %H:%M")
    if notification.type == EventType.CREATED:
        subject = f"New booking: {notification.full_name}"
        action = "booked"
    else:
        subject = f"Booking cancelled: {notification.full_name}"
        action = "cancelled"
    body = f"<p><b>{notification.full_name}</b> {action} the slot of <b>{when}</b>.</p>"
    return subject, body


class NotificationDispatcher:
    """Best-effort fan-out of a committed booking change"""

    def __init__(
        self,
        config: Optional[BookingConfig] = None,
        broadcaster: Optional[Broadcaster] = None,
        mailer: Optional[Mailer] = None,
    ):
        self.config = config or get_config()
        self.broadcaster = broadcaster or Broadcaster(self.config)
        self.mailer = mailer or Mailer(self.config)

    async def _broadcast(self, notification: Notification) -> None:
        await self.broadcaster.publish(
            BOOKING_CHANNEL, EVENT_NAMES[notification.type], notification.to_payload()
        )

    async def _refresh_calendars(self) -> None:
        await self.broadcaster.publish(CALENDAR_CHANNEL, REFRESH_EVENT, {})

    async def _email(self, notification: Notification) -> None:
        if not self.mailer.enabled:
            return
        subject, body = booking_email(notification, self.config.zone)
        await asyncio.to_thread(
            self.mailer.send, self.config.operations_email, subject, body
        )

    async def dispatch(self, notification: Notification) -> None:
        """
        Broadcast, email and refresh concurrently.

        Note:
            Never raises - the booking has already been committed.
        """
        results = await asyncio.gather(
            self._broadcast(notification),
            self._email(notification),
            self._refresh_calendars(),
            return_exceptions=True,
        )
        for channel, result in zip(("broadcast", "email", "refresh"), results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Notification {channel} failed for event {notification.id}: {result}"
                )

    async def close(self) -> None:
        await self.broadcaster.close()


# Singleton instance
_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """Get or create notification dispatcher singleton"""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


async def cleanup_notifications():
    """
    Close the broadcaster HTTP client.
    Call this on shutdown.
    """
    global _dispatcher
    if _dispatcher is not None:
        await _dispatcher.close()
        _dispatcher = None
