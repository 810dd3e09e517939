"""
Booking transaction engine.

Every state-changing operation runs as one session (see
`gym_booking.database.get_session`): user balance, slot ledger, booking rows
and the audit event commit together or not at all. Notifications go out
only after the commit and can never fail the operation.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, time, timedelta, timezone
from typing import Callable, ContextManager, Generator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from gym_booking.calendar_rules import from_db_time, is_bookable, to_local
from gym_booking.capacity import is_full_for, occupancy_weight
from gym_booking.config import BookingConfig, get_config
from gym_booking.database import get_session
from gym_booking.db_models import Booking, BookingType, Event, EventType, Slot, SubType, User
from gym_booking.errors import (
    BadRequestError,
    BookingError,
    ConflictError,
    InternalError,
    NotFoundError,
    RecordNotFound,
    UnauthorizedError,
)
from gym_booking.models import CallerContext, Notification
from gym_booking.repositories import (
    BookingRepository,
    EventRepository,
    SlotRepository,
    UserRepository,
)
from gym_booking.services.availability import (
    compute_horizon,
    ensure_can_book,
    get_available_slots,
)
from gym_booking.services.notification_service import (
    NotificationDispatcher,
    get_dispatcher,
)

logger = logging.getLogger(__name__)

# Cancelling more than this long before the start returns the access
REFUND_WINDOW = timedelta(hours=3)

SLOT_LENGTH = timedelta(hours=1)


def is_refundable(starts_at: datetime, now: datetime) -> bool:
    """Strictly more than three hours before the slot starts"""
    return starts_at - now > REFUND_WINDOW


def split_hours(start: datetime, end: datetime) -> List[datetime]:
    """Start instants of consecutive one-hour pieces of [start, end)"""
    starts = []
    current = start
    while current < end:
        starts.append(current)
        current += SLOT_LENGTH
    return starts


def _require_aware(value: datetime, name: str) -> None:
    if value.tzinfo is None:
        raise BadRequestError(f"{name} must be timezone-aware")


class BookingService:
    """Booking operations for members and administrators"""

    def __init__(
        self,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
        dispatcher: Optional[NotificationDispatcher] = None,
        config: Optional[BookingConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.config = config or get_config()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # Plumbing

    @contextmanager
    def _transaction(self, operation: str) -> Generator[Session, None, None]:
        """One atomic unit; store failures surface as InternalError only"""
        try:
            with self.session_factory() as session:
                yield session
        except BookingError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed: {e}")
            raise InternalError("Internal server error") from e

    @staticmethod
    def _load_user(session: Session, user_id: int) -> User:
        user = UserRepository(session).get_user(user_id)
        if user is None:
            raise UnauthorizedError("Unknown user")
        return user

    @staticmethod
    def _require_admin(caller: CallerContext) -> None:
        if not caller.is_admin:
            raise UnauthorizedError("Admin role required")

    @staticmethod
    def _notification(event: Event, user: User) -> Notification:
        return Notification(
            id=event.id,
            first_name=user.first_name,
            last_name=user.last_name,
            type=event.type,
            starts_at=from_db_time(event.starts_at),
            occurred_at=from_db_time(event.occurred_at),
        )

    async def _dispatch(self, notifications: List[Notification]) -> None:
        dispatcher = self.dispatcher or get_dispatcher()
        for notification in notifications:
            try:
                await dispatcher.dispatch(notification)
            except Exception as e:
                logger.error(f"Dispatch failed for event {notification.id}: {e}")

    # Member operations

    def get_available_slots(
        self, caller: CallerContext, now: Optional[datetime] = None
    ) -> List[datetime]:
        """Slots the caller may book, ascending, in the studio timezone"""
        now = now or self.clock()
        with self._transaction("get_available_slots") as session:
            user = self._load_user(session, caller.user_id)
            return get_available_slots(session, user, now, self.config.zone)

    def get_current(self, caller: CallerContext) -> List[Booking]:
        """The caller's bookings, latest first"""
        with self._transaction("get_current") as session:
            return BookingRepository(session).get_user_bookings(
                caller.user_id, booking_type=BookingType.SIMPLE
            )

    async def create(
        self, caller: CallerContext, starts_at: datetime, now: Optional[datetime] = None
    ) -> Booking:
        """
        Book one slot for the caller.

        Raises:
            UnauthorizedError: Balance exhausted or subscription expired
            BadRequestError: Slot disabled, not on the calendar or outside the
                booking horizon
            ConflictError: Slot full for the caller's subscription type
        """
        now = now or self.clock()
        _require_aware(starts_at, "startsAt")
        local = to_local(starts_at, self.config.zone)
        if local.minute or local.second or local.microsecond or not is_bookable(local):
            raise BadRequestError("Slot is not bookable")
        horizon_start, horizon_end = compute_horizon(now, self.config.zone)
        if not horizon_start <= starts_at <= horizon_end:
            raise BadRequestError("Slot is outside the booking horizon")

        with self._transaction("create") as session:
            user_repo = UserRepository(session)
            slot_repo = SlotRepository(session)
            booking_repo = BookingRepository(session)
            event_repo = EventRepository(session)

            user = self._load_user(session, caller.user_id)
            ensure_can_book(user, now)

            slot = slot_repo.find_slot(starts_at)
            if slot is not None and slot.disabled:
                raise BadRequestError("Slot is disabled")
            if slot is not None and is_full_for(slot.people_count, user.sub_type):
                raise ConflictError("Slot is full")
            if booking_repo.has_booking(user.id, starts_at):
                raise ConflictError("Slot already booked")

            if not user_repo.change_accesses(user.id, -1, require_balance=True):
                # Balance spent by a concurrent booking
                raise UnauthorizedError("No remaining accesses")
            if not slot_repo.reserve(starts_at, occupancy_weight(user.sub_type)):
                # Lost a race against a concurrent booking or a disable
                raise ConflictError("Slot is full")
            booking = booking_repo.create_booking(user.id, starts_at)
            event = event_repo.log_event(EventType.CREATED, starts_at, user.id, now)
            notification = self._notification(event, user)

        logger.info(f"User {user.id} booked {starts_at.isoformat()} (booking {booking.id})")
        await self._dispatch([notification])
        return booking

    async def delete(
        self,
        caller: CallerContext,
        booking_id: int,
        starts_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Cancel one of the caller's bookings.

        Returns whether the access was refunded.

        Raises:
            NotFoundError: No such booking for this caller
        """
        now = now or self.clock()

        with self._transaction("delete") as session:
            user_repo = UserRepository(session)
            slot_repo = SlotRepository(session)
            booking_repo = BookingRepository(session)
            event_repo = EventRepository(session)

            user = self._load_user(session, caller.user_id)
            booking = booking_repo.get_booking(booking_id)
            if booking is None or booking.user_id != user.id or booking.type != BookingType.SIMPLE:
                raise NotFoundError("Booking not found")

            slot_start = from_db_time(booking.starts_at)
            if starts_at is not None and starts_at != slot_start:
                logger.warning(
                    f"Booking {booking_id} starts at {slot_start.isoformat()}, "
                    f"not {starts_at.isoformat()}"
                )
            refundable = is_refundable(slot_start, now)

            try:
                booking_repo.delete_booking(booking_id)
            except RecordNotFound as e:
                raise NotFoundError("Booking not found") from e
            slot_repo.release(slot_start, occupancy_weight(user.sub_type))
            if refundable:
                user_repo.change_accesses(user.id, 1)
            event = event_repo.log_event(EventType.DELETED, slot_start, user.id, now)
            notification = self._notification(event, user)

        logger.info(
            f"User {user.id} cancelled booking {booking_id} at {slot_start.isoformat()} "
            f"(refunded: {refundable})"
        )
        await self._dispatch([notification])
        return refundable

    # Admin operations

    async def admin_create(
        self,
        caller: CallerContext,
        start: datetime,
        end: datetime,
        user_id: Optional[int] = None,
        sub_type: Optional[SubType] = None,
        disable: bool = False,
        now: Optional[datetime] = None,
    ) -> List[Booking]:
        """
        Force-book or disable every hour of [start, end) for one user.

        Capacity is not checked. Without `disable`, the target user pays one
        access per hour.
        """
        self._require_admin(caller)
        _require_aware(start, "from")
        _require_aware(end, "to")
        if end <= start:
            raise BadRequestError("Empty interval")
        now = now or self.clock()
        starts = split_hours(start, end)

        created = []
        notifications = []
        with self._transaction("admin_create") as session:
            user_repo = UserRepository(session)
            slot_repo = SlotRepository(session)
            booking_repo = BookingRepository(session)
            event_repo = EventRepository(session)

            target = user_repo.get_user(user_id or caller.user_id)
            if target is None:
                raise NotFoundError("User not found")
            weight = occupancy_weight(sub_type or target.sub_type)

            for slot_start in starts:
                slot_repo.force_occupy(slot_start, weight, disable)
                booking_type = BookingType.DISABLE if disable else BookingType.SIMPLE
                created.append(booking_repo.create_booking(target.id, slot_start, booking_type))
                if not disable:
                    event = event_repo.log_event(EventType.CREATED, slot_start, target.id, now)
                    notifications.append(self._notification(event, target))

            if not disable:
                user_repo.change_accesses(target.id, -len(starts))

        logger.info(
            f"Admin {caller.user_id} {'disabled' if disable else 'booked'} {len(starts)} "
            f"slot(s) from {start.isoformat()} for user {target.id}"
        )
        await self._dispatch(notifications)
        return created

    async def admin_delete(
        self,
        caller: CallerContext,
        booking_id: Optional[int],
        starts_at: datetime,
        refund_access: bool,
        is_disabled: bool = False,
        user_id: Optional[int] = None,
        user_sub_type: Optional[SubType] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Remove a booking, or a disabled slot together with its placeholders.

        The refund is the admin's call (`refund_access`), not the 3-hour rule.
        Removing a placeholder booking gives back its occupancy only.

        Raises:
            NotFoundError: Booking or slot does not exist
            BadRequestError: `is_disabled` on a slot that is not disabled
            ConflictError: Members still hold bookings on the disabled slot
        """
        self._require_admin(caller)
        now = now or self.clock()

        if is_disabled:
            with self._transaction("admin_delete") as session:
                slot_repo = SlotRepository(session)
                slot = slot_repo.find_slot(starts_at)
                if slot is None:
                    raise NotFoundError("Slot not found")
                if not slot.disabled:
                    raise BadRequestError("Slot is not disabled")
                bookings = BookingRepository(session).get_slot_bookings(starts_at)
                members = [b for b in bookings if b.type == BookingType.SIMPLE]
                if members:
                    raise ConflictError(
                        f"Slot still has {len(members)} member booking(s)"
                    )
                slot_repo.delete_slot(starts_at)
            logger.info(f"Admin {caller.user_id} removed disabled slot {starts_at.isoformat()}")
            return

        if booking_id is None:
            raise BadRequestError("Booking id is required")

        with self._transaction("admin_delete") as session:
            user_repo = UserRepository(session)
            slot_repo = SlotRepository(session)
            booking_repo = BookingRepository(session)
            event_repo = EventRepository(session)

            try:
                booking = booking_repo.delete_booking(booking_id)
            except RecordNotFound as e:
                raise NotFoundError("Booking not found") from e

            affected = user_repo.get_user(user_id or booking.user_id)
            if affected is None:
                raise NotFoundError("User not found")
            sub_type = user_sub_type or affected.sub_type
            slot_start = from_db_time(booking.starts_at)

            slot_repo.release(slot_start, occupancy_weight(sub_type))
            if booking.type == BookingType.DISABLE:
                logger.info(
                    f"Admin {caller.user_id} removed placeholder {booking_id} at {slot_start.isoformat()}"
                )
                return
            if refund_access:
                user_repo.change_accesses(affected.id, 1)
            event = event_repo.log_event(EventType.DELETED, slot_start, affected.id, now)
            notification = self._notification(event, affected)

        logger.info(
            f"Admin {caller.user_id} deleted booking {booking_id} of user {affected.id} "
            f"(refunded: {refund_access})"
        )
        await self._dispatch([notification])

    def enable_slot(self, caller: CallerContext, starts_at: datetime) -> None:
        """Clear the disabled flag of an existing slot"""
        self._require_admin(caller)
        with self._transaction("enable_slot") as session:
            if not SlotRepository(session).set_disabled(starts_at, False):
                raise NotFoundError("Slot not found")
        logger.info(f"Admin {caller.user_id} enabled slot {starts_at.isoformat()}")

    def get_by_interval(
        self, caller: CallerContext, start: datetime, end: datetime
    ) -> List[Booking]:
        """All bookings in [start, end] with user and slot"""
        self._require_admin(caller)
        with self._transaction("get_by_interval") as session:
            return BookingRepository(session).get_by_interval(start, end)

    def get_all_slots(
        self, caller: CallerContext, start: datetime, end: datetime
    ) -> List[Slot]:
        """Slot rows for the admin calendar, disabled ones included"""
        self._require_admin(caller)
        with self._transaction("get_all_slots") as session:
            return SlotRepository(session).get_slots_in_range(start, end)

    def get_latest_events(
        self, caller: CallerContext, now: Optional[datetime] = None
    ) -> List[Event]:
        """Audit events since the start of the current local week"""
        self._require_admin(caller)
        now = now or self.clock()
        local_now = to_local(now, self.config.zone)
        monday = local_now.date() - timedelta(days=local_now.weekday())
        week_start = datetime.combine(monday, time(0, 0), tzinfo=self.config.zone)
        with self._transaction("get_latest_events") as session:
            return EventRepository(session).get_events_since(week_start)


# Singleton instance
_booking_service: Optional[BookingService] = None


def get_booking_service() -> BookingService:
    """Get or create the booking service singleton"""
    global _booking_service
    if _booking_service is None:
        _booking_service = BookingService()
    return _booking_service
