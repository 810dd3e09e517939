"""
Repository pattern for database access
Provides clean separation between business logic and data access

Repositories only flush. The session they are given owns the transaction,
so a service can group several repository calls into one atomic unit.
Datetime arguments may be timezone-aware; they are stored as naive UTC.
"""

import logging
from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy import and_, case, delete, or_, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import selectinload
from sqlmodel import Session, select

from gym_booking.calendar_rules import from_db_time, to_db_time
from gym_booking.capacity import SLOT_CAPACITY
from gym_booking.db_models import (
    Booking,
    BookingType,
    Event,
    EventType,
    Role,
    Slot,
    SubType,
    User,
    utcnow,
)
from gym_booking.errors import RecordNotFound

logger = logging.getLogger(__name__)

slots_table = Slot.__table__

_UPSERT_DIALECTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


class UserRepository:
    """Repository for User operations"""

    def __init__(self, session: Session):
        self.session = session

    def get_user(self, user_id: int) -> Optional[User]:
        """Get user by ID, reloading it from the database"""
        statement = (
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        return self.session.exec(statement).first()

    def get_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        """Get the member linked to a Telegram account"""
        statement = select(User).where(User.telegram_id == telegram_id)
        return self.session.exec(statement).first()

    def create_user(
        self,
        first_name: str,
        email: str,
        expires_at: datetime,
        last_name: str = "",
        remaining_accesses: int = 0,
        sub_type: SubType = SubType.SHARED,
        role: Role = Role.USER,
        telegram_id: Optional[int] = None,
    ) -> User:
        """Create new user"""
        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            expires_at=to_db_time(expires_at),
            remaining_accesses=remaining_accesses,
            sub_type=sub_type,
            role=role,
            telegram_id=telegram_id,
        )
        self.session.add(user)
        self.session.flush()
        self.session.refresh(user)
        return user

    def change_accesses(self, user_id: int, delta: int, require_balance: bool = False) -> bool:
        """
        Atomically add `delta` (may be negative) to the access balance.

        With `require_balance`, the row only changes when the balance covers
        the decrement, so the balance never goes below zero.
        """
        statement = update(User).where(User.id == user_id)
        if require_balance:
            statement = statement.where(User.remaining_accesses >= -delta)
        statement = (
            statement
            .values(remaining_accesses=User.remaining_accesses + delta)
            .execution_options(synchronize_session=False)
        )
        result = self.session.exec(statement)
        return result.rowcount > 0


class SlotRepository:
    """
    Capacity ledger: per-slot occupancy counter and disabled flag.

    Counter changes are single SQL statements so concurrent bookings on the
    same start instant serialize on that row instead of racing in Python.
    """

    def __init__(self, session: Session):
        self.session = session

    def find_slot(self, starts_at: datetime) -> Optional[Slot]:
        """Point lookup by start instant"""
        statement = (
            select(Slot)
            .where(Slot.starts_at == to_db_time(starts_at))
            .execution_options(populate_existing=True)
        )
        return self.session.exec(statement).first()

    def _upsert(self, starts_at: datetime, weight: int, disabled: Optional[bool], guarded: bool) -> bool:
        key = to_db_time(starts_at)
        dialect = self.session.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        count = slots_table.c.people_count
        is_disabled = slots_table.c.disabled

        values = {"people_count": count + weight}
        if disabled is not None:
            values["disabled"] = disabled
        condition = None
        if guarded:
            condition = and_(count + weight <= SLOT_CAPACITY, is_disabled == False)  # noqa: E712

        if insert is None:
            # No native upsert: update, then insert if the row is missing
            statement = update(slots_table).where(slots_table.c.starts_at == key)
            if condition is not None:
                statement = statement.where(condition)
            if self.session.exec(statement.values(**values)).rowcount > 0:
                return True
            if self.find_slot(starts_at) is not None:
                return False
            self.session.add(Slot(starts_at=key, people_count=weight, disabled=bool(disabled)))
            self.session.flush()
            return True

        statement = insert(slots_table).values(
            starts_at=key, people_count=weight, disabled=bool(disabled)
        )
        statement = statement.on_conflict_do_update(
            index_elements=["starts_at"], set_=values, where=condition
        )
        return self.session.exec(statement).rowcount > 0

    def reserve(self, starts_at: datetime, weight: int) -> bool:
        """
        Occupy `weight` units, creating the slot if needed.

        Returns False, changing nothing, when the slot is disabled or the
        units do not fit.
        """
        return self._upsert(starts_at, weight, disabled=None, guarded=True)

    def force_occupy(self, starts_at: datetime, weight: int, disabled: bool) -> None:
        """Occupy `weight` units and set the disabled flag, ignoring capacity"""
        self._upsert(starts_at, weight, disabled=disabled, guarded=False)

    def release(self, starts_at: datetime, weight: int) -> bool:
        """Give back `weight` units; the counter never goes below zero"""
        count = slots_table.c.people_count
        statement = (
            update(slots_table)
            .where(slots_table.c.starts_at == to_db_time(starts_at))
            .values(people_count=case((count > weight, count - weight), else_=0))
        )
        result = self.session.exec(statement)
        if result.rowcount == 0:
            logger.warning(f"Release on missing slot {starts_at.isoformat()}")
        return result.rowcount > 0

    def set_disabled(self, starts_at: datetime, disabled: bool) -> bool:
        statement = (
            update(slots_table)
            .where(slots_table.c.starts_at == to_db_time(starts_at))
            .values(disabled=disabled)
        )
        return self.session.exec(statement).rowcount > 0

    def delete_slot(self, starts_at: datetime) -> bool:
        """Remove the slot row together with any bookings still pointing at it"""
        key = to_db_time(starts_at)
        self.session.exec(delete(Booking).where(Booking.starts_at == key))
        result = self.session.exec(delete(slots_table).where(slots_table.c.starts_at == key))
        return result.rowcount > 0

    def get_excluded_starts(
        self, threshold: int, horizon_start: datetime, user_id: int
    ) -> Set[datetime]:
        """
        Start instants not to offer to a user: disabled slots, slots full
        for the user's threshold from horizon_start on, and slots the user
        already booked. Returned as aware UTC datetimes.
        """
        booked = select(Booking.starts_at).where(Booking.user_id == user_id)
        statement = select(Slot.starts_at).where(
            or_(
                Slot.disabled == True,  # noqa: E712
                and_(
                    Slot.people_count >= threshold,
                    Slot.starts_at >= to_db_time(horizon_start),
                ),
                Slot.starts_at.in_(booked),
            )
        )
        return {from_db_time(value) for value in self.session.exec(statement)}

    def get_slots_in_range(self, start: datetime, end: datetime) -> List[Slot]:
        """All slot rows in [start, end], disabled ones included"""
        statement = (
            select(Slot)
            .where(Slot.starts_at >= to_db_time(start), Slot.starts_at <= to_db_time(end))
            .order_by(Slot.starts_at)
            .execution_options(populate_existing=True)
        )
        return list(self.session.exec(statement))


class BookingRepository:
    """Repository for Booking operations"""

    def __init__(self, session: Session):
        self.session = session

    def create_booking(
        self, user_id: int, starts_at: datetime, booking_type: BookingType = BookingType.SIMPLE
    ) -> Booking:
        booking = Booking(user_id=user_id, starts_at=to_db_time(starts_at), type=booking_type)
        self.session.add(booking)
        self.session.flush()
        return booking

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        return self.session.get(Booking, booking_id)

    def get_slot_bookings(self, starts_at: datetime) -> List[Booking]:
        """Every booking on one slot, placeholders included"""
        statement = select(Booking).where(Booking.starts_at == to_db_time(starts_at))
        return list(self.session.exec(statement))

    def delete_booking(self, booking_id: int) -> Booking:
        """
        Delete a booking by id and return the removed row

        Raises:
            RecordNotFound: If no booking has this id
        """
        booking = self.session.get(Booking, booking_id)
        if booking is None:
            raise RecordNotFound(f"Booking {booking_id} does not exist")
        self.session.delete(booking)
        self.session.flush()
        return booking

    def has_booking(self, user_id: int, starts_at: datetime) -> bool:
        statement = select(Booking.id).where(
            Booking.user_id == user_id,
            Booking.starts_at == to_db_time(starts_at),
        )
        return self.session.exec(statement).first() is not None

    def get_user_bookings(
        self, user_id: int, booking_type: Optional[BookingType] = None
    ) -> List[Booking]:
        """User's bookings, latest first"""
        statement = select(Booking).where(Booking.user_id == user_id)
        if booking_type is not None:
            statement = statement.where(Booking.type == booking_type)
        statement = statement.order_by(Booking.starts_at.desc())
        return list(self.session.exec(statement))

    def get_by_interval(
        self, start: datetime, end: datetime, booking_type: Optional[BookingType] = None
    ) -> List[Booking]:
        """Bookings starting in [start, end] with user and slot loaded"""
        statement = select(Booking).where(
            Booking.starts_at >= to_db_time(start),
            Booking.starts_at <= to_db_time(end),
        )
        if booking_type is not None:
            statement = statement.where(Booking.type == booking_type)
        statement = (
            statement
            .options(selectinload(Booking.user), selectinload(Booking.slot))
            .order_by(Booking.starts_at)
        )
        return list(self.session.exec(statement))


class EventRepository:
    """Append-only audit log"""

    def __init__(self, session: Session):
        self.session = session

    def log_event(
        self,
        event_type: EventType,
        starts_at: datetime,
        user_id: int,
        occurred_at: Optional[datetime] = None,
    ) -> Event:
        event = Event(
            type=event_type,
            starts_at=to_db_time(starts_at),
            user_id=user_id,
            occurred_at=to_db_time(occurred_at) if occurred_at else utcnow(),
        )
        self.session.add(event)
        self.session.flush()
        return event

    def get_events_since(self, since: datetime) -> List[Event]:
        """Events that occurred at or after `since`, oldest first"""
        statement = (
            select(Event)
            .where(Event.occurred_at >= to_db_time(since))
            .options(selectinload(Event.user))
            .order_by(Event.occurred_at)
        )
        return list(self.session.exec(statement))
