"""
Database models using SQLModel
Provides type-safe ORM with Pydantic validation

All datetime columns hold naive UTC values.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, Relationship


def utcnow() -> datetime:
    """Naive UTC now, the storage format of every datetime column"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_column(**kwargs):
    """Timezone-naive DateTime column holding UTC"""
    return Field(sa_type=DateTime(timezone=False), **kwargs)


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class SubType(str, Enum):
    """Subscription mode of a member"""

    SINGLE = "SINGLE"
    SHARED = "SHARED"


class EventType(str, Enum):
    CREATED = "CREATED"
    DELETED = "DELETED"


class BookingType(str, Enum):
    """SIMPLE is a member reservation, DISABLE a placeholder that blocks the slot"""

    SIMPLE = "SIMPLE"
    DISABLE = "DISABLE"


class User(SQLModel, table=True):
    """Member or administrator"""

    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    first_name: str = Field(max_length=255)
    last_name: str = Field(default="", max_length=255)
    email: str = Field(max_length=255, unique=True, index=True)
    telegram_id: Optional[int] = Field(default=None, unique=True, index=True)
    role: Role = Field(default=Role.USER)
    sub_type: SubType = Field(default=SubType.SHARED)
    remaining_accesses: int = Field(default=0)
    expires_at: datetime = utc_column()
    created_at: datetime = utc_column(default_factory=utcnow)

    # Relationships
    bookings: List["Booking"] = Relationship(back_populates="user")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Slot(SQLModel, table=True):
    """Hourly slot: occupancy counter and disabled flag, keyed by start instant"""

    __tablename__ = "slots"

    starts_at: datetime = utc_column(primary_key=True)
    people_count: int = Field(default=0, ge=0)
    disabled: bool = Field(default=False)

    # Relationships
    bookings: List["Booking"] = Relationship(back_populates="slot")


class Booking(SQLModel, table=True):
    """One user's reservation of a slot"""

    __tablename__ = "bookings"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    starts_at: datetime = utc_column(foreign_key="slots.starts_at", index=True)
    type: BookingType = Field(default=BookingType.SIMPLE)
    created_at: datetime = utc_column(default_factory=utcnow)

    # Relationships
    user: Optional[User] = Relationship(back_populates="bookings")
    slot: Optional[Slot] = Relationship(back_populates="bookings")


class Event(SQLModel, table=True):
    """Append-only audit record of a booking creation or deletion"""

    __tablename__ = "events"

    id: Optional[int] = Field(default=None, primary_key=True)
    type: EventType
    starts_at: datetime = utc_column(index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    occurred_at: datetime = utc_column(default_factory=utcnow, index=True)

    user: Optional[User] = Relationship()
