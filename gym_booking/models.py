"""
Type-safe data models passed between layers
Uses dataclasses and enums for better type safety and IDE support
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

from gym_booking.db_models import EventType, Role, SubType, User


@dataclass(frozen=True)
class CallerContext:
    """Identity of the current caller, as supplied by the session provider"""
    user_id: int
    role: Role
    sub_type: SubType
    expires_at: datetime
    remaining_accesses: int

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @classmethod
    def from_user(cls, user: User) -> "CallerContext":
        return cls(
            user_id=user.id,
            role=user.role,
            sub_type=user.sub_type,
            expires_at=user.expires_at.replace(tzinfo=timezone.utc),
            remaining_accesses=user.remaining_accesses,
        )


@dataclass(frozen=True)
class Notification:
    """Live notification derived from an audit event and its user"""
    id: int
    first_name: str
    last_name: str
    type: EventType
    starts_at: datetime
    occurred_at: datetime

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_payload(self) -> Dict[str, Any]:
        """JSON payload for the broadcast channel"""
        return {
            "id": str(self.id),
            "firstName": self.first_name,
            "lastName": self.last_name,
            "type": self.type.value,
            "startsAt": self.starts_at.isoformat(),
            "occurredAt": self.occurred_at.isoformat(),
        }
