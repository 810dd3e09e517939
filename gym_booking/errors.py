"""
Typed booking errors surfaced to callers
"""
from enum import Enum


class ErrorKind(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    BAD_REQUEST = "BAD_REQUEST"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL = "INTERNAL"


class BookingError(Exception):
    """Base class for domain errors; `kind` is what transports map on"""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class UnauthorizedError(BookingError):
    kind = ErrorKind.UNAUTHORIZED


class BadRequestError(BookingError):
    kind = ErrorKind.BAD_REQUEST


class ConflictError(BookingError):
    kind = ErrorKind.CONFLICT


class NotFoundError(BookingError):
    kind = ErrorKind.NOT_FOUND


class InternalError(BookingError):
    kind = ErrorKind.INTERNAL


class RecordNotFound(Exception):
    """Raised by repositories when a row addressed by id does not exist"""
