"""
Session/identity provider for the Telegram transport.

Maps a Telegram account to the linked member and builds the CallerContext
the booking services work with.
"""

import logging
from typing import Callable, ContextManager, Optional

from sqlmodel import Session

from gym_booking.database import get_session
from gym_booking.models import CallerContext
from gym_booking.repositories import UserRepository

logger = logging.getLogger(__name__)


def resolve_caller(
    telegram_id: int,
    session_factory: Callable[[], ContextManager[Session]] = get_session,
) -> Optional[CallerContext]:
    """Caller context for a Telegram account, or None if it is not linked"""
    with session_factory() as session:
        user = UserRepository(session).get_by_telegram_id(telegram_id)
        if user is None:
            logger.info(f"Telegram account {telegram_id} is not linked to a member")
            return None
        return CallerContext.from_user(user)
