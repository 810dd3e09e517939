"""
Tests for the booking horizon and the availability resolver
"""

from datetime import datetime

import pytest

from gym_booking.calendar_rules import is_bookable
from gym_booking.db_models import SubType
from gym_booking.errors import UnauthorizedError
from gym_booking.repositories import BookingRepository, SlotRepository
from gym_booking.services.availability import (
    candidate_slots,
    compute_horizon,
    get_available_slots,
)

from conftest import ROME, caller_for, rome


class TestComputeHorizon:
    """Tests for horizon start cutoff and month-end lookahead"""

    def test_morning_starts_tomorrow(self):
        start, end = compute_horizon(rome(2024, 3, 4, 10), ROME)
        assert start == rome(2024, 3, 5, 0)
        assert end == rome(2024, 3, 31, 23, 59, 59, 999999)

    def test_just_before_cutoff(self):
        start, _ = compute_horizon(rome(2024, 3, 4, 16, 59), ROME)
        assert start == rome(2024, 3, 5, 0)

    def test_after_cutoff_skips_tomorrow(self):
        start, _ = compute_horizon(rome(2024, 3, 4, 17, 30), ROME)
        assert start == rome(2024, 3, 6, 0)

    def test_cutoff_uses_local_time(self):
        """16:30 UTC is 17:30 in Rome in winter"""
        from datetime import timezone

        start, _ = compute_horizon(datetime(2024, 3, 4, 16, 30, tzinfo=timezone.utc), ROME)
        assert start == rome(2024, 3, 6, 0)

    def test_last_week_extends_to_next_month(self):
        _, end = compute_horizon(rome(2024, 3, 25, 10), ROME)
        assert end == rome(2024, 4, 30, 23, 59, 59, 999999)

    def test_eighth_to_last_day_stays_in_month(self):
        _, end = compute_horizon(rome(2024, 3, 24, 10), ROME)
        assert end == rome(2024, 3, 31, 23, 59, 59, 999999)

    def test_december_rolls_into_january(self):
        _, end = compute_horizon(rome(2024, 12, 28, 10), ROME)
        assert end == rome(2025, 1, 31, 23, 59, 59, 999999)

    def test_february_leap_year(self):
        _, end = compute_horizon(rome(2024, 2, 10, 10), ROME)
        assert end == rome(2024, 2, 29, 23, 59, 59, 999999)


class TestCandidateSlots:
    def test_only_bookable_hours(self):
        candidates = candidate_slots(rome(2024, 3, 9, 0), rome(2024, 3, 11, 23), ROME)
        # Saturday 7-11, Sunday none, Monday 7-21
        assert len(candidates) == 5 + 15
        assert all(is_bookable(c) for c in candidates)
        assert candidates == sorted(candidates)


class TestGetAvailableSlots:
    """Tests for the resolver against the ledger"""

    NOW = rome(2024, 3, 4, 10)

    def test_empty_ledger_offers_all_candidates(self, db_session, make_user):
        user = make_user()
        slots = get_available_slots(db_session, user, self.NOW, ROME)

        start, end = compute_horizon(self.NOW, ROME)
        assert slots == candidate_slots(start, end, ROME)
        assert slots[0] == rome(2024, 3, 5, 7)
        assert all(s.tzinfo is not None for s in slots)

    def test_excludes_disabled_full_and_own(self, db_session, make_user):
        user = make_user(sub_type=SubType.SHARED)
        ledger = SlotRepository(db_session)
        ledger.force_occupy(rome(2024, 3, 5, 7), 0, disabled=True)
        ledger.reserve(rome(2024, 3, 5, 8), 2)
        ledger.reserve(rome(2024, 3, 5, 9), 1)
        ledger.reserve(rome(2024, 3, 5, 10), 1)
        BookingRepository(db_session).create_booking(user.id, rome(2024, 3, 5, 10))

        slots = get_available_slots(db_session, user, self.NOW, ROME)

        assert rome(2024, 3, 5, 7) not in slots
        assert rome(2024, 3, 5, 8) not in slots
        assert rome(2024, 3, 5, 9) in slots  # one SHARED place left
        assert rome(2024, 3, 5, 10) not in slots
        assert rome(2024, 3, 5, 11) in slots

    def test_single_member_needs_empty_slot(self, db_session, make_user):
        user = make_user(sub_type=SubType.SINGLE)
        SlotRepository(db_session).reserve(rome(2024, 3, 5, 9), 1)

        slots = get_available_slots(db_session, user, self.NOW, ROME)
        assert rome(2024, 3, 5, 9) not in slots
        assert rome(2024, 3, 5, 10) in slots

    def test_after_cutoff(self, db_session, make_user):
        """Asking at 17:30 offers nothing before the day after tomorrow"""
        user = make_user()
        slots = get_available_slots(db_session, user, rome(2024, 3, 4, 17, 30), ROME)

        assert min(slots) >= rome(2024, 3, 6, 1)
        assert slots[0] == rome(2024, 3, 6, 7)

    def test_no_accesses_left(self, db_session, make_user):
        user = make_user(remaining_accesses=0)
        with pytest.raises(UnauthorizedError):
            get_available_slots(db_session, user, self.NOW, ROME)

    def test_expired_subscription(self, db_session, make_user):
        user = make_user(expires_at=rome(2024, 3, 1, 0))
        with pytest.raises(UnauthorizedError):
            get_available_slots(db_session, user, self.NOW, ROME)

    def test_service_wrapper(self, service, make_user):
        user = make_user()
        slots = service.get_available_slots(caller_for(user), now=self.NOW)
        assert slots[0] == rome(2024, 3, 5, 7)
