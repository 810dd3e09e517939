"""
Occupancy arithmetic shared by every ledger write.

A slot holds SLOT_CAPACITY units: a SHARED member takes one, a SINGLE member
takes the whole slot.
"""

from gym_booking.db_models import SubType

SLOT_CAPACITY = 2

_WEIGHTS = {
    SubType.SHARED: 1,
    SubType.SINGLE: 2,
}


def occupancy_weight(sub_type: SubType) -> int:
    """Units of slot capacity consumed by one booking of this subscription type"""
    return _WEIGHTS[SubType(sub_type)]


def capacity_threshold(sub_type: SubType) -> int:
    """
    Smallest people_count at which a slot is full for this subscription type.

    2 for SHARED, 1 for SINGLE: a booking fits while
    people_count + weight <= SLOT_CAPACITY.
    """
    return SLOT_CAPACITY - occupancy_weight(sub_type) + 1


def is_full_for(people_count: int, sub_type: SubType) -> bool:
    return people_count >= capacity_threshold(sub_type)
