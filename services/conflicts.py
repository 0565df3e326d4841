from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from models.reservation import BookingSlot
from services import repository
from services.errors import ConflictError
from services.timeutil import overlaps


def find_conflicts(court_id: int, start: datetime, end: datetime, exclude_reservation_id: Optional[int] = None) -> List[BookingSlot]:
    """Active slots on the court overlapping ``[start, end)``."""
    return repository.active_slots(court_id, start, end, exclude_reservation_id=exclude_reservation_id)


def has_conflict(court_id: int, start: datetime, end: datetime, exclude_reservation_id: Optional[int] = None) -> bool:
    return bool(find_conflicts(court_id, start, end, exclude_reservation_id))


def ensure_free(court_id: int, ranges: Iterable[Tuple[datetime, datetime]], exclude_reservation_id: Optional[int] = None) -> None:
    """Raises ConflictError naming the first taken range; must run under the court lock."""
    for start, end in ranges:
        taken = find_conflicts(court_id, start, end, exclude_reservation_id)
        if taken:
            raise ConflictError(
                "Slot already booked",
                court_id=court_id,
                start_time=start.isoformat(),
                end_time=end.isoformat(),
                reservation_id=taken[0].reservation_id,
            )


def internal_overlaps(ranges: List[Tuple[datetime, datetime]]) -> bool:
    ordered = sorted(ranges)
    return any(overlaps(a_start, a_end, b_start, b_end) for (a_start, a_end), (b_start, b_end) in zip(ordered, ordered[1:]))
