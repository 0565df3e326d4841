import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional

from flask import current_app

from models import db
from models.court import Court
from models.enums import ReservationStatus
from services import repository
from services.errors import NotFound
from services.timeutil import combine, day_bounds, isoformat, overlaps, parse_clock, parse_date, utcnow

logger = logging.getLogger(__name__)

DEFAULT_OPEN_TIME = time(6, 0)
DEFAULT_CLOSE_TIME = time(22, 0)
DEFAULT_SLOT_MINUTES = 60


class SlotStatus(str, enum.Enum):
    AVAILABLE = "available"
    PENDING = "pending"
    BOOKED = "booked"


@dataclass
class SlotView:
    start: datetime
    end: datetime
    status: SlotStatus
    reservation_id: Optional[int] = None
    customer_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "start": self.start.strftime("%H:%M"),
            "end": self.end.strftime("%H:%M"),
            "start_time": isoformat(self.start),
            "end_time": isoformat(self.end),
            "status": self.status.value,
            "reservation_id": self.reservation_id,
            "booked_by": self.customer_name,
        }


def hold_lapsed(reservation, now: datetime) -> bool:
    """A HELD reservation whose time-to-live has run out, swept or not."""
    expires = getattr(reservation, "hold_expires_at", None)
    return (
        ReservationStatus(reservation.status) is ReservationStatus.HELD
        and expires is not None
        and expires <= now
    )


def operating_window(day: date, open_time, close_time, open_default: time, close_default: time):
    opens = parse_clock(open_time, default=open_default)
    closes = parse_clock(close_time, default=close_default)

    start = combine(day, opens)
    # closing at 00:00 means the end of the day
    end = combine(day, closes) if closes != time(0, 0) else combine(day, time(0, 0)) + timedelta(days=1)
    if end <= start:
        logger.warning("Inverted operating hours %s-%s, using defaults", open_time, close_time)
        start, end = combine(day, open_default), combine(day, close_default)
    return start, end


def generate_slots(
    day,
    open_time,
    close_time,
    slot_minutes,
    reservations: Iterable = (),
    open_default: time = DEFAULT_OPEN_TIME,
    close_default: time = DEFAULT_CLOSE_TIME,
    now: Optional[datetime] = None,
) -> List[SlotView]:
    """
    Candidate slots for one court and day, each marked available, pending
    (overlaps a hold) or booked (overlaps any other active reservation).

    Never raises on bad hours or duration: unusable values fall back to the
    defaults (06:00-22:00, 60 minute slots). A trailing slot that would run past
    closing time is dropped. Cancelled reservations are ignored, and so are
    holds already lapsed at ``now`` when it is given.
    """
    day = parse_date(day)
    try:
        minutes = int(slot_minutes)
    except (TypeError, ValueError):
        minutes = DEFAULT_SLOT_MINUTES
    if minutes <= 0:
        minutes = DEFAULT_SLOT_MINUTES

    window_start, window_end = operating_window(day, open_time, close_time, open_default, close_default)

    busy = []
    for r in reservations:
        if not ReservationStatus(r.status).is_active:
            continue
        if now is not None and hold_lapsed(r, now):
            continue
        customer = getattr(r, "customer", None)
        for s in r.slots:
            busy.append((s.start_time, s.end_time, r, getattr(customer, "full_name", None)))

    step = timedelta(minutes=minutes)
    out = []
    current = window_start
    while current + step <= window_end:
        slot_end = current + step
        status = SlotStatus.AVAILABLE
        holder = None
        holder_name = None
        for b_start, b_end, r, name in busy:
            if not overlaps(current, slot_end, b_start, b_end):
                continue
            if ReservationStatus(r.status) is ReservationStatus.HELD:
                if status is SlotStatus.AVAILABLE:
                    status, holder, holder_name = SlotStatus.PENDING, r.id, name
            else:
                status, holder, holder_name = SlotStatus.BOOKED, r.id, name
                break
        out.append(SlotView(current, slot_end, status, holder, holder_name))
        current = slot_end
    return out


def _config_defaults():
    cfg = current_app.config
    open_default = parse_clock(cfg.get("DEFAULT_OPEN_TIME"), default=DEFAULT_OPEN_TIME)
    close_default = parse_clock(cfg.get("DEFAULT_CLOSE_TIME"), default=DEFAULT_CLOSE_TIME)
    return open_default, close_default


def slot_minutes_for(court: Court) -> int:
    minutes = court.court_type.slot_duration_minutes if court.court_type else None
    return minutes if minutes and minutes > 0 else current_app.config.get("DEFAULT_SLOT_MINUTES", DEFAULT_SLOT_MINUTES)


def court_hours(court: Court, day: date):
    """Opening and closing datetimes of the court's branch on ``day``."""
    branch = court.branch
    open_default, close_default = _config_defaults()
    return operating_window(
        day,
        branch.open_time if branch else None,
        branch.close_time if branch else None,
        open_default,
        close_default,
    )


def court_availability(court_id: int, day, now: Optional[datetime] = None) -> List[SlotView]:
    day = parse_date(day)
    court = db.session.get(Court, court_id)
    if not court or not court.is_active:
        raise NotFound("Court not found")

    branch = court.branch
    open_default, close_default = _config_defaults()

    start, end = day_bounds(day)
    reservations = repository.list_reservations(court.id, start, end)
    return generate_slots(
        day,
        branch.open_time if branch else None,
        branch.close_time if branch else None,
        slot_minutes_for(court),
        reservations,
        open_default=open_default,
        close_default=close_default,
        now=now or utcnow(),
    )
