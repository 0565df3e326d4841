from datetime import time, timedelta
from types import SimpleNamespace

import pytest

from models.enums import ReservationStatus
from services import availability, bookings
from services.availability import SlotStatus, generate_slots
from services.errors import NotFound
from tests.helpers import DAY, NOW, rng, slot


def _reservation(rid, status, *ranges, name="Guest", hold_expires_at=None):
    return SimpleNamespace(
        id=rid,
        status=status,
        hold_expires_at=hold_expires_at,
        customer=SimpleNamespace(full_name=name),
        slots=[SimpleNamespace(start_time=s, end_time=e) for s, e in ranges],
    )


def _statuses(slots):
    return {s.start.hour: s.status for s in slots}


def test_generates_slots_across_operating_hours():
    slots = generate_slots(DAY, "06:00", "22:00", 60)

    assert len(slots) == 16
    assert slots[0].start.time() == time(6, 0)
    assert slots[-1].end.time() == time(22, 0)
    assert all(s.status is SlotStatus.AVAILABLE for s in slots)


def test_trailing_partial_slot_is_dropped():
    slots = generate_slots(DAY, "06:00", "08:00", 90)
    assert [(s.start.time(), s.end.time()) for s in slots] == [(time(6, 0), time(7, 30))]


def test_malformed_hours_and_duration_fall_back_to_defaults():
    slots = generate_slots(DAY, "early", None, 0)
    assert slots[0].start.time() == time(6, 0)
    assert slots[-1].end.time() == time(22, 0)
    assert len(slots) == 16

    inverted = generate_slots(DAY, "22:00", "06:00", 60)
    assert len(inverted) == 16


def test_close_at_midnight_runs_to_end_of_day():
    slots = generate_slots(DAY, "20:00", "00:00", 60)
    assert len(slots) == 4
    assert slots[-1].end.date() > DAY


def test_marks_pending_and_booked():
    reservations = [
        _reservation(1, ReservationStatus.HELD, rng(18)),
        _reservation(2, ReservationStatus.BOOKED, rng(19), name="Booked Guest"),
        _reservation(3, ReservationStatus.PAID, rng(20)),
        _reservation(4, ReservationStatus.CANCELLED, rng(21)),
    ]
    slots = generate_slots(DAY, "06:00", "22:00", 60, reservations)
    status = _statuses(slots)

    assert status[18] is SlotStatus.PENDING
    assert status[19] is SlotStatus.BOOKED
    assert status[20] is SlotStatus.BOOKED
    assert status[21] is SlotStatus.AVAILABLE
    assert slots[13].to_dict()["booked_by"] == "Booked Guest"


def test_booked_wins_over_pending_on_shared_candidate():
    reservations = [
        _reservation(1, ReservationStatus.HELD, rng(18, minutes=30)),
        _reservation(2, ReservationStatus.BOOKED, rng(18, minutes=30, minute=30)),
    ]
    slots = generate_slots(DAY, "06:00", "22:00", 60, reservations)
    assert _statuses(slots)[18] is SlotStatus.BOOKED


def test_touching_reservation_does_not_block_neighbours():
    reservations = [_reservation(1, ReservationStatus.BOOKED, rng(18))]
    status = _statuses(generate_slots(DAY, "06:00", "22:00", 60, reservations))
    assert status[17] is SlotStatus.AVAILABLE
    assert status[19] is SlotStatus.AVAILABLE


def test_court_availability_reads_reservations(ids):
    bookings.create_hold(ids["court_a"], ids["walk_in"], [slot(18)], now=NOW)

    slots = availability.court_availability(ids["court_a"], DAY.isoformat())
    status = _statuses(slots)

    assert status[18] is SlotStatus.PENDING
    assert status[17] is SlotStatus.AVAILABLE
    assert _statuses(availability.court_availability(ids["court_b"], DAY))[18] is SlotStatus.AVAILABLE


def test_court_availability_unknown_or_inactive_court(ids):
    with pytest.raises(NotFound):
        availability.court_availability(ids["closed_court"], DAY)
    with pytest.raises(NotFound):
        availability.court_availability(9999, DAY)


def test_lapsed_hold_shows_available():
    reservations = [_reservation(1, ReservationStatus.HELD, rng(18), hold_expires_at=NOW + timedelta(minutes=15))]

    assert _statuses(generate_slots(DAY, "06:00", "22:00", 60, reservations))[18] is SlotStatus.PENDING
    later = generate_slots(DAY, "06:00", "22:00", 60, reservations, now=NOW + timedelta(minutes=16))
    assert _statuses(later)[18] is SlotStatus.AVAILABLE


def test_court_availability_skips_unswept_lapsed_hold(ids):
    bookings.create_hold(ids["court_a"], ids["walk_in"], [slot(18)], now=NOW)

    fresh = availability.court_availability(ids["court_a"], DAY, now=NOW + timedelta(minutes=10))
    lapsed = availability.court_availability(ids["court_a"], DAY, now=NOW + timedelta(minutes=16))

    assert _statuses(fresh)[18] is SlotStatus.PENDING
    assert _statuses(lapsed)[18] is SlotStatus.AVAILABLE
    # the hold row itself is still HELD until the sweep or the next booking releases it
    assert bookings.list_reservations(court_id=ids["court_a"])[0].status is ReservationStatus.HELD
