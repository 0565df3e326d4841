"""
Persistence contract for the booking engine, backed by Flask-SQLAlchemy.

Callers own the transaction: these helpers add and flush but never commit, so
a service operation can stage several writes and commit them together (or roll
all of them back).
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select

from models import db
from models.court_schedule import CourtSchedule
from models.enums import ReservationStatus
from models.invoice import Invoice
from models.reservation import BookingSlot, Reservation
from services.errors import NotFound


def list_reservations(court_id: int, start: datetime, end: datetime, include_cancelled: bool = False) -> List[Reservation]:
    """Reservations on ``court_id`` with at least one slot inside ``[start, end)``."""
    q = (
        Reservation.query
        .join(BookingSlot, BookingSlot.reservation_id == Reservation.id)
        .filter(
            BookingSlot.court_id == court_id,
            BookingSlot.start_time < end,
            BookingSlot.end_time > start,
        )
    )
    if not include_cancelled:
        q = q.filter(Reservation.status != ReservationStatus.CANCELLED)
    return q.distinct().order_by(Reservation.id.asc()).all()


def active_slots(court_id: int, start: datetime, end: datetime, exclude_reservation_id: Optional[int] = None) -> List[BookingSlot]:
    q = (
        BookingSlot.query
        .join(Reservation, BookingSlot.reservation_id == Reservation.id)
        .filter(
            BookingSlot.court_id == court_id,
            Reservation.status != ReservationStatus.CANCELLED,
            BookingSlot.start_time < end,
            BookingSlot.end_time > start,
        )
    )
    if exclude_reservation_id is not None:
        q = q.filter(Reservation.id != exclude_reservation_id)
    return q.order_by(BookingSlot.start_time.asc()).all()


def get_reservation(reservation_id: int, for_update: bool = False) -> Reservation:
    row = db.session.get(Reservation, reservation_id, with_for_update={"of": Reservation} if for_update else None)
    if not row:
        raise NotFound("Booking not found")
    return row


def get_invoice(invoice_id: int, for_update: bool = False) -> Invoice:
    row = db.session.get(Invoice, invoice_id, with_for_update={"of": Invoice} if for_update else None)
    if not row:
        raise NotFound("Invoice not found")
    return row


def claim_court_schedule(court_id: int) -> CourtSchedule:
    """
    Locks the court's schedule row (SELECT ... FOR UPDATE where supported) and
    marks it dirty so the flush bumps its version. A concurrent writer that read
    the same version fails its flush with StaleDataError.
    """
    row = db.session.execute(
        select(CourtSchedule).where(CourtSchedule.court_id == court_id).with_for_update()
    ).scalar_one_or_none()
    if row is None:
        row = CourtSchedule(court_id=court_id)
        db.session.add(row)
    row.updated_at = datetime.utcnow()
    return row


def save_reservation(reservation: Reservation) -> Reservation:
    db.session.add(reservation)
    db.session.flush()
    return reservation


def save_invoice(invoice: Invoice) -> Invoice:
    db.session.add(invoice)
    db.session.flush()
    return invoice
