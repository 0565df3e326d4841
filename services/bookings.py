"""
Booking lifecycle: HELD -> BOOKED -> PAID, with CANCELLED reachable from any
non-terminal state.

Every operation that claims, releases or re-labels slots runs under the court's
lock and inside one transaction: read current active reservations, validate,
write, commit, release.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from flask import current_app
from sqlalchemy import select

from models import db
from models.court import Court
from models.customer import Customer
from models.enums import InvoiceStatus, PaymentMethod, ReservationStatus
from models.invoice import Invoice
from models.reservation import BookingSlot, Reservation
from services import conflicts, pricing, repository
from services.availability import court_hours, hold_lapsed, slot_minutes_for
from services.codes import booking_code
from services.errors import InvalidStateTransition, NotFound, ValidationError
from services.locks import locks
from services.timeutil import minutes_between, parse_datetime, utcnow
from services.transactions import WriteConflict, transactional
from services.validators import clean_text, coerce_enum, require_positive_int
from utils.audit import log_event

logger = logging.getLogger(__name__)

EDITABLE = (ReservationStatus.HELD, ReservationStatus.BOOKED)
PAYABLE = (ReservationStatus.HELD, ReservationStatus.BOOKED)


# ---------- input normalization ----------

def normalize_slots(raw_slots) -> List[Tuple[datetime, datetime]]:
    """
    Accepts ``[{"start_time": ..., "end_time": ...}]`` or ``[(start, end)]`` with
    any supported time shape; returns sorted canonical ranges.
    """
    if not raw_slots or not isinstance(raw_slots, (list, tuple)):
        raise ValidationError("At least one slot is required")

    ranges = []
    for raw in raw_slots:
        if isinstance(raw, dict):
            start, end = raw.get("start_time"), raw.get("end_time")
        elif isinstance(raw, (list, tuple)) and len(raw) == 2:
            start, end = raw
        else:
            raise ValidationError("Each slot needs start_time and end_time")
        st = parse_datetime(start, "start_time")
        et = parse_datetime(end, "end_time")
        if et <= st:
            raise ValidationError("end_time must be after start_time")
        if et.date() != st.date() and et != datetime.combine(st.date() + timedelta(days=1), datetime.min.time()):
            raise ValidationError("A slot must start and end on the same day")
        ranges.append((st, et))

    ranges.sort()
    if conflicts.internal_overlaps(ranges):
        raise ValidationError("Requested slots overlap each other")
    return ranges


def _validate_for_court(court: Court, ranges: List[Tuple[datetime, datetime]], now: datetime) -> None:
    slot_minutes = slot_minutes_for(court)
    for start, end in ranges:
        if start <= now:
            raise ValidationError("Cannot book past/started slots", start_time=start.isoformat())
        if minutes_between(start, end) != slot_minutes:
            raise ValidationError(f"Slots on this court last {slot_minutes} minutes", start_time=start.isoformat())
        opens, closes = court_hours(court, start.date())
        if start < opens or end > closes:
            raise ValidationError("Slot is outside operating hours", start_time=start.isoformat())
        if minutes_between(opens, start) % slot_minutes:
            raise ValidationError("Slot is not aligned to the court schedule", start_time=start.isoformat())


def active_court(court_id: int) -> Court:
    court = db.session.get(Court, court_id)
    if not court or not court.is_active:
        raise NotFound("Court not found")
    return court


def deposit_for(court: Court, fee: int, method: PaymentMethod, first_start: datetime, now: datetime) -> int:
    cfg = current_app.config
    branch = court.branch
    ratio = branch.deposit_ratio if branch and branch.deposit_ratio is not None else cfg.get("DEPOSIT_RATIO", 0.5)
    window = (
        branch.cancel_window_minutes
        if branch and branch.cancel_window_minutes is not None
        else cfg.get("CANCEL_WINDOW_MINUTES", 30)
    )
    return pricing.deposit(fee, ratio, method, minutes_between(now, first_start), window)


def _live_invoice(reservation_id: int) -> Optional[Invoice]:
    return (
        Invoice.query
        .filter(Invoice.reservation_id == reservation_id, Invoice.status != InvoiceStatus.CANCELLED)
        .order_by(Invoice.id.desc())
        .first()
    )


def _current_court_id(reservation_id: int) -> int:
    court_id = db.session.execute(
        select(Reservation.court_id).where(Reservation.id == reservation_id)
    ).scalar_one_or_none()
    if court_id is None:
        raise NotFound("Booking not found")
    return court_id


def run_with_court_lock(reservation_id: int, op, *args, extra_court_id: Optional[int] = None, extra_keys=(), **kwargs):
    """
    Takes the lock of the court the reservation currently sits on (plus any
    extra court/keys), re-checking after acquisition in case an edit moved it.
    """
    for _ in range(3):
        court_id = _current_court_id(reservation_id)
        keys = [("court", court_id)] + list(extra_keys)
        if extra_court_id is not None:
            keys.append(("court", extra_court_id))
        with locks.hold(*keys):
            db.session.expire_all()
            if _current_court_id(reservation_id) != court_id:
                continue
            return op(reservation_id, *args, **kwargs)
    raise WriteConflict("Booking moved to another court while waiting; retry")


# ---------- state changes on loaded rows (caller holds lock + transaction) ----------

def apply_cancel(reservation: Reservation, reason: Optional[str], actor_id: Optional[int], now: datetime) -> bool:
    """Returns False when the reservation was already cancelled (no-op)."""
    if not reservation.is_active:
        return False
    repository.claim_court_schedule(reservation.court_id)
    previous = reservation.status
    reservation.status = ReservationStatus.CANCELLED
    reservation.cancelled_at = now
    reservation.cancel_reason = reason
    repository.save_reservation(reservation)
    log_event(
        "RESERVATION_CANCEL",
        user_id=actor_id,
        entity="reservation",
        entity_id=reservation.id,
        metadata={"reason": reason, "from": previous.value},
    )
    logger.info("Reservation %s cancelled (was %s)", reservation.id, previous.value)
    return True


def apply_mark_paid(reservation: Reservation, actor_id: Optional[int], now: datetime) -> None:
    if reservation.status not in PAYABLE:
        raise InvalidStateTransition(
            f"Booking cannot be paid from {reservation.status.value}",
            booking_id=reservation.id,
        )
    if hold_lapsed(reservation, now):
        raise InvalidStateTransition("Hold expired", booking_id=reservation.id)
    previous = reservation.status
    reservation.status = ReservationStatus.PAID
    reservation.paid_at = now
    reservation.hold_expires_at = None
    repository.save_reservation(reservation)
    log_event(
        "RESERVATION_PAID",
        user_id=actor_id,
        entity="reservation",
        entity_id=reservation.id,
        metadata={"from": previous.value},
    )


def release_lapsed_holds(court_id: int, ranges, now: datetime) -> List[int]:
    """Cancels expired holds on the court that overlap ``ranges``; caller holds the court lock."""
    released = []
    for start, end in ranges:
        for slot in conflicts.find_conflicts(court_id, start, end):
            r = slot.reservation
            if hold_lapsed(r, now):
                if apply_cancel(r, "Hold expired", None, now):
                    released.append(r.id)
    return released


# ---------- create ----------

def create_hold(court_id: int, customer_id: int, slots, payment_method="counter", actor_id=None, now=None) -> Reservation:
    court_id = require_positive_int(court_id, "court_id")
    customer_id = require_positive_int(customer_id, "customer_id")
    ranges = normalize_slots(slots)
    method = coerce_enum(PaymentMethod, payment_method, "payment method")
    now = now or utcnow()
    with locks.courts(court_id):
        return _create_hold(court_id, customer_id, ranges, method, actor_id, now)


@transactional
def _create_hold(court_id, customer_id, ranges, method, actor_id, now) -> Reservation:
    court = active_court(court_id)
    if not db.session.get(Customer, customer_id):
        raise NotFound("Customer not found")
    _validate_for_court(court, ranges, now)

    repository.claim_court_schedule(court.id)
    release_lapsed_holds(court.id, ranges, now)
    conflicts.ensure_free(court.id, ranges)

    fee = pricing.court_fee(court.base_hourly_price, ranges)
    ttl = int(current_app.config.get("HOLD_TTL_MINUTES", 15))
    reservation = Reservation(
        code=booking_code(current_app.config.get("BOOKING_CODE_PREFIX", "VS"), court.id, now),
        court_id=court.id,
        customer_id=customer_id,
        created_by=actor_id,
        status=ReservationStatus.HELD,
        payment_method=method,
        deposit_amount=deposit_for(court, fee, method, ranges[0][0], now),
        created_at=now,
        hold_expires_at=now + timedelta(minutes=ttl),
        slots=[BookingSlot(court_id=court.id, start_time=st, end_time=et) for st, et in ranges],
    )
    repository.save_reservation(reservation)

    log_event(
        "RESERVATION_HOLD",
        user_id=actor_id,
        entity="reservation",
        entity_id=reservation.id,
        metadata={
            "court_id": court.id,
            "slots": [[st.isoformat(), et.isoformat()] for st, et in ranges],
            "deposit": reservation.deposit_amount,
        },
    )
    logger.info("Reservation %s held on court %s (%d slots)", reservation.id, court.id, len(ranges))
    return reservation


# ---------- confirm ----------

def confirm(reservation_id: int, actor_id=None, now=None) -> Reservation:
    return run_with_court_lock(reservation_id, _confirm, actor_id, now or utcnow())


@transactional
def _confirm(reservation_id, actor_id, now) -> Reservation:
    reservation = repository.get_reservation(reservation_id, for_update=True)
    apply_confirm(reservation, actor_id, now)
    return reservation


def apply_confirm(reservation: Reservation, actor_id: Optional[int], now: datetime) -> None:
    if reservation.status is not ReservationStatus.HELD:
        raise InvalidStateTransition(
            f"Only held bookings can be confirmed (status {reservation.status.value})",
            booking_id=reservation.id,
        )
    if hold_lapsed(reservation, now):
        raise InvalidStateTransition("Hold expired", booking_id=reservation.id)

    repository.claim_court_schedule(reservation.court_id)
    reservation.status = ReservationStatus.BOOKED
    reservation.confirmed_at = now
    reservation.hold_expires_at = None
    repository.save_reservation(reservation)

    log_event("RESERVATION_CONFIRM", user_id=actor_id, entity="reservation", entity_id=reservation.id)


# ---------- paid ----------

def mark_paid(reservation_id: int, actor_id=None, now=None) -> Reservation:
    return run_with_court_lock(reservation_id, _mark_paid, actor_id, now or utcnow())


@transactional
def _mark_paid(reservation_id, actor_id, now) -> Reservation:
    reservation = repository.get_reservation(reservation_id, for_update=True)
    apply_mark_paid(reservation, actor_id, now)
    return reservation


# ---------- cancel ----------

def cancel(reservation_id: int, reason=None, actor_id=None, now=None) -> Reservation:
    """
    Cancels the booking and releases its slots. An UNPAID invoice on it is
    cancelled in the same transaction; settled invoices are left to refunds.
    """
    reason = clean_text(reason, "reason")
    open_invoice = _live_invoice(reservation_id)
    invoice_id = open_invoice.id if open_invoice is not None else None
    extra_keys = [("invoice", invoice_id)] if invoice_id is not None else []
    return run_with_court_lock(
        reservation_id, _cancel, invoice_id, reason, actor_id, now or utcnow(), extra_keys=extra_keys
    )


@transactional
def _cancel(reservation_id, invoice_id, reason, actor_id, now) -> Reservation:
    reservation = repository.get_reservation(reservation_id, for_update=True)
    if reservation.is_active:
        open_invoice = _live_invoice(reservation.id)
        if open_invoice is not None and open_invoice.id != invoice_id:
            # invoiced between the lookup and the lock
            raise WriteConflict("Booking was invoiced while cancelling; retry", booking_id=reservation.id)
        if open_invoice is not None and open_invoice.status is InvoiceStatus.UNPAID:
            _cancel_unpaid_invoice(repository.get_invoice(open_invoice.id, for_update=True), reason, actor_id, now)
    apply_cancel(reservation, reason, actor_id, now)
    return reservation


def _cancel_unpaid_invoice(invoice: Invoice, reason: Optional[str], actor_id, now: datetime) -> None:
    invoice.status = InvoiceStatus.CANCELLED
    invoice.cancelled_at = now
    invoice.cancelled_by = actor_id
    invoice.cancel_reason = (reason or "Booking cancelled")[:255]
    repository.save_invoice(invoice)
    log_event(
        "INVOICE_CANCEL",
        user_id=actor_id,
        entity="invoice",
        entity_id=invoice.id,
        metadata={"reason": invoice.cancel_reason, "via": "booking", "booking_id": invoice.reservation_id},
    )


# ---------- edit ----------

def edit(reservation_id: int, court_id: Optional[int] = None, slots=None, actor_id=None, now=None) -> Reservation:
    """
    Moves a HELD/BOOKED reservation to other slots and/or another court. Every
    proposed slot is checked with the reservation itself excluded; one conflict
    rejects the whole edit.
    """
    if court_id is None and slots is None:
        raise ValidationError("Nothing to change: provide court_id and/or slots")
    if court_id is not None:
        court_id = require_positive_int(court_id, "court_id")
    ranges = normalize_slots(slots) if slots is not None else None
    return run_with_court_lock(
        reservation_id,
        _edit,
        court_id,
        ranges,
        actor_id,
        now or utcnow(),
        extra_court_id=court_id,
    )


@transactional
def _edit(reservation_id, court_id, ranges, actor_id, now) -> Reservation:
    reservation = repository.get_reservation(reservation_id, for_update=True)
    if reservation.status not in EDITABLE:
        raise InvalidStateTransition(
            f"Booking cannot be edited from {reservation.status.value}",
            booking_id=reservation.id,
        )
    if hold_lapsed(reservation, now):
        raise InvalidStateTransition("Hold expired", booking_id=reservation.id)
    if _live_invoice(reservation.id):
        raise InvalidStateTransition("Booking has an open invoice; cancel it before editing", booking_id=reservation.id)

    target = active_court(court_id if court_id is not None else reservation.court_id)
    if ranges is None:
        ranges = [(s.start_time, s.end_time) for s in reservation.slots]
    _validate_for_court(target, ranges, now)

    old_court_id = reservation.court_id
    repository.claim_court_schedule(old_court_id)
    if target.id != old_court_id:
        repository.claim_court_schedule(target.id)
    release_lapsed_holds(target.id, ranges, now)
    conflicts.ensure_free(target.id, ranges, exclude_reservation_id=reservation.id)

    before = [[s.start_time.isoformat(), s.end_time.isoformat()] for s in reservation.slots]
    old_fee = court_fee_for(reservation)
    reservation.court_id = target.id
    reservation.slots = [BookingSlot(court_id=target.id, start_time=st, end_time=et) for st, et in ranges]
    fee = pricing.court_fee(target.base_hourly_price, ranges)
    reservation.deposit_amount = deposit_for(target, fee, reservation.payment_method, ranges[0][0], now)
    repository.save_reservation(reservation)

    log_event(
        "RESERVATION_EDIT",
        user_id=actor_id,
        entity="reservation",
        entity_id=reservation.id,
        metadata={
            "court_id": [old_court_id, target.id],
            "before": before,
            "after": [[st.isoformat(), et.isoformat()] for st, et in ranges],
            "fee_change": pricing.balance_due(fee, old_fee),
        },
    )
    return reservation


# ---------- hold expiry sweep ----------

def expire_stale_holds(now=None) -> List[int]:
    """Cancels HELD reservations whose hold has lapsed. Returns their ids."""
    now = now or utcnow()
    candidates = db.session.execute(
        select(Reservation.id).where(
            Reservation.status == ReservationStatus.HELD,
            Reservation.hold_expires_at <= now,
        )
    ).scalars().all()
    db.session.rollback()

    expired = []
    for reservation_id in candidates:
        try:
            if run_with_court_lock(reservation_id, _expire_one, now):
                expired.append(reservation_id)
        except NotFound:
            continue
    if expired:
        logger.info("Released %d expired holds", len(expired))
    return expired


@transactional
def _expire_one(reservation_id, now) -> bool:
    reservation = repository.get_reservation(reservation_id, for_update=True)
    # re-check under the lock: it may have been confirmed or cancelled meanwhile
    if not hold_lapsed(reservation, now):
        return False
    return apply_cancel(reservation, "Hold expired", None, now)


# ---------- queries ----------

def get_reservation(reservation_id: int) -> Reservation:
    return repository.get_reservation(reservation_id)


def list_reservations(court_id=None, customer_id=None, status=None, start=None, end=None, limit: int = 200) -> List[Reservation]:
    q = Reservation.query
    if court_id:
        q = q.filter(Reservation.court_id == court_id)
    if customer_id:
        q = q.filter(Reservation.customer_id == customer_id)
    if status:
        q = q.filter(Reservation.status == coerce_enum(ReservationStatus, status, "status"))
    if start is not None or end is not None:
        q = q.join(BookingSlot, BookingSlot.reservation_id == Reservation.id)
        if start is not None:
            q = q.filter(BookingSlot.end_time > start)
        if end is not None:
            q = q.filter(BookingSlot.start_time < end)
        q = q.distinct()
    return q.order_by(Reservation.created_at.desc(), Reservation.id.desc()).limit(limit).all()


def list_unpaid_reservations(limit: int = 200) -> List[Reservation]:
    """Active reservations with no paid invoice, newest first."""
    paid = (
        select(Invoice.reservation_id)
        .where(Invoice.status.in_([
            InvoiceStatus.PAID,
            InvoiceStatus.PARTIALLY_REFUNDED,
            InvoiceStatus.REFUNDED,
        ]))
    )
    return (
        Reservation.query
        .filter(Reservation.status.in_(PAYABLE), Reservation.id.not_in(paid))
        .order_by(Reservation.created_at.desc(), Reservation.id.desc())
        .limit(limit)
        .all()
    )


def court_fee_for(reservation: Reservation) -> int:
    return pricing.court_fee(reservation.court.base_hourly_price, reservation.slots)
