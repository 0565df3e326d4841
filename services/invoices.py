"""
Invoice lifecycle for court bookings.

    UNPAID --mark_paid--> PAID --refund--> PARTIALLY_REFUNDED --refund--> REFUNDED
       |                    \\------------------refund (full)----------------^
       +--cancel--> CANCELLED   (cascades: booking is cancelled too)

Refund states are derived from the refund ledger, never set directly. Every
mutation holds the invoice lock (plus the booking's court lock when it cascades
to the booking) and commits all of its writes together.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import or_, select

from models import db
from models.customer import Customer
from models.enums import (
    InvoiceItemKind,
    InvoiceStatus,
    PaymentMethod,
    RefundReason,
    ReservationStatus,
)
from models.invoice import Invoice, InvoiceItem, RefundRecord
from models.reservation import Reservation
from models.service import Service
from services import bookings, pricing, repository
from services.codes import invoice_code, parse_invoice_code
from services.errors import (
    ConflictError,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from services.locks import locks
from services.timeutil import minutes_between, parse_datetime, utcnow
from services.transactions import transactional
from services.validators import clean_text, coerce_enum, require_positive_int
from utils.audit import log_event

logger = logging.getLogger(__name__)

REFUNDABLE = (InvoiceStatus.PAID, InvoiceStatus.PARTIALLY_REFUNDED)
SETTLED = (InvoiceStatus.PAID, InvoiceStatus.PARTIALLY_REFUNDED, InvoiceStatus.REFUNDED)
ADJUSTABLE_FIELDS = {"status", "payment_method", "discount_percent", "discount_tier", "reason"}


# ---------- helpers ----------

def derive_status(invoice: Invoice) -> InvoiceStatus:
    """Status implied by the refund ledger for a settled invoice."""
    refunded = invoice.refunded_amount
    if refunded <= 0:
        return InvoiceStatus.PAID
    if refunded >= invoice.total_amount:
        return InvoiceStatus.REFUNDED
    return InvoiceStatus.PARTIALLY_REFUNDED


def check_invariants(invoice: Invoice) -> None:
    if invoice.subtotal != invoice.court_fee + invoice.service_fee:
        raise ValidationError("Invoice subtotal does not match its fees", invoice_id=invoice.id)
    if invoice.total_amount != invoice.subtotal - invoice.discount_amount:
        raise ValidationError("Invoice total does not match subtotal minus discount", invoice_id=invoice.id)
    if invoice.total_amount < 0:
        raise ValidationError("Invoice total cannot be negative", invoice_id=invoice.id)
    if sum(i.amount for i in invoice.items) != invoice.subtotal:
        raise ValidationError("Invoice lines do not add up to the subtotal", invoice_id=invoice.id)
    refunded = invoice.refunded_amount
    if refunded > invoice.total_amount:
        raise ValidationError("Refunds exceed the invoice total", invoice_id=invoice.id)
    if refunded and invoice.status not in SETTLED:
        raise ValidationError("Only settled invoices can carry refunds", invoice_id=invoice.id)
    if invoice.status in SETTLED and invoice.status is not derive_status(invoice):
        raise ValidationError("Invoice status does not match its refunds", invoice_id=invoice.id)


def _reservation_id_of(invoice_id: int) -> int:
    reservation_id = db.session.execute(
        select(Invoice.reservation_id).where(Invoice.id == invoice_id)
    ).scalar_one_or_none()
    if reservation_id is None:
        raise NotFound("Invoice not found")
    return reservation_id


def _run_locked(invoice_id: int, op, *args):
    """Court lock of the invoice's booking, then the invoice lock."""
    reservation_id = _reservation_id_of(invoice_id)
    return bookings.run_with_court_lock(
        reservation_id,
        lambda _rid: op(invoice_id, *args),
        extra_keys=[("invoice", invoice_id)],
    )


def _service_lines(branch_id: int, raw_items) -> List[pricing.ServiceLine]:
    if raw_items is None:
        return []
    if not isinstance(raw_items, (list, tuple)):
        raise ValidationError("service_items must be a list")

    lines = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError("Each service item must be an object")
        service_id = require_positive_int(raw.get("service_id"), "service_id")
        service = db.session.get(Service, service_id)
        if not service or not service.is_active or service.branch_id != branch_id:
            raise NotFound("Service not found", service_id=service_id)

        quantity = require_positive_int(raw.get("quantity", 1), "quantity")
        duration = raw.get("duration_minutes")
        if duration is None and raw.get("start_time") and raw.get("end_time"):
            duration = minutes_between(
                parse_datetime(raw["start_time"], "start_time"),
                parse_datetime(raw["end_time"], "end_time"),
            )
        if duration is not None:
            duration = require_positive_int(duration, "duration_minutes")

        lines.append(pricing.ServiceLine(
            unit=service.unit,
            unit_price=service.unit_price,
            quantity=quantity,
            duration_minutes=duration,
            service_id=service.id,
            name=service.name,
        ))
    return lines


def _resolve_discount(discount_percent, discount_tier):
    if discount_percent is not None and discount_tier is not None:
        raise ValidationError("Give discount_percent or discount_tier, not both")
    if discount_tier is not None:
        return pricing.discount_percent_for(discount_tier)
    return discount_percent or 0


def _apply_paid(invoice: Invoice, method: Optional[PaymentMethod], actor_id, now: datetime) -> None:
    if invoice.status is not InvoiceStatus.UNPAID:
        raise InvalidStateTransition(
            f"Only unpaid invoices can be paid (status {invoice.status.value})",
            invoice_id=invoice.id,
        )
    if invoice.reservation.status is not ReservationStatus.PAID:
        bookings.apply_mark_paid(invoice.reservation, actor_id, now)
    invoice.status = InvoiceStatus.PAID
    invoice.paid_at = now
    if method is not None:
        invoice.payment_method = method
    log_event(
        "INVOICE_PAID",
        user_id=actor_id,
        entity="invoice",
        entity_id=invoice.id,
        metadata={"payment_method": invoice.payment_method.value, "total": invoice.total_amount},
    )


def _apply_cancel(invoice: Invoice, reason: str, actor_id, now: datetime) -> None:
    if invoice.status is not InvoiceStatus.UNPAID:
        raise InvalidStateTransition(
            f"Only unpaid invoices can be cancelled (status {invoice.status.value})",
            invoice_id=invoice.id,
        )
    invoice.status = InvoiceStatus.CANCELLED
    invoice.cancelled_at = now
    invoice.cancelled_by = actor_id
    invoice.cancel_reason = reason
    bookings.apply_cancel(invoice.reservation, f"Invoice {invoice.code} cancelled: {reason}"[:255], actor_id, now)
    log_event(
        "INVOICE_CANCEL",
        user_id=actor_id,
        entity="invoice",
        entity_id=invoice.id,
        metadata={"reason": reason},
    )


def _apply_discount(invoice: Invoice, percent) -> None:
    if invoice.status is not InvoiceStatus.UNPAID:
        raise InvalidStateTransition("Discounts can only change while the invoice is unpaid", invoice_id=invoice.id)
    invoice.discount_percent = float(percent)
    invoice.discount_amount = pricing.discount(invoice.subtotal, percent)
    invoice.total_amount = invoice.subtotal - invoice.discount_amount


# ---------- quote ----------

def quote_booking(court_id: int, slots, service_items=None, discount_percent=None, discount_tier=None,
                  payment_method="counter", now=None) -> dict:
    """Price a prospective booking without claiming anything."""
    court_id = require_positive_int(court_id, "court_id")
    ranges = bookings.normalize_slots(slots)
    method = coerce_enum(PaymentMethod, payment_method, "payment method")
    court = bookings.active_court(court_id)
    now = now or utcnow()

    court_amount = pricing.court_fee(court.base_hourly_price, ranges)
    lines = _service_lines(court.branch_id, service_items)
    totals = pricing.quote(court_amount, lines, _resolve_discount(discount_percent, discount_tier))
    body = totals.to_dict()
    body["deposit"] = bookings.deposit_for(court, court_amount, method, ranges[0][0], now)
    body["lines"] = [
        {"service_id": line.service_id, "name": line.name, "amount": line.amount}
        for line in lines
    ]
    return body


# ---------- create ----------

def create(reservation_id: int, service_items=None, discount_percent=None, payment_method="counter",
           settle_now: bool = False, actor_id=None, now=None, discount_tier=None) -> Invoice:
    reservation_id = require_positive_int(reservation_id, "booking_id")
    method = coerce_enum(PaymentMethod, payment_method, "payment method")
    percent = _resolve_discount(discount_percent, discount_tier)
    pricing.discount(0, percent)  # range check before taking locks
    return bookings.run_with_court_lock(
        reservation_id, _create, service_items, percent, method, bool(settle_now), actor_id, now or utcnow()
    )


@transactional
def _create(reservation_id, service_items, percent, method, settle_now, actor_id, now) -> Invoice:
    reservation = repository.get_reservation(reservation_id, for_update=True)
    if reservation.status is ReservationStatus.CANCELLED:
        raise InvalidStateTransition("Cannot invoice a cancelled booking", booking_id=reservation.id)

    existing = (
        Invoice.query
        .filter(Invoice.reservation_id == reservation.id, Invoice.status != InvoiceStatus.CANCELLED)
        .first()
    )
    if existing:
        raise ConflictError("Booking already has an invoice", booking_id=reservation.id, invoice_id=existing.id)

    lines = _service_lines(reservation.court.branch_id, service_items)
    court = reservation.court
    court_amount = bookings.court_fee_for(reservation)
    totals = pricing.quote(court_amount, lines, percent)

    # a counter invoice commits the customer, so a hold becomes a booking
    if reservation.status is ReservationStatus.HELD:
        bookings.apply_confirm(reservation, actor_id, now)

    played = sum(minutes_between(s.start_time, s.end_time) for s in reservation.slots)
    items = [InvoiceItem(
        kind=InvoiceItemKind.COURT,
        description=f"Court fee: {court.name}",
        unit_price=court.base_hourly_price,
        quantity=1,
        duration_minutes=played,
        amount=court_amount,
    )]
    for line in lines:
        items.append(InvoiceItem(
            kind=InvoiceItemKind.SERVICE,
            service_id=line.service_id,
            description=line.name,
            unit_price=line.unit_price,
            quantity=line.quantity,
            duration_minutes=line.duration_minutes,
            amount=line.amount,
        ))

    invoice = Invoice(
        reservation_id=reservation.id,
        court_fee=totals.court_fee,
        service_fee=totals.service_fee,
        subtotal=totals.subtotal,
        discount_percent=totals.discount_percent,
        discount_amount=totals.discount_amount,
        total_amount=totals.total,
        status=InvoiceStatus.UNPAID,
        payment_method=method,
        created_by=actor_id,
        created_at=now,
        items=items,
    )
    repository.save_invoice(invoice)
    invoice.code = invoice_code(invoice.id, now)

    log_event(
        "INVOICE_CREATE",
        user_id=actor_id,
        entity="invoice",
        entity_id=invoice.id,
        metadata={"booking_id": reservation.id, **totals.to_dict()},
    )
    if settle_now:
        _apply_paid(invoice, method, actor_id, now)

    check_invariants(invoice)
    repository.save_invoice(invoice)
    logger.info("Invoice %s created for booking %s (total %s)", invoice.id, reservation.id, invoice.total_amount)
    return invoice


# ---------- cancel ----------

def cancel(invoice_id: int, reason, actor_id=None, now=None) -> Invoice:
    reason = clean_text(reason, "reason", required=True)
    return _run_locked(invoice_id, _cancel, reason, actor_id, now or utcnow())


@transactional
def _cancel(invoice_id, reason, actor_id, now) -> Invoice:
    invoice = repository.get_invoice(invoice_id, for_update=True)
    _apply_cancel(invoice, reason, actor_id, now)
    check_invariants(invoice)
    return repository.save_invoice(invoice)


# ---------- pay ----------

def mark_paid(invoice_id: int, payment_method=None, actor_id=None, now=None) -> Invoice:
    method = coerce_enum(PaymentMethod, payment_method, "payment method") if payment_method else None
    return _run_locked(invoice_id, _mark_paid, method, actor_id, now or utcnow())


@transactional
def _mark_paid(invoice_id, method, actor_id, now) -> Invoice:
    invoice = repository.get_invoice(invoice_id, for_update=True)
    _apply_paid(invoice, method, actor_id, now)
    check_invariants(invoice)
    return repository.save_invoice(invoice)


# ---------- refund ----------

def refund(invoice_id: int, amount, reason, reason_type="other", actor_id=None, now=None) -> Invoice:
    amount = require_positive_int(amount, "amount")
    reason_type = coerce_enum(RefundReason, reason_type, "reason type")
    reason = clean_text(reason, "reason", required=reason_type is RefundReason.OTHER)
    now = now or utcnow()
    # refunds never touch the booking, so the invoice lock alone is enough
    with locks.invoice(invoice_id):
        return _refund(invoice_id, amount, reason or reason_type.value, reason_type, actor_id, now)


@transactional
def _refund(invoice_id, amount, reason, reason_type, actor_id, now) -> Invoice:
    invoice = repository.get_invoice(invoice_id, for_update=True)
    if invoice.status not in REFUNDABLE:
        raise InvalidStateTransition(
            f"Refunds are only allowed on paid invoices (status {invoice.status.value})",
            invoice_id=invoice.id,
        )
    remaining = invoice.refundable_amount
    if amount > remaining:
        raise ValidationError("Refund exceeds remaining balance", remaining=remaining, requested=amount)

    invoice.refunds.append(RefundRecord(
        amount=amount,
        reason=reason,
        reason_type=reason_type,
        actor_id=actor_id,
        created_at=now,
    ))
    invoice.status = derive_status(invoice)
    check_invariants(invoice)
    repository.save_invoice(invoice)

    log_event(
        "INVOICE_REFUND",
        user_id=actor_id,
        entity="invoice",
        entity_id=invoice.id,
        metadata={
            "amount": amount,
            "reason": reason,
            "reason_type": reason_type.value,
            "refunded_total": invoice.refunded_amount,
            "status": invoice.status.value,
        },
    )
    logger.info("Invoice %s refunded %s (%s)", invoice.id, amount, invoice.status.value)
    return invoice


# ---------- adjust ----------

def adjust(invoice_id: int, patch: dict, actor_id=None, now=None) -> Invoice:
    """
    Administrative edit. Status changes go through the same transitions as the
    dedicated operations; refund states cannot be set by hand.
    """
    if not isinstance(patch, dict) or not patch:
        raise ValidationError("patch must be a non-empty object")
    unknown = set(patch) - ADJUSTABLE_FIELDS
    if unknown:
        raise ValidationError("Unknown field(s)", fields=sorted(unknown))

    changes = {}
    if "status" in patch:
        changes["status"] = coerce_enum(InvoiceStatus, patch["status"], "status")
    if "payment_method" in patch:
        changes["payment_method"] = coerce_enum(PaymentMethod, patch["payment_method"], "payment method")
    if "discount_percent" in patch or "discount_tier" in patch:
        percent = _resolve_discount(patch.get("discount_percent"), patch.get("discount_tier"))
        pricing.discount(0, percent)
        changes["discount_percent"] = percent
    changes["reason"] = clean_text(patch.get("reason"), "reason")
    if changes.get("status") is InvoiceStatus.CANCELLED and not changes["reason"]:
        raise ValidationError("reason is required to cancel an invoice")

    return _run_locked(invoice_id, _adjust, changes, actor_id, now or utcnow())


@transactional
def _adjust(invoice_id, changes, actor_id, now) -> Invoice:
    invoice = repository.get_invoice(invoice_id, for_update=True)
    before = {
        "status": invoice.status.value,
        "payment_method": invoice.payment_method.value,
        "discount_percent": invoice.discount_percent,
        "total": invoice.total_amount,
    }

    if "discount_percent" in changes:
        _apply_discount(invoice, changes["discount_percent"])

    if "payment_method" in changes:
        if invoice.status is InvoiceStatus.CANCELLED:
            raise InvalidStateTransition("Cancelled invoices cannot be changed", invoice_id=invoice.id)
        invoice.payment_method = changes["payment_method"]

    target = changes.get("status")
    if target is not None and target is not invoice.status:
        if target is InvoiceStatus.PAID:
            _apply_paid(invoice, None, actor_id, now)
        elif target is InvoiceStatus.CANCELLED:
            _apply_cancel(invoice, changes["reason"], actor_id, now)
        else:
            raise InvalidStateTransition(
                f"Cannot move invoice from {invoice.status.value} to {target.value}",
                invoice_id=invoice.id,
            )

    check_invariants(invoice)
    repository.save_invoice(invoice)
    log_event(
        "INVOICE_ADJUST",
        user_id=actor_id,
        entity="invoice",
        entity_id=invoice.id,
        metadata={
            "before": before,
            "after": {
                "status": invoice.status.value,
                "payment_method": invoice.payment_method.value,
                "discount_percent": invoice.discount_percent,
                "total": invoice.total_amount,
            },
            "reason": changes.get("reason"),
        },
    )
    return invoice


# ---------- queries ----------

def get_invoice(invoice_id: int) -> Invoice:
    return repository.get_invoice(invoice_id)


def _search_query(status=None, code=None, customer=None, date_from=None, date_to=None):
    q = (
        Invoice.query
        .join(Reservation, Invoice.reservation_id == Reservation.id)
        .join(Customer, Reservation.customer_id == Customer.id)
    )
    if status:
        q = q.filter(Invoice.status == coerce_enum(InvoiceStatus, status, "status"))
    if code:
        code = code.strip().upper()
        invoice_id = parse_invoice_code(code)
        if invoice_id is not None:
            q = q.filter(Invoice.id == invoice_id)
        else:
            q = q.filter(or_(Invoice.code.ilike(f"%{code}%"), Reservation.code.ilike(f"%{code}%")))
    if customer:
        like = f"%{customer.strip()}%"
        q = q.filter(or_(Customer.full_name.ilike(like), Customer.phone_number.ilike(like)))
    if date_from is not None:
        q = q.filter(Invoice.created_at >= date_from)
    if date_to is not None:
        q = q.filter(Invoice.created_at < date_to)
    return q


def search_invoices(status=None, code=None, customer=None, date_from=None, date_to=None, limit: int = 200) -> List[Invoice]:
    q = _search_query(status, code, customer, date_from, date_to)
    return q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit).all()


def invoice_summary(date_from=None, date_to=None, customer=None) -> dict:
    """Totals per bucket; refunded money is counted from the refund ledger."""
    invoices: Iterable[Invoice] = _search_query(customer=customer, date_from=date_from, date_to=date_to).all()
    summary = {
        "count": 0,
        "total_paid": 0,
        "total_unpaid": 0,
        "total_cancelled": 0,
        "total_refunded": 0,
        "net_revenue": 0,
    }
    for inv in invoices:
        summary["count"] += 1
        if inv.status is InvoiceStatus.UNPAID:
            summary["total_unpaid"] += inv.total_amount
        elif inv.status is InvoiceStatus.CANCELLED:
            summary["total_cancelled"] += inv.total_amount
        else:
            summary["total_paid"] += inv.total_amount
            summary["total_refunded"] += inv.refunded_amount
    summary["net_revenue"] = summary["total_paid"] - summary["total_refunded"]
    return summary
