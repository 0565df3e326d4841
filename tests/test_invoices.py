import threading

import pytest

from models import db
from models.enums import InvoiceItemKind, InvoiceStatus, ReservationStatus
from services import bookings, conflicts, invoices
from services.errors import BookingError, ConflictError, InvalidStateTransition, NotFound, ValidationError
from tests.helpers import NOW, rng, slot


def _booking(ids, *hours, court="court_a", customer="walk_in"):
    return bookings.create_hold(ids[court], ids[customer], [slot(h) for h in hours], now=NOW)


def _invoice(ids, *hours, **kwargs):
    r = _booking(ids, *hours)
    kwargs.setdefault("now", NOW)
    kwargs.setdefault("actor_id", ids["cashier"])
    return invoices.create(r.id, **kwargs)


def test_create_invoice_prices_court_and_services(ids):
    inv = _invoice(
        ids, 18, 19,
        service_items=[{"service_id": ids["racket"], "quantity": 2}, {"service_id": ids["locker"]}],
        discount_tier="student",
    )

    assert inv.status is InvoiceStatus.UNPAID
    assert inv.code == f"IN-{inv.id}-20300120"
    assert (inv.court_fee, inv.service_fee, inv.subtotal) == (100000, 40000, 140000)
    assert (inv.discount_percent, inv.discount_amount, inv.total_amount) == (10, 14000, 126000)
    assert [i.kind for i in inv.items] == [InvoiceItemKind.COURT, InvoiceItemKind.SERVICE, InvoiceItemKind.SERVICE]
    assert sum(i.amount for i in inv.items) == inv.subtotal
    # invoicing a hold confirms it
    assert inv.reservation.status is ReservationStatus.BOOKED


def test_hourly_service_uses_duration(ids):
    inv = _invoice(ids, 18, service_items=[{
        "service_id": ids["coach"],
        "start_time": "2030-01-20T18:00:00",
        "end_time": "2030-01-20T19:30:00",
    }])
    assert inv.service_fee == 90000
    assert inv.total_amount == 140000


def test_service_from_another_branch_is_rejected(ids):
    r = _booking(ids, 18)
    with pytest.raises(NotFound):
        invoices.create(r.id, service_items=[{"service_id": ids["foreign_service"]}], now=NOW)
    # nothing was written, the hold is untouched
    assert bookings.get_reservation(r.id).status is ReservationStatus.HELD


def test_discount_out_of_range(ids):
    r = _booking(ids, 18)
    with pytest.raises(ValidationError):
        invoices.create(r.id, discount_percent=150, now=NOW)
    with pytest.raises(ValidationError):
        invoices.create(r.id, discount_percent=10, discount_tier="student", now=NOW)


def test_cannot_invoice_cancelled_booking(ids):
    r = _booking(ids, 18)
    bookings.cancel(r.id, now=NOW)
    with pytest.raises(InvalidStateTransition):
        invoices.create(r.id, now=NOW)


def test_one_live_invoice_per_booking(ids):
    inv = _invoice(ids, 18)
    with pytest.raises(ConflictError):
        invoices.create(inv.reservation_id, now=NOW)


def test_mark_paid_cascades_to_booking(ids):
    inv = _invoice(ids, 18)
    paid = invoices.mark_paid(inv.id, payment_method="cash", now=NOW, actor_id=ids["cashier"])

    assert paid.status is InvoiceStatus.PAID
    assert paid.payment_method.value == "cash"
    assert paid.reservation.status is ReservationStatus.PAID

    with pytest.raises(InvalidStateTransition):
        invoices.mark_paid(inv.id, now=NOW)


def test_settle_now(ids):
    inv = _invoice(ids, 18, settle_now=True, payment_method="card")
    assert inv.status is InvoiceStatus.PAID
    assert inv.paid_at == NOW
    assert inv.reservation.status is ReservationStatus.PAID


def test_cancel_invoice_cancels_booking(ids):
    inv = _invoice(ids, 18)
    with pytest.raises(ValidationError):
        invoices.cancel(inv.id, "  ", now=NOW)

    cancelled = invoices.cancel(inv.id, "customer no-show", now=NOW, actor_id=ids["cashier"])

    assert cancelled.status is InvoiceStatus.CANCELLED
    assert cancelled.cancel_reason == "customer no-show"
    assert cancelled.reservation.status is ReservationStatus.CANCELLED
    assert not conflicts.has_conflict(ids["court_a"], *rng(18))


def test_paid_invoice_cannot_be_cancelled(ids):
    inv = _invoice(ids, 18, settle_now=True)
    with pytest.raises(InvalidStateTransition):
        invoices.cancel(inv.id, "too late", now=NOW)


def test_booking_with_unpaid_invoice_is_cancelled_through_invoice(ids):
    inv = _invoice(ids, 18)
    cancelled = invoices.cancel(inv.id, "no show", now=NOW)

    assert cancelled.status is InvoiceStatus.CANCELLED
    assert cancelled.reservation.status is ReservationStatus.CANCELLED


def test_cancelling_booking_cancels_its_unpaid_invoice(ids):
    inv = _invoice(ids, 18)
    assert inv.reservation.status is ReservationStatus.BOOKED

    r = bookings.cancel(inv.reservation_id, reason="changed plans", actor_id=ids["cashier"], now=NOW)

    db.session.expire_all()
    inv = invoices.get_invoice(inv.id)
    assert r.status is ReservationStatus.CANCELLED
    assert inv.status is InvoiceStatus.CANCELLED
    assert inv.cancel_reason == "changed plans"
    assert inv.cancelled_by == ids["cashier"]
    assert not conflicts.has_conflict(ids["court_a"], *rng(18))


def test_cancelling_paid_booking_leaves_invoice_for_refunds(ids):
    inv = _invoice(ids, 18, settle_now=True)
    bookings.cancel(inv.reservation_id, now=NOW)

    db.session.expire_all()
    assert invoices.get_invoice(inv.id).status is InvoiceStatus.PAID
    assert invoices.refund(inv.id, 50000, None, reason_type="customer_cancelled", now=NOW).status is InvoiceStatus.REFUNDED


def test_booking_with_invoice_cannot_be_edited(ids):
    inv = _invoice(ids, 18)
    with pytest.raises(InvalidStateTransition):
        bookings.edit(inv.reservation_id, slots=[slot(20)], now=NOW)


def test_refund_scenario(ids):
    inv = _invoice(ids, 18, 19, 20, 21, settle_now=True)
    assert inv.total_amount == 200000

    with pytest.raises(ValidationError) as exc:
        invoices.refund(inv.id, 250000, "court flooded", reason_type="court_unavailable", now=NOW)
    assert exc.value.message == "Refund exceeds remaining balance"

    refunded = invoices.refund(inv.id, 200000, "court flooded", reason_type="court_unavailable", now=NOW)
    assert refunded.status is InvoiceStatus.REFUNDED
    assert refunded.refunded_amount == 200000

    with pytest.raises(InvalidStateTransition):
        invoices.refund(inv.id, 1, "again", now=NOW)


def test_partial_refunds_accumulate(ids):
    inv = _invoice(ids, 18, 19, 20, 21, settle_now=True)

    inv = invoices.refund(inv.id, 50000, None, reason_type="maintenance", now=NOW)
    assert inv.status is InvoiceStatus.PARTIALLY_REFUNDED
    assert inv.refundable_amount == 150000
    assert inv.refunds[0].reason == "maintenance"

    with pytest.raises(ValidationError):
        invoices.refund(inv.id, 150001, "too much", now=NOW)

    inv = invoices.refund(inv.id, 150000, "rest", now=NOW)
    assert inv.status is InvoiceStatus.REFUNDED
    assert sum(r.amount for r in inv.refunds) == inv.total_amount


def test_refund_rules(ids):
    unpaid = _invoice(ids, 18)
    with pytest.raises(InvalidStateTransition):
        invoices.refund(unpaid.id, 1000, "nope", now=NOW)

    paid = _invoice(ids, 20, settle_now=True)
    with pytest.raises(ValidationError):
        invoices.refund(paid.id, 1000, "", reason_type="other", now=NOW)
    with pytest.raises(ValidationError):
        invoices.refund(paid.id, 0, "zero", now=NOW)
    with pytest.raises(ValidationError):
        invoices.refund(paid.id, 1000, "why", reason_type="bored", now=NOW)


def test_adjust_discount_while_unpaid(ids):
    inv = _invoice(ids, 18, 19)
    adjusted = invoices.adjust(inv.id, {"discount_tier": "platinum", "reason": "member"}, now=NOW)

    assert adjusted.discount_percent == 20
    assert adjusted.discount_amount == 20000
    assert adjusted.total_amount == 80000


def test_adjust_routes_status_through_transitions(ids):
    inv = _invoice(ids, 18)

    paid = invoices.adjust(inv.id, {"status": "PAID", "payment_method": "bank_transfer"}, now=NOW)
    assert paid.status is InvoiceStatus.PAID
    assert paid.reservation.status is ReservationStatus.PAID

    with pytest.raises(InvalidStateTransition):
        invoices.adjust(inv.id, {"discount_percent": 5}, now=NOW)
    with pytest.raises(InvalidStateTransition):
        invoices.adjust(inv.id, {"status": "REFUNDED"}, now=NOW)
    with pytest.raises(InvalidStateTransition):
        invoices.adjust(inv.id, {"status": "UNPAID"}, now=NOW)


def test_adjust_validates_patch(ids):
    inv = _invoice(ids, 18)
    with pytest.raises(ValidationError):
        invoices.adjust(inv.id, {"total_amount": 1}, now=NOW)
    with pytest.raises(ValidationError):
        invoices.adjust(inv.id, {}, now=NOW)
    with pytest.raises(ValidationError):
        invoices.adjust(inv.id, {"status": "CANCELLED"}, now=NOW)

    cancelled = invoices.adjust(inv.id, {"status": "CANCELLED", "reason": "duplicate"}, now=NOW)
    assert cancelled.reservation.status is ReservationStatus.CANCELLED


def test_unknown_invoice(ids):
    with pytest.raises(NotFound):
        invoices.mark_paid(9999, now=NOW)
    with pytest.raises(NotFound):
        invoices.refund(9999, 100, "x", now=NOW)


def test_search_and_summary(ids):
    unpaid = _invoice(ids, 18)
    paid = bookings.create_hold(ids["court_b"], ids["member"], [slot(18)], now=NOW)
    paid = invoices.create(paid.id, settle_now=True, now=NOW)
    invoices.refund(paid.id, 10000, "late start", now=NOW)
    db.session.expire_all()

    assert [i.id for i in invoices.search_invoices(status="unpaid")] == [unpaid.id]
    assert [i.id for i in invoices.search_invoices(customer="Linh")] == [paid.id]
    assert [i.id for i in invoices.search_invoices(code=f"IN-{paid.id}-20300120")] == [paid.id]
    assert {i.id for i in invoices.search_invoices(code=unpaid.reservation.code)} == {unpaid.id}

    summary = invoices.invoice_summary()
    assert summary["count"] == 2
    assert summary["total_unpaid"] == 50000
    assert summary["total_paid"] == 60000
    assert summary["total_refunded"] == 10000
    assert summary["net_revenue"] == 50000


def test_concurrent_refunds_never_exceed_total(app, ids):
    inv = _invoice(ids, 18, 19, 20, 21, settle_now=True)
    assert inv.total_amount == 200000
    results = []
    barrier = threading.Barrier(4)

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                invoices.refund(inv.id, 120000, "court flooded", reason_type="court_unavailable", now=NOW)
                results.append("ok")
            except BookingError as e:
                results.append(type(e).__name__)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 1
    db.session.expire_all()
    settled = invoices.get_invoice(inv.id)
    assert settled.refunded_amount == 120000
    assert settled.refunded_amount <= settled.total_amount
    assert settled.status is InvoiceStatus.PARTIALLY_REFUNDED
    assert len(settled.refunds) == 1
