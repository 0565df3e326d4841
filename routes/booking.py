from flask import Blueprint, request, jsonify, g

from security.rbac import can_perform, require_permission
from services import availability, bookings, invoices
from services.errors import PermissionDenied, ValidationError
from services.timeutil import parse_datetime
from utils.auth_context import current_customer, login_required
from routes.serializers import reservation_json

booking_bp = Blueprint("booking", __name__)


def _owns(reservation) -> bool:
    customer = reservation.customer
    return customer is not None and customer.user_id == g.user.id


def _authorize(action: str, reservation):
    """Staff pass on role; customers only on their own bookings."""
    if g.principal.is_staff and can_perform(action, g.principal):
        return
    if "CUSTOMER" in g.principal.roles and _owns(reservation):
        if action == "booking.cancel" and reservation.status not in bookings.EDITABLE:
            raise PermissionDenied("Only held or booked reservations can be cancelled by the customer")
        return
    raise PermissionDenied("Forbidden")


def _optional_datetime(name):
    raw = request.args.get(name)
    return parse_datetime(raw, name) if raw else None


# ---------- availability / pricing ----------

@booking_bp.get("/courts/<int:court_id>/availability")
@login_required
def court_availability(court_id):
    day = request.args.get("date")
    if not day:
        raise ValidationError("date is required (YYYY-MM-DD)")
    slots = availability.court_availability(court_id, day)
    return jsonify(court_id=court_id, date=day, slots=[s.to_dict() for s in slots]), 200


@booking_bp.post("/quote")
@login_required
def quote():
    data = request.get_json(silent=True) or {}
    body = invoices.quote_booking(
        data.get("court_id"),
        data.get("slots"),
        service_items=data.get("service_items"),
        discount_percent=data.get("discount_percent"),
        discount_tier=data.get("discount_tier"),
        payment_method=data.get("payment_method") or "counter",
    )
    return jsonify(body), 200


# ---------- bookings ----------

@booking_bp.post("/bookings")
@require_permission("booking.hold")
def create_booking():
    data = request.get_json(silent=True) or {}
    court_id = data.get("court_id")
    if not court_id:
        raise ValidationError("court_id is required")

    if g.principal.is_staff:
        customer_id = data.get("customer_id")
        if not customer_id:
            raise ValidationError("customer_id is required")
    else:
        customer = current_customer()
        if customer is None:
            raise PermissionDenied("No customer profile linked to this account")
        customer_id = customer.id

    reservation = bookings.create_hold(
        court_id,
        customer_id,
        data.get("slots"),
        payment_method=data.get("payment_method") or "counter",
        actor_id=g.user.id,
    )
    return jsonify(reservation_json(reservation)), 201


@booking_bp.get("/bookings")
@login_required
def list_bookings():
    filters = dict(
        court_id=request.args.get("court_id", type=int),
        status=request.args.get("status"),
        start=_optional_datetime("start"),
        end=_optional_datetime("end"),
        limit=max(1, min(request.args.get("limit", type=int) or 200, 500)),
    )
    if can_perform("booking.view_all", g.principal):
        filters["customer_id"] = request.args.get("customer_id", type=int)
    else:
        customer = current_customer()
        if customer is None:
            return jsonify([]), 200
        filters["customer_id"] = customer.id

    rows = bookings.list_reservations(**filters)
    return jsonify([reservation_json(r) for r in rows]), 200


@booking_bp.get("/bookings/unpaid")
@require_permission("booking.view_all")
def list_unpaid():
    limit = max(1, min(request.args.get("limit", type=int) or 200, 500))
    rows = bookings.list_unpaid_reservations(limit=limit)
    return jsonify([reservation_json(r) for r in rows]), 200


@booking_bp.get("/bookings/<int:booking_id>")
@login_required
def get_booking(booking_id):
    reservation = bookings.get_reservation(booking_id)
    _authorize("booking.view_all", reservation)
    return jsonify(reservation_json(reservation)), 200


@booking_bp.post("/bookings/<int:booking_id>/confirm")
@require_permission("booking.confirm")
def confirm_booking(booking_id):
    _authorize("booking.confirm", bookings.get_reservation(booking_id))
    reservation = bookings.confirm(booking_id, actor_id=g.user.id)
    return jsonify(reservation_json(reservation)), 200


@booking_bp.post("/bookings/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id):
    _authorize("booking.cancel", bookings.get_reservation(booking_id))
    data = request.get_json(silent=True) or {}
    reservation = bookings.cancel(booking_id, reason=data.get("reason"), actor_id=g.user.id)
    return jsonify(reservation_json(reservation)), 200


@booking_bp.patch("/bookings/<int:booking_id>")
@require_permission("booking.edit")
def edit_booking(booking_id):
    _authorize("booking.edit", bookings.get_reservation(booking_id))
    data = request.get_json(silent=True) or {}
    reservation = bookings.edit(
        booking_id,
        court_id=data.get("court_id"),
        slots=data.get("slots"),
        actor_id=g.user.id,
    )
    return jsonify(reservation_json(reservation)), 200


@booking_bp.post("/holds/expire")
@require_permission("holds.expire")
def expire_holds():
    released = bookings.expire_stale_holds()
    return jsonify(released=released, count=len(released)), 200
