from flask import Blueprint, request, jsonify, g

from security.rbac import require_permission
from services import invoices
from services.errors import ValidationError
from services.timeutil import parse_datetime
from routes.serializers import invoice_json

invoices_bp = Blueprint("invoices", __name__, url_prefix="/invoices")


def _date_args():
    out = {}
    for name in ("date_from", "date_to"):
        raw = request.args.get(name)
        out[name] = parse_datetime(raw, name) if raw else None
    return out


@invoices_bp.post("")
@require_permission("invoice.create")
def create_invoice():
    data = request.get_json(silent=True) or {}
    booking_id = data.get("booking_id")
    if not booking_id:
        raise ValidationError("booking_id is required")

    invoice = invoices.create(
        booking_id,
        service_items=data.get("service_items"),
        discount_percent=data.get("discount_percent"),
        discount_tier=data.get("discount_tier"),
        payment_method=data.get("payment_method") or "counter",
        settle_now=bool(data.get("settle_now")),
        actor_id=g.user.id,
    )
    return jsonify(invoice_json(invoice)), 201


@invoices_bp.get("")
@require_permission("invoice.view")
def search():
    rows = invoices.search_invoices(
        status=request.args.get("status"),
        code=request.args.get("code"),
        customer=request.args.get("customer"),
        limit=max(1, min(request.args.get("limit", type=int) or 200, 500)),
        **_date_args(),
    )
    return jsonify([invoice_json(inv) for inv in rows]), 200


@invoices_bp.get("/summary")
@require_permission("invoice.view")
def summary():
    body = invoices.invoice_summary(customer=request.args.get("customer"), **_date_args())
    return jsonify(body), 200


@invoices_bp.get("/<int:invoice_id>")
@require_permission("invoice.view")
def get_invoice(invoice_id):
    return jsonify(invoice_json(invoices.get_invoice(invoice_id))), 200


@invoices_bp.post("/<int:invoice_id>/pay")
@require_permission("invoice.pay")
def pay(invoice_id):
    data = request.get_json(silent=True) or {}
    invoice = invoices.mark_paid(invoice_id, payment_method=data.get("payment_method"), actor_id=g.user.id)
    return jsonify(invoice_json(invoice)), 200


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_permission("invoice.cancel")
def cancel(invoice_id):
    data = request.get_json(silent=True) or {}
    invoice = invoices.cancel(invoice_id, data.get("reason"), actor_id=g.user.id)
    return jsonify(invoice_json(invoice)), 200


@invoices_bp.post("/<int:invoice_id>/refunds")
@require_permission("invoice.refund")
def refund(invoice_id):
    data = request.get_json(silent=True) or {}
    invoice = invoices.refund(
        invoice_id,
        data.get("amount"),
        data.get("reason"),
        reason_type=data.get("reason_type") or "other",
        actor_id=g.user.id,
    )
    return jsonify(invoice_json(invoice)), 201


@invoices_bp.patch("/<int:invoice_id>")
@require_permission("invoice.adjust")
def adjust(invoice_id):
    data = request.get_json(silent=True)
    invoice = invoices.adjust(invoice_id, data, actor_id=g.user.id)
    return jsonify(invoice_json(invoice)), 200
