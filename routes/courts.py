from flask import Blueprint, request, jsonify

from models.branch import Branch
from models.court import Court
from models.service import Service
from utils.auth_context import login_required

court_bp = Blueprint("court", __name__, url_prefix="/courts")


@court_bp.get("")
@login_required
def list_courts():
    q = Court.query.filter_by(is_active=True)
    branch_id = request.args.get("branch_id", type=int)
    if branch_id:
        q = q.filter_by(branch_id=branch_id)
    courts = q.order_by(Court.branch_id.asc(), Court.name.asc()).all()
    return jsonify([
        {
            "id": c.id,
            "name": c.name,
            "branch_id": c.branch_id,
            "branch_name": c.branch.name if c.branch else None,
            "court_type": c.court_type.name if c.court_type else None,
            "slot_duration_minutes": c.court_type.slot_duration_minutes if c.court_type else None,
            "base_hourly_price": c.base_hourly_price,
        }
        for c in courts
    ]), 200


@court_bp.get("/branches")
@login_required
def list_branches():
    branches = Branch.query.filter_by(is_active=True).order_by(Branch.name.asc()).all()
    return jsonify([
        {
            "id": b.id,
            "name": b.name,
            "address": b.address,
            "open_time": b.open_time,
            "close_time": b.close_time,
        }
        for b in branches
    ]), 200


@court_bp.get("/services")
@login_required
def list_services():
    q = Service.query.filter_by(is_active=True)
    branch_id = request.args.get("branch_id", type=int)
    if branch_id:
        q = q.filter_by(branch_id=branch_id)
    return jsonify([
        {
            "id": s.id,
            "branch_id": s.branch_id,
            "name": s.name,
            "unit": s.unit.value,
            "unit_price": s.unit_price,
        }
        for s in q.order_by(Service.name.asc()).all()
    ]), 200
