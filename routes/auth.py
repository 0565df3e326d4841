from flask import Blueprint, request, jsonify, current_app, g

from models.user import User
from security.csrf import issue_csrf_token, clear_csrf_token
from security.password import verify_password
from security.session import create_session, revoke_session, revoke_all_sessions
from utils.audit import log_event
from utils.auth_context import current_customer, login_required

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first()
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        log_event("LOGIN_FAIL", user_id=user.id if user else None, metadata={"email": email}, commit=True)
        return jsonify(error="Invalid credentials"), 401

    # Rotate: revoke any existing sessions for this user
    revoked_count = revoke_all_sessions(user.id)

    raw_token = create_session(user.id)
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "courtdesk_session")
    max_age = current_app.config.get("SESSION_LIFETIME_SECONDS", 28800)

    resp = jsonify(message="Login OK")
    resp.set_cookie(
        cookie_name,
        raw_token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=max_age,
        path="/",
    )
    resp = issue_csrf_token(resp)

    log_event("LOGIN_SUCCESS", user_id=user.id, metadata={"revoked_sessions": revoked_count}, commit=True)
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    customer = current_customer()
    return jsonify(
        id=g.user.id,
        email=g.user.email,
        full_name=g.user.full_name,
        roles=sorted(g.user.role_names),
        branch_id=g.auth.branch_id,
        customer_id=customer.id if customer else None,
    ), 200


@auth_bp.post("/logout")
@login_required
def logout():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "courtdesk_session")
    raw_token = request.cookies.get(cookie_name)

    revoke_session(raw_token)
    log_event("LOGOUT", user_id=g.user.id, commit=True)

    resp = jsonify(message="Logged out")
    resp.delete_cookie(cookie_name, path="/")
    resp = clear_csrf_token(resp)
    return resp, 200
