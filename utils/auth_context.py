from functools import wraps
from flask import g, jsonify

from models.customer import Customer
from security.session import resolve_request_session


def load_current_user():
    g.auth = None
    g.user = None
    g.principal = None

    ctx = resolve_request_session()
    if ctx is None:
        return
    g.auth = ctx
    g.user = ctx.user
    g.principal = ctx.principal


def current_customer():
    """Customer record linked to the logged-in account, if any."""
    user = getattr(g, "user", None)
    if user is None:
        return None
    return Customer.query.filter_by(user_id=user.id).first()


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
