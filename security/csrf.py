import secrets
from flask import request, jsonify, current_app, g

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

UNSAFE_METHODS = ("POST", "PUT", "PATCH", "DELETE")

# login issues the token, so it cannot require one
CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/health",
}


def issue_csrf_token(resp):
    token = secrets.token_urlsafe(32)
    resp.set_cookie(
        CSRF_COOKIE,
        token,
        httponly=False,  # read by the client and echoed in X-CSRF-Token
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=current_app.config.get("SESSION_LIFETIME_SECONDS", 28800),
        path="/",
    )
    return resp


def clear_csrf_token(resp):
    resp.delete_cookie(CSRF_COOKIE, path="/")
    return resp


def require_csrf():
    cookie_token = request.cookies.get(CSRF_COOKIE)
    header_token = request.headers.get(CSRF_HEADER)
    if not cookie_token or not header_token or not secrets.compare_digest(cookie_token, header_token):
        return jsonify(error="CSRF validation failed"), 403
    return None


def csrf_protect():
    """before_request hook: state-changing calls from a cookie session must echo the token."""
    if request.method not in UNSAFE_METHODS or request.path in CSRF_EXEMPT_PATHS:
        return None
    if getattr(g, "user", None) is None:
        return None
    return require_csrf()
