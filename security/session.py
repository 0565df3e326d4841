import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from flask import request, current_app

from models import db
from models.session import Session
from models.user import User
from security.rbac import Principal

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    session: Session
    user: User
    principal: Principal

    @property
    def branch_id(self) -> Optional[int]:
        return self.user.branch_id


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _cookie_name() -> str:
    return current_app.config.get("AUTH_COOKIE_NAME", "courtdesk_session")


def create_session(user_id: int) -> str:
    """
    Creates a server-side session and returns the RAW token (to set as cookie).
    Only the hash is stored in DB.
    """
    raw_token = secrets.token_urlsafe(32)
    now = datetime.utcnow()
    row = Session(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        created_at=now,
        last_seen_at=now,
        expires_at=now + timedelta(seconds=current_app.config.get("SESSION_LIFETIME_SECONDS", 28800)),
        ip=request.headers.get("X-Forwarded-For", request.remote_addr),
    )
    db.session.add(row)
    db.session.commit()
    return raw_token


def _end_reason(sess: Session, now: datetime) -> Optional[str]:
    if sess.expires_at <= now:
        return "expired"
    idle_seconds = current_app.config.get("IDLE_TIMEOUT_SECONDS", 1200)
    last_seen = sess.last_seen_at or sess.created_at
    if last_seen + timedelta(seconds=idle_seconds) <= now:
        return "idle"
    return None


def resolve_request_session(now: Optional[datetime] = None) -> Optional[AuthContext]:
    """
    Session, account and principal behind the request cookie. Sessions that
    ran out (absolute or idle) or belong to a deactivated account are revoked
    on sight, so the token cannot come back to life.
    """
    raw_token = request.cookies.get(_cookie_name())
    if not raw_token:
        return None

    now = now or datetime.utcnow()
    sess = Session.query.filter_by(token_hash=_hash_token(raw_token), revoked=False).first()
    if not sess:
        return None

    user = db.session.get(User, sess.user_id)
    reason = _end_reason(sess, now)
    if reason is None and (user is None or not user.is_active):
        reason = "inactive_user"
    if reason:
        sess.revoked = True
        db.session.commit()
        logger.info("Session %s for user %s ended (%s)", sess.id, sess.user_id, reason)
        return None

    # skip the write when the session was touched moments ago
    touch_seconds = current_app.config.get("SESSION_TOUCH_SECONDS", 60)
    if sess.last_seen_at is None or sess.last_seen_at + timedelta(seconds=touch_seconds) <= now:
        sess.last_seen_at = now
        db.session.commit()

    return AuthContext(session=sess, user=user, principal=Principal.from_user(user))


def revoke_session(raw_token: str) -> bool:
    if not raw_token:
        return False
    sess = Session.query.filter_by(token_hash=_hash_token(raw_token)).first()
    if not sess:
        return False
    sess.revoked = True
    db.session.commit()
    return True


def revoke_all_sessions(user_id: int) -> int:
    sessions = Session.query.filter_by(user_id=user_id, revoked=False).all()
    for s in sessions:
        s.revoked = True
    db.session.commit()
    return len(sessions)
