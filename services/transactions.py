import logging
from functools import wraps

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from models import db
from services.errors import ConflictError

logger = logging.getLogger(__name__)


class WriteConflict(ConflictError):
    """Optimistic-concurrency collision that survived every retry."""


def _is_transient(exc) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    # two writers creating the same court schedule row at once
    if isinstance(exc, IntegrityError) and "court_schedules" in str(exc.statement or ""):
        return True
    return False


def transactional(fn):
    """
    Runs ``fn`` as one unit of work and commits it.

    Any exception rolls back everything ``fn`` staged. Lost compare-and-set
    writes are retried from the top (``fn`` re-reads current state); business
    errors propagate immediately.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        attempts = max(1, int(current_app.config.get("TXN_RETRY_ATTEMPTS", 3)))
        for attempt in range(1, attempts + 1):
            try:
                db.session.expire_all()
                result = fn(*args, **kwargs)
                db.session.commit()
                return result
            except (StaleDataError, IntegrityError) as exc:
                db.session.rollback()
                if not _is_transient(exc):
                    raise
                logger.info("Write conflict in %s (attempt %d/%d)", fn.__name__, attempt, attempts)
                if attempt == attempts:
                    raise WriteConflict(f"{fn.__name__} lost a concurrent write {attempts} times") from exc
            except Exception:
                db.session.rollback()
                raise
    return wrapper
