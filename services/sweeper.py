import logging
import threading

from models import db
from services.bookings import expire_stale_holds

logger = logging.getLogger(__name__)


class HoldSweeper(threading.Thread):
    """Daemon thread releasing lapsed holds every ``interval`` seconds."""

    def __init__(self, app, interval: int):
        super().__init__(name="hold-sweeper", daemon=True)
        self.app = app
        self.interval = interval
        self._stop_event = threading.Event()

    def run(self):
        while not self._stop_event.wait(self.interval):
            with self.app.app_context():
                try:
                    expire_stale_holds()
                except Exception:
                    # keep sweeping; the next pass retries whatever failed
                    logger.exception("Hold sweep failed")
                    db.session.rollback()
                finally:
                    db.session.remove()

    def stop(self):
        self._stop_event.set()


def start_sweeper(app):
    interval = int(app.config.get("HOLD_SWEEP_SECONDS", 0) or 0)
    if interval <= 0:
        return None
    sweeper = HoldSweeper(app, interval)
    sweeper.start()
    logger.info("Hold sweeper running every %ss", interval)
    return sweeper
