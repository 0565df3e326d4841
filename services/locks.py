import threading
from contextlib import contextmanager, ExitStack


class LockRegistry:
    """
    Process-wide mutexes keyed by name, e.g. ("court", 3) or ("invoice", 12).

    This covers writers inside one process; the schedule/invoice version
    columns cover writers in other processes sharing the database.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def _lock_for(self, key):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys):
        # sorted acquisition order so two multi-key holders cannot deadlock
        ordered = sorted(set(keys), key=lambda k: (str(k[0]), k[1]))
        with ExitStack() as stack:
            for key in ordered:
                lock = self._lock_for(key)
                lock.acquire()
                stack.callback(lock.release)
            yield

    def courts(self, *court_ids):
        return self.hold(*[("court", cid) for cid in court_ids])

    def invoice(self, invoice_id):
        return self.hold(("invoice", invoice_id))


locks = LockRegistry()
