"""
DataStore handle — explicit lifecycle around the SQLAlchemy engine.

Constructed once in ``create_app`` and registered as
``app.extensions["datastore"]``; services reach it through
``get_datastore()`` instead of a module-level connection singleton.

    store = DataStore(db, RetryPolicy(interval_seconds=5))
    store.init_app(app)
    store.wait_until_ready()     # reconnect loop on startup
    rows = store.read(lambda: Model.query.all())
    store.write(do_unit_of_work) # commit inside, no retry
    store.close()                # engine dispose

Policy:
    read   retried once on OperationalError (connection dropped mid-request)
    write  never retried, so a lost connection cannot double-submit; surfaces
           StoreUnavailableError (503)
"""

import logging
import time
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import OperationalError

from das.core.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

EXTENSION_KEY = "datastore"


@dataclass
class RetryPolicy:
    """Reconnect/backoff settings."""
    interval_seconds: float = 5.0
    max_attempts: int = 0          # 0 = keep trying
    read_retries: int = 1

    @classmethod
    def from_config(cls, cfg) -> "RetryPolicy":
        return cls(
            interval_seconds=float(cfg.get("DATASTORE_RETRY_SECONDS", 5)),
            max_attempts=int(cfg.get("DATASTORE_MAX_ATTEMPTS", 0)),
        )

    def allows(self, attempt: int) -> bool:
        return self.max_attempts <= 0 or attempt <= self.max_attempts


class DataStore:
    def __init__(self, db, policy: RetryPolicy | None = None, sleep=time.sleep):
        self.db = db
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self.app = None
        self.ready = False

    def init_app(self, app):
        self.app = app
        app.extensions[EXTENSION_KEY] = self

    # ── Connectivity ─────────────────────────────────────────────────────

    def ping(self) -> bool:
        """True when a trivial round-trip to the database succeeds."""
        try:
            with self.db.engine.connect() as conn:
                conn.execute(self.db.text("SELECT 1"))
        except OperationalError as exc:
            logger.warning("Datastore ping failed: %s", exc)
            self.ready = False
            return False
        self.ready = True
        return True

    def wait_until_ready(self) -> bool:
        """Retry ``ping`` every ``interval_seconds`` until it succeeds.

        Returns False once ``max_attempts`` is exhausted.
        """
        attempt = 1
        while True:
            if self.ping():
                if attempt > 1:
                    logger.info("Datastore reachable after %d attempts", attempt)
                return True
            if not self.policy.allows(attempt + 1):
                logger.error("Datastore still unreachable after %d attempts", attempt)
                return False
            logger.info("Datastore unreachable, retrying in %.0fs", self.policy.interval_seconds)
            self._sleep(self.policy.interval_seconds)
            attempt += 1

    # ── Unit-of-work wrappers ────────────────────────────────────────────

    def read(self, fn, *args, **kwargs):
        retries = self.policy.read_retries
        while True:
            try:
                return fn(*args, **kwargs)
            except OperationalError as exc:
                self.db.session.rollback()
                if retries <= 0:
                    raise StoreUnavailableError() from exc
                retries -= 1
                logger.warning("Read failed on datastore error, retrying once: %s", exc)

    def write(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except OperationalError as exc:
            self.db.session.rollback()
            logger.error("Write failed on datastore error: %s", exc)
            raise StoreUnavailableError() from exc

    def close(self):
        self.db.session.remove()
        self.db.engine.dispose()
        self.ready = False


def get_datastore() -> DataStore:
    return current_app.extensions[EXTENSION_KEY]
