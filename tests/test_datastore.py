"""
DataStore lifecycle tests.

Tests cover:
  - RetryPolicy limits
  - wait_until_ready reconnect loop (no real sleeping)
  - read retried once, write never retried
  - 503 mapping for an unavailable datastore
"""
import pytest
from sqlalchemy.exc import OperationalError

from das.core.exceptions import StoreUnavailableError
from das.datastore import DataStore, RetryPolicy, get_datastore
from das.models import db


def _dropped():
    return OperationalError("SELECT 1", {}, Exception("server closed the connection"))


class TestRetryPolicy:
    def test_unbounded(self):
        assert RetryPolicy(max_attempts=0).allows(10_000)

    def test_bounded(self):
        policy = RetryPolicy(max_attempts=3)
        assert policy.allows(3)
        assert not policy.allows(4)

    def test_from_config(self):
        policy = RetryPolicy.from_config({"DATASTORE_RETRY_SECONDS": "2", "DATASTORE_MAX_ATTEMPTS": "4"})
        assert policy.interval_seconds == 2.0
        assert policy.max_attempts == 4


class TestWaitUntilReady:
    def test_retries_until_ping_succeeds(self, monkeypatch):
        sleeps = []
        store = DataStore(db, RetryPolicy(interval_seconds=5, max_attempts=0), sleep=sleeps.append)
        answers = iter([False, False, True])
        monkeypatch.setattr(store, "ping", lambda: next(answers))
        assert store.wait_until_ready() is True
        assert sleeps == [5, 5]

    def test_gives_up_after_max_attempts(self, monkeypatch):
        sleeps = []
        store = DataStore(db, RetryPolicy(interval_seconds=1, max_attempts=2), sleep=sleeps.append)
        monkeypatch.setattr(store, "ping", lambda: False)
        assert store.wait_until_ready() is False
        assert sleeps == [1]

    def test_real_ping(self):
        store = get_datastore()
        assert store.ping() is True
        assert store.ready is True


class TestUnitOfWork:
    def test_read_retried_once(self):
        calls = []

        def _flaky():
            calls.append(1)
            if len(calls) == 1:
                raise _dropped()
            return 42

        assert get_datastore().read(_flaky) == 42
        assert len(calls) == 2

    def test_read_gives_up(self):
        def _down():
            raise _dropped()

        with pytest.raises(StoreUnavailableError):
            get_datastore().read(_down)

    def test_write_not_retried(self):
        calls = []

        def _write():
            calls.append(1)
            raise _dropped()

        with pytest.raises(StoreUnavailableError):
            get_datastore().write(_write)
        assert len(calls) == 1


class TestUnavailableResponses:
    def test_store_unavailable_is_503(self, client, auth, monkeypatch):
        def _down(*args, **kwargs):
            raise StoreUnavailableError()

        monkeypatch.setattr("das.services.action_router.list_my_actions", _down)
        res = client.get("/api/actions/my-actions", headers=auth("eq1"))
        assert res.status_code == 503
        assert res.get_json()["code"] == "ERR_STORE_UNAVAILABLE"

    def test_raw_operational_error_is_503(self, client, auth, monkeypatch):
        def _down(*args, **kwargs):
            raise _dropped()

        monkeypatch.setattr("das.services.approval_engine.approval_stats", _down)
        res = client.get("/api/approvals/stats", headers=auth("ccr1"))
        assert res.status_code == 503

    def test_health_degraded(self, client, app, monkeypatch):
        monkeypatch.setattr(app.extensions["datastore"], "ping", lambda: False)
        res = client.get("/api/health")
        assert res.status_code == 503
        assert res.get_json()["status"] == "degraded"
