"""
Shared pytest fixtures for the DAS test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - users: Seeded user directory (autouse)
    - as_user / auth: Identity or bearer headers for a seeded user
    - fixed_suffix: Pins the routed row key suffix
    - routing_payload / routed: 3W1575 routed from je1 to the Equipment Team
"""

import pytest

from das import create_app
from das.middleware.jwt_auth import Identity
from das.models import db as _db
from das.models.auth import User
from das.services.jwt_service import generate_access_token

AMC_SOUTH_VENDOR = "Shrishaila Electricals(India Pvt ltd)"

# user_id -> (role, divisions, circles, vendor)
DIRECTORY = {
    "je1": ("O&M", ["HSR"], ["SOUTH"], None),
    "eq1": ("Equipment", ["HSR"], ["SOUTH"], None),
    "ccr1": ("CCR", [], [], None),
    "amc1": ("AMC", [], ["SOUTH"], AMC_SOUTH_VENDOR),
    "rtu1": ("RTU/Communication", ["HSR"], ["SOUTH"], None),
    "admin1": ("Admin", [], [], None),
}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Directory & identity fixtures ────────────────────────────────────────


@pytest.fixture(autouse=True)
def users(session):
    """Seed one approved user per team."""
    created = {}
    for user_id, (role, divisions, circles, vendor) in DIRECTORY.items():
        user = User(
            user_id=user_id,
            full_name=user_id.upper(),
            role=role,
            divisions=divisions,
            circles=circles,
            vendor=vendor,
        )
        _db.session.add(user)
        created[user_id] = user
    _db.session.commit()
    return created


@pytest.fixture()
def as_user():
    """``as_user("eq1")`` -> Identity for calling services directly."""
    def _identity(user_id, role=None):
        return Identity(user_id=user_id, role=role or DIRECTORY[user_id][0])
    return _identity


@pytest.fixture()
def auth():
    """``auth("je1")`` -> headers carrying a bearer token for je1."""
    def _headers(user_id, role=None):
        token = generate_access_token(user_id, role or DIRECTORY[user_id][0])
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture()
def fixed_suffix(monkeypatch):
    """Pin routed row key suffixes; yields the list consumed in order.

    Once the list runs out the last value repeats.
    """
    suffixes = ["abc123"]

    def _next():
        return suffixes.pop(0) if len(suffixes) > 1 else suffixes[0]

    monkeypatch.setattr("das.services.action_router._new_fork_suffix", _next)
    return suffixes


# ── Convenience fixtures ─────────────────────────────────────────────────


SITE_ROW = {
    "SITE CODE": "3W1575",
    "CIRCLE": "SOUTH",
    "DIVISION": "HSR",
    "SUB DIVISION": "HSR-1",
    "DEVICE STATUS": "OFFLINE",
    "EQUIPMENT L/R SWITCH STATUS": "LOCAL",
    "NO OF DAYS OFFLINE": 12,
}


def _routing_payload(**overrides):
    payload = {
        "rowData": dict(SITE_ROW),
        "headers": list(SITE_ROW),
        "routing": "Equipment Team",
        "typeOfIssue": "RTU LOCAL",
        "remarks": "switch stuck in local",
        "sourceFileId": "fileX",
        "rowKey": "row7",
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def routing_payload():
    """Submit body for 3W1575 at fileX/row7; keyword overrides replace fields."""
    return _routing_payload


@pytest.fixture()
def routed(client, auth, fixed_suffix):
    """je1 routes 3W1575 (fileX/row7) to the Equipment Team."""
    res = client.post("/api/actions/submit", json=_routing_payload(), headers=auth("je1"))
    assert res.status_code == 201, res.get_json()
    return res.get_json()
