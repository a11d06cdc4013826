"""
Platform tests: bearer auth, health, error bodies, middleware, logging.
"""
import json
import logging

import pytest

from das.middleware.logging_config import JSONFormatter
from das.models.audit import AuditLog, write_audit
from das.services.jwt_service import decode_access_token, generate_access_token


# ═════════════════════════════════════════════════════════════════════════
# AUTH
# ═════════════════════════════════════════════════════════════════════════

class TestBearerAuth:
    def test_missing_token(self, client):
        res = client.get("/api/actions/my-actions")
        assert res.status_code == 401
        body = res.get_json()
        assert body["code"] == "ERR_UNAUTHENTICATED"
        assert "bearer" in body["error"].lower()

    def test_invalid_token(self, client):
        res = client.get("/api/actions/my-actions", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid token"

    def test_expired_token(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "JWT_ACCESS_EXPIRES", -60)
        token = generate_access_token("je1", "O&M")
        res = client.get("/api/actions/my-actions", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Token expired"

    def test_unknown_role_rejected(self, client):
        token = generate_access_token("je1", "Contractor")
        res = client.get("/api/actions/my-actions", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid token"

    def test_claims_round_trip(self):
        payload = decode_access_token(generate_access_token("eq1", "Equipment", name="EQ One", division="HSR"))
        assert payload["sub"] == "eq1"
        assert payload["role"] == "Equipment"
        assert payload["division"] == "HSR"

    def test_role_guard(self, client, auth):
        res = client.get("/api/actions", headers=auth("amc1"))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"


# ═════════════════════════════════════════════════════════════════════════
# HEALTH & ROUTING
# ═════════════════════════════════════════════════════════════════════════

class TestPlatform:
    def test_health_needs_no_token(self, client):
        res = client.get("/api/health")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "ok"
        assert data["checks"]["database"]["status"] == "ok"

    def test_ready(self, client):
        assert client.get("/api/health/ready").status_code == 200

    def test_unknown_route_is_json_404(self, client, auth):
        res = client.get("/api/nothing-here", headers=auth("je1"))
        assert res.status_code == 404
        assert res.get_json()["error"] == "Not found"

    def test_request_id_headers(self, client):
        res = client.get("/api/health/ready", headers={"X-Request-ID": "req-123"})
        assert res.headers["X-Request-ID"] == "req-123"
        assert "X-Request-Duration-Ms" in res.headers

    def test_pagination(self, client, auth, routed, routing_payload, fixed_suffix):
        fixed_suffix[:] = ["def456"]
        client.post("/api/actions/submit", json=routing_payload(), headers=auth("je1"))
        res = client.get("/api/actions/my-routed-actions?limit=1&offset=1", headers=auth("je1"))
        data = res.get_json()
        assert data["total"] == 2
        assert len(data["items"]) == 1


class TestLogging:
    def test_json_formatter_carries_context(self):
        record = logging.LogRecord("das.test", logging.INFO, __file__, 1, "routed %s", ("3W1575",), None)
        record.request_id = "req-1"
        record.site_code = "3W1575"
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "routed 3W1575"
        assert entry["request_id"] == "req-1"
        assert entry["site_code"] == "3W1575"
        assert "user_id" not in entry


class TestAudit:
    def test_known_action_is_flushed(self):
        entry = write_audit(entity_type="site", entity_id=7, action="site.delete", actor="je1")
        assert entry.id is not None
        assert AuditLog.query.count() == 1

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError):
            write_audit(entity_type="site", entity_id=7, action="site.rename")
        with pytest.raises(ValueError):
            write_audit(entity_type="user", entity_id=7, action="site.delete")
