"""
Approval workflow tests.

Tests cover:
  - Create: approver resolution, duplicate Pending guard, site reference checks
  - Decide: state machine, decider permissions, propagation to fork + root
  - AMC two-step workflow (Equipment sign-off spawns the CCR review)
  - Reads: scoped lists, stats, site codes
  - Admin check / reset utilities
"""
from datetime import datetime, timezone

import pytest

from das.models import db
from das.models.action import Action
from das.models.approval import Approval
from das.models.audit import AuditLog
from das.models.site import EquipmentOfflineSite
from das.services import approval_engine, site_store
from das.services.approval_engine import coerce_status


def _site(row_key, file_id="fileX"):
    return EquipmentOfflineSite.query.filter_by(file_id=file_id, row_key=row_key).first()


def _today():
    return datetime.now(timezone.utc).date().isoformat()


# ── Fixtures ────────────────────────────────────────────────────────────

@pytest.fixture()
def ccr_approval(client, auth, routed):
    """eq1 asks CCR to sign off the fork it was routed."""
    res = client.post(
        "/api/approvals",
        json={
            "approvalType": "CCR Resolution Approval",
            "equipmentOfflineSiteId": routed["routedRecord"]["id"],
            "actionId": routed["action"]["id"],
            "submissionRemarks": "switch replaced",
            "photos": ["p1.jpg"],
        },
        headers=auth("eq1"),
    )
    assert res.status_code == 201, res.get_json()
    return res.get_json()


@pytest.fixture()
def amc_routed(client, auth, routing_payload, fixed_suffix):
    res = client.post("/api/actions/submit", json=routing_payload(routing="AMC Team"), headers=auth("je1"))
    assert res.status_code == 201, res.get_json()
    return res.get_json()


@pytest.fixture()
def amc_approval(client, auth, amc_routed):
    """amc1 submits its fix for Equipment sign-off."""
    res = client.post(
        "/api/approvals",
        json={
            "approvalType": "AMC Resolution Approval",
            "equipmentOfflineSiteId": amc_routed["routedRecord"]["id"],
            "actionId": amc_routed["action"]["id"],
            "submissionRemarks": "battery replaced",
        },
        headers=auth("amc1"),
    )
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════
# CREATE
# ═════════════════════════════════════════════════════════════════════════

class TestCreateApproval:
    def test_create_assigns_ccr(self, ccr_approval, routed):
        assert ccr_approval["status"] == "Pending"
        assert ccr_approval["assignedToUserId"] == "ccr1"
        assert ccr_approval["assignedToRole"] == "CCR"
        assert ccr_approval["submittedByUserId"] == "eq1"
        assert ccr_approval["siteCode"] == "3W1575"
        assert ccr_approval["fileId"] == "fileX"
        assert ccr_approval["rowKey"] == "row7-routed-abc123"
        assert ccr_approval["originalRowData"]["SITE CODE"] == "3W1575"

    def test_create_marks_fork_and_root_resolved(self, ccr_approval, routed):
        for key in ("row7-routed-abc123", "row7"):
            record = _site(key)
            assert record.site_observations == "Resolved"
            assert record.ccr_status == "Pending"
        assert db.session.get(Action, routed["action"]["id"]).status == "In Progress"

    def test_duplicate_pending_rejected(self, client, auth, ccr_approval, routed):
        res = client.post(
            "/api/approvals",
            json={"approvalType": "CCR Resolution Approval", "equipmentOfflineSiteId": routed["routedRecord"]["id"]},
            headers=auth("eq1"),
        )
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"
        assert Approval.query.count() == 1

    def test_both_site_ids_rejected(self, client, auth, routed):
        res = client.post(
            "/api/approvals",
            json={
                "approvalType": "CCR Resolution Approval",
                "equipmentOfflineSiteId": routed["routedRecord"]["id"],
                "rtuTrackerSiteId": 1,
            },
            headers=auth("eq1"),
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_REFERENCE"

    def test_wrong_site_table_rejected(self, client, auth, routed):
        res = client.post(
            "/api/approvals",
            json={"approvalType": "RTU Tracker Resolution Approval", "equipmentOfflineSiteId": routed["routedRecord"]["id"]},
            headers=auth("eq1"),
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_REFERENCE"

    def test_unknown_site_record(self, client, auth):
        res = client.post(
            "/api/approvals",
            json={"approvalType": "CCR Resolution Approval", "equipmentOfflineSiteId": 999},
            headers=auth("eq1"),
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_REFERENCE"

    def test_unknown_type(self, client, auth, routed):
        res = client.post(
            "/api/approvals",
            json={"approvalType": "Manager Approval", "equipmentOfflineSiteId": routed["routedRecord"]["id"]},
            headers=auth("eq1"),
        )
        assert res.status_code == 400

    def test_cannot_submit_to_self(self, client, auth, routed):
        res = client.post(
            "/api/approvals",
            json={
                "approvalType": "CCR Resolution Approval",
                "equipmentOfflineSiteId": routed["routedRecord"]["id"],
                "assignedToUserId": "eq1",
            },
            headers=auth("eq1"),
        )
        assert res.status_code == 400

    def test_create_writes_audit(self, ccr_approval):
        entry = AuditLog.query.filter_by(action="approval.create").one()
        assert entry.entity_id == str(ccr_approval["id"])
        assert entry.diff["assignedTo"] == "ccr1"


# ═════════════════════════════════════════════════════════════════════════
# DECIDE
# ═════════════════════════════════════════════════════════════════════════

class TestDecideApproval:
    def test_ccr_approves(self, client, auth, ccr_approval, routed):
        res = client.put(
            f"/api/approvals/{ccr_approval['id']}/status",
            json={"status": "Approved", "remarks": "verified on SCADA"},
            headers=auth("ccr1"),
        )
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "Approved"
        assert data["approvedByUserId"] == "ccr1"
        assert data["approvedByRole"] == "CCR"
        assert data["approvedAt"] is not None
        assert data["approvalRemarks"] == "verified on SCADA"

        for key in ("row7-routed-abc123", "row7"):
            record = _site(key)
            assert record.ccr_status == "Approved"
            assert record.site_observations == "Resolved"

        action = db.session.get(Action, routed["action"]["id"])
        assert action.status == "Completed"
        assert action.completed_date is not None
        assert AuditLog.query.filter_by(action="approval.decide").count() == 1

    def test_legacy_completed_means_approved(self, client, auth, ccr_approval):
        res = client.put(
            f"/api/approvals/{ccr_approval['id']}/status", json={"status": "Completed"}, headers=auth("ccr1"),
        )
        assert res.get_json()["status"] == "Approved"

    def test_kept_for_monitoring(self, client, auth, ccr_approval):
        res = client.put(
            f"/api/approvals/{ccr_approval['id']}/status",
            json={"status": "Kept for Monitoring"},
            headers=auth("ccr1"),
        )
        assert res.status_code == 200
        assert res.get_json()["approvedByUserId"] == "ccr1"
        assert _site("row7").ccr_status == "Kept for Monitoring"

    def test_recheck_reopens_observation(self, client, auth, ccr_approval, routed):
        res = client.put(
            f"/api/approvals/{ccr_approval['id']}/status",
            json={"status": "Recheck Requested", "remarks": "still local"},
            headers=auth("ccr1"),
        )
        assert res.status_code == 200
        data = res.get_json()
        assert data["approvedByUserId"] is None
        for key in ("row7-routed-abc123", "row7"):
            record = _site(key)
            assert record.site_observations == "Pending"
            assert record.ccr_status == ""
        assert db.session.get(Action, routed["action"]["id"]).status == "In Progress"

    def test_resubmit_after_recheck(self, client, auth, ccr_approval, routed):
        client.put(
            f"/api/approvals/{ccr_approval['id']}/status", json={"status": "Recheck Requested"}, headers=auth("ccr1"),
        )
        res = client.post(
            "/api/approvals",
            json={"approvalType": "CCR Resolution Approval", "equipmentOfflineSiteId": routed["routedRecord"]["id"]},
            headers=auth("eq1"),
        )
        assert res.status_code == 201

    def test_decided_approval_is_final(self, client, auth, ccr_approval):
        url = f"/api/approvals/{ccr_approval['id']}/status"
        client.put(url, json={"status": "Approved"}, headers=auth("ccr1"))
        res = client.put(url, json={"status": "Recheck Requested"}, headers=auth("ccr1"))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_only_approver_decides(self, client, auth, ccr_approval):
        url = f"/api/approvals/{ccr_approval['id']}/status"
        assert client.put(url, json={"status": "Approved"}, headers=auth("eq1")).status_code == 403
        assert client.put(url, json={"status": "Approved"}, headers=auth("je1")).status_code == 403
        assert client.put(url, json={"status": "Approved"}, headers=auth("admin1")).status_code == 200

    def test_invalid_status(self, client, auth, ccr_approval):
        res = client.put(
            f"/api/approvals/{ccr_approval['id']}/status", json={"status": "Rejected"}, headers=auth("ccr1"),
        )
        assert res.status_code == 400

    def test_missing_approval(self, client, auth):
        res = client.put("/api/approvals/999/status", json={"status": "Approved"}, headers=auth("ccr1"))
        assert res.status_code == 404


class TestDecisionAtomicity:
    def test_failed_propagation_rolls_back_decision(self, client, auth, ccr_approval, routed, monkeypatch):
        def _boom(*args, **kwargs):
            raise RuntimeError("lost write")

        monkeypatch.setattr(site_store, "apply_status_fields", _boom)
        res = client.put(
            f"/api/approvals/{ccr_approval['id']}/status", json={"status": "Approved"}, headers=auth("ccr1"),
        )
        assert res.status_code == 500
        body = res.get_json()
        assert body["code"] == "ERR_TRANSACTION"
        assert body["error"] == "action could not be completed, please retry"

        approval = Approval.query.filter_by(id=ccr_approval["id"]).one()
        assert approval.status == "Pending"
        assert approval.approved_by_user_id is None
        for key in ("row7-routed-abc123", "row7"):
            assert _site(key).ccr_status == "Pending"
        assert db.session.get(Action, routed["action"]["id"]).status == "In Progress"
        assert AuditLog.query.filter_by(action="approval.decide").count() == 0

    def test_pending_key_enforced_by_database(self, client, auth, ccr_approval, routed, monkeypatch):
        monkeypatch.setattr(approval_engine, "_pending_for", lambda *args, **kwargs: None)
        res = client.post(
            "/api/approvals",
            json={"approvalType": "CCR Resolution Approval", "equipmentOfflineSiteId": routed["routedRecord"]["id"]},
            headers=auth("eq1"),
        )
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"
        assert Approval.query.count() == 1


class TestCoerceStatus:
    def test_completed(self):
        assert coerce_status("Completed") == "Approved"

    def test_in_progress_with_monitoring_remark(self):
        assert coerce_status("In Progress", "Kept for monitoring till Monday") == "Kept for Monitoring"

    def test_in_progress_defaults_to_recheck(self):
        assert coerce_status("In Progress", "look again") == "Recheck Requested"

    def test_passthrough(self):
        assert coerce_status("Approved") == "Approved"


# ═════════════════════════════════════════════════════════════════════════
# AMC WORKFLOW
# ═════════════════════════════════════════════════════════════════════════

class TestAMCWorkflow:
    def test_amc_approval_goes_to_equipment(self, amc_approval):
        assert amc_approval["assignedToUserId"] == "eq1"
        assert amc_approval["assignedToRole"] == "Equipment"

    def test_equipment_approval_spawns_ccr_review(self, client, auth, amc_approval):
        res = client.put(
            f"/api/approvals/{amc_approval['id']}/status",
            json={"status": "Approved", "remarks": "checked on site"},
            headers=auth("eq1"),
        )
        assert res.status_code == 200

        spawned = Approval.query.filter_by(approval_type="CCR Resolution Approval").one()
        assert spawned.status == "Pending"
        assert spawned.assigned_to_user_id == "ccr1"
        assert spawned.submitted_by_user_id == "eq1"
        assert spawned.row_key == amc_approval["rowKey"]
        assert spawned.meta["firstApprovalId"] == amc_approval["id"]

        ccr_action = db.session.get(Action, spawned.action_id)
        assert ccr_action.routing == "CCR Team"
        assert ccr_action.assigned_to_user_id == "ccr1"

        fork = _site(amc_approval["rowKey"])
        assert fork.site_observations == "Resolved"
        assert fork.ccr_status == "Pending"

    def test_ccr_closes_amc_chain(self, client, auth, amc_approval):
        client.put(f"/api/approvals/{amc_approval['id']}/status", json={"status": "Approved"}, headers=auth("eq1"))
        spawned = Approval.query.filter_by(approval_type="CCR Resolution Approval").one()
        res = client.put(f"/api/approvals/{spawned.id}/status", json={"status": "Approved"}, headers=auth("ccr1"))
        assert res.status_code == 200
        assert _site(amc_approval["rowKey"]).ccr_status == "Approved"
        assert _site("row7").ccr_status == "Approved"

    def test_recheck_does_not_spawn(self, client, auth, amc_approval):
        client.put(
            f"/api/approvals/{amc_approval['id']}/status", json={"status": "Recheck Requested"}, headers=auth("eq1"),
        )
        assert Approval.query.filter_by(approval_type="CCR Resolution Approval").count() == 0

    def test_spawn_skipped_without_ccr_user(self, client, auth, amc_approval, users):
        users["ccr1"].is_active = False
        db.session.commit()
        res = client.put(f"/api/approvals/{amc_approval['id']}/status", json={"status": "Approved"}, headers=auth("eq1"))
        assert res.status_code == 200
        assert Approval.query.filter_by(approval_type="CCR Resolution Approval").count() == 0


# ═════════════════════════════════════════════════════════════════════════
# READS
# ═════════════════════════════════════════════════════════════════════════

class TestApprovalReads:
    def test_ccr_sees_ccr_types(self, client, auth, ccr_approval):
        res = client.get("/api/approvals", headers=auth("ccr1"))
        assert res.get_json()["total"] == 1
        assert client.get("/api/approvals", headers=auth("eq1")).get_json()["total"] == 0

    def test_equipment_sees_assigned_amc(self, client, auth, amc_approval):
        assert client.get("/api/approvals", headers=auth("eq1")).get_json()["total"] == 1
        assert client.get("/api/approvals", headers=auth("ccr1")).get_json()["total"] == 0

    def test_stats(self, client, auth, ccr_approval):
        stats = client.get("/api/approvals/stats", headers=auth("ccr1")).get_json()
        assert stats == {"pending": 1, "approved": 0, "keptForMonitoring": 0, "recheckRequested": 0, "total": 1}

    def test_get_approval_parties(self, client, auth, ccr_approval):
        url = f"/api/approvals/{ccr_approval['id']}"
        assert client.get(url, headers=auth("eq1")).status_code == 200
        assert client.get(url, headers=auth("ccr1")).status_code == 200
        assert client.get(url, headers=auth("amc1")).status_code == 403

    def test_site_codes_admin_only(self, client, auth, ccr_approval):
        assert client.get("/api/approvals/sitecodes", headers=auth("ccr1")).status_code == 403
        res = client.get("/api/approvals/sitecodes?search=3w", headers=auth("admin1"))
        assert res.get_json()["items"] == ["3W1575"]


# ═════════════════════════════════════════════════════════════════════════
# ADMIN UTILITIES
# ═════════════════════════════════════════════════════════════════════════

class TestAdminUtilities:
    @pytest.fixture()
    def approved(self, client, auth, ccr_approval):
        res = client.put(
            f"/api/approvals/{ccr_approval['id']}/status", json={"status": "Approved"}, headers=auth("ccr1"),
        )
        assert res.status_code == 200
        return res.get_json()

    def test_check(self, client, auth, approved):
        res = client.post(
            "/api/approvals/check", json={"approvedDate": _today(), "siteCode": "3w1575"}, headers=auth("admin1"),
        )
        assert res.status_code == 200
        data = res.get_json()
        assert data["totalCount"] == 1
        assert data["roles"] == ["CCR"]
        assert data["hasMultipleRoles"] is False
        assert len(data["approvalsByRole"]["CCR"]) == 1

    def test_check_nothing_found(self, client, auth, approved):
        res = client.post(
            "/api/approvals/check", json={"approvedDate": "2001-01-01", "siteCode": "3W1575"}, headers=auth("admin1"),
        )
        assert res.status_code == 404

    def test_check_requires_fields(self, client, auth):
        res = client.post("/api/approvals/check", json={"siteCode": "3W1575"}, headers=auth("admin1"))
        assert res.status_code == 400

    def test_reset(self, client, auth, approved, routed):
        res = client.post(
            "/api/approvals/reset", json={"approvedDate": _today(), "siteCode": "3W1575"}, headers=auth("admin1"),
        )
        assert res.status_code == 200
        data = res.get_json()
        assert data["count"] == 1
        assert data["approvals"][0]["status"] == "Pending"

        approval = db.session.get(Approval, approved["id"])
        assert approval.status == "Pending"
        assert approval.approved_by_user_id is None
        assert approval.approved_at is None
        assert db.session.get(Action, routed["action"]["id"]).status == "Pending"
        assert _site("row7-routed-abc123").ccr_status == ""
        assert AuditLog.query.filter_by(action="approval.reset").count() == 1

    def test_reset_skips_reopened_key(self, client, auth, approved, routed):
        res = client.post(
            "/api/approvals",
            json={"approvalType": "CCR Resolution Approval", "equipmentOfflineSiteId": routed["routedRecord"]["id"]},
            headers=auth("eq1"),
        )
        assert res.status_code == 201
        res = client.post(
            "/api/approvals/reset", json={"approvedDate": _today(), "siteCode": "3W1575"}, headers=auth("admin1"),
        )
        data = res.get_json()
        assert data["count"] == 0
        assert data["skipped"] == [approved["id"]]
        assert db.session.get(Approval, approved["id"]).status == "Approved"

    def test_admin_only(self, client, auth, approved):
        body = {"approvedDate": _today(), "siteCode": "3W1575"}
        assert client.post("/api/approvals/check", json=body, headers=auth("ccr1")).status_code == 403
        assert client.post("/api/approvals/reset", json=body, headers=auth("ccr1")).status_code == 403
