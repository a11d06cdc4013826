"""
Action routing tests.

Tests cover:
  - Submit: Action + routed fork committed together
  - Assignee resolution per team (division, circle/vendor, explicit user)
  - Fork key collisions (retry once, then 409) and rollback on failure
  - Forward-only status transitions projected onto the fork
  - Reroute: supersede chain, first owner kept, audit row
  - Reads and delete
"""
from das.models.action import Action
from das.models.audit import AuditLog
from das.models.site import EquipmentOfflineSite
from das.services import site_store


def _site(row_key, file_id="fileX"):
    return EquipmentOfflineSite.query.filter_by(file_id=file_id, row_key=row_key).first()


# ═════════════════════════════════════════════════════════════════════════
# SUBMIT
# ═════════════════════════════════════════════════════════════════════════

class TestSubmitRouting:
    def test_submit_creates_action_and_fork(self, routed):
        action = routed["action"]
        assert action["status"] == "Pending"
        assert action["assignedToUserId"] == "eq1"
        assert action["assignedToRole"] == "Equipment"
        assert action["assignedByUserId"] == "je1"
        assert action["assignedToDivision"] == "HSR"

        fork = routed["routedRecord"]
        assert fork["rowKey"] == "row7-routed-abc123"
        assert fork["kind"] == "routed"
        assert fork["userId"] == "eq1"
        assert fork["originalUserId"] == "je1"
        assert fork["taskStatus"] == "Pending at Equipment Team"
        assert fork["parentId"] == routed["sourceRecord"]["id"]
        assert action["routedSiteRecordId"] == fork["id"]

        source = routed["sourceRecord"]
        assert source["rowKey"] == "row7"
        assert source["userId"] == "je1"
        assert source["taskStatus"] == "Routed to Equipment Team"

    def test_row_data_keeps_value_types(self, routed):
        row = routed["action"]["rowData"]
        assert row["NO OF DAYS OFFLINE"] == 12
        assert row["SITE CODE"] == "3W1575"
        assert routed["routedRecord"]["originalRowData"]["NO OF DAYS OFFLINE"] == 12

    def test_submit_writes_audit(self, routed):
        entry = AuditLog.query.filter_by(action="action.submit").one()
        assert entry.entity_id == str(routed["action"]["id"])
        assert entry.actor == "je1"
        assert entry.diff["routedRowKey"] == "row7-routed-abc123"

    def test_missing_fields(self, client, auth):
        res = client.post("/api/actions/submit", json={"rowData": {"SITE CODE": "X1"}}, headers=auth("je1"))
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert "routing" in body["details"]
        assert "rowKey" in body["details"]

    def test_invalid_routing(self, client, auth, routing_payload):
        res = client.post("/api/actions/submit", json=routing_payload(routing="Canteen Team"), headers=auth("je1"))
        assert res.status_code == 400
        assert "Invalid routing" in res.get_json()["error"]

    def test_no_team_member_for_division(self, client, auth, routing_payload):
        res = client.post("/api/actions/submit", json=routing_payload(routing="Relay Team"), headers=auth("je1"))
        assert res.status_code == 404
        assert Action.query.count() == 0
        assert EquipmentOfflineSite.query.count() == 0

    def test_amc_routed_by_circle_vendor(self, client, auth, routing_payload, fixed_suffix):
        res = client.post("/api/actions/submit", json=routing_payload(routing="AMC Team"), headers=auth("je1"))
        assert res.status_code == 201
        action = res.get_json()["action"]
        assert action["assignedToUserId"] == "amc1"
        assert action["assignedToVendor"] == "Shrishaila Electricals(India Pvt ltd)"

    def test_explicit_assignee_must_hold_role(self, client, auth, routing_payload):
        res = client.post(
            "/api/actions/submit",
            json=routing_payload(assignedToUserId="ccr1"),
            headers=auth("je1"),
        )
        assert res.status_code == 400

    def test_cannot_route_to_self(self, client, auth, routing_payload):
        res = client.post("/api/actions/submit", json=routing_payload(rowKey="row9"), headers=auth("eq1"))
        assert res.status_code == 400
        assert "yourself" in res.get_json()["error"]

    def test_only_owner_can_route(self, client, auth, routing_payload, routed):
        res = client.post(
            "/api/actions/submit",
            json=routing_payload(routing="RTU/Communication Team"),
            headers=auth("amc1"),
        )
        assert res.status_code == 403

    def test_site_code_must_match_existing_row(self, client, auth, routing_payload, routed):
        payload = routing_payload(routing="RTU/Communication Team")
        payload["rowData"]["SITE CODE"] = "9Z0001"
        res = client.post("/api/actions/submit", json=payload, headers=auth("je1"))
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════
# FORK KEYS & ATOMICITY
# ═════════════════════════════════════════════════════════════════════════

class TestForkKeys:
    def test_two_submits_get_distinct_keys(self, client, auth, routing_payload):
        keys = set()
        for _ in range(2):
            res = client.post("/api/actions/submit", json=routing_payload(), headers=auth("je1"))
            assert res.status_code == 201
            keys.add(res.get_json()["routedRecord"]["rowKey"])
        assert len(keys) == 2
        assert all(k.startswith("row7-routed-") for k in keys)

    def test_collision_is_retried_once(self, client, auth, routing_payload, fixed_suffix):
        fixed_suffix[:] = ["abc123", "abc123", "fff000"]
        first = client.post("/api/actions/submit", json=routing_payload(), headers=auth("je1"))
        second = client.post("/api/actions/submit", json=routing_payload(), headers=auth("je1"))
        assert first.status_code == 201
        assert second.status_code == 201
        assert second.get_json()["routedRecord"]["rowKey"] == "row7-routed-fff000"
        assert Action.query.count() == 2

    def test_persistent_collision_rolls_back(self, client, auth, routing_payload, routed):
        res = client.post("/api/actions/submit", json=routing_payload(), headers=auth("je1"))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"
        assert Action.query.count() == 1
        assert EquipmentOfflineSite.query.filter_by(record_kind="routed").count() == 1

    def test_fork_failure_leaves_neither_row(self, client, auth, routing_payload, monkeypatch):
        def _boom(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(site_store, "fork_for_routing", _boom)
        res = client.post("/api/actions/submit", json=routing_payload(), headers=auth("je1"))
        assert res.status_code == 500
        body = res.get_json()
        assert body["code"] == "ERR_TRANSACTION"
        assert "disk full" not in body["error"]
        assert Action.query.count() == 0
        assert EquipmentOfflineSite.query.count() == 0

    def test_fork_of_fork_does_not_nest_suffix(self, routed):
        fork = site_store.fork_for_routing(
            "equipment", "fileX", "row7-routed-abc123", "rtu1", "def456",
        )
        assert fork.row_key == "row7-routed-def456"
        assert fork.original_owner_user_id == "je1"
        assert site_store.root_of(fork).row_key == "row7"


# ═════════════════════════════════════════════════════════════════════════
# STATUS
# ═════════════════════════════════════════════════════════════════════════

class TestActionStatus:
    def test_assignee_moves_forward(self, client, auth, routed):
        action_id = routed["action"]["id"]
        res = client.put(f"/api/actions/{action_id}/status", json={"status": "In Progress"}, headers=auth("eq1"))
        assert res.status_code == 200
        assert res.get_json()["status"] == "In Progress"
        assert _site("row7-routed-abc123").task_status == "In Progress at Equipment Team"

        res = client.put(f"/api/actions/{action_id}/status", json={"status": "Completed"}, headers=auth("eq1"))
        assert res.status_code == 200
        data = res.get_json()
        assert data["completedDate"] is not None
        assert _site("row7-routed-abc123").task_status == "Completed by Equipment Team"

    def test_backwards_transition_rejected(self, client, auth, routed):
        action_id = routed["action"]["id"]
        client.put(f"/api/actions/{action_id}/status", json={"status": "Completed"}, headers=auth("eq1"))
        res = client.put(f"/api/actions/{action_id}/status", json={"status": "In Progress"}, headers=auth("eq1"))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_unknown_status(self, client, auth, routed):
        res = client.put(f"/api/actions/{routed['action']['id']}/status", json={"status": "Done"}, headers=auth("eq1"))
        assert res.status_code == 400

    def test_only_assignee_updates(self, client, auth, routed):
        res = client.put(
            f"/api/actions/{routed['action']['id']}/status", json={"status": "In Progress"}, headers=auth("je1"),
        )
        assert res.status_code == 403

    def test_missing_action(self, client, auth):
        res = client.put("/api/actions/999/status", json={"status": "In Progress"}, headers=auth("eq1"))
        assert res.status_code == 404

    def test_deleted_fork_does_not_leak_to_new_record(self, client, auth, routed):
        action_id = routed["action"]["id"]
        assert client.delete("/api/equipment-offline-sites/fileX/row7-routed-abc123", headers=auth("eq1")).status_code == 200
        assert Action.query.filter_by(id=action_id).one().routed_site_record_id is None

        res = client.post(
            "/api/equipment-offline-sites",
            json={"fileId": "fileY", "rowKey": "row1", "siteCode": "3W1600", "originalRowData": {"SITE CODE": "3W1600"}},
            headers=auth("je1"),
        )
        assert res.status_code == 201

        res = client.put(f"/api/actions/{action_id}/status", json={"status": "In Progress"}, headers=auth("eq1"))
        assert res.status_code == 200
        unrelated = EquipmentOfflineSite.query.filter_by(file_id="fileY", row_key="row1").one()
        assert unrelated.task_status == ""

    def test_deleted_original_clears_source_reference(self, client, auth, routed):
        action_id = routed["action"]["id"]
        assert client.delete("/api/equipment-offline-sites/fileX/row7", headers=auth("je1")).status_code == 200
        action = Action.query.filter_by(id=action_id).one()
        assert action.site_record_id is None
        assert action.routed_site_record_id == routed["routedRecord"]["id"]


# ═════════════════════════════════════════════════════════════════════════
# REROUTE
# ═════════════════════════════════════════════════════════════════════════

class TestReroute:
    def test_reroute_supersedes_action(self, client, auth, routed, fixed_suffix):
        fixed_suffix[:] = ["def456"]
        old_id = routed["action"]["id"]
        res = client.put(
            f"/api/actions/{old_id}/reroute",
            json={"routing": "RTU/Communication Team", "remarks": "modem fault"},
            headers=auth("eq1"),
        )
        assert res.status_code == 201
        data = res.get_json()

        new = data["action"]
        assert new["assignedToUserId"] == "rtu1"
        assert new["assignedByUserId"] == "eq1"
        assert new["status"] == "Pending"
        assert new["remarks"] == "modem fault"

        previous = data["previousAction"]
        assert previous["status"] == "Completed"
        assert previous["supersededById"] == new["id"]
        assert previous["completedDate"] is not None
        assert previous["assignedDate"][:19] == routed["action"]["assignedDate"][:19]
        assert previous["remarks"] == routed["action"]["remarks"]

        fork = data["routedRecord"]
        assert fork["rowKey"] == "row7-routed-def456"
        assert fork["userId"] == "rtu1"
        assert fork["originalUserId"] == "je1"
        assert fork["parentId"] == routed["routedRecord"]["id"]

    def test_reroute_projects_task_status(self, client, auth, routed, fixed_suffix):
        fixed_suffix[:] = ["def456"]
        client.put(
            f"/api/actions/{routed['action']['id']}/reroute",
            json={"routing": "RTU/Communication Team"},
            headers=auth("eq1"),
        )
        assert _site("row7-routed-abc123").task_status == "Rerouted to RTU/Communication Team"
        assert _site("row7").task_status == "Routed to RTU/Communication Team"

    def test_reroute_writes_audit(self, client, auth, routed, fixed_suffix):
        fixed_suffix[:] = ["def456"]
        res = client.put(
            f"/api/actions/{routed['action']['id']}/reroute",
            json={"routing": "RTU/Communication Team"},
            headers=auth("eq1"),
        )
        entry = AuditLog.query.filter_by(action="action.reroute").one()
        assert entry.entity_id == str(routed["action"]["id"])
        assert entry.diff["supersededBy"] == res.get_json()["action"]["id"]
        assert entry.diff["assignedTo"] == {"old": "eq1", "new": "rtu1"}

    def test_completed_action_cannot_be_rerouted(self, client, auth, routed):
        action_id = routed["action"]["id"]
        client.put(f"/api/actions/{action_id}/status", json={"status": "Completed"}, headers=auth("eq1"))
        res = client.put(f"/api/actions/{action_id}/reroute", json={"routing": "AMC Team"}, headers=auth("eq1"))
        assert res.status_code == 409

    def test_outsider_cannot_reroute(self, client, auth, routed):
        res = client.put(
            f"/api/actions/{routed['action']['id']}/reroute", json={"routing": "AMC Team"}, headers=auth("amc1"),
        )
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════
# READS & DELETE
# ═════════════════════════════════════════════════════════════════════════

class TestActionReads:
    def test_my_actions_and_routed_actions(self, client, auth, routed):
        mine = client.get("/api/actions/my-actions", headers=auth("eq1")).get_json()
        assert mine["total"] == 1
        assert mine["items"][0]["id"] == routed["action"]["id"]

        sent = client.get("/api/actions/my-routed-actions", headers=auth("je1")).get_json()
        assert sent["total"] == 1
        assert client.get("/api/actions/my-actions", headers=auth("je1")).get_json()["total"] == 0

    def test_my_actions_filters(self, client, auth, routed):
        res = client.get("/api/actions/my-actions?status=Completed", headers=auth("eq1"))
        assert res.get_json()["total"] == 0
        res = client.get("/api/actions/my-actions?search=3w1575", headers=auth("eq1"))
        assert res.get_json()["total"] == 1

    def test_all_actions_ccr_only(self, client, auth, routed):
        assert client.get("/api/actions", headers=auth("je1")).status_code == 403
        res = client.get("/api/actions", headers=auth("ccr1"))
        assert res.status_code == 200
        assert res.get_json()["total"] == 1

    def test_get_action_parties_only(self, client, auth, routed):
        action_id = routed["action"]["id"]
        assert client.get(f"/api/actions/{action_id}", headers=auth("je1")).status_code == 200
        assert client.get(f"/api/actions/{action_id}", headers=auth("amc1")).status_code == 403

    def test_delete_keeps_fork(self, client, auth, routed):
        action_id = routed["action"]["id"]
        assert client.delete(f"/api/actions/{action_id}", headers=auth("je1")).status_code == 403
        res = client.delete(f"/api/actions/{action_id}", headers=auth("eq1"))
        assert res.status_code == 200
        assert client.get(f"/api/actions/{action_id}", headers=auth("eq1")).status_code == 404
        assert _site("row7-routed-abc123") is not None
        assert AuditLog.query.filter_by(action="action.delete").count() == 1

