"""
Report endpoint tests.

Tests cover:
  - Dual-key visibility: routed sites stay in the first owner's reports
  - Resolved dedupe per site code with the latest CCR status
  - Pending excludes sites that already have a resolved record
  - Filters, detail pane, local/remote counts, date window validation
"""
from datetime import date, timedelta

import pytest

BASE = "/api/equipment-offline-sites/reports"


def _codes(res):
    return [row["siteCode"] for row in res.get_json()["items"]]


@pytest.fixture()
def ccr_signed_off(client, auth, routed):
    res = client.post(
        "/api/approvals",
        json={
            "approvalType": "CCR Resolution Approval",
            "equipmentOfflineSiteId": routed["routedRecord"]["id"],
            "actionId": routed["action"]["id"],
        },
        headers=auth("eq1"),
    )
    assert res.status_code == 201
    res = client.put(f"/api/approvals/{res.get_json()['id']}/status", json={"status": "Approved"}, headers=auth("ccr1"))
    assert res.status_code == 200
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════
# RESOLVED / PENDING
# ═════════════════════════════════════════════════════════════════════════

class TestReports:
    def test_routed_site_stays_in_first_owner_pending(self, client, auth, routed):
        res = client.get(f"{BASE}?reportType=Pending", headers=auth("je1"))
        assert res.status_code == 200
        assert "3W1575" in _codes(res)
        assert _codes(client.get(f"{BASE}?reportType=Pending", headers=auth("eq1"))) == ["3W1575"]
        assert _codes(client.get(f"{BASE}?reportType=Pending", headers=auth("amc1"))) == []

    def test_resolved_deduped_with_ccr_status(self, client, auth, ccr_signed_off):
        res = client.get(f"{BASE}?reportType=Resolved", headers=auth("je1"))
        rows = res.get_json()["items"]
        assert len(rows) == 1
        assert rows[0]["siteCode"] == "3W1575"
        assert rows[0]["ccrStatus"] == "Approved"
        assert rows[0]["slNo"] == 1

    def test_pending_excludes_resolved_sites(self, client, auth, ccr_signed_off):
        assert _codes(client.get(f"{BASE}?reportType=Pending", headers=auth("je1"))) == []

    def test_filters_narrow_rows(self, client, auth, routed):
        assert _codes(client.get(f"{BASE}?reportType=Pending&divisions=HSR", headers=auth("je1")))
        assert _codes(client.get(f"{BASE}?reportType=Pending&divisions=JAYANAGAR", headers=auth("je1"))) == []

    def test_date_window(self, client, auth, routed):
        today = date.today()
        tomorrow = (today + timedelta(days=1)).isoformat()
        yesterday = (today - timedelta(days=1)).isoformat()
        res = client.get(f"{BASE}?fromDate={yesterday}&toDate={tomorrow}", headers=auth("je1"))
        assert len(res.get_json()["items"]) == 2
        res = client.get(f"{BASE}?fromDate={tomorrow}&toDate={yesterday}", headers=auth("je1"))
        assert res.status_code == 400

    def test_invalid_report_type(self, client, auth):
        assert client.get(f"{BASE}?reportType=Closed", headers=auth("je1")).status_code == 400


# ═════════════════════════════════════════════════════════════════════════
# DETAILS / FILTERS / LOCAL-REMOTE
# ═════════════════════════════════════════════════════════════════════════

class TestReportExtras:
    def test_filter_options(self, client, auth, routed):
        data = client.get(f"{BASE}/filters", headers=auth("je1")).get_json()
        assert data == {"circles": ["SOUTH"], "divisions": ["HSR"], "subDivisions": ["HSR-1"]}

    def test_details(self, client, auth, routed):
        res = client.get(f"{BASE}/details?siteCode=3w1575", headers=auth("je1"))
        assert res.status_code == 200
        data = res.get_json()
        assert data["siteCode"] == "3W1575"
        assert data["deviceStatus"] == "OFFLINE"
        assert data["division"] == "HSR"
        assert client.get(f"{BASE}/details?siteCode=3W1575", headers=auth("amc1")).status_code == 404
        assert client.get(f"{BASE}/details", headers=auth("je1")).status_code == 400

    def test_local_remote_counts_originals_only(self, client, auth, routed):
        client.post(
            "/api/equipment-offline-sites",
            json={
                "fileId": "fileX",
                "rowKey": "row8",
                "siteCode": "3W1600",
                "originalRowData": {
                    "SITE CODE": "3W1600", "CIRCLE": "SOUTH", "DIVISION": "JAYANAGAR",
                    "DEVICE STATUS": "ONLINE", "EQUIPMENT L/R SWITCH STATUS": "REMOTE",
                },
                "headers": ["SITE CODE", "CIRCLE", "DIVISION", "DEVICE STATUS", "EQUIPMENT L/R SWITCH STATUS"],
            },
            headers=auth("je1"),
        )
        data = client.get(f"{BASE}/local-remote", headers=auth("je1")).get_json()
        assert data["count"] == 2
        assert data["totals"] == {"online": 1, "offline": 1, "local": 1, "remote": 1}
        hsr = next(d for d in data["data"] if d["division"] == "HSR")
        assert hsr == {"division": "HSR", "online": 0, "offline": 1, "local": 1, "remote": 0}

        filtered = client.get(f"{BASE}/local-remote?divisions=hsr", headers=auth("je1")).get_json()
        assert filtered["count"] == 1
