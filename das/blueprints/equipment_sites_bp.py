"""
Equipment Offline Sites Blueprint — the "MY OFFLINE SITES" records and reports.

Routes:
  POST   /api/equipment-offline-sites                            – save one row
  POST   /api/equipment-offline-sites/bulk                       – save many rows
  GET    /api/equipment-offline-sites                            – my records
  GET    /api/equipment-offline-sites/file/<fileId>              – rowKey → record for a file
  GET    /api/equipment-offline-sites/reports                    – Resolved / Pending report
  GET    /api/equipment-offline-sites/reports/details            – one site's detail pane
  GET    /api/equipment-offline-sites/reports/filters            – circle/division options
  GET    /api/equipment-offline-sites/reports/local-remote       – device/switch counts
  PUT    /api/equipment-offline-sites/update-days-offline        – days-offline sync
  PUT    /api/equipment-offline-sites/bulk-update-days-offline   – bulk days-offline sync
  GET    /api/equipment-offline-sites/<fileId>/<rowKey>          – one record
  PUT    /api/equipment-offline-sites/<fileId>/<rowKey>/status   – status fields
  DELETE /api/equipment-offline-sites/<fileId>/<rowKey>          – delete my record
"""

from flask import Blueprint, jsonify, request

from das.blueprints import paginate_list
from das.core.exceptions import ForbiddenError
from das.middleware.jwt_auth import current_identity, require_identity
from das.models.site import SITE_TYPE_EQUIPMENT
from das.services import reporting, site_store
from das.utils.helpers import list_arg

equipment_sites_bp = Blueprint(
    "equipment_sites_bp", __name__, url_prefix="/api/equipment-offline-sites",
)

SITE_TYPE = SITE_TYPE_EQUIPMENT

# Request key → status column for PUT .../status
_STATUS_KEYS = {
    "siteObservations": "site_observations",
    "ccrStatus": "ccr_status",
    "taskStatus": "task_status",
    "remarks": "remarks",
    "viewPhotos": "photos",
    "photos": "photos",
}


@equipment_sites_bp.route("", methods=["POST"])
@require_identity
def save_site():
    """Body: fileId, rowKey, siteCode, originalRowData, plus any patch field."""
    data = request.get_json(silent=True) or {}
    identity = current_identity()
    record, created = site_store.upsert_site(
        SITE_TYPE, data.get("fileId"), data.get("rowKey"), identity.user_id, data,
    )
    return jsonify(record.to_dict()), 201 if created else 200


@equipment_sites_bp.route("/bulk", methods=["POST"])
@require_identity
def bulk_save_sites():
    """Body: { sites: [ {fileId, rowKey, siteCode, ...}, ... ] }"""
    data = request.get_json(silent=True) or {}
    result = site_store.bulk_upsert(SITE_TYPE, current_identity().user_id, data.get("sites"))
    return jsonify({
        "saved": [r.to_dict() for r in result["saved"]],
        "errors": result["errors"],
        "savedCount": len(result["saved"]),
        "errorCount": len(result["errors"]),
    })


@equipment_sites_bp.route("", methods=["GET"])
@require_identity
def list_sites():
    records = site_store.get_by_owner(SITE_TYPE, current_identity().user_id, request.args.get("fileId"))
    page, total = paginate_list(records)
    return jsonify({"items": [r.to_dict() for r in page], "total": total})


@equipment_sites_bp.route("/file/<file_id>", methods=["GET"])
@require_identity
def sites_by_file(file_id):
    records = site_store.get_visible_by_file(SITE_TYPE, current_identity().user_id, file_id)
    return jsonify({"fileId": file_id, "sites": {k: r.to_dict() for k, r in records.items()}})


# ── Reports ──────────────────────────────────────────────────────────────


@equipment_sites_bp.route("/reports", methods=["GET"])
@require_identity
def reports():
    rows = reporting.get_reports(
        current_identity(),
        report_type=request.args.get("reportType"),
        circles=list_arg("circles"),
        divisions=list_arg("divisions"),
        sub_divisions=list_arg("subDivisions"),
        from_date=request.args.get("fromDate"),
        to_date=request.args.get("toDate"),
    )
    return jsonify({"items": rows, "total": len(rows)})


@equipment_sites_bp.route("/reports/details", methods=["GET"])
@require_identity
def report_details():
    return jsonify(reporting.get_report_details(
        current_identity(), request.args.get("siteCode"), request.args.get("reportType"),
    ))


@equipment_sites_bp.route("/reports/filters", methods=["GET"])
@require_identity
def report_filters():
    return jsonify(reporting.get_report_filters(current_identity()))


@equipment_sites_bp.route("/reports/local-remote", methods=["GET"])
@require_identity
def local_remote_report():
    return jsonify(reporting.get_local_remote_report(
        circles=list_arg("circles"), divisions=list_arg("divisions"),
    ))


# ── Days offline sync ────────────────────────────────────────────────────


@equipment_sites_bp.route("/update-days-offline", methods=["PUT"])
@require_identity
def update_days_offline():
    """Body: { siteCode, deviceStatus, noOfDaysOffline }"""
    data = request.get_json(silent=True) or {}
    count = site_store.update_days_offline(
        current_identity().user_id,
        data.get("siteCode"),
        data.get("deviceStatus"),
        data.get("noOfDaysOffline"),
    )
    return jsonify({"modifiedCount": count})


@equipment_sites_bp.route("/bulk-update-days-offline", methods=["PUT"])
@require_identity
def bulk_update_days_offline():
    """Body: { updates: [ {siteCode, deviceStatus, noOfDaysOffline}, ... ] }"""
    data = request.get_json(silent=True) or {}
    return jsonify(site_store.bulk_update_days_offline(current_identity().user_id, data.get("updates")))


# ── Single record ────────────────────────────────────────────────────────


@equipment_sites_bp.route("/<file_id>/<row_key>", methods=["GET"])
@require_identity
def get_site(file_id, row_key):
    identity = current_identity()
    record = site_store.get_site_or_404(SITE_TYPE, file_id, row_key)
    if not identity.is_admin and identity.user_id not in (record.owner_user_id, record.original_owner_user_id):
        raise ForbiddenError("Site record belongs to another user")
    return jsonify(record.to_dict())


@equipment_sites_bp.route("/<file_id>/<row_key>/status", methods=["PUT"])
@require_identity
def update_site_status(file_id, row_key):
    """Body: any of siteObservations, taskStatus, remarks, viewPhotos; ccrStatus is Admin-only."""
    data = request.get_json(silent=True) or {}
    identity = current_identity()
    record = site_store.get_site_or_404(SITE_TYPE, file_id, row_key)
    if not identity.is_admin and record.owner_user_id != identity.user_id:
        raise ForbiddenError("Site record belongs to another user")
    if "ccrStatus" in data and not identity.is_admin:
        raise ForbiddenError("ccrStatus is set by CCR Resolution Approvals")
    fields = {attr: data[key] for key, attr in _STATUS_KEYS.items() if key in data}
    record = site_store.update_status_fields(SITE_TYPE, file_id, row_key, **fields)
    return jsonify(record.to_dict())


@equipment_sites_bp.route("/<file_id>/<row_key>", methods=["DELETE"])
@require_identity
def delete_site(file_id, row_key):
    identity = current_identity()
    site_store.delete_site(SITE_TYPE, file_id, row_key, identity.user_id, actor_role=identity.role)
    return jsonify({"message": "Site record deleted"}), 200
