"""
RTU Tracker Blueprints — "MY RTU TRACKER" records and their CCR review rows.

Routes (rtu_tracker_sites_bp):
  POST   /api/rtu-tracker-sites                 – save one row
  POST   /api/rtu-tracker-sites/bulk            – save many rows
  GET    /api/rtu-tracker-sites                 – my records
  GET    /api/rtu-tracker-sites/file/<fileId>   – rowKey → record for a file
  PUT    /api/rtu-tracker-sites/<id>            – patch my record
  DELETE /api/rtu-tracker-sites/<id>            – delete my record

Routes (rtu_tracker_approvals_bp):
  POST   /api/rtu-tracker-approvals             – create or update a review row
  GET    /api/rtu-tracker-approvals             – review rows visible to me
  GET    /api/rtu-tracker-approvals/<id>
  PUT    /api/rtu-tracker-approvals/<id>      – review fields only
  DELETE /api/rtu-tracker-approvals/<id>
"""

from flask import Blueprint, jsonify, request

from das.blueprints import paginate_list
from das.middleware.jwt_auth import current_identity, require_identity
from das.models.site import SITE_TYPE_RTU_TRACKER
from das.services import rtu_tracker_approvals, site_store

rtu_tracker_sites_bp = Blueprint("rtu_tracker_sites_bp", __name__, url_prefix="/api/rtu-tracker-sites")
rtu_tracker_approvals_bp = Blueprint(
    "rtu_tracker_approvals_bp", __name__, url_prefix="/api/rtu-tracker-approvals",
)

SITE_TYPE = SITE_TYPE_RTU_TRACKER


# ═════════════════════════════════════════════════════════════════════════════
# SITES
# ═════════════════════════════════════════════════════════════════════════════


@rtu_tracker_sites_bp.route("", methods=["POST"])
@require_identity
def save_site():
    data = request.get_json(silent=True) or {}
    record, created = site_store.upsert_site(
        SITE_TYPE, data.get("fileId"), data.get("rowKey"), current_identity().user_id, data,
    )
    return jsonify(record.to_dict()), 201 if created else 200


@rtu_tracker_sites_bp.route("/bulk", methods=["POST"])
@require_identity
def bulk_save_sites():
    data = request.get_json(silent=True) or {}
    result = site_store.bulk_upsert(SITE_TYPE, current_identity().user_id, data.get("sites"))
    return jsonify({
        "saved": [r.to_dict() for r in result["saved"]],
        "errors": result["errors"],
        "savedCount": len(result["saved"]),
        "errorCount": len(result["errors"]),
    })


@rtu_tracker_sites_bp.route("", methods=["GET"])
@require_identity
def list_sites():
    records = site_store.get_by_owner(SITE_TYPE, current_identity().user_id, request.args.get("fileId"))
    page, total = paginate_list(records)
    return jsonify({"items": [r.to_dict() for r in page], "total": total})


@rtu_tracker_sites_bp.route("/file/<file_id>", methods=["GET"])
@require_identity
def sites_by_file(file_id):
    records = site_store.get_visible_by_file(SITE_TYPE, current_identity().user_id, file_id)
    return jsonify({"fileId": file_id, "sites": {k: r.to_dict() for k, r in records.items()}})


@rtu_tracker_sites_bp.route("/<int:record_id>", methods=["PUT"])
@require_identity
def update_site(record_id):
    data = request.get_json(silent=True) or {}
    record = site_store.update_site_by_id(SITE_TYPE, record_id, current_identity().user_id, data)
    return jsonify(record.to_dict())


@rtu_tracker_sites_bp.route("/<int:record_id>", methods=["DELETE"])
@require_identity
def delete_site(record_id):
    identity = current_identity()
    site_store.delete_site_by_id(SITE_TYPE, record_id, identity.user_id, actor_role=identity.role)
    return jsonify({"message": "Site record deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# APPROVAL DETAIL ROWS
# ═════════════════════════════════════════════════════════════════════════════


@rtu_tracker_approvals_bp.route("", methods=["POST"])
@require_identity
def save_approval():
    data = request.get_json(silent=True) or {}
    row, created = rtu_tracker_approvals.save_rtu_tracker_approval(current_identity(), data)
    return jsonify(row.to_dict()), 201 if created else 200


@rtu_tracker_approvals_bp.route("", methods=["GET"])
@require_identity
def list_approvals():
    rows = rtu_tracker_approvals.list_rtu_tracker_approvals(current_identity(), request.args.get("status"))
    page, total = paginate_list(rows)
    return jsonify({"items": [r.to_dict() for r in page], "total": total})


@rtu_tracker_approvals_bp.route("/<int:row_id>", methods=["GET"])
@require_identity
def get_approval(row_id):
    return jsonify(rtu_tracker_approvals.get_rtu_tracker_approval(current_identity(), row_id).to_dict())


@rtu_tracker_approvals_bp.route("/<int:row_id>", methods=["PUT"])
@require_identity
def update_approval(row_id):
    data = request.get_json(silent=True) or {}
    row = rtu_tracker_approvals.update_rtu_tracker_approval(current_identity(), row_id, data)
    return jsonify(row.to_dict())


@rtu_tracker_approvals_bp.route("/<int:row_id>", methods=["DELETE"])
@require_identity
def delete_approval(row_id):
    rtu_tracker_approvals.delete_rtu_tracker_approval(current_identity(), row_id)
    return jsonify({"message": "RTU Tracker Approval deleted"}), 200
