"""
Approval Blueprint — sign-off workflows.

Routes:
  POST   /api/approvals                 – open a Pending approval
  GET    /api/approvals                 – approvals visible to my role
  GET    /api/approvals/stats           – counts per status
  GET    /api/approvals/sitecodes       – distinct site codes (Admin)
  GET    /api/approvals/<id>            – one approval
  PUT    /api/approvals/<id>/status     – decide (Approved / Kept for Monitoring / Recheck Requested)
  POST   /api/approvals/check           – approvals signed off on a day (Admin)
  POST   /api/approvals/reset           – send them back to Pending (Admin)
"""

from flask import Blueprint, jsonify, request

from das.blueprints import paginate_list
from das.middleware.jwt_auth import current_identity, require_identity, require_role
from das.services import approval_engine

approval_bp = Blueprint("approval_bp", __name__, url_prefix="/api/approvals")


@approval_bp.route("", methods=["POST"])
@require_identity
def create_approval():
    """Body: approvalType, equipmentOfflineSiteId | rtuTrackerSiteId, actionId?,
    siteCode?, submissionRemarks, photos, supportDocuments, fileId?, rowKey?,
    originalRowData?, metadata?, assignedToUserId?
    """
    data = request.get_json(silent=True) or {}
    approval = approval_engine.create_approval(current_identity(), data)
    return jsonify(approval.to_dict()), 201


@approval_bp.route("", methods=["GET"])
@require_identity
def list_approvals():
    approvals = approval_engine.list_approvals(
        current_identity(),
        status=request.args.get("status"),
        approval_type=request.args.get("approvalType"),
    )
    page, total = paginate_list(approvals)
    return jsonify({"items": [a.to_dict() for a in page], "total": total})


@approval_bp.route("/stats", methods=["GET"])
@require_identity
def approval_stats():
    return jsonify(approval_engine.approval_stats(current_identity()))


@approval_bp.route("/sitecodes", methods=["GET"])
@require_role("Admin")
def approval_site_codes():
    codes = approval_engine.approval_site_codes(current_identity(), request.args.get("search"))
    return jsonify({"items": codes, "total": len(codes)})


@approval_bp.route("/<int:approval_id>", methods=["GET"])
@require_identity
def get_approval(approval_id):
    return jsonify(approval_engine.get_approval(current_identity(), approval_id).to_dict())


@approval_bp.route("/<int:approval_id>/status", methods=["PUT"])
@require_identity
def update_approval_status(approval_id):
    """Body: { status, remarks?, metadata? }"""
    data = request.get_json(silent=True) or {}
    approval = approval_engine.update_approval_status(
        current_identity(),
        approval_id,
        data.get("status"),
        remarks=data.get("remarks"),
        metadata=data.get("metadata"),
    )
    return jsonify(approval.to_dict())


@approval_bp.route("/check", methods=["POST"])
@require_role("Admin")
def check_approvals():
    """Body: { approvedDate, siteCode }"""
    data = request.get_json(silent=True) or {}
    return jsonify(approval_engine.check_approvals(
        current_identity(), data.get("approvedDate"), data.get("siteCode"),
    ))


@approval_bp.route("/reset", methods=["POST"])
@require_role("Admin")
def reset_approvals():
    """Body: { approvedDate, siteCode, roles? }"""
    data = request.get_json(silent=True) or {}
    result = approval_engine.reset_approvals(
        current_identity(), data.get("approvedDate"), data.get("siteCode"), roles=data.get("roles"),
    )
    result["message"] = f"Successfully reset {result['count']} approval(s)"
    return jsonify(result)
