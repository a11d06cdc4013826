"""
Action Blueprint — routing a site issue to another team.

Routes:
  POST   /api/actions/submit               – route a row (creates Action + routed record)
  GET    /api/actions/my-actions           – actions assigned to me
  GET    /api/actions/my-routed-actions    – actions I raised
  GET    /api/actions                      – all actions (CCR / Admin)
  GET    /api/actions/<id>                 – one action
  PUT    /api/actions/<id>/status          – Pending -> In Progress -> Completed
  PUT    /api/actions/<id>/reroute         – supersede with a new action
  DELETE /api/actions/<id>                 – hard delete (routed record kept)
"""

from flask import Blueprint, jsonify, request

from das.blueprints import paginate_list
from das.middleware.jwt_auth import current_identity, require_identity, require_role
from das.services import action_router

action_bp = Blueprint("action_bp", __name__, url_prefix="/api/actions")


@action_bp.route("/submit", methods=["POST"])
@require_identity
def submit_action():
    """Body: rowData, headers, routing, typeOfIssue, remarks, photo, priority,
    sourceFileId, rowKey, originalRowIndex, siteType, assignedToUserId.
    """
    data = request.get_json(silent=True) or {}
    result = action_router.submit_routing(current_identity(), data)
    return jsonify({
        "message": "Action routed successfully",
        "action": result["action"].to_dict(),
        "sourceRecord": result["sourceRecord"].to_dict(),
        "routedRecord": result["routedRecord"].to_dict(),
    }), 201


@action_bp.route("/my-actions", methods=["GET"])
@require_identity
def my_actions():
    actions = action_router.list_my_actions(
        current_identity(),
        status=request.args.get("status"),
        priority=request.args.get("priority"),
        search=request.args.get("search"),
    )
    page, total = paginate_list(actions)
    return jsonify({"items": [a.to_dict() for a in page], "total": total})


@action_bp.route("/my-routed-actions", methods=["GET"])
@require_identity
def my_routed_actions():
    actions = action_router.list_my_routed_actions(current_identity())
    page, total = paginate_list(actions)
    return jsonify({"items": [a.to_dict() for a in page], "total": total})


@action_bp.route("", methods=["GET"])
@require_role("CCR", "Admin")
def list_actions():
    actions = action_router.list_all_actions(current_identity(), status=request.args.get("status"))
    page, total = paginate_list(actions)
    return jsonify({"items": [a.to_dict() for a in page], "total": total})


@action_bp.route("/<int:action_id>", methods=["GET"])
@require_identity
def get_action(action_id):
    return jsonify(action_router.get_action(current_identity(), action_id).to_dict())


@action_bp.route("/<int:action_id>/status", methods=["PUT"])
@require_identity
def update_action_status(action_id):
    """Body: { status, remarks? }"""
    data = request.get_json(silent=True) or {}
    action = action_router.update_action_status(
        current_identity(), action_id, data.get("status"), remarks=data.get("remarks"),
    )
    return jsonify(action.to_dict())


@action_bp.route("/<int:action_id>/reroute", methods=["PUT"])
@require_identity
def reroute_action(action_id):
    """Body: { routing, assignedToUserId?, remarks?, photo? }"""
    data = request.get_json(silent=True) or {}
    result = action_router.reroute_action(
        current_identity(),
        action_id,
        data.get("routing"),
        assigned_to_user_id=data.get("assignedToUserId"),
        remarks=data.get("remarks"),
        photos=data.get("photo", data.get("photos")),
    )
    return jsonify({
        "message": "Action rerouted successfully",
        "action": result["action"].to_dict(),
        "previousAction": result["previousAction"].to_dict(),
        "routedRecord": result["routedRecord"].to_dict(),
    }), 201


@action_bp.route("/<int:action_id>", methods=["DELETE"])
@require_identity
def delete_action(action_id):
    action_router.delete_action(current_identity(), action_id)
    return jsonify({"message": "Action deleted"}), 200
