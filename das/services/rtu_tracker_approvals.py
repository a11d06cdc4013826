"""
RTU Tracker Approval detail rows.

One RTUTrackerApproval per RTU Tracker Resolution Approval holds the CCR
review fields (ccr status, field team action, inspection date) that the
generic Approval row does not carry.  The approval engine keeps it in step
via ``sync_mirror``; the RTU tracker screens also edit the review fields
directly.  Status, parties and approver only ever come from the linked
Approval.

Access:
    CCR / Admin      every row
    everyone else    rows they submitted or that are assigned to them
"""

import logging

from sqlalchemy import or_

from das.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from das.datastore import get_datastore
from das.models import db
from das.models.approval import STATUS_PENDING, RTUTrackerApproval
from das.models.site import normalize_site_code
from das.services.action_router import resolve_assignee

logger = logging.getLogger(__name__)

_FIELDS = {
    "rtuTrackerSiteId": "rtu_tracker_site_id",
    "typeOfIssue": "type_of_issue",
    "ccrStatus": "ccr_status",
    "ccrRemarks": "ccr_remarks",
    "fieldTeamAction": "field_team_action",
    "dateOfInspection": "date_of_inspection",
    "submissionRemarks": "submission_remarks",
    "approvalRemarks": "approval_remarks",
    "photos": "photos",
    "supportDocuments": "support_documents",
    "originalRowData": "original_row_data",
    "metadata": "meta",
}

_LIST_FIELDS = {"photos", "support_documents"}
_MAP_FIELDS = {"original_row_data", "meta"}
_ID_FIELDS = {"rtu_tracker_site_id"}

# Written only by sync_mirror, from the linked Approval
_ENGINE_FIELDS = (
    "approvalId",
    "status",
    "submittedByUserId",
    "submittedByRole",
    "assignedToUserId",
    "assignedToRole",
    "approvedByUserId",
    "approvedByRole",
    "approvedAt",
)

# CCR's own review fields
_REVIEWER_FIELDS = ("ccrStatus", "ccrRemarks")


def _can_see_all(identity) -> bool:
    return identity.role == "CCR" or identity.is_admin


def _check_party(identity, row: RTUTrackerApproval) -> None:
    if _can_see_all(identity):
        return
    if identity.user_id not in (row.assigned_to_user_id, row.submitted_by_user_id):
        raise ForbiddenError("You are not authorized to access this RTU Tracker Approval")


def _reject_engine_fields(payload: dict, allowed=()) -> None:
    blocked = [k for k in _ENGINE_FIELDS if k in payload and k not in allowed]
    if blocked:
        raise ValidationError(
            "Status and parties follow the linked approval; decide it through /api/approvals",
            details={k: "read-only" for k in blocked},
        )


def _check_reviewer_fields(identity, payload: dict) -> None:
    if any(k in payload for k in _REVIEWER_FIELDS) and not _can_see_all(identity):
        raise ForbiddenError("Only CCR can write the CCR review fields")


def _assign(row: RTUTrackerApproval, payload: dict) -> None:
    for key, attr in _FIELDS.items():
        if key not in payload:
            continue
        value = payload[key]
        if attr in _LIST_FIELDS:
            if value is not None and not isinstance(value, list):
                raise ValidationError(f"{key} must be a list", details={key: "expected list"})
            value = list(value or [])
        elif attr in _MAP_FIELDS:
            if value is not None and not isinstance(value, dict):
                raise ValidationError(f"{key} must be an object", details={key: "expected object"})
            value = dict(value or {})
        elif attr in _ID_FIELDS:
            value = value or None
        else:
            value = "" if value is None else str(value)
        setattr(row, attr, value)


# ═════════════════════════════════════════════════════════════════════════════
# Engine hook
# ═════════════════════════════════════════════════════════════════════════════


def sync_mirror(approval, **fields) -> RTUTrackerApproval:
    """Create or update the detail row for ``approval``.  Flushes only.

    ``fields`` are attribute names on RTUTrackerApproval; None values are
    skipped.
    """
    row = RTUTrackerApproval.query.filter_by(approval_id=approval.id).first()
    if row is None:
        row = RTUTrackerApproval(
            approval_id=approval.id,
            rtu_tracker_site_id=approval.rtu_tracker_site_id,
            site_code=approval.site_code,
            file_id=approval.file_id,
            row_key=approval.row_key,
            submitted_by_user_id=approval.submitted_by_user_id,
            submitted_by_role=approval.submitted_by_role,
            assigned_to_user_id=approval.assigned_to_user_id,
            assigned_to_role=approval.assigned_to_role,
            submission_remarks=approval.submission_remarks,
            photos=list(approval.photos or []),
            support_documents=list(approval.support_documents or []),
            original_row_data=dict(approval.original_row_data or {}),
            meta=dict(approval.meta or {}),
        )
        db.session.add(row)

    row.status = approval.status
    row.approved_by_user_id = approval.approved_by_user_id
    row.approved_by_role = approval.approved_by_role
    row.approved_at = approval.approved_at
    row.approval_remarks = approval.approval_remarks or ""
    for attr, value in fields.items():
        if value is not None:
            setattr(row, attr, value)
    db.session.flush()
    return row


# ═════════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════════


def save_rtu_tracker_approval(identity, payload: dict):
    """Create, or update the row matched by approvalId / (site id, site code).

    Returns ``(row, created)``.
    """
    payload = payload or {}
    site_code = normalize_site_code(payload.get("siteCode"))
    file_id = payload.get("fileId")
    row_key = payload.get("rowKey")
    missing = [k for k, v in (("siteCode", site_code), ("fileId", file_id), ("rowKey", row_key)) if not v]
    if missing:
        raise ValidationError(
            "Site Code, File ID, and Row Key are required",
            details={k: "required" for k in missing},
        )
    _reject_engine_fields(payload, allowed=("approvalId",))
    _check_reviewer_fields(identity, payload)

    def _unit():
        row = None
        if payload.get("approvalId"):
            row = RTUTrackerApproval.query.filter_by(approval_id=payload["approvalId"]).first()
            if row is None:
                raise NotFoundError("RTU Tracker Approval for approval", payload["approvalId"])
        if row is None and payload.get("rtuTrackerSiteId"):
            row = RTUTrackerApproval.query.filter_by(
                rtu_tracker_site_id=payload["rtuTrackerSiteId"], site_code=site_code,
            ).first()

        created = row is None
        if created:
            reviewer = resolve_assignee("CCR")
            row = RTUTrackerApproval(
                status=STATUS_PENDING,
                submitted_by_user_id=identity.user_id,
                submitted_by_role=identity.role,
                assigned_to_user_id=reviewer.user_id,
                assigned_to_role=reviewer.role,
            )
            db.session.add(row)
        else:
            _check_party(identity, row)

        row.site_code = site_code
        row.file_id = file_id
        row.row_key = row_key
        _assign(row, payload)
        db.session.commit()
        return row, created

    try:
        row, created = get_datastore().write(_unit)
    except Exception:
        db.session.rollback()
        raise

    logger.info("RTU tracker approval %s %s", row.id, "created" if created else "updated",
                extra={"user_id": identity.user_id, "site_code": site_code, "file_id": file_id})
    return row, created


def list_rtu_tracker_approvals(identity, status: str | None = None) -> list:
    def _query():
        q = RTUTrackerApproval.query
        if not _can_see_all(identity):
            q = q.filter(or_(
                RTUTrackerApproval.submitted_by_user_id == identity.user_id,
                RTUTrackerApproval.assigned_to_user_id == identity.user_id,
            ))
        if status and status != "all":
            q = q.filter_by(status=status)
        return q.order_by(RTUTrackerApproval.created_at.desc(), RTUTrackerApproval.id.desc()).all()

    return get_datastore().read(_query)


def get_rtu_tracker_approval(identity, row_id: int) -> RTUTrackerApproval:
    row = get_datastore().read(lambda: db.session.get(RTUTrackerApproval, row_id))
    if row is None:
        raise NotFoundError("RTU Tracker Approval", row_id)
    _check_party(identity, row)
    return row


def update_rtu_tracker_approval(identity, row_id: int, patch: dict) -> RTUTrackerApproval:
    row = get_rtu_tracker_approval(identity, row_id)
    patch = patch or {}
    _reject_engine_fields(patch)
    _check_reviewer_fields(identity, patch)

    def _unit():
        if "siteCode" in patch:
            code = normalize_site_code(patch.get("siteCode"))
            if not code:
                raise ValidationError("siteCode must not be blank", details={"siteCode": "required"})
            row.site_code = code
        for key, attr in (("fileId", "file_id"), ("rowKey", "row_key")):
            if patch.get(key):
                setattr(row, attr, patch[key])
        _assign(row, patch)
        db.session.commit()
        return row

    try:
        get_datastore().write(_unit)
    except Exception:
        db.session.rollback()
        raise
    logger.info("RTU tracker approval %s updated", row.id, extra={"user_id": identity.user_id})
    return row


def delete_rtu_tracker_approval(identity, row_id: int) -> None:
    row = get_rtu_tracker_approval(identity, row_id)

    def _unit():
        db.session.delete(row)
        db.session.commit()

    get_datastore().write(_unit)
    logger.info("RTU tracker approval %s deleted", row_id, extra={"user_id": identity.user_id})
