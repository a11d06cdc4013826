"""
Approval Engine

Sign-off workflows gating a status change on a site record.

Workflows (approval_type):
    AMC Resolution Approval          AMC submits, Equipment signs off,
                                     Equipment approval spawns the CCR step
    CCR Resolution Approval          signed off by CCR, writes ccr_status
    RTU Tracker Resolution Approval  signed off by CCR, writes the RTU record
                                     and its RTUTrackerApproval detail row

State machine:
    Pending -> Approved | Kept for Monitoring | Recheck Requested

Every decision is one unit of work: the Approval row, the referenced site
record, the root original of its fork chain, the linked Action and any
spawned follow-up are committed together or not at all.
"""

import logging
from datetime import datetime, time, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from das.core.exceptions import (
    ConflictError,
    DASError,
    ForbiddenError,
    InvalidReferenceError,
    InvalidTransitionError,
    NotFoundError,
    TransactionError,
    ValidationError,
)
from das.datastore import get_datastore
from das.models import db
from das.models.action import Action
from das.models.approval import (
    AMC_RESOLUTION,
    APPROVAL_SITE_TYPE,
    APPROVAL_STATUSES,
    APPROVAL_TYPES,
    APPROVER_ROLE,
    CCR_RESOLUTION,
    RTU_TRACKER_RESOLUTION,
    STATUS_APPROVED,
    STATUS_KEPT_FOR_MONITORING,
    STATUS_PENDING,
    STATUS_RECHECK_REQUESTED,
    Approval,
    RTUTrackerApproval,
)
from das.models.audit import write_audit
from das.models.auth import User
from das.models.site import SITE_TYPE_EQUIPMENT, SITE_TYPE_RTU_TRACKER, normalize_site_code, site_model
from das.services import site_store
from das.services.action_router import advance_action, division_of, resolve_assignee
from das.services.rtu_tracker_approvals import sync_mirror
from das.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

CCR_REVIEWED_TYPES = {CCR_RESOLUTION, RTU_TRACKER_RESOLUTION}
SIGNED_OFF = {STATUS_APPROVED, STATUS_KEPT_FOR_MONITORING}

SITE_CODE_SEARCH_LIMIT = 50


def _utcnow():
    return datetime.now(timezone.utc)


def _run_unit(unit, operation: str, extra: dict):
    """Commit-or-rollback wrapper shared by every approval write."""
    try:
        return get_datastore().write(unit)
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            "Approval", "fileId/rowKey/approvalType",
            message="An approval for this row and type is already Pending",
        ) from exc
    except DASError:
        db.session.rollback()
        raise
    except Exception as exc:
        db.session.rollback()
        logger.error("%s failed and was rolled back", operation, exc_info=exc, extra=extra)
        raise TransactionError(operation) from exc


def _pending_for(file_id, row_key, approval_type, exclude_id=None):
    q = Approval.query.filter_by(
        file_id=file_id, row_key=row_key, approval_type=approval_type, status=STATUS_PENDING,
    )
    if exclude_id is not None:
        q = q.filter(Approval.id != exclude_id)
    return q.first()


def _site_record(approval: Approval):
    record_id = approval.site_record_id
    if record_id is None:
        return None
    return db.session.get(site_model(approval.site_type), record_id)


def _propagation_targets(record) -> list:
    """The referenced record and the root original of its fork chain."""
    if record is None:
        return []
    root = site_store.root_of(record)
    return [record] if root is record else [record, root]


def coerce_status(status: str, remarks: str | None = None) -> str:
    """Map legacy status words onto approval statuses.

    ``Completed`` means Approved; ``In Progress`` means Kept for Monitoring
    when the remarks say so, otherwise Recheck Requested.
    """
    if status == "Completed":
        return STATUS_APPROVED
    if status == "In Progress":
        if "kept for monitoring" in str(remarks or "").lower():
            return STATUS_KEPT_FOR_MONITORING
        return STATUS_RECHECK_REQUESTED
    return status


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════


def _resolve_site_reference(approval_type: str, submission: dict):
    """Exactly one of equipmentOfflineSiteId / rtuTrackerSiteId, matching the type."""
    equipment_id = submission.get("equipmentOfflineSiteId")
    rtu_id = submission.get("rtuTrackerSiteId")
    given = [name for name, value in (
        ("equipmentOfflineSiteId", equipment_id), ("rtuTrackerSiteId", rtu_id),
    ) if value]
    if len(given) != 1:
        raise InvalidReferenceError(
            "Exactly one of equipmentOfflineSiteId or rtuTrackerSiteId is required",
            details={"equipmentOfflineSiteId": equipment_id, "rtuTrackerSiteId": rtu_id},
        )

    expected = "rtuTrackerSiteId" if APPROVAL_SITE_TYPE[approval_type] == SITE_TYPE_RTU_TRACKER else "equipmentOfflineSiteId"
    if given[0] != expected:
        raise InvalidReferenceError(
            f"{approval_type} must reference {expected}", details={given[0]: "wrong site table"},
        )

    site_type = APPROVAL_SITE_TYPE[approval_type]
    record_id = equipment_id or rtu_id
    record = db.session.get(site_model(site_type), record_id)
    if record is None:
        raise InvalidReferenceError(f"Site record id={record_id} not found", details={expected: record_id})
    return record


def _resolve_approver(identity, approval_type: str, record, action, explicit_user_id=None):
    """Returns ``(user_id, role)``."""
    if explicit_user_id:
        user = User.query.filter_by(user_id=explicit_user_id).first()
        if user is None or not user.assignable:
            raise NotFoundError("User", explicit_user_id)
        return user.user_id, user.role

    role = APPROVER_ROLE[approval_type]
    if (
        action is not None
        and action.assigned_by_user_id != identity.user_id
        and action.assigned_by_role == role
    ):
        return action.assigned_by_user_id, action.assigned_by_role

    if role == "CCR":
        user = resolve_assignee("CCR")
    else:
        user = resolve_assignee(role, division=record.division or division_of(record.row_data()))
    return user.user_id, user.role


def create_approval(identity, submission: dict) -> Approval:
    """Open a Pending approval for a site record.

    Rejects a second submission for the same (fileId, rowKey, approvalType)
    while one is Pending.  Marks the record Resolved and awaiting review and
    moves a Pending linked Action to In Progress.
    """
    submission = submission or {}
    approval_type = submission.get("approvalType")
    if approval_type not in APPROVAL_TYPES:
        raise InvalidReferenceError(
            f"approvalType must be one of: {', '.join(APPROVAL_TYPES)}",
            details={"approvalType": approval_type},
        )
    metadata = submission.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object", details={"metadata": "expected object"})

    def _unit():
        record = _resolve_site_reference(approval_type, submission)

        site_code = normalize_site_code(submission.get("siteCode")) or record.site_code
        if site_code != record.site_code:
            raise ValidationError(
                f"Site record {record.id} is site {record.site_code}, not {site_code}",
                details={"siteCode": site_code},
            )
        file_id = submission.get("fileId") or record.file_id
        row_key = submission.get("rowKey") or record.row_key

        action = None
        if submission.get("actionId"):
            action = db.session.get(Action, submission["actionId"])
            if action is None:
                raise InvalidReferenceError(
                    f"Action id={submission['actionId']} not found", details={"actionId": submission["actionId"]},
                )

        if _pending_for(file_id, row_key, approval_type) is not None:
            raise ConflictError(
                "Approval", "fileId/rowKey/approvalType", f"{file_id}/{row_key}/{approval_type}",
                message=f"A {approval_type} for {file_id}/{row_key} is already Pending",
            )

        assignee_id, assignee_role = _resolve_approver(
            identity, approval_type, record, action, submission.get("assignedToUserId"),
        )
        if assignee_id == identity.user_id:
            raise ValidationError("Cannot submit an approval to yourself", details={"assignedToUserId": assignee_id})

        approval = Approval(
            action_id=action.id if action is not None else None,
            equipment_offline_site_id=record.id if record.SITE_TYPE == SITE_TYPE_EQUIPMENT else None,
            rtu_tracker_site_id=record.id if record.SITE_TYPE == SITE_TYPE_RTU_TRACKER else None,
            site_code=site_code,
            approval_type=approval_type,
            status=STATUS_PENDING,
            submitted_by_user_id=identity.user_id,
            submitted_by_role=identity.role,
            assigned_to_user_id=assignee_id,
            assigned_to_role=assignee_role,
            submission_remarks=str(submission.get("submissionRemarks") or ""),
            photos=list(submission.get("photos") or []),
            support_documents=list(submission.get("supportDocuments") or []),
            file_id=file_id,
            row_key=row_key,
            original_row_data=dict(submission.get("originalRowData") or record.row_data()),
            meta=dict(metadata),
        )
        db.session.add(approval)
        db.session.flush()

        for target in _propagation_targets(record):
            fields = {"site_observations": "Resolved"}
            if target.SITE_TYPE == SITE_TYPE_EQUIPMENT and (target.ccr_status or "") not in SIGNED_OFF:
                fields["ccr_status"] = "Pending"
            site_store.apply_status_fields(target, **fields)

        if action is not None:
            advance_action(action, "In Progress")

        if approval_type == RTU_TRACKER_RESOLUTION:
            sync_mirror(
                approval,
                type_of_issue=str(metadata.get("typeOfIssue") or record.type_of_issue or ""),
                date_of_inspection=str(getattr(record, "date_of_inspection", "") or ""),
                field_team_action=metadata.get("fieldTeamAction"),
            )

        write_audit(
            entity_type="approval",
            entity_id=approval.id,
            action="approval.create",
            actor=identity.user_id,
            actor_role=identity.role,
            diff={"approvalType": approval_type, "assignedTo": assignee_id, "rowKey": row_key},
        )
        db.session.commit()
        return approval

    extra = {"user_id": identity.user_id, "file_id": submission.get("fileId"),
             "row_key": submission.get("rowKey"), "site_code": submission.get("siteCode")}
    approval = _run_unit(_unit, "create_approval", extra)
    logger.info("%s #%s opened for %s, assigned to %s", approval_type, approval.id, approval.site_code,
                approval.assigned_to_user_id, extra={**extra, "approval_id": approval.id})
    return approval


# ═════════════════════════════════════════════════════════════════════════════
# Decide
# ═════════════════════════════════════════════════════════════════════════════


def _check_decider(identity, approval: Approval) -> None:
    if identity.is_admin:
        return
    if identity.role == "CCR" and approval.approval_type in CCR_REVIEWED_TYPES:
        return
    if approval.assigned_to_user_id != identity.user_id or approval.assigned_to_role != identity.role:
        raise ForbiddenError("You are not authorized to update this approval")


def _propagate(approval: Approval, status: str, metadata: dict) -> None:
    targets = _propagation_targets(_site_record(approval))
    if not targets:
        logger.warning("Approval %s references no site record; nothing to propagate", approval.id,
                       extra={"approval_id": approval.id, "site_code": approval.site_code})
        return

    for target in targets:
        if status == STATUS_RECHECK_REQUESTED:
            fields = {"site_observations": "Pending", "ccr_status": ""}
            if approval.approval_type == RTU_TRACKER_RESOLUTION:
                fields["task_status"] = status
        elif approval.approval_type == RTU_TRACKER_RESOLUTION:
            fields = {"site_observations": "Resolved", "task_status": status,
                      "ccr_status": metadata.get("ccrStatus") or None}
            if metadata.get("typeOfIssue"):
                target.type_of_issue = str(metadata["typeOfIssue"])
        elif approval.approval_type == CCR_RESOLUTION:
            fields = {"site_observations": "Resolved", "ccr_status": status}
        else:
            # AMC sign-off still waits for CCR
            fields = {"site_observations": "Resolved"}
        site_store.apply_status_fields(target, **fields)
        target.last_synced_at = _utcnow()


def _spawn_ccr_review(identity, approval: Approval, remarks) -> Approval | None:
    """Second step of the AMC workflow: a Pending CCR Resolution Approval."""
    if _pending_for(approval.file_id, approval.row_key, CCR_RESOLUTION) is not None:
        logger.info("CCR review already pending for %s/%s", approval.file_id, approval.row_key,
                    extra={"approval_id": approval.id})
        return None
    try:
        ccr_user = resolve_assignee("CCR")
    except NotFoundError:
        logger.warning("No active CCR user; CCR review for approval %s not opened", approval.id,
                       extra={"approval_id": approval.id, "site_code": approval.site_code})
        return None

    source_action = db.session.get(Action, approval.action_id) if approval.action_id else None
    note = str(remarks or "Resolution approved by Equipment; pending CCR approval")

    ccr_action = Action(
        row_data=dict(source_action.row_data if source_action is not None else approval.original_row_data or {}),
        headers=list(source_action.headers or []) if source_action is not None else [],
        routing="CCR Team",
        type_of_issue=CCR_RESOLUTION,
        remarks=note,
        photos=list(approval.photos or []),
        assigned_to_user_id=ccr_user.user_id,
        assigned_to_role="CCR",
        assigned_to_division=source_action.assigned_to_division if source_action is not None else None,
        assigned_by_user_id=identity.user_id,
        assigned_by_role=identity.role,
        status="Pending",
        priority=source_action.priority if source_action is not None else "Medium",
        source_file_id=approval.file_id,
        original_row_index=source_action.original_row_index if source_action is not None else None,
        site_type=SITE_TYPE_EQUIPMENT,
        site_record_id=approval.equipment_offline_site_id,
    )
    db.session.add(ccr_action)
    db.session.flush()

    ccr_approval = Approval(
        action_id=ccr_action.id,
        equipment_offline_site_id=approval.equipment_offline_site_id,
        site_code=approval.site_code,
        approval_type=CCR_RESOLUTION,
        status=STATUS_PENDING,
        submitted_by_user_id=identity.user_id,
        submitted_by_role=identity.role,
        assigned_to_user_id=ccr_user.user_id,
        assigned_to_role="CCR",
        submission_remarks=note,
        photos=list(approval.photos or []),
        support_documents=list(approval.support_documents or []),
        file_id=approval.file_id,
        row_key=approval.row_key,
        original_row_data=dict(approval.original_row_data or {}),
        meta={"firstApprovalId": approval.id, "firstApprovalType": AMC_RESOLUTION},
    )
    db.session.add(ccr_approval)
    db.session.flush()
    write_audit(
        entity_type="approval",
        entity_id=ccr_approval.id,
        action="approval.create",
        actor=identity.user_id,
        actor_role=identity.role,
        diff={"approvalType": CCR_RESOLUTION, "assignedTo": ccr_user.user_id, "spawnedFrom": approval.id},
    )
    return ccr_approval


def update_approval_status(identity, approval_id: int, status: str, remarks=None, metadata=None) -> Approval:
    """Decide a Pending approval and write the outcome back to its records."""
    if not status:
        raise ValidationError("Status is required", details={"status": "required"})
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object", details={"metadata": "expected object"})
    new_status = coerce_status(status, remarks)
    if new_status not in APPROVAL_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(APPROVAL_STATUSES)}", details={"status": status},
        )

    approval = get_datastore().read(lambda: db.session.get(Approval, approval_id))
    if approval is None:
        raise NotFoundError("Approval", approval_id)
    _check_decider(identity, approval)
    if not approval.can_transition_to(new_status):
        raise InvalidTransitionError("Approval", approval.status, new_status)

    extra = {"user_id": identity.user_id, "approval_id": approval.id, "site_code": approval.site_code}

    def _unit():
        old = approval.status
        approval.status = new_status
        if remarks is not None:
            approval.approval_remarks = str(remarks)
        if metadata:
            approval.meta = {**(approval.meta or {}), **metadata}
        if new_status in SIGNED_OFF:
            approval.approved_by_user_id = identity.user_id
            approval.approved_by_role = identity.role
            approval.approved_at = _utcnow()

        _propagate(approval, new_status, metadata or {})

        if approval.action_id is not None:
            action = db.session.get(Action, approval.action_id)
            if action is not None:
                advance_action(action, "Completed" if new_status in SIGNED_OFF else "In Progress")
                if remarks is not None:
                    action.remarks = str(remarks)

        spawned = None
        if (
            approval.approval_type == AMC_RESOLUTION
            and new_status == STATUS_APPROVED
            and (identity.role == "Equipment" or identity.is_admin)
        ):
            spawned = _spawn_ccr_review(identity, approval, remarks)

        if approval.approval_type == RTU_TRACKER_RESOLUTION:
            meta = metadata or {}
            sync_mirror(
                approval,
                ccr_status=meta.get("ccrStatus"),
                ccr_remarks=str(remarks) if remarks is not None else None,
                type_of_issue=meta.get("typeOfIssue"),
                field_team_action=meta.get("fieldTeamAction"),
            )

        write_audit(
            entity_type="approval",
            entity_id=approval.id,
            action="approval.decide",
            actor=identity.user_id,
            actor_role=identity.role,
            diff={"status": {"old": old, "new": new_status},
                  "spawnedApprovalId": spawned.id if spawned is not None else None},
        )
        db.session.commit()
        return approval

    _run_unit(_unit, "update_approval_status", extra)
    logger.info("Approval %s -> %s by %s", approval.id, new_status, identity.user_id, extra=extra)
    return approval


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def _scoped_query(identity, approval_type: str | None = None):
    q = Approval.query
    if identity.is_admin:
        if approval_type:
            q = q.filter_by(approval_type=approval_type)
        return q
    if identity.role == "Equipment":
        return q.filter_by(approval_type=AMC_RESOLUTION, assigned_to_user_id=identity.user_id)
    if identity.role == "CCR":
        if approval_type in CCR_REVIEWED_TYPES:
            return q.filter_by(approval_type=approval_type)
        return q.filter(Approval.approval_type.in_(CCR_REVIEWED_TYPES))
    q = q.filter_by(assigned_to_user_id=identity.user_id)
    if approval_type:
        q = q.filter_by(approval_type=approval_type)
    return q


def list_approvals(identity, status: str | None = None, approval_type: str | None = None) -> list:
    def _query():
        q = _scoped_query(identity, approval_type)
        if status and status != "all":
            q = q.filter_by(status=status)
        return q.order_by(Approval.created_at.desc(), Approval.id.desc()).all()

    return get_datastore().read(_query)


def get_approval(identity, approval_id: int) -> Approval:
    approval = get_datastore().read(lambda: db.session.get(Approval, approval_id))
    if approval is None:
        raise NotFoundError("Approval", approval_id)
    if identity.is_admin:
        return approval
    if identity.role == "CCR" and approval.approval_type in CCR_REVIEWED_TYPES:
        return approval
    if identity.user_id not in (approval.assigned_to_user_id, approval.submitted_by_user_id):
        raise ForbiddenError("You are not authorized to view this approval")
    return approval


def approval_stats(identity) -> dict:
    def _query():
        counts = {s: _scoped_query(identity).filter_by(status=s).count() for s in APPROVAL_STATUSES}
        return counts, _scoped_query(identity).count()

    counts, total = get_datastore().read(_query)
    return {
        "pending": counts[STATUS_PENDING],
        "approved": counts[STATUS_APPROVED],
        "keptForMonitoring": counts[STATUS_KEPT_FOR_MONITORING],
        "recheckRequested": counts[STATUS_RECHECK_REQUESTED],
        "total": total,
    }


def approval_site_codes(identity, search: str | None = None) -> list:
    if not identity.is_admin:
        raise ForbiddenError("Only Admin users can access this endpoint")
    needle = normalize_site_code(search)

    def _query():
        q = db.session.query(Approval.site_code).distinct()
        if needle:
            q = q.filter(Approval.site_code.ilike(f"%{needle}%"))
        return [row[0] for row in q.all()]

    codes = sorted({normalize_site_code(c) for c in get_datastore().read(_query) if c and c.strip()})
    return codes[:SITE_CODE_SEARCH_LIMIT]


# ═════════════════════════════════════════════════════════════════════════════
# Admin utilities
# ═════════════════════════════════════════════════════════════════════════════


def _approved_on(identity, approved_date, site_code, roles=None):
    if not identity.is_admin:
        raise ForbiddenError("Only Admin users can use the approval reset utilities")
    if not approved_date or not site_code:
        raise ValidationError(
            "Date of Approved and Sitecode are required",
            details={"approvedDate": approved_date or "required", "siteCode": site_code or "required"},
        )
    try:
        day = parse_date_input(approved_date)
    except ValueError as exc:
        raise ValidationError("Invalid date format", details={"approvedDate": approved_date}) from exc

    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    q = Approval.query.filter(
        Approval.site_code == normalize_site_code(site_code),
        Approval.status.in_(SIGNED_OFF),
        Approval.approved_at >= start,
        Approval.approved_at < start + timedelta(days=1),
    )
    if roles:
        q = q.filter(Approval.approved_by_role.in_([str(r).strip() for r in roles]))
    return q.order_by(Approval.approved_at.asc(), Approval.id.asc()).all()


def check_approvals(identity, approved_date, site_code) -> dict:
    """Approvals signed off on ``approved_date`` for ``site_code``, by approver role."""
    approvals = get_datastore().read(lambda: _approved_on(identity, approved_date, site_code))
    if not approvals:
        raise NotFoundError(f"Approvals approved on {approved_date} for site {site_code}")

    by_role = {}
    for approval in approvals:
        by_role.setdefault(approval.approved_by_role or "Unknown", []).append(approval.to_dict())
    roles = sorted(by_role)
    return {
        "hasMultipleRoles": "Equipment" in by_role and "CCR" in by_role,
        "roles": roles,
        "approvalsByRole": {"Equipment": by_role.get("Equipment", []), "CCR": by_role.get("CCR", [])},
        "totalCount": len(approvals),
        "approvals": [a.to_dict() for a in approvals],
    }


def reset_approvals(identity, approved_date, site_code, roles=None) -> dict:
    """Send signed-off approvals back to Pending.

    Linked Actions go back to Pending and the site's ccr_status is cleared.
    An approval is skipped when its key already has another Pending approval.
    Each reset writes an AuditLog row.
    """
    if roles is not None and not isinstance(roles, list):
        raise ValidationError("roles must be a list", details={"roles": "expected list"})
    extra = {"user_id": identity.user_id, "site_code": normalize_site_code(site_code)}

    def _unit():
        approvals = _approved_on(identity, approved_date, site_code, roles)
        if not approvals:
            raise NotFoundError(f"Approvals approved on {approved_date} for site {site_code}")

        reset, skipped, reopened = [], [], set()
        for approval in approvals:
            key = (approval.file_id, approval.row_key, approval.approval_type)
            if key in reopened or _pending_for(*key, exclude_id=approval.id) is not None:
                skipped.append(approval.id)
                continue

            before = {"status": approval.status, "approvedBy": approval.approved_by_user_id,
                      "approvedAt": approval.approved_at}
            approval.status = STATUS_PENDING
            approval.approval_remarks = ""
            approval.approved_by_user_id = None
            approval.approved_by_role = None
            approval.approved_at = None
            reopened.add(key)

            if approval.action_id is not None:
                action = db.session.get(Action, approval.action_id)
                if action is not None:
                    action.status = "Pending"
                    action.completed_date = None

            if approval.site_type == SITE_TYPE_EQUIPMENT:
                for target in _propagation_targets(_site_record(approval)):
                    site_store.apply_status_fields(target, ccr_status="")

            mirror = RTUTrackerApproval.query.filter_by(approval_id=approval.id).first()
            if mirror is not None:
                sync_mirror(approval)

            write_audit(
                entity_type="approval",
                entity_id=approval.id,
                action="approval.reset",
                actor=identity.user_id,
                actor_role=identity.role,
                diff={"status": {"old": before["status"], "new": STATUS_PENDING},
                      "approvedBy": {"old": before["approvedBy"], "new": None},
                      "approvedAt": {"old": before["approvedAt"], "new": None}},
            )
            db.session.flush()
            reset.append(approval)

        db.session.commit()
        return reset, skipped

    reset, skipped = _run_unit(_unit, "reset_approvals", extra)
    logger.warning("Admin reset %d approval(s) for %s approved on %s (%d skipped)",
                   len(reset), extra["site_code"], approved_date, len(skipped), extra=extra)
    return {
        "count": len(reset),
        "siteCode": extra["site_code"],
        "approvedDate": str(approved_date),
        "approvals": [
            {"id": a.id, "approvalType": a.approval_type, "status": a.status, "siteCode": a.site_code}
            for a in reset
        ],
        "skipped": skipped,
    }
