"""
Action Router

Hands a site issue from its owner to another team:
  1. resolve the assignee for the target team (directory lookup)
  2. insert the Action (Pending)
  3. fork the site record into a routed copy owned by the assignee
  4. project task status onto both records
  5. commit once

The Action and its fork are one unit of work: either both rows exist or
neither does.  A fork key collision rolls the whole unit back and retries it
once with a fresh suffix before surfacing ConflictError.  Any other failure
rolls back and surfaces TransactionError.

Status transitions (ACTION_TRANSITIONS):
    Pending -> In Progress | Completed
    In Progress -> Completed

Usage:
    from das.services.action_router import submit_routing

    result = submit_routing(identity, {
        "rowData": {...}, "routing": "Equipment Team", "typeOfIssue": "RTU LOCAL",
        "sourceFileId": "fileX", "rowKey": "row7",
    })
    result["action"], result["routedRecord"]
"""

import logging
import secrets
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from das.core.exceptions import (
    ConflictError,
    DASError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    TransactionError,
    ValidationError,
)
from das.datastore import get_datastore
from das.models import db
from das.models.action import (
    ACTION_PRIORITIES,
    ACTION_STATUSES,
    TEAM_TO_ROLE,
    Action,
)
from das.models.audit import write_audit
from das.models.auth import USER_STATUS_APPROVED, User
from das.models.site import SITE_TYPE_EQUIPMENT, normalize_site_code, site_model
from das.services import site_store
from das.utils.helpers import (
    CIRCLE_KEYS,
    DIVISION_KEYS,
    SITE_CODE_KEYS,
    row_value,
    row_value_matching,
    to_int,
)

logger = logging.getLogger(__name__)

# AMC contracts are awarded per circle
AMC_CIRCLE_VENDOR = {
    "SOUTH": "Shrishaila Electricals(India Pvt ltd)",
    "WEST": "Shrishaila Electricals(India Pvt ltd)",
    "NORTH": "Spectrum Consultants",
    "EAST": "Spectrum Consultants",
}

# Divisions whose sheets omit the circle column
DIVISION_CIRCLE = {"HSR": "SOUTH", "JAYANAGAR": "SOUTH", "KORAMANGALA": "SOUTH"}

FORK_ATTEMPTS = 2


def _utcnow():
    return datetime.now(timezone.utc)


def _new_fork_suffix() -> str:
    return secrets.token_hex(3)


# ═════════════════════════════════════════════════════════════════════════════
# Row data lookups
# ═════════════════════════════════════════════════════════════════════════════


def division_of(row: dict) -> str:
    return row_value(row, DIVISION_KEYS + ("DIVISION NAME", "Division Name")) or row_value_matching(
        row, lambda h: "division" in h and "sub" not in h
    )


def circle_of(row: dict) -> str:
    circle = (row_value(row, CIRCLE_KEYS) or row_value_matching(row, lambda h: h == "circle")).upper()
    if not circle:
        circle = DIVISION_CIRCLE.get(division_of(row).upper(), "")
    return circle


def site_code_of(row: dict) -> str:
    return normalize_site_code(
        row_value(row, SITE_CODE_KEYS) or row_value_matching(row, lambda h: "site" in h and "code" in h)
    )


# ═════════════════════════════════════════════════════════════════════════════
# Assignee resolution
# ═════════════════════════════════════════════════════════════════════════════


def _normalize_vendor(vendor) -> str:
    return " ".join(str(vendor or "").lower().split())


def resolve_assignee(role: str, *, division: str = "", circle: str = "", explicit_user_id: str | None = None) -> User:
    """Pick the directory user who acts for ``role`` on a site.

    - explicit user id: must exist, be assignable and hold ``role``
    - CCR: first assignable CCR user (not division-specific)
    - AMC: the circle's contracted vendor, user serving that circle
    - others: user of the role whose divisions include ``division``
    """
    if explicit_user_id:
        user = User.query.filter_by(user_id=explicit_user_id).first()
        if user is None or not user.assignable:
            raise NotFoundError("User", explicit_user_id)
        if user.role != role:
            raise ValidationError(
                f"User {explicit_user_id} is not in the {role} team",
                details={"assignedToUserId": explicit_user_id},
            )
        return user

    candidates = (
        User.query.filter_by(role=role, is_active=True, status=USER_STATUS_APPROVED)
        .order_by(User.id.asc())
        .all()
    )

    if role == "CCR":
        if not candidates:
            raise NotFoundError("Active CCR user")
        return candidates[0]

    if role == "AMC":
        circle = str(circle or "").strip().upper()
        if not circle:
            raise ValidationError("Circle is required to route to the AMC Team", details={"circle": "required"})
        vendor = _normalize_vendor(AMC_CIRCLE_VENDOR.get(circle))
        for user in candidates:
            if vendor and _normalize_vendor(user.vendor) != vendor:
                continue
            if user.serves_circle(circle):
                return user
        raise NotFoundError(f"AMC user for circle '{circle}'")

    if not division:
        raise ValidationError(f"Division is required to route to the {role} team", details={"division": "required"})
    for user in candidates:
        if user.serves_division(division):
            return user
    raise NotFoundError(f"{role} user for division '{division}'")


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════


def _photos(value) -> list:
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return [p for p in value if p]
    return [value]


def _role_for(routing: str) -> str:
    role = TEAM_TO_ROLE.get(routing)
    if role is None:
        raise ValidationError(
            f"Invalid routing: {routing}. Supported routings: {', '.join(TEAM_TO_ROLE)}",
            details={"routing": routing},
        )
    return role


def get_action_or_404(action_id: int) -> Action:
    action = get_datastore().read(lambda: db.session.get(Action, action_id))
    if action is None:
        raise NotFoundError("Action", action_id)
    return action


def advance_action(action: Action, target: str) -> bool:
    """Move ``action`` forward to ``target`` if allowed; never backwards.

    Returns True when the status changed.  Does not commit.
    """
    if action is None or not action.can_transition_to(target):
        return False
    action.status = target
    if target == "Completed":
        action.completed_date = _utcnow()
    return True


def _run_forking_unit(unit, operation: str, extra: dict):
    """Run ``unit(suffix)`` with one retry on a fork key collision."""
    store = get_datastore()
    for attempt in range(1, FORK_ATTEMPTS + 1):
        suffix = _new_fork_suffix()
        try:
            return store.write(unit, suffix)
        except (ConflictError, IntegrityError) as exc:
            db.session.rollback()
            if attempt == FORK_ATTEMPTS:
                logger.warning("%s: fork collision persisted after retry", operation, extra=extra)
                if isinstance(exc, ConflictError):
                    raise
                raise ConflictError("Site record", "rowKey", suffix) from exc
            logger.info("%s: fork suffix %s collided, retrying", operation, suffix, extra=extra)
        except DASError:
            db.session.rollback()
            raise
        except Exception as exc:
            db.session.rollback()
            logger.error("%s failed and was rolled back", operation, exc_info=exc, extra=extra)
            raise TransactionError(operation) from exc


# ═════════════════════════════════════════════════════════════════════════════
# Submit
# ═════════════════════════════════════════════════════════════════════════════


def submit_routing(identity, payload: dict) -> dict:
    """Create an Action and the routed copy of its site record atomically.

    Returns ``{"action", "sourceRecord", "routedRecord"}``.
    """
    payload = payload or {}
    row = payload.get("rowData")
    routing = payload.get("routing")
    type_of_issue = payload.get("typeOfIssue")
    file_id = payload.get("sourceFileId") or payload.get("fileId")
    row_key = payload.get("rowKey")

    missing = [
        name for name, value in (
            ("rowData", row), ("routing", routing), ("typeOfIssue", type_of_issue),
            ("sourceFileId", file_id), ("rowKey", row_key),
        ) if not value
    ]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={name: "required" for name in missing},
        )
    if not isinstance(row, dict):
        raise ValidationError("rowData must be an object", details={"rowData": "expected object"})

    role = _role_for(routing)
    priority = payload.get("priority") or "Medium"
    if priority not in ACTION_PRIORITIES:
        raise ValidationError(f"Invalid priority '{priority}'", details={"priority": priority})
    site_type = payload.get("siteType") or SITE_TYPE_EQUIPMENT
    model = site_model(site_type)
    if model is None:
        raise ValidationError(f"Unknown site type '{site_type}'", details={"siteType": site_type})

    site_code = normalize_site_code(payload.get("siteCode")) or site_code_of(row)
    if not site_code:
        raise ValidationError("Site Code not found in rowData", details={"siteCode": "required"})

    existing = get_datastore().read(lambda: model.query.filter_by(file_id=file_id, row_key=row_key).first())
    location_row = existing.row_data() if existing is not None else row
    division = (existing.division if existing is not None else "") or division_of(location_row)
    circle = (existing.circle if existing is not None else "") or circle_of(location_row)

    assignee = resolve_assignee(
        role, division=division, circle=circle, explicit_user_id=payload.get("assignedToUserId"),
    )
    if assignee.user_id == identity.user_id:
        raise ValidationError("Cannot route an issue to yourself", details={"assignedToUserId": assignee.user_id})

    log_extra = {"user_id": identity.user_id, "file_id": file_id, "row_key": row_key, "site_code": site_code}

    def _unit(suffix):
        record = model.query.filter_by(file_id=file_id, row_key=row_key).first()
        if record is None:
            record, _ = site_store.stage_site(site_type, file_id, row_key, identity.user_id, {
                "siteCode": site_code,
                "originalRowData": row,
                "headers": payload.get("headers") or [],
                "siteObservations": payload.get("siteObservations", "Pending"),
                "typeOfIssue": type_of_issue,
                "remarks": payload.get("remarks") or "",
            })
            db.session.flush()
        if not identity.is_admin and record.owner_user_id != identity.user_id:
            raise ForbiddenError("Only the current owner can route this site")
        if record.site_code != site_code:
            raise ValidationError(
                f"Row {file_id}/{row_key} is site {record.site_code}, not {site_code}",
                details={"siteCode": site_code},
            )

        action = Action(
            row_data=dict(row),
            headers=list(payload.get("headers") or []),
            routing=routing,
            type_of_issue=str(type_of_issue),
            remarks=str(payload.get("remarks") or ""),
            photos=_photos(payload.get("photo", payload.get("photos"))),
            assigned_to_user_id=assignee.user_id,
            assigned_to_role=role,
            assigned_to_division=division or None,
            assigned_to_vendor=assignee.vendor,
            assigned_by_user_id=identity.user_id,
            assigned_by_role=identity.role,
            status="Pending",
            priority=priority,
            source_file_id=file_id,
            original_row_index=to_int(payload.get("originalRowIndex")),
            site_type=site_type,
            site_record_id=record.id,
        )
        db.session.add(action)
        db.session.flush()

        fork = site_store.fork_for_routing(
            site_type, file_id, record.row_key, assignee.user_id, suffix,
            task_status=f"Pending at {role} Team",
        )
        fork.type_of_issue = str(type_of_issue)
        record.task_status = f"Routed to {routing}"
        action.routed_site_record_id = fork.id

        write_audit(
            entity_type="action",
            entity_id=action.id,
            action="action.submit",
            actor=identity.user_id,
            actor_role=identity.role,
            diff={"routing": routing, "assignedTo": assignee.user_id, "routedRowKey": fork.row_key},
        )
        db.session.commit()
        return {"action": action, "sourceRecord": record, "routedRecord": fork}

    result = _run_forking_unit(_unit, "submit_routing", log_extra)
    logger.info(
        "Routed %s to %s (%s) as action %s, fork %s",
        site_code, routing, assignee.user_id, result["action"].id, result["routedRecord"].row_key,
        extra={**log_extra, "action_id": result["action"].id},
    )
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Status
# ═════════════════════════════════════════════════════════════════════════════


def _task_status_for(action: Action, status: str) -> str:
    team = f"{action.assigned_to_role} Team"
    if status == "Completed":
        return f"Completed by {team}"
    if status == "In Progress":
        return f"In Progress at {team}"
    return f"Pending at {team}"


def _routed_record(action: Action):
    if action.routed_site_record_id is None:
        return None
    return db.session.get(site_model(action.site_type), action.routed_site_record_id)


def update_action_status(identity, action_id: int, status: str, remarks: str | None = None) -> Action:
    """Forward-only status move by the assignee (or Admin)."""
    if status not in ACTION_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(ACTION_STATUSES)}", details={"status": status},
        )

    action = get_action_or_404(action_id)
    if not identity.is_admin and action.assigned_to_user_id != identity.user_id:
        raise ForbiddenError("Only the assignee can update this action")
    if not action.can_transition_to(status):
        raise InvalidTransitionError("Action", action.status, status)

    def _unit():
        old = action.status
        advance_action(action, status)
        if remarks is not None:
            action.remarks = str(remarks)
        fork = _routed_record(action)
        if fork is not None:
            fork.task_status = _task_status_for(action, status)
        write_audit(
            entity_type="action",
            entity_id=action.id,
            action="action.status",
            actor=identity.user_id,
            actor_role=identity.role,
            diff={"status": {"old": old, "new": status}},
        )
        db.session.commit()

    try:
        get_datastore().write(_unit)
    except DASError:
        db.session.rollback()
        raise
    except Exception as exc:
        db.session.rollback()
        logger.error("update_action_status failed", exc_info=exc, extra={"action_id": action_id})
        raise TransactionError("update_action_status") from exc

    logger.info("Action %s -> %s", action.id, status,
                extra={"user_id": identity.user_id, "action_id": action.id})
    return action


# ═════════════════════════════════════════════════════════════════════════════
# Reroute
# ═════════════════════════════════════════════════════════════════════════════


def reroute_action(
    identity,
    action_id: int,
    routing: str,
    assigned_to_user_id: str | None = None,
    remarks: str | None = None,
    photos=None,
) -> dict:
    """Supersede an Action with a new one for another team.

    The old Action keeps its history fields; it only becomes Completed with
    ``superseded_by_id`` pointing at its replacement.  The new fork is taken
    from the old fork, so ``original_owner_user_id`` still names the first
    owner of the chain.

    Returns ``{"action", "previousAction", "routedRecord"}``.
    """
    if not routing:
        raise ValidationError("routing is required", details={"routing": "required"})
    role = _role_for(routing)

    old = get_action_or_404(action_id)
    if not identity.is_admin and identity.user_id not in (old.assigned_to_user_id, old.assigned_by_user_id):
        raise ForbiddenError("Only the assignee or the assigner can reroute this action")
    if old.status == "Completed":
        raise InvalidTransitionError("Action", old.status, "rerouted")

    model = site_model(old.site_type)
    source = _routed_record(old) or (
        db.session.get(model, old.site_record_id) if old.site_record_id is not None else None
    )
    if source is None:
        raise NotFoundError("Site record for action", old.id)

    division = source.division or division_of(source.row_data())
    circle = source.circle or circle_of(source.row_data())
    assignee = resolve_assignee(role, division=division, circle=circle, explicit_user_id=assigned_to_user_id)
    if assignee.user_id == identity.user_id:
        raise ValidationError("Cannot route an issue to yourself", details={"assignedToUserId": assignee.user_id})

    log_extra = {"user_id": identity.user_id, "action_id": old.id, "site_code": source.site_code}

    def _unit(suffix):
        new = Action(
            row_data=dict(old.row_data or {}),
            headers=list(old.headers or []),
            routing=routing,
            type_of_issue=old.type_of_issue,
            remarks=str(remarks) if remarks is not None else old.remarks,
            photos=_photos(photos) if photos is not None else list(old.photos or []),
            assigned_to_user_id=assignee.user_id,
            assigned_to_role=role,
            assigned_to_division=division or None,
            assigned_to_vendor=assignee.vendor,
            assigned_by_user_id=identity.user_id,
            assigned_by_role=identity.role,
            status="Pending",
            priority=old.priority,
            source_file_id=old.source_file_id,
            original_row_index=old.original_row_index,
            site_type=old.site_type,
            site_record_id=old.site_record_id,
        )
        db.session.add(new)
        db.session.flush()

        fork = site_store.fork_for_routing(
            old.site_type, source.file_id, source.row_key, assignee.user_id, suffix,
            task_status=f"Pending at {role} Team",
        )
        new.routed_site_record_id = fork.id

        source.task_status = f"Rerouted to {routing}"
        root = site_store.root_of(source)
        if root is not source:
            root.task_status = f"Routed to {routing}"

        old.status = "Completed"
        old.completed_date = _utcnow()
        old.superseded_by_id = new.id

        write_audit(
            entity_type="action",
            entity_id=old.id,
            action="action.reroute",
            actor=identity.user_id,
            actor_role=identity.role,
            diff={"supersededBy": new.id, "routing": {"old": old.routing, "new": routing},
                  "assignedTo": {"old": old.assigned_to_user_id, "new": assignee.user_id}},
        )
        db.session.commit()
        return {"action": new, "previousAction": old, "routedRecord": fork}

    result = _run_forking_unit(_unit, "reroute_action", log_extra)
    logger.info("Action %s rerouted to %s as action %s", old.id, routing, result["action"].id,
                extra={**log_extra, "action_id": result["action"].id})
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Delete
# ═════════════════════════════════════════════════════════════════════════════


def delete_action(identity, action_id: int) -> None:
    """Hard delete.  The routed record stays; approvals keep their rows."""
    action = get_action_or_404(action_id)
    if not identity.is_admin and action.assigned_to_user_id != identity.user_id:
        raise ForbiddenError("Only the assignee can delete this action")

    def _unit():
        write_audit(
            entity_type="action",
            entity_id=action.id,
            action="action.delete",
            actor=identity.user_id,
            actor_role=identity.role,
            diff={"routing": action.routing, "status": action.status,
                  "routedSiteRecordId": action.routed_site_record_id},
        )
        Action.query.filter_by(superseded_by_id=action.id).update(
            {Action.superseded_by_id: None}, synchronize_session=False,
        )
        db.session.delete(action)
        db.session.commit()

    get_datastore().write(_unit)
    logger.info("Action %s deleted", action_id, extra={"user_id": identity.user_id, "action_id": action_id})


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def _matches_search(action: Action, needle: str) -> bool:
    haystack = [action.routing, action.type_of_issue, action.remarks, action.assigned_to_division]
    haystack.extend(action.row_data.values() if action.row_data else [])
    return any(needle in str(v or "").lower() for v in haystack)


def list_my_actions(identity, status: str | None = None, priority: str | None = None, search: str | None = None) -> list:
    def _query():
        q = Action.query.filter_by(assigned_to_user_id=identity.user_id)
        if status and status != "all":
            q = q.filter_by(status=status)
        if priority and priority != "all":
            q = q.filter_by(priority=priority)
        return q.order_by(Action.assigned_date.desc(), Action.id.desc()).all()

    actions = get_datastore().read(_query)
    if search:
        needle = search.strip().lower()
        actions = [a for a in actions if _matches_search(a, needle)]
    return actions


def list_my_routed_actions(identity) -> list:
    return get_datastore().read(
        lambda: Action.query.filter_by(assigned_by_user_id=identity.user_id)
        .order_by(Action.assigned_date.desc(), Action.id.desc())
        .all()
    )


def list_all_actions(identity, status: str | None = None) -> list:
    if identity.role not in ("CCR", "Admin"):
        raise ForbiddenError("Only CCR can access all actions")

    def _query():
        q = Action.query
        if status and status != "all":
            q = q.filter_by(status=status)
        return q.order_by(Action.assigned_date.desc(), Action.id.desc()).all()

    return get_datastore().read(_query)


def get_action(identity, action_id: int) -> Action:
    action = get_action_or_404(action_id)
    if identity.role in ("CCR", "Admin"):
        return action
    if identity.user_id not in (action.assigned_to_user_id, action.assigned_by_user_id):
        raise ForbiddenError("Not a party to this action")
    return action
