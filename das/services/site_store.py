"""
Site Record Store

Owns every write to equipment_offline_sites and rtu_tracker_sites:
  - upsert of a user's observation for one sheet row (field-level merge)
  - forking a record into a routed copy for another owner
  - status-field projections written by the router and the approval engine
  - days-offline sync from the nightly sheet

Rules:
  - site_code is trimmed and upper-cased before storage and comparison.
  - Routed copies are read-only through ``upsert_site``; only the router and
    the approval engine change them.
  - Updates are field-level patches.  A field absent from the patch is never
    touched, so a cached task_status is not blanked by an unrelated save.
  - ``fork_for_routing`` flushes but never commits; the caller owns the
    transaction so the fork and its Action land together.

Usage:
    from das.services.site_store import upsert_site, fork_for_routing

    record, created = upsert_site("equipment", "fileX", "row7", "je1", {
        "siteCode": "3w1575", "originalRowData": {...}, "siteObservations": "Pending",
    })
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from das.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from das.datastore import get_datastore
from das.models import db
from das.models.action import Action
from das.models.audit import write_audit
from das.models.site import (
    EQUIPMENT_CCR_STATUSES,
    RECORD_KIND_ORIGINAL,
    RECORD_KIND_ROUTED,
    ROUTED_MARKER,
    SITE_OBSERVATIONS,
    SITE_STATUSES,
    SITE_TYPE_EQUIPMENT,
    SITE_TYPES,
    normalize_site_code,
    site_model,
)
from das.utils.helpers import (
    CIRCLE_KEYS,
    DIVISION_KEYS,
    SUB_DIVISION_KEYS,
    row_value,
    to_int,
)

logger = logging.getLogger(__name__)

# Request key → column for fields a user may set through upsert
_PATCH_FIELDS = {
    "headers": "headers",
    "siteObservations": "site_observations",
    "taskStatus": "task_status",
    "typeOfIssue": "type_of_issue",
    "viewPhotos": "photos",
    "photos": "photos",
    "photoMetadata": "photo_metadata",
    "remarks": "remarks",
    "supportDocuments": "support_documents",
    "status": "status",
    "deviceStatus": "device_status",
    "noOfDaysOffline": "no_of_days_offline",
    "savedFrom": "saved_from",
    "circle": "circle",
    "division": "division",
    "subDivision": "sub_division",
    "dateOfInspection": "date_of_inspection",
}

_TEXT_FIELDS = {"task_status", "type_of_issue", "remarks", "device_status", "saved_from",
                "circle", "division", "sub_division", "date_of_inspection"}
_LIST_FIELDS = {"headers", "photos", "photo_metadata", "support_documents"}

# Fields the router / approval engine may project onto any record
STATUS_FIELDS = {"site_observations", "ccr_status", "task_status", "remarks", "photos"}

# Columns copied verbatim onto a routed fork
_FORK_COPY_FIELDS = (
    "file_id", "site_code", "original_row_data", "headers", "site_observations",
    "ccr_status", "task_status", "type_of_issue", "photos", "photo_metadata",
    "remarks", "support_documents", "status", "circle", "division",
    "sub_division", "device_status", "no_of_days_offline", "saved_from",
)

_FINAL_CCR_STATUSES = {"Approved", "Kept for Monitoring"}


def _utcnow():
    return datetime.now(timezone.utc)


def _model_for(site_type: str):
    if site_type not in SITE_TYPES:
        raise ValidationError(f"Unknown site type '{site_type}'", details={"siteType": "invalid"})
    return site_model(site_type)


def _clean(attr: str, value, site_type: str | None = None):
    if attr in _LIST_FIELDS:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValidationError(f"{attr} must be a list", details={attr: "expected list"})
        return value
    if attr == "no_of_days_offline":
        return to_int(value)
    if attr == "site_observations":
        text = str(value or "").strip()
        if text not in SITE_OBSERVATIONS:
            raise ValidationError(
                f"siteObservations must be one of: {', '.join(sorted(v for v in SITE_OBSERVATIONS if v))} or empty",
                details={"siteObservations": text},
            )
        return text
    if attr == "ccr_status":
        if isinstance(value, (dict, list)):
            raise ValidationError("ccrStatus must be text", details={"ccrStatus": "expected string"})
        text = "" if value is None else str(value).strip()
        if site_type == SITE_TYPE_EQUIPMENT and text not in EQUIPMENT_CCR_STATUSES:
            raise ValidationError(
                f"ccrStatus must be one of: {', '.join(sorted(v for v in EQUIPMENT_CCR_STATUSES if v))} or empty",
                details={"ccrStatus": text},
            )
        return text
    if attr == "status":
        text = str(value or "").strip()
        if text not in SITE_STATUSES:
            raise ValidationError(f"Invalid status '{text}'", details={"status": text})
        return text
    if attr in _TEXT_FIELDS:
        return "" if value is None else str(value)
    return value


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def get_site(site_type: str, file_id: str, row_key: str):
    """Return the record for (file_id, row_key), or None."""
    model = _model_for(site_type)
    return get_datastore().read(
        lambda: model.query.filter_by(file_id=file_id, row_key=row_key).first()
    )


def get_site_or_404(site_type: str, file_id: str, row_key: str):
    record = get_site(site_type, file_id, row_key)
    if record is None:
        raise NotFoundError("Site record", f"{file_id}/{row_key}")
    return record


def get_site_by_id(site_type: str, record_id: int):
    model = _model_for(site_type)
    record = get_datastore().read(lambda: db.session.get(model, record_id))
    if record is None:
        raise NotFoundError("Site record", record_id)
    return record


def get_by_owner(site_type: str, owner_user_id: str, file_id: str | None = None) -> list:
    """Records currently owned by the user (originals and routed copies)."""
    model = _model_for(site_type)

    def _query():
        q = model.query.filter_by(owner_user_id=owner_user_id)
        if file_id:
            q = q.filter_by(file_id=file_id)
        return q.order_by(model.updated_at.desc(), model.id.desc()).all()

    return get_datastore().read(_query)


def get_by_original_owner(site_type: str, owner_user_id: str) -> list:
    """Records whose fork chain started with the user."""
    model = _model_for(site_type)
    return get_datastore().read(
        lambda: model.query.filter_by(original_owner_user_id=owner_user_id)
        .order_by(model.updated_at.desc(), model.id.desc())
        .all()
    )


def visible_to(model, user_id: str):
    """Filter clause: owner OR original owner."""
    return or_(model.owner_user_id == user_id, model.original_owner_user_id == user_id)


def get_visible_by_file(site_type: str, user_id: str, file_id: str) -> dict:
    """rowKey → record for every record in the file the user can see."""
    model = _model_for(site_type)
    rows = get_datastore().read(
        lambda: model.query.filter(model.file_id == file_id, visible_to(model, user_id))
        .order_by(model.updated_at.asc(), model.id.asc())
        .all()
    )
    return {r.row_key: r for r in rows}


# ═════════════════════════════════════════════════════════════════════════════
# Upsert
# ═════════════════════════════════════════════════════════════════════════════


def _apply_patch(record, patch: dict, creating: bool) -> None:
    for key, attr in _PATCH_FIELDS.items():
        if key not in patch or not hasattr(record, attr):
            continue
        setattr(record, attr, _clean(attr, patch[key], record.SITE_TYPE))

    if "originalRowData" in patch:
        row = patch.get("originalRowData")
        if not isinstance(row, dict):
            raise ValidationError("originalRowData must be an object", details={"originalRowData": "expected object"})
        record.original_row_data = dict(row)

    # Location falls back to the sheet row
    row = record.row_data()
    if "circle" not in patch and (creating or "originalRowData" in patch):
        record.circle = row_value(row, CIRCLE_KEYS)
    if "division" not in patch and (creating or "originalRowData" in patch):
        record.division = row_value(row, DIVISION_KEYS)
    if "subDivision" not in patch and (creating or "originalRowData" in patch):
        record.sub_division = row_value(row, SUB_DIVISION_KEYS)

    # A resolved equipment observation waits for CCR review
    if (
        record.SITE_TYPE == SITE_TYPE_EQUIPMENT
        and patch.get("siteObservations") == "Resolved"
        and (record.ccr_status or "") not in _FINAL_CCR_STATUSES
    ):
        record.ccr_status = "Pending"

    record.last_synced_at = _utcnow()


def stage_site(site_type: str, file_id: str, row_key: str, owner_user_id: str, patch: dict):
    """Create or merge without committing.  Returns ``(record, created)``."""
    model = _model_for(site_type)
    if not file_id or not row_key:
        raise ValidationError("fileId and rowKey are required",
                              details={"fileId": file_id or "required", "rowKey": row_key or "required"})
    patch = patch or {}

    record = model.query.filter_by(file_id=file_id, row_key=row_key).first()

    if record is None:
        missing = [k for k in ("siteCode", "originalRowData") if not patch.get(k)]
        if missing:
            raise ValidationError(
                f"{', '.join(missing)} required to create a site record",
                details={k: "required" for k in missing},
            )
        site_code = normalize_site_code(patch["siteCode"])
        if not site_code:
            raise ValidationError("siteCode must not be blank", details={"siteCode": "required"})
        record = model(
            file_id=file_id,
            row_key=row_key,
            base_row_key=row_key,
            record_kind=RECORD_KIND_ORIGINAL,
            site_code=site_code,
            owner_user_id=owner_user_id,
            original_owner_user_id=owner_user_id,
        )
        _apply_patch(record, patch, creating=True)
        db.session.add(record)
        return record, True

    if record.is_routed:
        raise ValidationError("Cannot update routed records; routed records are read-only")
    if record.owner_user_id != owner_user_id:
        raise ForbiddenError("Site record belongs to another user")
    if "siteCode" in patch:
        incoming = normalize_site_code(patch.get("siteCode"))
        if incoming and incoming != record.site_code:
            raise ConflictError(
                "Site record", "siteCode", incoming,
                message=f"Row {file_id}/{row_key} is site {record.site_code}, not {incoming}",
            )

    _apply_patch(record, patch, creating=False)
    return record, False


def upsert_site(site_type: str, file_id: str, row_key: str, owner_user_id: str, patch: dict):
    """Create or field-level merge one record and commit.

    Returns ``(record, created)``.
    """
    def _unit():
        record, created = stage_site(site_type, file_id, row_key, owner_user_id, patch)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError("Site record", "fileId/rowKey", f"{file_id}/{row_key}") from exc
        return record, created

    try:
        record, created = get_datastore().write(_unit)
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Site record %s %s/%s (%s)", "created" if created else "updated",
        file_id, row_key, record.site_code,
        extra={"user_id": owner_user_id, "file_id": file_id, "row_key": row_key, "site_code": record.site_code},
    )
    return record, created


def bulk_upsert(site_type: str, owner_user_id: str, records: list) -> dict:
    """Upsert many rows; each row commits on its own so one bad row
    does not fail the batch.
    """
    if not isinstance(records, list) or not records:
        raise ValidationError("sites array is required and must not be empty", details={"sites": "required"})

    saved, errors = [], []
    for item in records:
        item = item if isinstance(item, dict) else {}
        row_key = item.get("rowKey") or "unknown"
        try:
            record, _ = upsert_site(site_type, item.get("fileId"), item.get("rowKey"), owner_user_id, item)
            saved.append(record)
        except (ValidationError, ConflictError, ForbiddenError) as exc:
            errors.append({"rowKey": row_key, "error": str(exc)})

    logger.info("Bulk upsert: %d saved, %d rejected", len(saved), len(errors),
                extra={"user_id": owner_user_id})
    return {"saved": saved, "errors": errors}


# ═════════════════════════════════════════════════════════════════════════════
# Fork
# ═════════════════════════════════════════════════════════════════════════════


def routed_row_key(base_row_key: str, suffix: str) -> str:
    return f"{base_row_key}{ROUTED_MARKER}{suffix}"


def fork_for_routing(
    site_type: str,
    file_id: str,
    original_row_key: str,
    new_owner_user_id: str,
    suffix: str,
    task_status: str | None = None,
):
    """Copy a record into a routed record owned by ``new_owner_user_id``.

    The new row_key is built from the chain's base key, so forking a fork
    never nests suffixes.  ``original_owner_user_id`` is the source owner for
    an original, or the source's own original owner for a fork, so it always
    names the first owner of the chain.

    Flushes, never commits.  Raises ConflictError when the routed key exists;
    the session must then be rolled back by the caller.
    """
    model = _model_for(site_type)
    source = model.query.filter_by(file_id=file_id, row_key=original_row_key).first()
    if source is None:
        raise NotFoundError("Site record", f"{file_id}/{original_row_key}")

    new_key = routed_row_key(source.base_row_key, suffix)
    if model.query.filter_by(file_id=file_id, row_key=new_key).first() is not None:
        raise ConflictError("Site record", "rowKey", new_key)

    fork = model(
        row_key=new_key,
        base_row_key=source.base_row_key,
        record_kind=RECORD_KIND_ROUTED,
        fork_suffix=suffix,
        parent_id=source.id,
        owner_user_id=new_owner_user_id,
        original_owner_user_id=(
            source.original_owner_user_id if source.is_routed else source.owner_user_id
        ) or source.owner_user_id,
    )
    for attr in _FORK_COPY_FIELDS:
        setattr(fork, attr, getattr(source, attr))
    if hasattr(source, "date_of_inspection"):
        fork.date_of_inspection = source.date_of_inspection
    fork.original_row_data = source.row_data()
    fork.headers = list(source.headers or [])
    fork.photos = list(source.photos or [])
    fork.photo_metadata = list(source.photo_metadata or [])
    fork.support_documents = list(source.support_documents or [])
    if task_status is not None:
        fork.task_status = task_status
    fork.last_synced_at = _utcnow()

    db.session.add(fork)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConflictError("Site record", "rowKey", new_key) from exc

    logger.debug("Forked %s/%s -> %s for %s", file_id, original_row_key, new_key, new_owner_user_id,
                 extra={"file_id": file_id, "row_key": new_key})
    return fork


def root_of(record):
    """Walk parent links to the original record of a fork chain."""
    model = type(record)
    seen = set()
    current = record
    while current.parent_id is not None and current.parent_id not in seen:
        seen.add(current.id)
        parent = db.session.get(model, current.parent_id)
        if parent is None:
            break
        current = parent
    return current


# ═════════════════════════════════════════════════════════════════════════════
# Status projections
# ═════════════════════════════════════════════════════════════════════════════


def apply_status_fields(record, **fields) -> dict:
    """Set the given status fields on ``record`` (None means "leave alone").

    Returns ``{field: {"old", "new"}}`` for the fields that changed.
    """
    unknown = set(fields) - STATUS_FIELDS
    if unknown:
        raise ValidationError(f"Not a status field: {', '.join(sorted(unknown))}")

    changed = {}
    for attr, value in fields.items():
        if value is None:
            continue
        value = _clean(attr, value, record.SITE_TYPE)
        old = getattr(record, attr)
        if old != value:
            changed[attr] = {"old": old, "new": value}
            setattr(record, attr, value)
    return changed


def update_status_fields(site_type: str, file_id: str, row_key: str, **fields):
    """Partial, last-write-wins update of status fields; commits."""
    def _unit():
        record = _model_for(site_type).query.filter_by(file_id=file_id, row_key=row_key).first()
        if record is None:
            raise NotFoundError("Site record", f"{file_id}/{row_key}")
        changed = apply_status_fields(record, **fields)
        db.session.commit()
        return record, changed

    record, changed = get_datastore().write(_unit)
    logger.info("Status fields updated on %s/%s: %s", file_id, row_key, ", ".join(changed) or "none",
                extra={"file_id": file_id, "row_key": row_key})
    return record


def update_days_offline(owner_user_id: str, site_code: str, device_status: str, days) -> int:
    """Sync no_of_days_offline on every matching equipment record of the user.

    Only no_of_days_offline and last_synced_at change; updated_at is kept so
    the sync does not reorder reports.
    """
    if not site_code or not device_status or days is None:
        raise ValidationError(
            "siteCode, deviceStatus and noOfDaysOffline are required",
            details={"siteCode": site_code, "deviceStatus": device_status, "noOfDaysOffline": days},
        )
    model = _model_for(SITE_TYPE_EQUIPMENT)

    def _unit():
        count = (
            model.query.filter_by(
                owner_user_id=owner_user_id,
                site_code=normalize_site_code(site_code),
                device_status=str(device_status).strip(),
            )
            .update(
                {
                    model.no_of_days_offline: to_int(days),
                    model.last_synced_at: _utcnow(),
                    model.updated_at: model.updated_at,
                },
                synchronize_session=False,
            )
        )
        db.session.commit()
        return count

    return get_datastore().write(_unit)


def bulk_update_days_offline(owner_user_id: str, updates: list) -> dict:
    if not isinstance(updates, list) or not updates:
        raise ValidationError("updates array is required and must not be empty", details={"updates": "required"})

    results, total = [], 0
    for item in updates:
        item = item if isinstance(item, dict) else {}
        site_code = item.get("siteCode")
        try:
            count = update_days_offline(owner_user_id, site_code, item.get("deviceStatus"), item.get("noOfDaysOffline"))
        except ValidationError as exc:
            results.append({"siteCode": site_code or "unknown", "success": False, "error": str(exc)})
            continue
        total += count
        results.append({
            "siteCode": normalize_site_code(site_code),
            "deviceStatus": str(item.get("deviceStatus")).strip(),
            "modifiedCount": count,
            "success": True,
        })
    return {"totalModified": total, "results": results}


# ═════════════════════════════════════════════════════════════════════════════
# Delete
# ═════════════════════════════════════════════════════════════════════════════


def _delete(record, actor_user_id: str, actor_role: str | None):
    write_audit(
        entity_type="site",
        entity_id=record.id,
        action="site.delete",
        actor=actor_user_id,
        actor_role=actor_role,
        diff={"fileId": record.file_id, "rowKey": record.row_key, "siteCode": record.site_code},
    )
    # Children keep their rows; parent_id is nulled (ON DELETE SET NULL)
    type(record).query.filter_by(parent_id=record.id).update(
        {type(record).parent_id: None}, synchronize_session=False,
    )
    # Action references are plain ids, so a reused id must not reach them
    for column in (Action.site_record_id, Action.routed_site_record_id):
        Action.query.filter(Action.site_type == record.SITE_TYPE, column == record.id).update(
            {column: None}, synchronize_session=False,
        )
    db.session.delete(record)
    db.session.commit()


def delete_site(site_type: str, file_id: str, row_key: str, owner_user_id: str, actor_role: str | None = None):
    """Delete the caller's own record."""
    model = _model_for(site_type)

    def _unit():
        record = model.query.filter_by(file_id=file_id, row_key=row_key, owner_user_id=owner_user_id).first()
        if record is None:
            raise NotFoundError("Site record", f"{file_id}/{row_key}")
        _delete(record, owner_user_id, actor_role)

    get_datastore().write(_unit)
    logger.info("Site record deleted %s/%s", file_id, row_key,
                extra={"user_id": owner_user_id, "file_id": file_id, "row_key": row_key})


def delete_site_by_id(site_type: str, record_id: int, owner_user_id: str, actor_role: str | None = None):
    model = _model_for(site_type)

    def _unit():
        record = model.query.filter_by(id=record_id, owner_user_id=owner_user_id).first()
        if record is None:
            raise NotFoundError("Site record", record_id)
        _delete(record, owner_user_id, actor_role)

    get_datastore().write(_unit)
    logger.info("Site record %s deleted", record_id, extra={"user_id": owner_user_id})


def update_site_by_id(site_type: str, record_id: int, owner_user_id: str, patch: dict):
    """Field-level merge addressed by primary key (RTU tracker ``PUT /<id>``)."""
    record = get_site_by_id(site_type, record_id)
    if record.owner_user_id != owner_user_id:
        raise ForbiddenError("Site record belongs to another user")
    return upsert_site(site_type, record.file_id, record.row_key, owner_user_id, patch)[0]
