"""
Reporting / Query Layer

Read-only views over equipment_offline_sites for the report screens.

Visibility is dual-key: a user sees a record when they own it OR when they
were the first owner of its fork chain.  A site routed away to another team
therefore stays in the reporting user's Resolved / Pending lists.

Report types:
    Resolved   site_observations == "Resolved", latest record per site code,
               ccrStatus from the latest CCR Resolution Approval
    Pending    site_observations == "Pending", minus site codes that also
               have a resolved record
"""

import logging
from datetime import datetime, time, timedelta, timezone

from das.core.exceptions import NotFoundError, ValidationError
from das.datastore import get_datastore
from das.models import db
from das.models.approval import (
    CCR_RESOLUTION,
    STATUS_APPROVED,
    STATUS_KEPT_FOR_MONITORING,
    STATUS_PENDING,
    Approval,
)
from das.models.auth import User
from das.models.site import RECORD_KIND_ORIGINAL, SITE_TYPE_EQUIPMENT, normalize_site_code, site_model
from das.services.site_store import visible_to
from das.utils.helpers import (
    ATTRIBUTE_KEYS,
    CIRCLE_KEYS,
    DEVICE_STATUS_KEYS,
    DEVICE_TYPE_KEYS,
    DIVISION_KEYS,
    EQUIPMENT_MAKE_KEYS,
    HRN_KEYS,
    RTU_MAKE_KEYS,
    SUB_DIVISION_KEYS,
    find_header,
    parse_date_input,
    row_value,
)

logger = logging.getLogger(__name__)

REPORT_RESOLVED = "Resolved"
REPORT_PENDING = "Pending"
REPORT_TYPES = (REPORT_RESOLVED, REPORT_PENDING)

_CCR_REPORT_STATUSES = {STATUS_PENDING, STATUS_APPROVED, STATUS_KEPT_FOR_MONITORING}


def _display_time(value) -> str:
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y, %I:%M:%S %p").lower()


def _date_window(from_date, to_date):
    """``(start, end)`` covering both days inclusive, or None when not given."""
    if not from_date or not to_date:
        return None
    try:
        start_day = parse_date_input(from_date)
        end_day = parse_date_input(to_date)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"fromDate": from_date, "toDate": to_date}) from exc
    if end_day < start_day:
        raise ValidationError("toDate must not be before fromDate", details={"fromDate": from_date, "toDate": to_date})
    start = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(end_day, time.min, tzinfo=timezone.utc) + timedelta(days=1)
    return start, end


def _check_report_type(report_type):
    if report_type and report_type not in REPORT_TYPES:
        raise ValidationError(
            f"reportType must be one of: {', '.join(REPORT_TYPES)}", details={"reportType": report_type},
        )


def _latest_ccr_status(site_codes) -> dict:
    """site code → status of its most recent CCR Resolution Approval."""
    if not site_codes:
        return {}
    approvals = (
        Approval.query.filter(
            Approval.approval_type == CCR_RESOLUTION,
            Approval.site_code.in_(site_codes),
        )
        .order_by(Approval.created_at.desc(), Approval.id.desc())
        .all()
    )
    latest = {}
    for approval in approvals:
        if approval.site_code in latest:
            continue
        latest[approval.site_code] = approval.status if approval.status in _CCR_REPORT_STATUSES else STATUS_PENDING
    return latest


def _display_names(user_ids) -> dict:
    if not user_ids:
        return {}
    users = User.query.filter(User.user_id.in_(user_ids)).all()
    return {u.user_id: u.full_name or u.user_id for u in users}


def get_reports(
    identity,
    report_type: str | None = None,
    circles=None,
    divisions=None,
    sub_divisions=None,
    from_date=None,
    to_date=None,
) -> list:
    """Rows for the Resolved / Pending report tables."""
    _check_report_type(report_type)
    window = _date_window(from_date, to_date)
    model = site_model(SITE_TYPE_EQUIPMENT)

    def _query():
        q = model.query.filter(visible_to(model, identity.user_id))
        if report_type:
            q = q.filter(model.site_observations == report_type)
        if circles:
            q = q.filter(model.circle.in_(circles))
        if divisions:
            q = q.filter(model.division.in_(divisions))
        if sub_divisions:
            q = q.filter(model.sub_division.in_(sub_divisions))
        if window:
            q = q.filter(model.created_at >= window[0], model.created_at < window[1])
        records = q.order_by(model.updated_at.desc(), model.id.desc()).all()

        ccr = {}
        if report_type == REPORT_RESOLVED:
            latest = {}
            for record in records:
                latest.setdefault(record.site_code, record)
            records = list(latest.values())
            ccr = _latest_ccr_status(list(latest))
        elif report_type == REPORT_PENDING:
            resolved_codes = {
                row[0] for row in
                db.session.query(model.site_code)
                .filter(visible_to(model, identity.user_id), model.site_observations == REPORT_RESOLVED)
                .distinct()
                .all()
            }
            records = [r for r in records if r.site_code not in resolved_codes]
        names = _display_names({r.owner_user_id for r in records})
        return records, ccr, names

    records, ccr, names = get_datastore().read(_query)

    rows = []
    for index, record in enumerate(records, start=1):
        ccr_status = ""
        if report_type == REPORT_RESOLVED:
            fallback = record.ccr_status if record.ccr_status in _CCR_REPORT_STATUSES else STATUS_PENDING
            ccr_status = ccr.get(record.site_code, fallback)
        rows.append({
            "slNo": index,
            "siteCode": record.site_code,
            "taskStatus": record.task_status or "",
            "typeOfIssue": record.type_of_issue or "",
            "remarks": record.remarks or "",
            "updatedTimeAndDate": _display_time(record.updated_at or record.created_at),
            "resolvedBy": names.get(record.owner_user_id, record.owner_user_id) or "N/A",
            "ccrStatus": ccr_status,
        })

    logger.debug("Report %s for %s: %d rows", report_type or "all", identity.user_id, len(rows),
                 extra={"user_id": identity.user_id})
    return rows


def get_report_details(identity, site_code: str, report_type: str | None = None) -> dict:
    """Latest visible record for ``site_code``, flattened for the detail pane."""
    code = normalize_site_code(site_code)
    if not code:
        raise ValidationError("Site Code is required", details={"siteCode": "required"})
    _check_report_type(report_type)
    model = site_model(SITE_TYPE_EQUIPMENT)

    def _query():
        q = model.query.filter(visible_to(model, identity.user_id), model.site_code == code)
        if report_type:
            q = q.filter(model.site_observations == report_type)
        return q.order_by(model.updated_at.desc(), model.id.desc()).first()

    record = get_datastore().read(_query)
    if record is None:
        raise NotFoundError("Report for site", code)

    row = record.row_data()
    return {
        "circle": record.circle or row_value(row, CIRCLE_KEYS),
        "division": record.division or row_value(row, DIVISION_KEYS),
        "subDivision": record.sub_division or row_value(row, SUB_DIVISION_KEYS),
        "siteCode": record.site_code,
        "deviceType": row_value(row, DEVICE_TYPE_KEYS),
        "equipmentMake": row_value(row, EQUIPMENT_MAKE_KEYS),
        "rtuMake": row_value(row, RTU_MAKE_KEYS),
        "hrn": row_value(row, HRN_KEYS),
        "attribute": row_value(row, ATTRIBUTE_KEYS),
        "deviceStatus": record.device_status or row_value(row, DEVICE_STATUS_KEYS),
        "noOfDaysOffline": record.no_of_days_offline,
        "taskStatus": record.task_status or "",
        "typeOfIssue": record.type_of_issue or "",
        "updatedAt": _display_time(record.updated_at),
        "viewPhotos": list(record.photos or []),
    }


def get_report_filters(identity) -> dict:
    """Distinct circles / divisions / sub-divisions across the user's records."""
    model = site_model(SITE_TYPE_EQUIPMENT)

    def _distinct(column):
        rows = (
            db.session.query(column)
            .filter(visible_to(model, identity.user_id), column.isnot(None), column != "")
            .distinct()
            .all()
        )
        return sorted(r[0] for r in rows)

    return get_datastore().read(lambda: {
        "circles": _distinct(model.circle),
        "divisions": _distinct(model.division),
        "subDivisions": _distinct(model.sub_division),
    })


def _is_lr_switch(header: str) -> bool:
    return ("equipment" in header and "switch" in header) or ("l/r" in header and "switch" in header)


def get_local_remote_report(circles=None, divisions=None) -> dict:
    """Per-division ONLINE/OFFLINE and LOCAL/REMOTE counts.

    Counts original records only; routed copies duplicate a row that is
    already counted.
    """
    model = site_model(SITE_TYPE_EQUIPMENT)

    def _query():
        q = model.query.filter(model.record_kind == RECORD_KIND_ORIGINAL)
        return q.order_by(model.id.asc()).all()

    records = get_datastore().read(_query)
    circle_filter = {c.strip().upper() for c in circles or [] if c.strip()}
    division_filter = {d.strip().upper() for d in divisions or [] if d.strip()}

    stats = {}
    for record in records:
        row = record.row_data()
        division = (record.division or row_value(row, DIVISION_KEYS + ("DIVISION NAME", "Division Name"))).strip()
        circle = (record.circle or row_value(row, CIRCLE_KEYS)).strip()
        if not division:
            continue
        if circle_filter and circle.upper() not in circle_filter:
            continue
        if division_filter and division.upper() not in division_filter:
            continue

        entry = stats.setdefault(division, {"division": division, "online": 0, "offline": 0, "local": 0, "remote": 0})

        device_status = (record.device_status or row_value(row, DEVICE_STATUS_KEYS)).strip().upper()
        if device_status == "ONLINE":
            entry["online"] += 1
        elif device_status == "OFFLINE":
            entry["offline"] += 1

        switch_header = find_header(record.headers or list(row), _is_lr_switch)
        switch = str(row.get(switch_header) or "").strip().upper() if switch_header else ""
        if switch == "LOCAL":
            entry["local"] += 1
        elif switch == "REMOTE":
            entry["remote"] += 1

    data = sorted(stats.values(), key=lambda e: e["division"].lower())
    totals = {key: sum(e[key] for e in data) for key in ("online", "offline", "local", "remote")}
    return {"data": data, "count": len(data), "totals": totals}
