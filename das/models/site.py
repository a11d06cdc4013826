"""
DAS — Distribution Automation System
Site record domain model.

Models:
    - EquipmentOfflineSite: field observation for an offline equipment site
      (collection "Equipment offline sites" in the legacy system)
    - RTUTrackerSite: field observation for an RTU tracker row

Both tables share one column set (SiteRecordMixin).  A record is identified
by the unique (file_id, row_key) pair of the uploaded sheet row it came from.

Routed copies:
    When an issue is handed to another team the record is forked.  The fork
    gets record_kind="routed", parent_id pointing at the record it was forked
    from, and row_key "<base_row_key>-routed-<suffix>".  The row_key suffix is
    kept for compatibility with existing exports; code decides original vs
    routed from record_kind, never from the string.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import declared_attr

from das.models import db
from das.models.values import TypedValueMap, to_json_map

# ── Constants ────────────────────────────────────────────────────────────────

RECORD_KIND_ORIGINAL = "original"
RECORD_KIND_ROUTED = "routed"

ROUTED_MARKER = "-routed-"

SITE_OBSERVATIONS = {"", "Pending", "Resolved"}
EQUIPMENT_CCR_STATUSES = {"", "Pending", "Approved", "Kept for Monitoring"}
SITE_STATUSES = {"Offline", "Online", "Pending", "Resolved"}

SITE_TYPE_EQUIPMENT = "equipment"
SITE_TYPE_RTU_TRACKER = "rtu_tracker"
SITE_TYPES = {SITE_TYPE_EQUIPMENT, SITE_TYPE_RTU_TRACKER}


def _utcnow():
    return datetime.now(timezone.utc)


def normalize_site_code(value) -> str:
    """Site codes are compared and stored trimmed and upper-cased."""
    return str(value or "").strip().upper()


def _iso(value):
    return value.isoformat() if value else None


class SiteRecordMixin:
    """Columns and behaviour shared by both site record tables."""

    id = db.Column(db.Integer, primary_key=True)

    # Identity within the uploaded sheet
    file_id = db.Column(db.String(120), nullable=False, index=True)
    row_key = db.Column(db.String(255), nullable=False, index=True)
    base_row_key = db.Column(
        db.String(255), nullable=False,
        comment="row_key of the original record this one descends from",
    )

    # Original vs routed copy
    record_kind = db.Column(db.String(10), nullable=False, default=RECORD_KIND_ORIGINAL)
    fork_suffix = db.Column(db.String(40), nullable=True)

    site_code = db.Column(db.String(64), nullable=False, index=True)
    owner_user_id = db.Column(db.String(100), nullable=False, index=True)
    original_owner_user_id = db.Column(
        db.String(100), nullable=True, index=True,
        comment="First owner of the fork chain; keeps the site in that owner's reports",
    )

    original_row_data = db.Column(TypedValueMap, nullable=False, default=dict)
    headers = db.Column(db.JSON, nullable=False, default=list)

    site_observations = db.Column(db.String(20), nullable=False, default="")
    ccr_status = db.Column(db.String(60), nullable=False, default="")
    task_status = db.Column(db.String(255), nullable=False, default="")
    type_of_issue = db.Column(db.String(120), nullable=False, default="")
    photos = db.Column(db.JSON, nullable=False, default=list)
    photo_metadata = db.Column(db.JSON, nullable=False, default=list)
    remarks = db.Column(db.Text, nullable=False, default="")
    support_documents = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(20), nullable=False, default="Offline")

    # Location, extracted from the row when not supplied
    circle = db.Column(db.String(100), nullable=True)
    division = db.Column(db.String(100), nullable=True)
    sub_division = db.Column(db.String(100), nullable=True)

    device_status = db.Column(db.String(60), nullable=True)
    no_of_days_offline = db.Column(db.Integer, nullable=True)

    last_synced_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @declared_attr
    def parent_id(cls):
        return db.Column(
            db.Integer,
            db.ForeignKey(f"{cls.__tablename__}.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        )

    @declared_attr
    def __table_args__(cls):
        return (
            db.UniqueConstraint("file_id", "row_key", name=f"uq_{cls.__tablename__}_file_row"),
            db.Index(f"ix_{cls.__tablename__}_site_owner", "site_code", "owner_user_id"),
            db.Index(f"ix_{cls.__tablename__}_orig_owner_updated", "original_owner_user_id", "updated_at"),
        )

    # ── Behaviour ────────────────────────────────────────────────────────

    @property
    def is_routed(self) -> bool:
        return self.record_kind == RECORD_KIND_ROUTED

    def first_owner(self) -> str:
        """Owner at the head of the fork chain."""
        return self.original_owner_user_id or self.owner_user_id

    def row_data(self) -> dict:
        return dict(self.original_row_data or {})

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "siteType": self.SITE_TYPE,
            "fileId": self.file_id,
            "rowKey": self.row_key,
            "baseRowKey": self.base_row_key,
            "kind": self.record_kind,
            "parentId": self.parent_id,
            "siteCode": self.site_code,
            "userId": self.owner_user_id,
            "originalUserId": self.original_owner_user_id,
            "originalRowData": to_json_map(self.original_row_data),
            "headers": list(self.headers or []),
            "siteObservations": self.site_observations,
            "ccrStatus": self.ccr_status,
            "taskStatus": self.task_status,
            "typeOfIssue": self.type_of_issue,
            "viewPhotos": list(self.photos or []),
            "photoMetadata": list(self.photo_metadata or []),
            "remarks": self.remarks,
            "supportDocuments": list(self.support_documents or []),
            "status": self.status,
            "circle": self.circle,
            "division": self.division,
            "subDivision": self.sub_division,
            "deviceStatus": self.device_status,
            "noOfDaysOffline": self.no_of_days_offline,
            "savedFrom": self.saved_from,
            "lastSyncedAt": _iso(self.last_synced_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<{type(self).__name__} {self.file_id}/{self.row_key} owner={self.owner_user_id}>"


class EquipmentOfflineSite(SiteRecordMixin, db.Model):
    """Observation for an offline equipment site."""

    __tablename__ = "equipment_offline_sites"
    SITE_TYPE = SITE_TYPE_EQUIPMENT

    saved_from = db.Column(db.String(60), nullable=False, default="MY OFFLINE SITES")


class RTUTrackerSite(SiteRecordMixin, db.Model):
    """Observation for an RTU tracker row."""

    __tablename__ = "rtu_tracker_sites"
    SITE_TYPE = SITE_TYPE_RTU_TRACKER

    saved_from = db.Column(db.String(60), nullable=False, default="MY RTU TRACKER")
    date_of_inspection = db.Column(db.String(40), nullable=False, default="")

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["dateOfInspection"] = self.date_of_inspection
        return d


SITE_MODELS = {
    SITE_TYPE_EQUIPMENT: EquipmentOfflineSite,
    SITE_TYPE_RTU_TRACKER: RTUTrackerSite,
}


def site_model(site_type: str):
    """Return the model class for a site type, or None."""
    return SITE_MODELS.get(site_type)
