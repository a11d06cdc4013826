"""
DAS — Distribution Automation System
Approval domain model.

Models:
    - Approval: a submission from one role that needs sign-off from another
    - RTUTrackerApproval: CCR review detail for RTU tracker sign-offs

State machine (per Approval):
    Pending -> Approved | Kept for Monitoring | Recheck Requested

All three outcomes are terminal for that Approval row.  A recheck starts a
new submission cycle with a new row; rows are never reopened in place
(except by the admin reset utility).

Site reference:
    Exactly one of equipment_offline_site_id / rtu_tracker_site_id is set,
    chosen by approval_type (APPROVAL_SITE_TYPE).
"""

from datetime import datetime, timezone

from das.models import db
from das.models.values import TypedValueMap, to_json_map

# ── Constants ────────────────────────────────────────────────────────────────

AMC_RESOLUTION = "AMC Resolution Approval"
CCR_RESOLUTION = "CCR Resolution Approval"
RTU_TRACKER_RESOLUTION = "RTU Tracker Resolution Approval"

APPROVAL_TYPES = (AMC_RESOLUTION, CCR_RESOLUTION, RTU_TRACKER_RESOLUTION)

# Which site table each workflow references
APPROVAL_SITE_TYPE = {
    AMC_RESOLUTION: "equipment",
    CCR_RESOLUTION: "equipment",
    RTU_TRACKER_RESOLUTION: "rtu_tracker",
}

# Role that signs off each workflow by default
APPROVER_ROLE = {
    AMC_RESOLUTION: "Equipment",
    CCR_RESOLUTION: "CCR",
    RTU_TRACKER_RESOLUTION: "CCR",
}

STATUS_PENDING = "Pending"
STATUS_APPROVED = "Approved"
STATUS_KEPT_FOR_MONITORING = "Kept for Monitoring"
STATUS_RECHECK_REQUESTED = "Recheck Requested"

APPROVAL_STATUSES = (
    STATUS_PENDING,
    STATUS_APPROVED,
    STATUS_KEPT_FOR_MONITORING,
    STATUS_RECHECK_REQUESTED,
)
TERMINAL_STATUSES = {STATUS_APPROVED, STATUS_KEPT_FOR_MONITORING, STATUS_RECHECK_REQUESTED}

APPROVAL_TRANSITIONS = {
    STATUS_PENDING: TERMINAL_STATUSES,
    STATUS_APPROVED: set(),
    STATUS_KEPT_FOR_MONITORING: set(),
    STATUS_RECHECK_REQUESTED: set(),
}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class Approval(db.Model):
    """Sign-off workflow instance gating a status change on a site record."""

    __tablename__ = "approvals"

    id = db.Column(db.Integer, primary_key=True)

    action_id = db.Column(
        db.Integer, db.ForeignKey("actions.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    equipment_offline_site_id = db.Column(
        db.Integer,
        db.ForeignKey("equipment_offline_sites.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    rtu_tracker_site_id = db.Column(
        db.Integer,
        db.ForeignKey("rtu_tracker_sites.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    site_code = db.Column(db.String(64), nullable=False, index=True)
    approval_type = db.Column(db.String(60), nullable=False, index=True)
    status = db.Column(db.String(30), nullable=False, default=STATUS_PENDING, index=True)

    submitted_by_user_id = db.Column(db.String(100), nullable=False, index=True)
    submitted_by_role = db.Column(db.String(40), nullable=False)
    assigned_to_user_id = db.Column(db.String(100), nullable=False, index=True)
    assigned_to_role = db.Column(db.String(40), nullable=False)

    approved_by_user_id = db.Column(db.String(100), nullable=True, index=True)
    approved_by_role = db.Column(db.String(40), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_remarks = db.Column(db.Text, nullable=False, default="")

    submission_remarks = db.Column(db.Text, nullable=False, default="")
    photos = db.Column(db.JSON, nullable=False, default=list)
    support_documents = db.Column(db.JSON, nullable=False, default=list)

    file_id = db.Column(db.String(120), nullable=False, index=True)
    row_key = db.Column(db.String(255), nullable=False, index=True)
    original_row_data = db.Column(TypedValueMap, nullable=False, default=dict)
    meta = db.Column("metadata", TypedValueMap, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.Index("ix_approvals_assignee_status", "assigned_to_user_id", "status"),
        db.Index("ix_approvals_site_status", "site_code", "status"),
        db.Index("ix_approvals_type_status", "approval_type", "status"),
        # One open submission per (file, row, workflow)
        db.Index(
            "uq_approvals_pending_key",
            "file_id", "row_key", "approval_type",
            unique=True,
            sqlite_where=db.text("status = 'Pending'"),
            postgresql_where=db.text("status = 'Pending'"),
        ),
    )

    @property
    def site_type(self) -> str:
        return APPROVAL_SITE_TYPE[self.approval_type]

    @property
    def site_record_id(self):
        if self.site_type == "rtu_tracker":
            return self.rtu_tracker_site_id
        return self.equipment_offline_site_id

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in APPROVAL_TRANSITIONS.get(self.status, set())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actionId": self.action_id,
            "equipmentOfflineSiteId": self.equipment_offline_site_id,
            "rtuTrackerSiteId": self.rtu_tracker_site_id,
            "siteCode": self.site_code,
            "approvalType": self.approval_type,
            "status": self.status,
            "submittedByUserId": self.submitted_by_user_id,
            "submittedByRole": self.submitted_by_role,
            "assignedToUserId": self.assigned_to_user_id,
            "assignedToRole": self.assigned_to_role,
            "approvedByUserId": self.approved_by_user_id,
            "approvedByRole": self.approved_by_role,
            "approvedAt": _iso(self.approved_at),
            "approvalRemarks": self.approval_remarks,
            "submissionRemarks": self.submission_remarks,
            "photos": list(self.photos or []),
            "supportDocuments": list(self.support_documents or []),
            "fileId": self.file_id,
            "rowKey": self.row_key,
            "originalRowData": to_json_map(self.original_row_data),
            "metadata": to_json_map(self.meta),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Approval #{self.id} {self.approval_type} {self.site_code} [{self.status}]>"


class RTUTrackerApproval(db.Model):
    """CCR review detail kept alongside RTU Tracker Resolution Approvals."""

    __tablename__ = "rtu_tracker_approvals"

    id = db.Column(db.Integer, primary_key=True)
    approval_id = db.Column(
        db.Integer, db.ForeignKey("approvals.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    rtu_tracker_site_id = db.Column(
        db.Integer,
        db.ForeignKey("rtu_tracker_sites.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    site_code = db.Column(db.String(64), nullable=False, index=True)
    file_id = db.Column(db.String(120), nullable=False)
    row_key = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(30), nullable=False, default=STATUS_PENDING, index=True)

    submitted_by_user_id = db.Column(db.String(100), nullable=False, index=True)
    submitted_by_role = db.Column(db.String(40), nullable=False)
    assigned_to_user_id = db.Column(db.String(100), nullable=False, index=True)
    assigned_to_role = db.Column(db.String(40), nullable=False, default="CCR")
    approved_by_user_id = db.Column(db.String(100), nullable=True)
    approved_by_role = db.Column(db.String(40), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    type_of_issue = db.Column(db.String(120), nullable=False, default="")
    ccr_status = db.Column(db.String(60), nullable=False, default="", comment="Attended & Cleared | Attended & Not Cleared | Unattended")
    ccr_remarks = db.Column(db.Text, nullable=False, default="")
    field_team_action = db.Column(db.Text, nullable=False, default="")
    date_of_inspection = db.Column(db.String(40), nullable=False, default="")
    submission_remarks = db.Column(db.Text, nullable=False, default="")
    approval_remarks = db.Column(db.Text, nullable=False, default="")
    photos = db.Column(db.JSON, nullable=False, default=list)
    support_documents = db.Column(db.JSON, nullable=False, default=list)
    original_row_data = db.Column(TypedValueMap, nullable=False, default=dict)
    meta = db.Column("metadata", TypedValueMap, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.Index("ix_rtu_tracker_approvals_file_row", "file_id", "row_key"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "approvalId": self.approval_id,
            "rtuTrackerSiteId": self.rtu_tracker_site_id,
            "siteCode": self.site_code,
            "fileId": self.file_id,
            "rowKey": self.row_key,
            "status": self.status,
            "submittedByUserId": self.submitted_by_user_id,
            "submittedByRole": self.submitted_by_role,
            "assignedToUserId": self.assigned_to_user_id,
            "assignedToRole": self.assigned_to_role,
            "approvedByUserId": self.approved_by_user_id,
            "approvedByRole": self.approved_by_role,
            "approvedAt": _iso(self.approved_at),
            "typeOfIssue": self.type_of_issue,
            "ccrStatus": self.ccr_status,
            "ccrRemarks": self.ccr_remarks,
            "fieldTeamAction": self.field_team_action,
            "dateOfInspection": self.date_of_inspection,
            "submissionRemarks": self.submission_remarks,
            "approvalRemarks": self.approval_remarks,
            "photos": list(self.photos or []),
            "supportDocuments": list(self.support_documents or []),
            "originalRowData": to_json_map(self.original_row_data),
            "metadata": to_json_map(self.meta),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<RTUTrackerApproval #{self.id} {self.site_code} [{self.status}]>"
