"""
DAS — Distribution Automation System
Action domain model.

Models:
    - Action: one routing decision, a site issue handed from one user/team
      to another.

Business rules:
    - status only moves forward: Pending -> In Progress -> Completed.
    - A reroute never rewrites an Action's history; it completes the old row
      (superseded_by_id) and inserts a new one.
    - assigned_to_user_id and assigned_by_user_id are always different users.

Polymorphic site reference:
    site_type + site_record_id identify the record the routing was raised
    from; routed_site_record_id is the fork created for the assignee.  Both
    point into equipment_offline_sites or rtu_tracker_sites depending on
    site_type, so they are plain integers rather than foreign keys.
"""

from datetime import datetime, timezone

from das.models import db
from das.models.values import TypedValueMap, to_json_map

# ── Constants ────────────────────────────────────────────────────────────────

ACTION_STATUSES = ("Pending", "In Progress", "Completed")
ACTION_PRIORITIES = {"High", "Medium", "Low"}

# Forward-only transitions
ACTION_TRANSITIONS = {
    "Pending": {"In Progress", "Completed"},
    "In Progress": {"Completed"},
    "Completed": set(),
}

TEAM_TO_ROLE = {
    "Equipment Team": "Equipment",
    "RTU/Communication Team": "RTU/Communication",
    "AMC Team": "AMC",
    "O&M Team": "O&M",
    "Relay Team": "Relay",
    "CCR Team": "CCR",
    "System Team": "System",
    "C&D's Team": "C&D",
}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class Action(db.Model):
    """A routing assignment."""

    __tablename__ = "actions"

    id = db.Column(db.Integer, primary_key=True)

    # Snapshot of the sheet row the issue was raised on
    row_data = db.Column(TypedValueMap, nullable=False, default=dict)
    headers = db.Column(db.JSON, nullable=False, default=list)

    routing = db.Column(db.String(60), nullable=False, comment="Target team, e.g. 'Equipment Team'")
    type_of_issue = db.Column(db.String(120), nullable=False)
    remarks = db.Column(db.Text, nullable=False, default="")
    photos = db.Column(db.JSON, nullable=False, default=list)

    # Assignment
    assigned_to_user_id = db.Column(db.String(100), nullable=False, index=True)
    assigned_to_role = db.Column(db.String(40), nullable=False)
    assigned_to_division = db.Column(db.String(100), nullable=True)
    assigned_to_vendor = db.Column(db.String(200), nullable=True)
    assigned_by_user_id = db.Column(db.String(100), nullable=False, index=True)
    assigned_by_role = db.Column(db.String(40), nullable=False)

    status = db.Column(db.String(20), nullable=False, default="Pending")
    priority = db.Column(db.String(10), nullable=False, default="Medium")

    # Source reference
    source_file_id = db.Column(db.String(120), nullable=False)
    original_row_index = db.Column(db.Integer, nullable=True)
    site_type = db.Column(db.String(20), nullable=False, default="equipment")
    site_record_id = db.Column(db.Integer, nullable=True, index=True)
    routed_site_record_id = db.Column(db.Integer, nullable=True, index=True)

    superseded_by_id = db.Column(
        db.Integer, db.ForeignKey("actions.id", ondelete="SET NULL"), nullable=True,
    )

    assigned_date = db.Column(db.DateTime(timezone=True), default=_utcnow)
    completed_date = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.Index("ix_actions_assignee_status", "assigned_to_user_id", "status"),
        db.Index("ix_actions_role_division", "assigned_to_role", "assigned_to_division"),
    )

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in ACTION_TRANSITIONS.get(self.status, set())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rowData": to_json_map(self.row_data),
            "headers": list(self.headers or []),
            "routing": self.routing,
            "typeOfIssue": self.type_of_issue,
            "remarks": self.remarks,
            "photo": list(self.photos or []),
            "assignedToUserId": self.assigned_to_user_id,
            "assignedToRole": self.assigned_to_role,
            "assignedToDivision": self.assigned_to_division,
            "assignedToVendor": self.assigned_to_vendor,
            "assignedByUserId": self.assigned_by_user_id,
            "assignedByRole": self.assigned_by_role,
            "status": self.status,
            "priority": self.priority,
            "sourceFileId": self.source_file_id,
            "originalRowIndex": self.original_row_index,
            "siteType": self.site_type,
            "siteRecordId": self.site_record_id,
            "routedSiteRecordId": self.routed_site_record_id,
            "supersededById": self.superseded_by_id,
            "assignedDate": _iso(self.assigned_date),
            "completedDate": _iso(self.completed_date),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Action #{self.id} {self.routing} -> {self.assigned_to_user_id} [{self.status}]>"
