"""
Auth Models — user directory.

Sign-in and token issuance live outside this service.  The directory is kept
so the router can answer "which user does team X mean for division Y"
without calling back into the identity provider.
"""

from datetime import datetime, timezone

from das.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ROLES = (
    "Equipment",
    "RTU/Communication",
    "AMC",
    "O&M",
    "Relay",
    "CCR",
    "System",
    "C&D",
    "Admin",
)

USER_STATUS_APPROVED = "approved"


def _lower_set(values) -> set:
    return {str(v).strip().lower() for v in (values or []) if str(v).strip()}


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(100), unique=True, nullable=False, comment="Login id, the token 'sub'")
    full_name = db.Column(db.String(200), nullable=False, default="")
    role = db.Column(db.String(40), nullable=False, index=True)
    divisions = db.Column(db.JSON, nullable=False, default=list)
    circles = db.Column(db.JSON, nullable=False, default=list)
    vendor = db.Column(db.String(200), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=USER_STATUS_APPROVED)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def assignable(self) -> bool:
        return bool(self.is_active) and self.status == USER_STATUS_APPROVED

    def serves_division(self, division: str) -> bool:
        return str(division or "").strip().lower() in _lower_set(self.divisions)

    def serves_circle(self, circle: str) -> bool:
        return str(circle or "").strip().lower() in _lower_set(self.circles)

    def __repr__(self):
        return f"<User {self.user_id} ({self.role})>"
