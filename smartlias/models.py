"""
SQLAlchemy models defining the database schema for SMARTLIAS.

Each model corresponds to a table in the PostgreSQL database.  Residents
and user accounts can also be served from JSON files (see
`repositories.py`), so tables that point at them keep plain integer
columns instead of foreign keys.
"""
from .constants import PASSWORD_NOT_CHANGED, ROLE_RESIDENT
from .extensions import db
from .time_utils import utcnow


class User(db.Model):
    """
    A login account.  Residents sign in with a username and a 6-digit
    MPIN; staff accounts carry the admin role.  Only a hash of the MPIN
    is stored.
    """

    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), nullable=False, unique=True, index=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    mpin_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.Integer, nullable=False, default=ROLE_RESIDENT)
    # 0 until the user replaces the default MPIN
    is_password_changed = db.Column(db.Integer, nullable=False, default=PASSWORD_NOT_CHANGED)
    failed_login_attempts = db.Column(db.Integer, nullable=False, default=0)
    last_failed_login = db.Column(db.DateTime, nullable=True)
    locked_until = db.Column(db.DateTime, nullable=True)
    last_login = db.Column(db.DateTime, nullable=True)
    # Bumped on logout / MPIN change to revoke issued API tokens
    token_version = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self):
        return f"<User {self.username}>"


class Resident(db.Model):
    """A citizen record maintained by barangay staff."""

    __tablename__ = "residents"
    __table_args__ = (
        db.Index("ix_residents_last_name", "last_name"),
        db.Index("ix_residents_is_active", "is_active"),
    )
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    last_name = db.Column(db.String(100), nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    middle_name = db.Column(db.String(100), nullable=True)
    suffix = db.Column(db.Integer, nullable=True)
    birth_date = db.Column(db.Date, nullable=True)
    gender = db.Column(db.Integer, nullable=True)
    civil_status = db.Column(db.String(50), nullable=True)
    contact_number = db.Column(db.String(20), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    purok = db.Column(db.Integer, nullable=True)
    religion = db.Column(db.String(100), nullable=True)
    occupation = db.Column(db.String(100), nullable=True)
    is_pwd = db.Column(db.Boolean, nullable=False, default=False)
    is_solo_parent = db.Column(db.Boolean, nullable=False, default=False)
    is_indigent = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f"<Resident {self.last_name}, {self.first_name}>"


class Announcement(db.Model):
    """A barangay announcement.  Published once `published_at` is set."""

    __tablename__ = "announcements"
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    content = db.Column(db.Text, nullable=False)
    type = db.Column(db.Integer, nullable=False, default=1)
    is_urgent = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=True)
    published_at = db.Column(db.DateTime, nullable=True)
    published_by = db.Column(db.Integer, nullable=True)

    target_groups = db.relationship(
        "AnnouncementTargetGroup",
        back_populates="announcement",
        cascade="all, delete-orphan",
        order_by="AnnouncementTargetGroup.id",
    )
    sms_logs = db.relationship(
        "SmsLog",
        back_populates="announcement",
        cascade="all, delete-orphan",
    )

    @property
    def status(self) -> str:
        return "published" if self.published_at else "draft"

    @property
    def sms_target_groups(self) -> list[str]:
        return [group.tag for group in self.target_groups]

    def __repr__(self):
        return f"<Announcement {self.id} {self.title!r}>"


class AnnouncementTargetGroup(db.Model):
    """One SMS audience of an announcement, e.g. ("special_category", "PWD")."""

    __tablename__ = "announcement_target_groups"
    id = db.Column(db.Integer, primary_key=True)
    announcement_id = db.Column(
        db.Integer, db.ForeignKey("announcements.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_type = db.Column(db.String(50), nullable=False)
    target_value = db.Column(db.String(50), nullable=True)

    announcement = db.relationship("Announcement", back_populates="target_groups")

    @property
    def tag(self) -> str:
        if self.target_value:
            return f"{self.target_type}:{self.target_value}"
        return self.target_type


class SmsLog(db.Model):
    """Delivery record for a single SMS sent when an announcement was published."""

    __tablename__ = "sms_logs"
    id = db.Column(db.Integer, primary_key=True)
    announcement_id = db.Column(
        db.Integer, db.ForeignKey("announcements.id", ondelete="CASCADE"), nullable=False, index=True
    )
    resident_id = db.Column(db.Integer, nullable=True)
    phone_number = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False)
    provider_message_id = db.Column(db.String(100), nullable=True)
    error = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    announcement = db.relationship("Announcement", back_populates="sms_logs")

    def __repr__(self):
        return f"<SmsLog {self.id} {self.phone_number} {self.status}>"


class DocumentType(db.Model):
    """A kind of document residents can request (clearance, permit, ...)."""

    __tablename__ = "document_types"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)
    fee = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    requests = db.relationship("DocumentRequest", back_populates="document_type")

    def __repr__(self):
        return f"<DocumentType {self.name}>"


class DocumentRequest(db.Model):
    """A resident's request for a document, moved through its status workflow by staff."""

    __tablename__ = "document_requests"
    __table_args__ = (
        db.Index("ix_document_requests_resident_id", "resident_id"),
        db.Index("ix_document_requests_status", "status"),
    )
    id = db.Column(db.Integer, primary_key=True)
    resident_id = db.Column(db.Integer, nullable=False)
    resident_name = db.Column(db.String(255), nullable=True)
    document_type_id = db.Column(db.Integer, db.ForeignKey("document_types.id"), nullable=False)
    purpose = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    remarks = db.Column(db.Text, nullable=True)
    file_path = db.Column(db.String(255), nullable=True)
    requested_by = db.Column(db.Integer, nullable=True)
    processed_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=True)
    released_at = db.Column(db.DateTime, nullable=True)

    document_type = db.relationship("DocumentType", back_populates="requests")

    @property
    def reference_no(self) -> str:
        year = (self.created_at or utcnow()).year
        return f"REQ-{year}-{self.id:05d}"

    def __repr__(self):
        return f"<DocumentRequest {self.id} {self.status}>"


class TransactionLog(db.Model):
    """
    Audit trail.  Records actions performed by users such as creating or
    deactivating records, publishing announcements, and sign-ins.
    """

    __tablename__ = "transaction_logs"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True)
    username = db.Column(db.String(50), nullable=True)
    action = db.Column(db.String(255), nullable=False)
    entity_type = db.Column(db.String(50), nullable=True)
    entity_id = db.Column(db.Integer, nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    meta = db.Column(db.JSON, nullable=True)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<TransactionLog {self.id} - {self.action}>"
