"""
SQLAlchemy Models for Database
==============================

Complete schema for the CaseBridge portals including:
- Multi-tenant organization (Firms, staff and client accounts)
- Internal sessions, token revocation, one-time account tokens
- Client intake (case reports) and matters with a status state machine
- Pipelines, stages, task templates and matter tasks
- Court reports, matter updates, documents
- Messaging, meetings and notifications
- Invoices and payments
- Case logs and firm audit logs

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, DateTime, Enum, ForeignKey,
    BigInteger, UniqueConstraint, Index, JSON
)
from sqlalchemy.orm import relationship, declarative_base
import uuid

# Use JSON for cross-database compatibility (works with both PostgreSQL and SQLite)
JSONB = JSON

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class AccountType(str, enum.Enum):
    """Which portal an account belongs to"""
    CLIENT = "client"
    STAFF = "staff"


class InternalRole(str, enum.Enum):
    """Firm staff roles, most privileged first"""
    ADMIN_MANAGER = "admin_manager"
    CASE_MANAGER = "case_manager"
    ASSOCIATE_LAWYER = "associate_lawyer"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DEACTIVATED = "deactivated"


class TokenPurpose(str, enum.Enum):
    PASSWORD_RESET = "password_reset"
    EMAIL_CONFIRMATION = "email_confirmation"


class RegistrationStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"
    EXPIRED = "expired"


class CaseReportStatus(str, enum.Enum):
    """Client intake submission status"""
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class MatterStatus(str, enum.Enum):
    """Matter workflow status"""
    PENDING_REVIEW = "pending_review"
    IN_REVIEW = "in_review"
    AWAITING_DOCUMENTS = "awaiting_documents"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CLOSED = "closed"
    REJECTED = "rejected"


class MatterLifecycle(str, enum.Enum):
    """Coarse lifecycle shown to clients"""
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class AssignmentRole(str, enum.Enum):
    ASSOCIATE = "associate"
    CASE_MANAGER = "case_manager"


class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    UNDER_REVIEW = "under_review"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class MeetingStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class NotificationChannel(str, enum.Enum):
    IN_APP = "in_app"
    EMAIL = "email"


class PlanType(str, enum.Enum):
    """Intake plans"""
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


# =============================================================================
# ORGANIZATION MODELS
# =============================================================================

class Firm(Base):
    """Law firm (tenant)"""
    __tablename__ = "firms"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    settings = Column(JSONB, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    users = relationship("User", back_populates="firm")
    matters = relationship("Matter", back_populates="firm", cascade="all, delete-orphan")
    pipelines = relationship("CasePipeline", back_populates="firm", cascade="all, delete-orphan")


class User(Base):
    """Account for either portal (profile)"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="SET NULL"), nullable=True)
    email = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    phone = Column(String(50), nullable=True)
    account_type = Column(Enum(AccountType), default=AccountType.CLIENT, nullable=False)
    internal_role = Column(Enum(InternalRole), nullable=True)  # staff only
    status = Column(Enum(UserStatus), default=UserStatus.ACTIVE, nullable=False)
    password_hash = Column(String(255), nullable=True)
    email_confirmed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_login = Column(DateTime, nullable=True)

    # Relationships
    firm = relationship("Firm", back_populates="users")

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_staff(self) -> bool:
        return self.account_type == AccountType.STAFF


class InternalSession(Base):
    """Application session for the internal portal, layered on the JWT"""
    __tablename__ = "internal_sessions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=False)
    role = Column(Enum(InternalRole), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_internal_session_user", "user_id", "expires_at"),
    )


class TokenBlacklist(Base):
    """Revoked JWTs (durable copy of the Redis blacklist)"""
    __tablename__ = "token_blacklist"

    jti = Column(String(64), primary_key=True)
    token_type = Column(String(20), default="access")
    user_id = Column(String(36), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class AccountToken(Base):
    """One-time token for password reset or email confirmation"""
    __tablename__ = "account_tokens"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    purpose = Column(Enum(TokenPurpose), nullable=False)
    token_hash = Column(String(64), nullable=False, unique=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class PendingFirmRegistration(Base):
    """Firm sign-up waiting for email confirmation"""
    __tablename__ = "pending_firm_registrations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    firm_name = Column(String(255), nullable=False)
    firm_email = Column(String(255), nullable=True)
    firm_phone = Column(String(50), nullable=True)
    firm_address = Column(Text, nullable=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    phone = Column(String(50), nullable=True)
    status = Column(Enum(RegistrationStatus), default=RegistrationStatus.PENDING, nullable=False)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)


class Invitation(Base):
    """Staff invitation; only the token hash is stored"""
    __tablename__ = "invitations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=False)
    email = Column(String(255), nullable=False)
    role = Column(Enum(InternalRole), nullable=False)
    token_hash = Column(String(64), nullable=False, unique=True)
    status = Column(Enum(InvitationStatus), default=InvitationStatus.PENDING, nullable=False)
    invited_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    accepted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_invitation_firm_email", "firm_id", "email"),
    )

    firm = relationship("Firm")


# =============================================================================
# WORKFLOW (PIPELINES / STAGES / TEMPLATES)
# =============================================================================

class CasePipeline(Base):
    __tablename__ = "case_pipelines"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    firm = relationship("Firm", back_populates="pipelines")
    stages = relationship(
        "CaseStage", back_populates="pipeline", cascade="all, delete-orphan",
        order_by="CaseStage.order_index",
    )


class CaseStage(Base):
    __tablename__ = "case_stages"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    pipeline_id = Column(String(36), ForeignKey("case_pipelines.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    color_code = Column(String(20), nullable=True)
    icon_name = Column(String(50), nullable=True)

    pipeline = relationship("CasePipeline", back_populates="stages")
    templates = relationship("TaskTemplate", back_populates="stage", cascade="all, delete-orphan")


class TaskTemplate(Base):
    __tablename__ = "task_templates"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    stage_id = Column(String(36), ForeignKey("case_stages.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    default_priority = Column(Enum(TaskPriority), default=TaskPriority.MEDIUM, nullable=False)
    is_client_visible_by_default = Column(Boolean, default=False)
    required_by_default = Column(Boolean, default=False)

    stage = relationship("CaseStage", back_populates="templates")


# =============================================================================
# INTAKE / MATTERS
# =============================================================================

class CaseReport(Base):
    """Client-submitted case awaiting firm intake review"""
    __tablename__ = "case_reports"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    client_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    category = Column(String(100), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    jurisdiction = Column(String(255), nullable=True)
    preferred_firm_id = Column(String(36), ForeignKey("firms.id", ondelete="SET NULL"), nullable=True)
    status = Column(Enum(CaseReportStatus), default=CaseReportStatus.SUBMITTED, nullable=False)
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True)
    plan_type = Column(Enum(PlanType), nullable=True)
    sla_due_at = Column(DateTime, nullable=True)
    reviewed_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_case_report_status", "status"),
    )

    client = relationship("User", foreign_keys=[client_id])


class Matter(Base):
    """Legal matter tracked by a firm"""
    __tablename__ = "matters"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=False)
    client_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    case_report_id = Column(String(36), ForeignKey("case_reports.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    jurisdiction = Column(String(255), nullable=True)
    status = Column(Enum(MatterStatus), default=MatterStatus.PENDING_REVIEW, nullable=False)
    lifecycle_state = Column(Enum(MatterLifecycle), default=MatterLifecycle.SUBMITTED, nullable=False)
    pipeline_id = Column(String(36), ForeignKey("case_pipelines.id", ondelete="SET NULL"), nullable=True)
    current_stage_id = Column(String(36), ForeignKey("case_stages.id", ondelete="SET NULL"), nullable=True)
    assigned_associate_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_case_manager_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    deadline = Column(DateTime, nullable=True)
    deadline_notified_for = Column(DateTime, nullable=True)
    flagged = Column(Boolean, default=False)
    archived_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_matter_firm_status", "firm_id", "status"),
        Index("ix_matter_associate", "assigned_associate_id"),
    )

    firm = relationship("Firm", back_populates="matters")
    client = relationship("User", foreign_keys=[client_id])
    current_stage = relationship("CaseStage", foreign_keys=[current_stage_id])


class CaseAssignment(Base):
    __tablename__ = "case_assignments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="CASCADE"), nullable=False)
    assigned_to_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    assigned_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    role = Column(Enum(AssignmentRole), nullable=False)
    is_active = Column(Boolean, default=True)
    note = Column(Text, nullable=True)
    assigned_at = Column(DateTime, default=datetime.utcnow)
    unassigned_at = Column(DateTime, nullable=True)


class MatterStageHistory(Base):
    __tablename__ = "matter_stage_history"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="CASCADE"), nullable=False)
    from_stage_id = Column(String(36), ForeignKey("case_stages.id", ondelete="SET NULL"), nullable=True)
    to_stage_id = Column(String(36), ForeignKey("case_stages.id", ondelete="SET NULL"), nullable=True)
    changed_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    forced = Column(Boolean, default=False)
    changed_at = Column(DateTime, default=datetime.utcnow)


class MatterTask(Base):
    __tablename__ = "matter_tasks"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="CASCADE"), nullable=False)
    stage_id = Column(String(36), ForeignKey("case_stages.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(Enum(TaskPriority), default=TaskPriority.MEDIUM, nullable=False)
    status = Column(Enum(TaskStatus), default=TaskStatus.PENDING, nullable=False)
    required_for_stage_completion = Column(Boolean, default=False)
    assigned_to_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    due_date = Column(DateTime, nullable=True)
    is_client_visible = Column(Boolean, default=False)
    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_task_matter_stage", "matter_id", "stage_id"),
    )


class CaseStatement(Base):
    """Versioned statement of the case"""
    __tablename__ = "case_statements"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="CASCADE"), nullable=False)
    version = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("matter_id", "version", name="uq_statement_matter_version"),
    )


class CaseComment(Base):
    """Internal staff comment on a matter"""
    __tablename__ = "case_comments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="CASCADE"), nullable=False)
    author_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# REPORTS / UPDATES / DOCUMENTS
# =============================================================================

class CourtReport(Base):
    __tablename__ = "court_reports"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="CASCADE"), nullable=False)
    author_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content = Column(Text, nullable=False)
    close_case = Column(Boolean, default=False)
    is_first_report = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    attachments = relationship("CourtReportAttachment", back_populates="report", cascade="all, delete-orphan")


class CourtReportAttachment(Base):
    __tablename__ = "court_report_attachments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    report_id = Column(String(36), ForeignKey("court_reports.id", ondelete="CASCADE"), nullable=False)
    file_name = Column(String(500), nullable=False)
    file_path = Column(String(1000), nullable=False)
    file_size = Column(BigInteger, nullable=False)
    file_type = Column(String(100), nullable=True)
    uploaded_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    report = relationship("CourtReport", back_populates="attachments")


class MatterUpdate(Base):
    __tablename__ = "matter_updates"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="CASCADE"), nullable=False)
    author_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    author_role = Column(String(50), nullable=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    client_visible = Column(Boolean, default=False)
    is_final = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class CaseDocument(Base):
    """Stored file attached to a case report, matter or matter update"""
    __tablename__ = "case_documents"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    case_report_id = Column(String(36), ForeignKey("case_reports.id", ondelete="CASCADE"), nullable=True)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="CASCADE"), nullable=True)
    update_id = Column(String(36), ForeignKey("matter_updates.id", ondelete="CASCADE"), nullable=True)
    uploaded_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    bucket = Column(String(50), nullable=False)
    file_name = Column(String(500), nullable=False)
    file_path = Column(String(1000), nullable=False)
    file_size = Column(BigInteger, nullable=False)
    file_type = Column(String(100), nullable=True)
    client_visible = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# MESSAGING
# =============================================================================

class CaseMessage(Base):
    __tablename__ = "case_messages"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    sender_role = Column(String(50), nullable=False)
    message_body = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_message_matter", "matter_id", "created_at"),
    )


class CaseMeeting(Base):
    __tablename__ = "case_meetings"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="CASCADE"), nullable=False)
    client_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    lawyer_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    meeting_type = Column(String(50), nullable=False)
    proposed_start = Column(DateTime, nullable=False)
    client_note = Column(Text, nullable=True)
    status = Column(Enum(MeetingStatus), default=MeetingStatus.REQUESTED, nullable=False)
    response_note = Column(Text, nullable=True)
    responded_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=True)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="CASCADE"), nullable=True)
    event_type = Column(String(50), nullable=False)
    channel = Column(Enum(NotificationChannel), default=NotificationChannel.IN_APP, nullable=False)
    payload = Column(JSONB, default=dict)  # {title, message, link, ...}
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_notification_user_read", "user_id", "read_at"),
    )


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(String(50), nullable=False)
    in_app_enabled = Column(Boolean, default=True)
    email_enabled = Column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint("user_id", "event_type", name="uq_notification_pref_user_event"),
    )


# =============================================================================
# BILLING
# =============================================================================

class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    client_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="SET NULL"), nullable=True)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="SET NULL"), nullable=True)
    plan_type = Column(Enum(PlanType), nullable=True)  # intake invoices only
    description = Column(Text, nullable=True)
    amount = Column(Integer, nullable=False)  # whole currency units
    currency = Column(String(3), default="NGN", nullable=False)
    status = Column(Enum(InvoiceStatus), default=InvoiceStatus.DRAFT, nullable=False)
    reference = Column(String(100), nullable=True)
    consumed_by_report_id = Column(String(36), nullable=True)
    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_invoice_firm_status", "firm_id", "status"),
    )

    payments = relationship("Payment", back_populates="invoice", cascade="all, delete-orphan")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(Enum(PaymentStatus), nullable=False)
    reference = Column(String(100), nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    invoice = relationship("Invoice", back_populates="payments")


# =============================================================================
# ACTIVITY
# =============================================================================

class CaseLog(Base):
    """Per-matter activity log (timeline)"""
    __tablename__ = "case_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    matter_id = Column(String(36), ForeignKey("matters.id", ondelete="CASCADE"), nullable=False)
    actor_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(50), nullable=False)
    details = Column(JSONB, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_case_log_matter", "matter_id", "created_at"),
    )


class AuditLog(Base):
    """Firm-level audit trail"""
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=True)
    actor_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False)
    target_type = Column(String(50), nullable=True)
    target_id = Column(String(36), nullable=True)
    details = Column(JSONB, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_audit_firm_created", "firm_id", "created_at"),
    )
