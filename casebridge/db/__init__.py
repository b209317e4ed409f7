"""
Database Package
================

SQLAlchemy persistence layer for the CaseBridge portals.
"""

from .models import (
    Base,
    Firm, User, InternalSession, TokenBlacklist, AccountToken,
    PendingFirmRegistration, Invitation,
    CasePipeline, CaseStage, TaskTemplate,
    CaseReport, Matter, CaseAssignment, MatterStageHistory, MatterTask,
    CaseStatement, CaseComment,
    CourtReport, CourtReportAttachment, MatterUpdate, CaseDocument,
    CaseMessage, CaseMeeting,
    Notification, NotificationPreference,
    Invoice, Payment,
    CaseLog, AuditLog,
    AccountType, InternalRole, UserStatus, TokenPurpose, RegistrationStatus,
    InvitationStatus, CaseReportStatus, MatterStatus, MatterLifecycle,
    AssignmentRole, TaskPriority, TaskStatus, MeetingStatus,
    NotificationChannel, PlanType, InvoiceStatus, PaymentStatus,
)
from .session import get_db, get_db_session, init_db, get_engine, reset_engine

__all__ = [
    "Base",
    # Organization / accounts
    "Firm", "User", "InternalSession", "TokenBlacklist", "AccountToken",
    "PendingFirmRegistration", "Invitation",
    # Workflow
    "CasePipeline", "CaseStage", "TaskTemplate",
    # Matters
    "CaseReport", "Matter", "CaseAssignment", "MatterStageHistory", "MatterTask",
    "CaseStatement", "CaseComment",
    "CourtReport", "CourtReportAttachment", "MatterUpdate", "CaseDocument",
    # Messaging / notifications
    "CaseMessage", "CaseMeeting", "Notification", "NotificationPreference",
    # Billing
    "Invoice", "Payment",
    # Activity
    "CaseLog", "AuditLog",
    # Enums
    "AccountType", "InternalRole", "UserStatus", "TokenPurpose", "RegistrationStatus",
    "InvitationStatus", "CaseReportStatus", "MatterStatus", "MatterLifecycle",
    "AssignmentRole", "TaskPriority", "TaskStatus", "MeetingStatus",
    "NotificationChannel", "PlanType", "InvoiceStatus", "PaymentStatus",
    # Session
    "get_db", "get_db_session", "init_db", "get_engine", "reset_engine",
]
