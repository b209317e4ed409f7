"""
Pydantic Schemas for CaseBridge
===============================

Request and response models shared by the auth endpoints and the two portal
routers. Response models read straight from ORM rows (from_attributes).
"""

from typing import List, Optional, Dict, Any
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .db.models import (
    CaseReportStatus, InternalRole, InvitationStatus, InvoiceStatus, MatterLifecycle,
    MatterStatus, MeetingStatus, PaymentStatus, PlanType, TaskPriority, TaskStatus, UserStatus,
)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# AUTH
# =============================================================================

class SignupRequest(BaseModel):
    email: EmailStr
    password: str
    first_name: str = Field(..., min_length=1)
    last_name: str = ""
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class InternalLoginResponse(TokenResponse):
    home: str
    session_id: str
    session_expires_at: datetime


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


class ConfirmEmailRequest(BaseModel):
    token: str


class FirmRegistrationRequest(BaseModel):
    firm_name: str = Field(..., min_length=1)
    firm_email: Optional[EmailStr] = None
    firm_phone: Optional[str] = None
    firm_address: Optional[str] = None
    first_name: str = Field(..., min_length=1)
    last_name: str = ""
    email: EmailStr
    phone: Optional[str] = None
    password: str


class AcceptInvitationRequest(BaseModel):
    token: str
    password: str
    first_name: str = Field(..., min_length=1)
    last_name: str = ""


class InviteDetailsResponse(BaseModel):
    firm_name: Optional[str] = None
    email: str
    role: InternalRole
    status: InvitationStatus
    expires_at: datetime


class MeResponse(BaseModel):
    user_id: str
    email: str
    name: str
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    account_type: str
    internal_role: Optional[InternalRole] = None
    status: UserStatus
    firm_id: Optional[str] = None
    firm_name: Optional[str] = None
    email_confirmed: bool
    home: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")
    db: bool = Field(..., description="Database reachable")
    queue: Dict[str, Any] = Field(default_factory=dict, description="Job queue statistics")
    timestamp: datetime = Field(..., description="Current timestamp")


# =============================================================================
# FIRM, STAFF, INVITATIONS
# =============================================================================

class FirmResponse(ORMModel):
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class FirmSummaryResponse(ORMModel):
    id: str
    name: str
    address: Optional[str] = None


class FirmUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class StaffResponse(ORMModel):
    id: str
    email: str
    first_name: str
    last_name: str
    name: str
    phone: Optional[str] = None
    internal_role: Optional[InternalRole] = None
    status: UserStatus
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None


class StaffStatusRequest(BaseModel):
    status: UserStatus


class StaffRoleRequest(BaseModel):
    role: InternalRole


class InvitationCreateRequest(BaseModel):
    email: EmailStr
    role: InternalRole = InternalRole.ASSOCIATE_LAWYER


class InvitationResponse(ORMModel):
    id: str
    email: str
    role: InternalRole
    status: InvitationStatus
    invited_by_id: Optional[str] = None
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    token: Optional[str] = Field(None, description="Returned in development mode only")


# =============================================================================
# PIPELINES
# =============================================================================

class StageResponse(ORMModel):
    id: str
    pipeline_id: str
    name: str
    description: Optional[str] = None
    order_index: int
    color_code: Optional[str] = None
    icon_name: Optional[str] = None


class StageProgressItem(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    order_index: int
    icon_name: Optional[str] = None
    state: str = Field(..., description="completed | current | upcoming")


class StageProgressResponse(BaseModel):
    matter_id: str
    current_stage_id: Optional[str] = None
    current_stage_name: Optional[str] = None
    progress_percent: int
    stages: List[StageProgressItem] = Field(default_factory=list)


class StageCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    order_index: Optional[int] = None
    color_code: Optional[str] = None
    icon_name: Optional[str] = None


class TaskTemplateCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    default_priority: TaskPriority = TaskPriority.MEDIUM
    is_client_visible_by_default: bool = False
    required_by_default: bool = False


class TaskTemplateResponse(ORMModel):
    id: str
    stage_id: str
    title: str
    description: Optional[str] = None
    default_priority: TaskPriority
    is_client_visible_by_default: bool
    required_by_default: bool


class StageHistoryResponse(ORMModel):
    id: str
    from_stage_id: Optional[str] = None
    to_stage_id: Optional[str] = None
    changed_by_id: Optional[str] = None
    forced: bool = False
    changed_at: Optional[datetime] = None


# =============================================================================
# CASE REPORTS (INTAKE)
# =============================================================================

class CaseReportCreateRequest(BaseModel):
    category: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    jurisdiction: Optional[str] = None
    preferred_firm_id: Optional[str] = None
    invoice_id: Optional[str] = None


class CaseReportResponse(ORMModel):
    id: str
    client_id: str
    category: str
    title: str
    description: str
    jurisdiction: Optional[str] = None
    preferred_firm_id: Optional[str] = None
    status: CaseReportStatus
    invoice_id: Optional[str] = None
    plan_type: Optional[PlanType] = None
    sla_due_at: Optional[datetime] = None
    reviewed_by_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class AcceptCaseReportRequest(BaseModel):
    associate_id: str
    case_manager_id: Optional[str] = None
    note: Optional[str] = None


class RejectCaseReportRequest(BaseModel):
    reason: str = Field(..., min_length=1)


# =============================================================================
# MATTERS
# =============================================================================

class MatterResponse(ORMModel):
    id: str
    firm_id: str
    client_id: Optional[str] = None
    case_report_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    jurisdiction: Optional[str] = None
    status: MatterStatus
    lifecycle_state: MatterLifecycle
    pipeline_id: Optional[str] = None
    current_stage_id: Optional[str] = None
    assigned_associate_id: Optional[str] = None
    assigned_case_manager_id: Optional[str] = None
    deadline: Optional[datetime] = None
    flagged: bool = False
    archived_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ClientMatterResponse(ORMModel):
    """What a client sees of their own matter."""
    id: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    jurisdiction: Optional[str] = None
    status: MatterStatus
    lifecycle_state: MatterLifecycle
    current_stage_id: Optional[str] = None
    deadline: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class MatterCreateRequest(BaseModel):
    client_id: str
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    jurisdiction: Optional[str] = None
    deadline: Optional[datetime] = None


class MatterUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    jurisdiction: Optional[str] = None
    deadline: Optional[datetime] = None
    flagged: Optional[bool] = None


class StatusChangeRequest(BaseModel):
    status: MatterStatus
    note: Optional[str] = None


class CloseMatterRequest(BaseModel):
    note: Optional[str] = None


class AssignMatterRequest(BaseModel):
    associate_id: str
    case_manager_id: Optional[str] = None
    note: Optional[str] = None


class AdvanceStageRequest(BaseModel):
    to_stage_id: Optional[str] = None
    force: bool = False


class StatementRequest(BaseModel):
    content: str = Field(..., min_length=1)


class StatementResponse(ORMModel):
    id: str
    matter_id: str
    version: int
    content: str
    created_by_id: Optional[str] = None
    created_at: Optional[datetime] = None


class CommentRequest(BaseModel):
    body: str = Field(..., min_length=1)


class CommentResponse(BaseModel):
    id: str
    matter_id: str
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    body: str
    created_at: Optional[datetime] = None


class TimelineEntry(BaseModel):
    id: str
    action: str
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


# =============================================================================
# TASKS
# =============================================================================

class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    stage_id: Optional[str] = None
    assigned_to_id: Optional[str] = None
    due_date: Optional[datetime] = None
    is_client_visible: bool = False
    required_for_stage_completion: bool = False


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    stage_id: Optional[str] = None
    assigned_to_id: Optional[str] = None
    due_date: Optional[datetime] = None
    is_client_visible: Optional[bool] = None
    required_for_stage_completion: Optional[bool] = None


class TaskStatusRequest(BaseModel):
    status: TaskStatus


class GenerateTasksRequest(BaseModel):
    stage_id: Optional[str] = None


class TaskResponse(ORMModel):
    id: str
    matter_id: str
    stage_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    priority: TaskPriority
    status: TaskStatus
    required_for_stage_completion: bool = False
    assigned_to_id: Optional[str] = None
    due_date: Optional[datetime] = None
    is_client_visible: bool = False
    created_by_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ClientTaskResponse(ORMModel):
    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# =============================================================================
# COURT REPORTS, UPDATES, DOCUMENTS
# =============================================================================

class CourtReportCreateRequest(BaseModel):
    content: str = Field(..., min_length=1)
    close_case: bool = False


class CourtReportSubmitResponse(BaseModel):
    report_id: str
    is_first_report: bool


class AttachmentResponse(ORMModel):
    id: str
    file_name: str
    file_size: int
    file_type: Optional[str] = None
    created_at: Optional[datetime] = None


class CourtReportResponse(BaseModel):
    id: str
    matter_id: str
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    content: str
    close_case: bool
    is_first_report: bool
    created_at: Optional[datetime] = None
    attachments: List[AttachmentResponse] = Field(default_factory=list)


class ClientAttachmentResponse(AttachmentResponse):
    url: str = Field(..., description="Signed download link")


class ClientCourtReportResponse(BaseModel):
    id: str
    matter_id: str
    author_name: Optional[str] = None
    content: str
    close_case: bool
    is_first_report: bool
    created_at: Optional[datetime] = None
    attachments: List[ClientAttachmentResponse] = Field(default_factory=list)


class MatterUpdateCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    client_visible: bool = False
    is_final: bool = False


class MatterUpdateResponse(ORMModel):
    id: str
    matter_id: str
    author_id: Optional[str] = None
    author_role: Optional[str] = None
    title: str
    content: str
    client_visible: bool
    is_final: bool
    created_at: Optional[datetime] = None


class DocumentResponse(ORMModel):
    id: str
    case_report_id: Optional[str] = None
    matter_id: Optional[str] = None
    update_id: Optional[str] = None
    uploaded_by_id: Optional[str] = None
    file_name: str
    file_size: int
    file_type: Optional[str] = None
    client_visible: bool = True
    created_at: Optional[datetime] = None


class SignedUrlResponse(BaseModel):
    url: str
    expires_in: int


# =============================================================================
# MESSAGES AND MEETINGS
# =============================================================================

class MessageCreateRequest(BaseModel):
    body: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    id: str
    matter_id: str
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None
    sender_role: str
    message_body: str
    created_at: Optional[datetime] = None


class MeetingCreateRequest(BaseModel):
    meeting_type: str = Field(..., description="in_person | video | phone")
    proposed_start: datetime
    client_note: Optional[str] = None


class MeetingRespondRequest(BaseModel):
    accept: bool
    note: Optional[str] = None


class MeetingResponse(ORMModel):
    id: str
    matter_id: str
    client_id: str
    lawyer_user_id: Optional[str] = None
    meeting_type: str
    proposed_start: datetime
    client_note: Optional[str] = None
    status: MeetingStatus
    response_note: Optional[str] = None
    created_at: Optional[datetime] = None


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class NotificationResponse(ORMModel):
    id: str
    matter_id: Optional[str] = None
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class NotificationPreferenceItem(BaseModel):
    event_type: str
    in_app_enabled: bool
    email_enabled: bool


class NotificationPreferenceUpdate(BaseModel):
    event_type: str
    in_app_enabled: Optional[bool] = None
    email_enabled: Optional[bool] = None


# =============================================================================
# BILLING
# =============================================================================

class PlanResponse(BaseModel):
    plan_type: PlanType
    name: str
    amount: int
    currency: str
    sla_hours: int


class IntakeInvoiceRequest(BaseModel):
    plan: PlanType


class InvoiceCreateRequest(BaseModel):
    matter_id: str
    amount: int = Field(..., gt=0, description="Whole currency units")
    description: Optional[str] = None


class PaymentConfirmRequest(BaseModel):
    reference: str = Field(..., min_length=1)
    status: PaymentStatus = PaymentStatus.SUCCESS


class InvoiceResponse(ORMModel):
    id: str
    client_id: str
    firm_id: Optional[str] = None
    matter_id: Optional[str] = None
    plan_type: Optional[PlanType] = None
    description: Optional[str] = None
    amount: int
    currency: str
    status: InvoiceStatus
    reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class PaymentResponse(ORMModel):
    id: str
    invoice_id: str
    amount: int
    status: PaymentStatus
    reference: str
    created_at: Optional[datetime] = None


class PaymentConfirmResponse(BaseModel):
    invoice: InvoiceResponse
    payment: Optional[PaymentResponse] = None
    duplicate: bool = False


# =============================================================================
# AUDIT
# =============================================================================

class AuditLogResponse(ORMModel):
    id: str
    actor_id: Optional[str] = None
    action: str
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
