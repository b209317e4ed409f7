"""
Internal Portal API
===================

FastAPI router for the staff portal, mounted at /internal.

Every endpoint needs an internal session (require_staff); permission checks
live in the service functions, which raise ServiceError subclasses that the
app-level handler turns into JSON.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.orm import Session

from .auth import AuthContext, AuthService, require_staff
from .config import get_settings
from .db.models import InvitationStatus, InvoiceStatus, MatterStatus, MeetingStatus
from .db.session import get_db
from .errors import PayloadTooLargeError
from .jobs.queue import get_job_status
from .middleware import check_upload_quota, increment_upload_quota
from .rbac import Action, Resource
from .schemas import (
    AcceptCaseReportRequest,
    AdvanceStageRequest,
    AssignMatterRequest,
    AttachmentResponse,
    AuditLogResponse,
    CaseReportResponse,
    CloseMatterRequest,
    CommentRequest,
    CommentResponse,
    CourtReportCreateRequest,
    CourtReportResponse,
    CourtReportSubmitResponse,
    DocumentResponse,
    FirmResponse,
    FirmUpdateRequest,
    GenerateTasksRequest,
    InvitationCreateRequest,
    InvitationResponse,
    InvoiceCreateRequest,
    InvoiceResponse,
    MatterCreateRequest,
    MatterResponse,
    MatterUpdateCreateRequest,
    MatterUpdateRequest,
    MatterUpdateResponse,
    MeetingRespondRequest,
    MeetingResponse,
    MessageCreateRequest,
    MessageResponse,
    PaymentConfirmRequest,
    PaymentConfirmResponse,
    RejectCaseReportRequest,
    SignedUrlResponse,
    StaffResponse,
    StaffRoleRequest,
    StaffStatusRequest,
    StageCreateRequest,
    StageHistoryResponse,
    StageResponse,
    StatementRequest,
    StatementResponse,
    StatusChangeRequest,
    TaskCreateRequest,
    TaskResponse,
    TaskStatusRequest,
    TaskTemplateCreateRequest,
    TaskTemplateResponse,
    TaskUpdateRequest,
    TimelineEntry,
)
from . import activity, billing, court_reports, documents, firms, matter_tasks, matters, messaging, reporting

logger = logging.getLogger(__name__)

router = APIRouter(tags=["internal"])

SIGNED_URL_SECONDS = 3600


async def read_upload(file: UploadFile) -> bytes:
    """Read an upload, refusing anything over MAX_UPLOAD_BYTES without buffering it all."""
    max_bytes = get_settings().max_upload_bytes
    data = await file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise PayloadTooLargeError(f"File exceeds upload limit of {max_bytes} bytes")
    return data


async def _firm_upload(auth: AuthContext, file: UploadFile) -> bytes:
    if not check_upload_quota(auth.firm_id):
        raise HTTPException(status_code=429, detail="Daily upload quota reached for this firm")
    data = await read_upload(file)
    increment_upload_quota(auth.firm_id)
    return data


# =============================================================================
# FIRM & STAFF
# =============================================================================

@router.get("/firm", response_model=FirmResponse)
def get_firm(auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return firms.get_firm(db, auth.firm_id)


@router.patch("/firm", response_model=FirmResponse)
def update_firm(
    request: FirmUpdateRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return firms.update_firm(db, auth, request.model_dump(exclude_unset=True))


@router.get("/staff", response_model=List[StaffResponse])
def list_staff(
    include_inactive: bool = Query(True),
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return firms.list_staff(db, auth.firm_id, include_inactive=include_inactive)


@router.get("/staff/{user_id}", response_model=StaffResponse)
def get_staff_member(user_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return firms.get_staff_member(db, auth.firm_id, user_id)


@router.patch("/staff/{user_id}/status", response_model=StaffResponse)
def update_staff_status(
    user_id: str,
    request: StaffStatusRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return firms.update_staff_status(db, auth, user_id, request.status)


@router.patch("/staff/{user_id}/role", response_model=StaffResponse)
def update_staff_role(
    user_id: str,
    request: StaffRoleRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return firms.update_staff_role(db, auth, user_id, request.role)


# =============================================================================
# INVITATIONS
# =============================================================================

def _invitation_response(invitation, token: Optional[str]) -> InvitationResponse:
    from .api import _dev_mode

    response = InvitationResponse.model_validate(invitation)
    if _dev_mode():
        response.token = token
    return response


@router.get("/invitations", response_model=List[InvitationResponse])
def list_invitations(
    status: Optional[InvitationStatus] = Query(None),
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return firms.list_invitations(db, auth, status)


@router.post("/invitations", response_model=InvitationResponse, status_code=201)
def create_invitation(
    request: InvitationCreateRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    invitation, token = firms.create_invitation(db, auth, request.email, request.role)
    return _invitation_response(invitation, token)


@router.post("/invitations/{invitation_id}/revoke", response_model=InvitationResponse)
def revoke_invitation(invitation_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return firms.revoke_invitation(db, auth, invitation_id)


@router.post("/invitations/{invitation_id}/resend", response_model=InvitationResponse)
def resend_invitation(invitation_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    invitation, token = firms.resend_invitation(db, auth, invitation_id)
    return _invitation_response(invitation, token)


@router.get("/audit-logs", response_model=List[AuditLogResponse])
def list_audit_logs(
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    AuthService(db).require_permission(auth, Resource.AUDIT_LOG, Action.VIEW)
    return activity.list_audit_logs(db, auth.firm_id, action=action, limit=limit)


@router.get("/jobs/{job_id}")
def get_job(job_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    """Status of a background job (e.g. an invitation or notification email)."""
    AuthService(db).require_permission(auth, Resource.FIRM, Action.MANAGE)
    return get_job_status(job_id)


# =============================================================================
# PIPELINE
# =============================================================================

@router.get("/pipeline/stages", response_model=List[StageResponse])
def list_pipeline_stages(auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return firms.list_pipeline_stages(db, auth.firm_id)


@router.post("/pipeline/stages", response_model=StageResponse, status_code=201)
def create_stage(request: StageCreateRequest, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return firms.create_stage(db, auth, **request.model_dump())


@router.post("/pipeline/stages/{stage_id}/templates", response_model=TaskTemplateResponse, status_code=201)
def create_task_template(
    stage_id: str,
    request: TaskTemplateCreateRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return firms.create_task_template(db, auth, stage_id, **request.model_dump())


# =============================================================================
# INTAKE QUEUE
# =============================================================================

@router.get("/intake", response_model=List[CaseReportResponse])
def list_intake_queue(auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return matters.list_intake_queue(db, auth)


@router.get("/intake/{report_id}", response_model=CaseReportResponse)
def get_intake_report(report_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return matters.get_intake_report(db, auth, report_id)


@router.get("/intake/{report_id}/documents", response_model=List[DocumentResponse])
def list_intake_documents(report_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return documents.list_intake_report_documents(db, auth, report_id)


@router.post("/intake/{report_id}/review", response_model=CaseReportResponse)
def start_review(report_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return matters.start_review(db, auth, report_id)


@router.post("/intake/{report_id}/accept", response_model=MatterResponse)
def accept_case_report(
    report_id: str,
    request: AcceptCaseReportRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    """Turn a reviewed case report into an assigned matter."""
    return matters.accept_case_report(
        db, auth, report_id, request.associate_id, request.case_manager_id, request.note,
    )


@router.post("/intake/{report_id}/reject", response_model=CaseReportResponse)
def reject_case_report(
    report_id: str,
    request: RejectCaseReportRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matters.reject_case_report(db, auth, report_id, request.reason)


# =============================================================================
# MATTERS
# =============================================================================

@router.get("/matters", response_model=List[MatterResponse])
def list_matters(
    status: Optional[MatterStatus] = Query(None),
    archived: Optional[bool] = Query(False),
    assigned_to_me: bool = Query(False),
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matters.list_matters(db, auth, status=status, archived=archived, assigned_to_me=assigned_to_me)


@router.post("/matters", response_model=MatterResponse, status_code=201)
def create_matter(request: MatterCreateRequest, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return matters.create_matter(db, auth, **request.model_dump())


@router.get("/matters/{matter_id}", response_model=MatterResponse)
def get_matter(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return matters.get_matter(db, auth, matter_id)


@router.patch("/matters/{matter_id}", response_model=MatterResponse)
def update_matter(
    matter_id: str,
    request: MatterUpdateRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matters.update_matter(db, auth, matter_id, request.model_dump(exclude_unset=True))


@router.delete("/matters/{matter_id}", status_code=204)
def delete_matter(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    matters.delete_matter(db, auth, matter_id)


@router.post("/matters/{matter_id}/status", response_model=MatterResponse)
def change_matter_status(
    matter_id: str,
    request: StatusChangeRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matters.change_matter_status(db, auth, matter_id, request.status, request.note)


@router.post("/matters/{matter_id}/close", response_model=MatterResponse)
def close_matter(
    matter_id: str,
    request: CloseMatterRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matters.close_matter(db, auth, matter_id, request.note)


@router.post("/matters/{matter_id}/assign", response_model=MatterResponse)
def assign_matter(
    matter_id: str,
    request: AssignMatterRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matters.assign_matter(db, auth, matter_id, request.associate_id, request.case_manager_id, request.note)


@router.post("/matters/{matter_id}/claim", response_model=MatterResponse)
def claim_matter(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return matters.claim_matter(db, auth, matter_id)


@router.post("/matters/{matter_id}/archive", response_model=MatterResponse)
def archive_matter(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return matters.archive_matter(db, auth, matter_id)


@router.get("/matters/{matter_id}/timeline", response_model=List[TimelineEntry])
def get_matter_timeline(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    AuthService(db).require_permission(auth, Resource.CASE_LOG, Action.VIEW)
    matter = matters.get_matter(db, auth, matter_id)
    return activity.get_matter_timeline(db, matter)


# -- stages -----------------------------------------------------------------

@router.get("/matters/{matter_id}/stages", response_model=List[StageResponse])
def list_matter_stages(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return matters.list_stages(db, auth, matter_id)


@router.post("/matters/{matter_id}/stages/advance", response_model=MatterResponse)
def advance_stage(
    matter_id: str,
    request: AdvanceStageRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matters.advance_stage(db, auth, matter_id, request.to_stage_id, request.force)


@router.get("/matters/{matter_id}/stage-history", response_model=List[StageHistoryResponse])
def list_stage_history(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return matters.list_stage_history(db, auth, matter_id)


# -- statements & comments --------------------------------------------------

@router.get("/matters/{matter_id}/statements", response_model=List[StatementResponse])
def list_case_statements(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return matters.list_case_statements(db, auth, matter_id)


@router.post("/matters/{matter_id}/statements", response_model=StatementResponse, status_code=201)
def save_case_statement(
    matter_id: str,
    request: StatementRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matters.save_case_statement(db, auth, matter_id, request.content)


@router.get("/matters/{matter_id}/comments", response_model=List[CommentResponse])
def list_comments(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return matters.list_comments(db, auth, matter_id)


@router.post("/matters/{matter_id}/comments", response_model=CommentResponse, status_code=201)
def add_comment(
    matter_id: str,
    request: CommentRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    comment = matters.add_comment(db, auth, matter_id, request.body)
    return CommentResponse(
        id=comment.id,
        matter_id=comment.matter_id,
        author_id=comment.author_id,
        author_name=auth.name,
        body=comment.body,
        created_at=comment.created_at,
    )


@router.delete("/matters/{matter_id}/comments/{comment_id}", status_code=204)
def delete_comment(matter_id: str, comment_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    matters.delete_comment(db, auth, matter_id, comment_id)


# =============================================================================
# TASKS
# =============================================================================

@router.get("/tasks/mine", response_model=List[TaskResponse])
def list_my_tasks(
    include_completed: bool = Query(False),
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matter_tasks.list_my_tasks(db, auth, include_completed=include_completed)


@router.get("/matters/{matter_id}/tasks", response_model=List[TaskResponse])
def list_tasks(
    matter_id: str,
    stage_id: Optional[str] = Query(None),
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matter_tasks.list_tasks(db, auth, matter_id, stage_id=stage_id)


@router.post("/matters/{matter_id}/tasks", response_model=TaskResponse, status_code=201)
def create_task(
    matter_id: str,
    request: TaskCreateRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matter_tasks.create_task(db, auth, matter_id, **request.model_dump())


@router.post("/matters/{matter_id}/tasks/generate", response_model=List[TaskResponse])
def generate_stage_tasks(
    matter_id: str,
    request: GenerateTasksRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matter_tasks.generate_stage_tasks(db, auth, matter_id, request.stage_id)


@router.patch("/matters/{matter_id}/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    matter_id: str,
    task_id: str,
    request: TaskUpdateRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matter_tasks.update_task(db, auth, matter_id, task_id, request.model_dump(exclude_unset=True))


@router.post("/matters/{matter_id}/tasks/{task_id}/status", response_model=TaskResponse)
def set_task_status(
    matter_id: str,
    task_id: str,
    request: TaskStatusRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matter_tasks.set_task_status(db, auth, matter_id, task_id, request.status)


@router.post("/matters/{matter_id}/tasks/{task_id}/toggle-visibility", response_model=TaskResponse)
def toggle_task_visibility(
    matter_id: str,
    task_id: str,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return matter_tasks.toggle_task_client_visibility(db, auth, matter_id, task_id)


@router.delete("/matters/{matter_id}/tasks/{task_id}", status_code=204)
def delete_task(matter_id: str, task_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    matter_tasks.delete_task(db, auth, matter_id, task_id)


# =============================================================================
# COURT REPORTS & UPDATES
# =============================================================================

@router.get("/matters/{matter_id}/court-reports", response_model=List[CourtReportResponse])
def list_court_reports(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return court_reports.list_court_reports(db, auth, matter_id)


@router.post("/matters/{matter_id}/court-reports", response_model=CourtReportSubmitResponse, status_code=201)
def submit_court_report(
    matter_id: str,
    request: CourtReportCreateRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    result = court_reports.submit_court_report(db, auth, matter_id, request.content, request.close_case)
    return CourtReportSubmitResponse(report_id=result["report_id"], is_first_report=result["is_first_report"])


@router.post("/court-reports/{report_id}/attachments", response_model=AttachmentResponse, status_code=201)
async def add_court_report_attachment(
    report_id: str,
    file: UploadFile = File(...),
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    data = await _firm_upload(auth, file)
    return court_reports.add_court_report_attachment(db, auth, report_id, file.filename, data, file.content_type)


@router.get("/court-report-attachments/{attachment_id}/url", response_model=SignedUrlResponse)
def court_report_attachment_url(attachment_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    url = court_reports.court_report_attachment_url(db, auth, attachment_id, SIGNED_URL_SECONDS)
    return SignedUrlResponse(url=url, expires_in=SIGNED_URL_SECONDS)


@router.get("/matters/{matter_id}/updates", response_model=List[MatterUpdateResponse])
def list_matter_updates(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return court_reports.list_matter_updates(db, auth, matter_id)


@router.post("/matters/{matter_id}/updates", response_model=MatterUpdateResponse, status_code=201)
def create_matter_update(
    matter_id: str,
    request: MatterUpdateCreateRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return court_reports.create_matter_update(db, auth, matter_id, **request.model_dump())


@router.post("/matters/{matter_id}/updates/{update_id}/attachments", response_model=DocumentResponse, status_code=201)
async def add_update_attachment(
    matter_id: str,
    update_id: str,
    file: UploadFile = File(...),
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    data = await _firm_upload(auth, file)
    return court_reports.add_update_attachment(db, auth, matter_id, update_id, file.filename, data, file.content_type)


# =============================================================================
# DOCUMENTS
# =============================================================================

@router.get("/matters/{matter_id}/documents", response_model=List[DocumentResponse])
def list_matter_documents(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return documents.list_matter_documents(db, auth, matter_id)


@router.post("/matters/{matter_id}/documents", response_model=DocumentResponse, status_code=201)
async def upload_matter_document(
    matter_id: str,
    file: UploadFile = File(...),
    client_visible: bool = Form(True),
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    data = await _firm_upload(auth, file)
    return documents.upload_matter_document(
        db, auth, matter_id, file.filename, data, file.content_type, client_visible=client_visible,
    )


@router.get("/documents/{document_id}/url", response_model=SignedUrlResponse)
def document_download_url(document_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    url = documents.document_download_url(db, auth, document_id, SIGNED_URL_SECONDS)
    return SignedUrlResponse(url=url, expires_in=SIGNED_URL_SECONDS)


@router.delete("/documents/{document_id}", status_code=204)
def delete_document(document_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    documents.delete_document(db, auth, document_id)


# =============================================================================
# MESSAGES & MEETINGS
# =============================================================================

def _message_response(message, auth: AuthContext) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        matter_id=message.matter_id,
        sender_id=message.sender_id,
        sender_name=auth.name,
        sender_role=message.sender_role,
        message_body=message.message_body,
        created_at=message.created_at,
    )


@router.get("/matters/{matter_id}/messages", response_model=List[MessageResponse])
def list_messages(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return messaging.list_messages(db, auth, matter_id)


@router.post("/matters/{matter_id}/messages", response_model=MessageResponse, status_code=201)
def send_message(
    matter_id: str,
    request: MessageCreateRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    message = messaging.send_message(db, auth, matter_id, request.body)
    return _message_response(message, auth)


@router.get("/matters/{matter_id}/meetings", response_model=List[MeetingResponse])
def list_matter_meetings(matter_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return messaging.list_meetings(db, auth, matter_id)


@router.get("/meetings", response_model=List[MeetingResponse])
def list_my_meetings(
    status: Optional[MeetingStatus] = Query(None),
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return messaging.list_my_meetings(db, auth, status)


@router.post("/meetings/{meeting_id}/respond", response_model=MeetingResponse)
def respond_to_meeting(
    meeting_id: str,
    request: MeetingRespondRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return messaging.respond_to_meeting(db, auth, meeting_id, request.accept, request.note)


@router.post("/meetings/{meeting_id}/complete", response_model=MeetingResponse)
def complete_meeting(meeting_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return messaging.complete_meeting(db, auth, meeting_id)


# =============================================================================
# BILLING
# =============================================================================

@router.get("/billing/invoices", response_model=List[InvoiceResponse])
def list_firm_invoices(
    status: Optional[InvoiceStatus] = Query(None),
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    return billing.list_firm_invoices(db, auth, status)


@router.post("/billing/invoices", response_model=InvoiceResponse, status_code=201)
def create_invoice(request: InvoiceCreateRequest, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return billing.create_invoice(db, auth, request.matter_id, request.amount, request.description)


@router.post("/billing/invoices/{invoice_id}/issue", response_model=InvoiceResponse)
def issue_invoice(invoice_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return billing.issue_invoice(db, auth, invoice_id)


@router.post("/billing/invoices/{invoice_id}/cancel", response_model=InvoiceResponse)
def cancel_invoice(invoice_id: str, auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return billing.cancel_invoice(db, auth, invoice_id)


@router.post("/billing/invoices/{invoice_id}/payments", response_model=PaymentConfirmResponse)
def confirm_invoice_payment(
    invoice_id: str,
    request: PaymentConfirmRequest,
    auth: AuthContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    """Record an offline payment (bank transfer, cheque) against an invoice."""
    return billing.confirm_invoice_payment(db, auth, invoice_id, request.reference, request.status)


@router.get("/billing/revenue")
def get_revenue_summary(auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return billing.get_revenue_summary(db, auth)


# =============================================================================
# REPORTING
# =============================================================================

@router.get("/reports/stats")
def get_reporting_stats(auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return reporting.get_firm_reporting_stats(db, auth)


@router.get("/reports/workload")
def get_workload(auth: AuthContext = Depends(require_staff), db: Session = Depends(get_db)):
    return reporting.get_workload(db, auth)
