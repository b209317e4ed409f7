"""
Client Portal API
=================

FastAPI router for client accounts, mounted at /client.

Clients only ever see their own case reports, matters and invoices; a
matter outside that set answers 404, never 403.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session

from .api_internal import SIGNED_URL_SECONDS, read_upload
from .auth import AuthContext, require_client
from .db.models import MeetingStatus
from .db.session import get_db
from .schemas import (
    CaseReportCreateRequest,
    CaseReportResponse,
    ClientCourtReportResponse,
    ClientMatterResponse,
    ClientTaskResponse,
    DocumentResponse,
    FirmSummaryResponse,
    IntakeInvoiceRequest,
    InvoiceResponse,
    MatterUpdateResponse,
    MeetingCreateRequest,
    MeetingResponse,
    MessageCreateRequest,
    MessageResponse,
    PaymentConfirmRequest,
    PaymentConfirmResponse,
    PlanResponse,
    SignedUrlResponse,
    StageProgressResponse,
    TimelineEntry,
)
from . import activity, billing, court_reports, documents, firms, matter_tasks, matters, messaging

logger = logging.getLogger(__name__)

router = APIRouter(tags=["client"])


# =============================================================================
# FIRMS, PLANS, INVOICES
# =============================================================================

@router.get("/firms", response_model=List[FirmSummaryResponse])
def list_firms(auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return firms.list_firms(db)


@router.get("/plans", response_model=List[PlanResponse])
def list_plans(auth: AuthContext = Depends(require_client)):
    return billing.list_plans()


@router.post("/invoices/intake", response_model=InvoiceResponse, status_code=201)
def create_intake_invoice(
    request: IntakeInvoiceRequest,
    auth: AuthContext = Depends(require_client),
    db: Session = Depends(get_db),
):
    return billing.create_intake_invoice(db, auth, request.plan)


@router.get("/invoices", response_model=List[InvoiceResponse])
def list_invoices(auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return billing.list_client_invoices(db, auth)


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(invoice_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return billing.get_invoice(db, auth, invoice_id)


@router.post("/invoices/{invoice_id}/pay", response_model=PaymentConfirmResponse)
def pay_invoice(
    invoice_id: str,
    request: PaymentConfirmRequest,
    auth: AuthContext = Depends(require_client),
    db: Session = Depends(get_db),
):
    """
    Record the gateway's verdict for a payment the client made.

    Repeating a reference returns the first outcome with duplicate=true.
    """
    return billing.confirm_invoice_payment(db, auth, invoice_id, request.reference, request.status)


# =============================================================================
# CASE REPORTS
# =============================================================================

@router.post("/case-reports", response_model=CaseReportResponse, status_code=201)
def submit_case_report(
    request: CaseReportCreateRequest,
    auth: AuthContext = Depends(require_client),
    db: Session = Depends(get_db),
):
    return matters.submit_case_report(db, auth, **request.model_dump())


@router.get("/case-reports", response_model=List[CaseReportResponse])
def list_case_reports(auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return matters.list_client_case_reports(db, auth)


@router.get("/case-reports/{report_id}", response_model=CaseReportResponse)
def get_case_report(report_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return matters.get_client_case_report(db, auth, report_id)


@router.get("/case-reports/{report_id}/documents", response_model=List[DocumentResponse])
def list_case_report_documents(report_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return documents.list_report_documents(db, auth, report_id)


@router.post("/case-reports/{report_id}/documents", response_model=DocumentResponse, status_code=201)
async def upload_case_report_document(
    report_id: str,
    file: UploadFile = File(...),
    auth: AuthContext = Depends(require_client),
    db: Session = Depends(get_db),
):
    data = await read_upload(file)
    return documents.upload_report_document(db, auth, report_id, file.filename, data, file.content_type)


# =============================================================================
# MATTERS
# =============================================================================

@router.get("/matters", response_model=List[ClientMatterResponse])
def list_matters(auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return matters.list_client_matters(db, auth)


@router.get("/matters/{matter_id}", response_model=ClientMatterResponse)
def get_matter(matter_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return matters.get_client_matter(db, auth, matter_id)


@router.get("/matters/{matter_id}/timeline", response_model=List[TimelineEntry])
def get_matter_timeline(matter_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    matter = matters.get_client_matter(db, auth, matter_id)
    return activity.get_client_timeline(db, matter)


@router.get("/matters/{matter_id}/stages", response_model=StageProgressResponse)
def get_stage_progress(matter_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return matters.get_client_stage_progress(db, auth, matter_id)


@router.get("/matters/{matter_id}/court-reports", response_model=List[ClientCourtReportResponse])
def list_court_reports(matter_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return court_reports.list_client_court_reports(db, auth, matter_id, SIGNED_URL_SECONDS)


@router.get("/matters/{matter_id}/updates", response_model=List[MatterUpdateResponse])
def list_matter_updates(matter_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return court_reports.list_client_updates(db, auth, matter_id)


@router.get("/matters/{matter_id}/tasks", response_model=List[ClientTaskResponse])
def list_matter_tasks(matter_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return matter_tasks.list_client_tasks(db, auth, matter_id)


@router.get("/matters/{matter_id}/documents", response_model=List[DocumentResponse])
def list_matter_documents(matter_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return documents.list_client_matter_documents(db, auth, matter_id)


@router.post("/matters/{matter_id}/documents", response_model=DocumentResponse, status_code=201)
async def upload_matter_document(
    matter_id: str,
    file: UploadFile = File(...),
    auth: AuthContext = Depends(require_client),
    db: Session = Depends(get_db),
):
    data = await read_upload(file)
    return documents.upload_client_matter_document(db, auth, matter_id, file.filename, data, file.content_type)


@router.get("/documents/{document_id}/url", response_model=SignedUrlResponse)
def document_download_url(document_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    url = documents.document_download_url(db, auth, document_id, SIGNED_URL_SECONDS)
    return SignedUrlResponse(url=url, expires_in=SIGNED_URL_SECONDS)


# =============================================================================
# MESSAGES & MEETINGS
# =============================================================================

@router.get("/matters/{matter_id}/messages", response_model=List[MessageResponse])
def list_messages(matter_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return messaging.list_messages(db, auth, matter_id)


@router.post("/matters/{matter_id}/messages", response_model=MessageResponse, status_code=201)
def send_message(
    matter_id: str,
    request: MessageCreateRequest,
    auth: AuthContext = Depends(require_client),
    db: Session = Depends(get_db),
):
    message = messaging.send_message(db, auth, matter_id, request.body)
    return MessageResponse(
        id=message.id,
        matter_id=message.matter_id,
        sender_id=message.sender_id,
        sender_name=auth.name,
        sender_role=message.sender_role,
        message_body=message.message_body,
        created_at=message.created_at,
    )


@router.get("/matters/{matter_id}/meetings", response_model=List[MeetingResponse])
def list_matter_meetings(matter_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return messaging.list_meetings(db, auth, matter_id)


@router.post("/matters/{matter_id}/meetings", response_model=MeetingResponse, status_code=201)
def request_meeting(
    matter_id: str,
    request: MeetingCreateRequest,
    auth: AuthContext = Depends(require_client),
    db: Session = Depends(get_db),
):
    return messaging.request_meeting(
        db, auth, matter_id, request.meeting_type, request.proposed_start, request.client_note,
    )


@router.get("/meetings", response_model=List[MeetingResponse])
def list_my_meetings(
    status: Optional[MeetingStatus] = Query(None),
    auth: AuthContext = Depends(require_client),
    db: Session = Depends(get_db),
):
    return messaging.list_my_meetings(db, auth, status)


@router.post("/meetings/{meeting_id}/cancel", response_model=MeetingResponse)
def cancel_meeting(meeting_id: str, auth: AuthContext = Depends(require_client), db: Session = Depends(get_db)):
    return messaging.cancel_meeting(db, auth, meeting_id)
