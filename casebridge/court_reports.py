"""
Court reports and matter updates.

A court report is the associate's account of a hearing. The first report on
an assigned matter starts work on it (assigned -> in_progress); a report
filed with close_case closes the matter.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .auth import AuthContext
from .db.models import (
    CaseDocument, CourtReport, CourtReportAttachment, Matter, MatterStatus, MatterUpdate, User,
)
from .errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError
from .activity import log_case_action
from .matters import (
    PRE_ASSIGNMENT_STATUSES, TERMINAL_STATUSES, apply_status, close_matter_internal,
    get_client_matter, get_editable_matter, get_matter,
)
from .notifications import notify_case_managers, notify_client
from .rbac import can_edit_matter
from .realtime import queue_matter_change
from .storage import (
    CASE_DOCUMENTS_BUCKET, COURT_REPORTS_BUCKET, court_report_path, create_signed_url,
    guess_mime_type, matter_update_path, sanitize_filename, staged_upload,
)

logger = logging.getLogger(__name__)


def _may_file_report(auth: AuthContext, matter: Matter) -> bool:
    if matter.assigned_associate_id == auth.user_id:
        return True
    return auth.is_case_manager_or_higher and can_edit_matter(auth, matter)


# =============================================================================
# COURT REPORTS
# =============================================================================

def submit_court_report(
    db: Session,
    auth: AuthContext,
    matter_id: str,
    content: str,
    close_case: bool = False,
) -> Dict[str, Any]:
    """
    File a court report on a matter.

    Returns {"report_id", "is_first_report", "report"}.
    """
    matter = get_matter(db, auth, matter_id)
    if not _may_file_report(auth, matter):
        raise PermissionDeniedError("Only the assigned associate or a case manager can file court reports")
    if matter.status in TERMINAL_STATUSES:
        raise ConflictError("Court reports cannot be filed on a closed matter")
    if matter.status in PRE_ASSIGNMENT_STATUSES:
        raise ConflictError("Matter has not been assigned yet")
    if not content or not content.strip():
        raise ValidationFailedError("Report content is required")

    is_first = db.query(CourtReport).filter(CourtReport.matter_id == matter.id).count() == 0
    report = CourtReport(
        matter_id=matter.id,
        author_id=auth.user_id,
        content=content,
        close_case=close_case,
        is_first_report=is_first,
    )
    db.add(report)
    db.flush()

    if is_first and matter.status == MatterStatus.ASSIGNED:
        apply_status(db, matter, MatterStatus.IN_PROGRESS, auth.user_id, "First court report filed")

    log_case_action(db, matter, auth.user_id, "court_report_submitted", {
        "report_id": report.id,
        "is_first_report": is_first,
        "close_case": close_case,
    })
    if close_case:
        close_matter_internal(db, matter, auth.user_id, "Closed with court report")

    notify_case_managers(
        db, matter.firm_id, "court_report_submitted", matter,
        triggered_by=auth.user_id,
        metadata={"report_id": report.id, "is_first_report": is_first},
    )
    queue_matter_change(db, matter.id, report, "INSERT", client_visible=True)
    db.commit()
    logger.info(f"Court report {report.id} filed on matter {matter.id} (first={is_first}, close={close_case})")
    return {"report_id": report.id, "is_first_report": is_first, "report": report}


def _get_court_report(db: Session, auth: AuthContext, report_id: str) -> CourtReport:
    report = db.query(CourtReport).filter(CourtReport.id == report_id).first()
    if not report:
        raise NotFoundError("Court report", report_id)
    get_matter(db, auth, report.matter_id)
    return report


def add_court_report_attachment(
    db: Session,
    auth: AuthContext,
    report_id: str,
    filename: str,
    data: bytes,
    content_type: Optional[str] = None,
) -> CourtReportAttachment:
    report = _get_court_report(db, auth, report_id)
    if report.author_id != auth.user_id and not auth.is_case_manager_or_higher:
        raise PermissionDeniedError("Only the report author can attach files")

    path = court_report_path(report.id, filename)
    mime_type = content_type or guess_mime_type(filename)
    with staged_upload(db, COURT_REPORTS_BUCKET, path, data, mime_type) as meta:
        attachment = CourtReportAttachment(
            report_id=report.id,
            file_name=sanitize_filename(filename),
            file_path=path,
            file_size=meta.size_bytes,
            file_type=meta.mime_type,
            uploaded_by_id=auth.user_id,
        )
        db.add(attachment)
        db.flush()
        queue_matter_change(db, report.matter_id, attachment, "INSERT", client_visible=True)
        db.commit()
    return attachment


def _reports_for(db: Session, matter: Matter) -> List[CourtReport]:
    return (
        db.query(CourtReport)
        .filter(CourtReport.matter_id == matter.id)
        .order_by(CourtReport.created_at.desc())
        .all()
    )


def _author_names(db: Session, reports: List[CourtReport]) -> Dict[str, str]:
    ids = {r.author_id for r in reports if r.author_id}
    if not ids:
        return {}
    return {u.id: u.name for u in db.query(User).filter(User.id.in_(ids)).all()}


def list_court_reports(db: Session, auth: AuthContext, matter_id: str) -> List[Dict[str, Any]]:
    matter = get_matter(db, auth, matter_id)
    reports = _reports_for(db, matter)
    authors = _author_names(db, reports)
    return [
        {
            "id": r.id,
            "matter_id": r.matter_id,
            "author_id": r.author_id,
            "author_name": authors.get(r.author_id),
            "content": r.content,
            "close_case": bool(r.close_case),
            "is_first_report": bool(r.is_first_report),
            "created_at": r.created_at,
            "attachments": [
                {
                    "id": a.id,
                    "file_name": a.file_name,
                    "file_size": a.file_size,
                    "file_type": a.file_type,
                    "created_at": a.created_at,
                }
                for a in r.attachments
            ],
        }
        for r in reports
    ]


def list_client_court_reports(
    db: Session,
    auth: AuthContext,
    matter_id: str,
    expires_in: int = 3600,
) -> List[Dict[str, Any]]:
    """
    Filed court reports on the client's own matter, newest first.

    Each attachment carries a signed download link; author ids stay internal.
    """
    matter = get_client_matter(db, auth, matter_id)
    reports = _reports_for(db, matter)
    authors = _author_names(db, reports)
    return [
        {
            "id": r.id,
            "matter_id": r.matter_id,
            "author_name": authors.get(r.author_id),
            "content": r.content,
            "close_case": bool(r.close_case),
            "is_first_report": bool(r.is_first_report),
            "created_at": r.created_at,
            "attachments": [
                {
                    "id": a.id,
                    "file_name": a.file_name,
                    "file_size": a.file_size,
                    "file_type": a.file_type,
                    "created_at": a.created_at,
                    "url": create_signed_url(COURT_REPORTS_BUCKET, a.file_path, expires_in),
                }
                for a in r.attachments
            ],
        }
        for r in reports
    ]


def court_report_attachment_url(db: Session, auth: AuthContext, attachment_id: str, expires_in: int = 3600) -> str:
    attachment = db.query(CourtReportAttachment).filter(CourtReportAttachment.id == attachment_id).first()
    if not attachment:
        raise NotFoundError("Attachment", attachment_id)
    _get_court_report(db, auth, attachment.report_id)
    return create_signed_url(COURT_REPORTS_BUCKET, attachment.file_path, expires_in)


# =============================================================================
# MATTER UPDATES
# =============================================================================

def create_matter_update(
    db: Session,
    auth: AuthContext,
    matter_id: str,
    title: str,
    content: str,
    client_visible: bool = False,
    is_final: bool = False,
) -> MatterUpdate:
    matter = get_editable_matter(db, auth, matter_id)
    if not title or not content:
        raise ValidationFailedError("Title and content are required")

    update = MatterUpdate(
        matter_id=matter.id,
        author_id=auth.user_id,
        author_role=auth.role_label,
        title=title,
        content=content,
        client_visible=client_visible,
        is_final=is_final,
    )
    db.add(update)
    db.flush()

    if client_visible:
        notify_client(db, matter, "associate_update", title, content[:200])
    queue_matter_change(db, matter.id, update, "INSERT", client_visible=bool(client_visible))
    db.commit()
    return update


def list_matter_updates(db: Session, auth: AuthContext, matter_id: str) -> List[MatterUpdate]:
    matter = get_matter(db, auth, matter_id)
    return (
        db.query(MatterUpdate)
        .filter(MatterUpdate.matter_id == matter.id)
        .order_by(MatterUpdate.created_at.desc())
        .all()
    )


def list_client_updates(db: Session, auth: AuthContext, matter_id: str) -> List[MatterUpdate]:
    matter = get_client_matter(db, auth, matter_id)
    return (
        db.query(MatterUpdate)
        .filter(MatterUpdate.matter_id == matter.id, MatterUpdate.client_visible.is_(True))
        .order_by(MatterUpdate.created_at.desc())
        .all()
    )


def add_update_attachment(
    db: Session,
    auth: AuthContext,
    matter_id: str,
    update_id: str,
    filename: str,
    data: bytes,
    content_type: Optional[str] = None,
) -> CaseDocument:
    matter = get_editable_matter(db, auth, matter_id)
    update = db.query(MatterUpdate).filter(
        MatterUpdate.id == update_id,
        MatterUpdate.matter_id == matter.id,
    ).first()
    if not update:
        raise NotFoundError("Update", update_id)

    path = matter_update_path(matter.id, auth.user_id, filename)
    mime_type = content_type or guess_mime_type(filename)
    with staged_upload(db, CASE_DOCUMENTS_BUCKET, path, data, mime_type) as meta:
        document = CaseDocument(
            matter_id=matter.id,
            update_id=update.id,
            uploaded_by_id=auth.user_id,
            bucket=CASE_DOCUMENTS_BUCKET,
            file_name=sanitize_filename(filename),
            file_path=path,
            file_size=meta.size_bytes,
            file_type=meta.mime_type,
            client_visible=bool(update.client_visible),
        )
        db.add(document)
        db.flush()
        queue_matter_change(db, matter.id, document, "INSERT", client_visible=bool(document.client_visible))
        db.commit()
    return document
