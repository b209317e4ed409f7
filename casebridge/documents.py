"""
Case documents: intake report uploads and matter documents.

Everything lives in the case-documents bucket; downloads go through signed
URLs (see storage.create_signed_url).
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy.orm import Session

from .auth import AuthContext, AuthService
from .db.models import CaseDocument, CaseReport, CaseReportStatus, Matter
from .errors import ConflictError, NotFoundError
from .activity import log_case_action
from .matters import get_client_case_report, get_client_matter, get_intake_report, get_matter
from .notifications import notify, notify_case_managers, staff_matter_link
from .rbac import Action, Resource
from .realtime import queue_matter_change, queue_matter_delete, queue_row_change
from .storage import (
    CASE_DOCUMENTS_BUCKET, commit_and_delete, create_signed_url, guess_mime_type,
    matter_document_path, report_document_path, sanitize_filename, staged_upload,
)

logger = logging.getLogger(__name__)


@contextmanager
def _stored_document(
    db: Session,
    path: str,
    filename: str,
    data: bytes,
    content_type: Optional[str],
    uploaded_by: str,
    **links,
) -> Iterator[CaseDocument]:
    """
    Write the file and yield its unsaved row. The block commits; if it
    raises instead, the file is removed (see storage.staged_upload).
    """
    mime_type = content_type or guess_mime_type(filename)
    with staged_upload(db, CASE_DOCUMENTS_BUCKET, path, data, mime_type) as meta:
        yield CaseDocument(
            uploaded_by_id=uploaded_by,
            bucket=CASE_DOCUMENTS_BUCKET,
            file_name=sanitize_filename(filename),
            file_path=path,
            file_size=meta.size_bytes,
            file_type=meta.mime_type,
            **links,
        )


# =============================================================================
# INTAKE REPORT DOCUMENTS (CLIENT)
# =============================================================================

def upload_report_document(
    db: Session,
    auth: AuthContext,
    report_id: str,
    filename: str,
    data: bytes,
    content_type: Optional[str] = None,
) -> CaseDocument:
    report = get_client_case_report(db, auth, report_id)
    if report.status == CaseReportStatus.REJECTED:
        raise ConflictError("Documents cannot be added to a rejected case report")

    linked_matter = db.query(Matter).filter(Matter.case_report_id == report.id).first()
    with _stored_document(
        db, report_document_path(report.id, filename), filename, data, content_type, auth.user_id,
        case_report_id=report.id,
        matter_id=linked_matter.id if linked_matter else None,
        client_visible=True,
    ) as document:
        db.add(document)
        db.flush()
        if report.preferred_firm_id:
            queue_row_change(db, f"firm:{report.preferred_firm_id}", document, "INSERT")
        if linked_matter:
            queue_matter_change(db, linked_matter.id, document, "INSERT", client_visible=True)
        db.commit()
    return document


def list_report_documents(db: Session, auth: AuthContext, report_id: str) -> List[CaseDocument]:
    report = get_client_case_report(db, auth, report_id)
    return _report_documents(db, report)


def list_intake_report_documents(db: Session, auth: AuthContext, report_id: str) -> List[CaseDocument]:
    return _report_documents(db, get_intake_report(db, auth, report_id))


def _report_documents(db: Session, report: CaseReport) -> List[CaseDocument]:
    return (
        db.query(CaseDocument)
        .filter(CaseDocument.case_report_id == report.id)
        .order_by(CaseDocument.created_at.asc())
        .all()
    )


# =============================================================================
# MATTER DOCUMENTS
# =============================================================================

def upload_matter_document(
    db: Session,
    auth: AuthContext,
    matter_id: str,
    filename: str,
    data: bytes,
    content_type: Optional[str] = None,
    client_visible: bool = True,
) -> CaseDocument:
    AuthService(db).require_permission(auth, Resource.DOCUMENT, Action.CREATE)
    matter = get_matter(db, auth, matter_id)

    with _stored_document(
        db, matter_document_path(matter.id, filename), filename, data, content_type, auth.user_id,
        matter_id=matter.id,
        client_visible=client_visible,
    ) as document:
        db.add(document)
        db.flush()

        log_case_action(db, matter, auth.user_id, "document_uploaded", {
            "document_id": document.id,
            "file_name": document.file_name,
        })
        notify_case_managers(
            db, matter.firm_id, "document_uploaded", matter,
            triggered_by=auth.user_id,
            metadata={"document_id": document.id, "file_name": document.file_name},
        )
        queue_matter_change(db, matter.id, document, "INSERT", client_visible=bool(client_visible))
        db.commit()
    return document


def upload_client_matter_document(
    db: Session,
    auth: AuthContext,
    matter_id: str,
    filename: str,
    data: bytes,
    content_type: Optional[str] = None,
) -> CaseDocument:
    matter = get_client_matter(db, auth, matter_id)
    with _stored_document(
        db, matter_document_path(matter.id, filename), filename, data, content_type, auth.user_id,
        matter_id=matter.id,
        client_visible=True,
    ) as document:
        db.add(document)
        db.flush()

        log_case_action(db, matter, auth.user_id, "document_uploaded", {
            "document_id": document.id,
            "file_name": document.file_name,
            "by_client": True,
        })
        metadata = {"document_id": document.id, "file_name": document.file_name}
        notify_case_managers(db, matter.firm_id, "document_uploaded", matter, metadata=metadata)
        if matter.assigned_associate_id:
            notify(
                db, matter.assigned_associate_id, "document_uploaded", "Document uploaded",
                f"The client uploaded {document.file_name} to \"{matter.title}\"",
                link=staff_matter_link(matter.id),
                matter_id=matter.id,
                firm_id=matter.firm_id,
                metadata=metadata,
            )
        queue_matter_change(db, matter.id, document, "INSERT", client_visible=True)
        db.commit()
    return document


def list_matter_documents(db: Session, auth: AuthContext, matter_id: str) -> List[CaseDocument]:
    matter = get_matter(db, auth, matter_id)
    return (
        db.query(CaseDocument)
        .filter(CaseDocument.matter_id == matter.id)
        .order_by(CaseDocument.created_at.desc())
        .all()
    )


def list_client_matter_documents(db: Session, auth: AuthContext, matter_id: str) -> List[CaseDocument]:
    matter = get_client_matter(db, auth, matter_id)
    return (
        db.query(CaseDocument)
        .filter(CaseDocument.matter_id == matter.id, CaseDocument.client_visible.is_(True))
        .order_by(CaseDocument.created_at.desc())
        .all()
    )


def _get_document(db: Session, document_id: str) -> CaseDocument:
    document = db.query(CaseDocument).filter(CaseDocument.id == document_id).first()
    if not document:
        raise NotFoundError("Document", document_id)
    return document


def document_download_url(db: Session, auth: AuthContext, document_id: str, expires_in: int = 3600) -> str:
    """Signed URL for a document the caller may read."""
    document = _get_document(db, document_id)

    if auth.is_client:
        allowed = False
        if document.matter_id and document.client_visible:
            allowed = db.query(Matter).filter(
                Matter.id == document.matter_id, Matter.client_id == auth.user_id,
            ).first() is not None
        if not allowed and document.case_report_id:
            allowed = db.query(CaseReport).filter(
                CaseReport.id == document.case_report_id, CaseReport.client_id == auth.user_id,
            ).first() is not None
        if not allowed:
            raise NotFoundError("Document", document_id)
    elif document.matter_id:
        get_matter(db, auth, document.matter_id)
    else:
        get_intake_report(db, auth, document.case_report_id)

    return create_signed_url(document.bucket, document.file_path, expires_in)


def delete_document(db: Session, auth: AuthContext, document_id: str) -> None:
    AuthService(db).require_permission(auth, Resource.DOCUMENT, Action.DELETE)
    document = _get_document(db, document_id)
    if not document.matter_id:
        raise NotFoundError("Document", document_id)
    matter = get_matter(db, auth, document.matter_id)

    queue_matter_delete(db, matter.id, "case_documents", document.id, client_visible=bool(document.client_visible))
    db.delete(document)
    commit_and_delete(db, [(document.bucket, document.file_path)])
    logger.info(f"Document {document_id} deleted by {auth.user_id}")
