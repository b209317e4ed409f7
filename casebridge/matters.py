"""
Matters
=======

Client intake (case reports), the matter status state machine, assignment,
pipeline stages, versioned case statements and internal comments.

Status flow:
    pending_review -> in_review | rejected
    in_review -> awaiting_documents | assigned
    awaiting_documents -> in_review
    assigned -> in_progress
    in_progress -> on_hold | completed
    on_hold -> in_progress
    completed -> closed

closed and rejected are terminal. Any non-terminal matter can be closed
directly with close_matter.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .auth import AuthContext, AuthService
from .db.models import (
    AccountType, AssignmentRole, CaseAssignment, CaseComment, CaseDocument, CaseLog,
    CaseMeeting, CaseMessage, CaseReport, CaseReportStatus, CaseStage, CaseStatement,
    CourtReport, CourtReportAttachment, Firm, InternalRole, Invoice, Matter, MatterLifecycle,
    MatterStageHistory, MatterStatus, MatterTask, MatterUpdate, Notification, TaskStatus,
    User, UserStatus,
)
from .errors import (
    ConflictError, InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationFailedError,
)
from .activity import log_audit, log_case_action
from .firms import first_stage, get_default_pipeline
from .notifications import notify, notify_case_managers, notify_client, staff_matter_link
from .realtime import queue_change, queue_matter_change, queue_matter_delete, queue_row_change
from .rbac import Action, Resource, role_has_equal_or_higher_privilege
from . import billing

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[MatterStatus, frozenset] = {
    MatterStatus.PENDING_REVIEW: frozenset({MatterStatus.IN_REVIEW, MatterStatus.REJECTED}),
    MatterStatus.IN_REVIEW: frozenset({MatterStatus.AWAITING_DOCUMENTS, MatterStatus.ASSIGNED}),
    MatterStatus.AWAITING_DOCUMENTS: frozenset({MatterStatus.IN_REVIEW}),
    MatterStatus.ASSIGNED: frozenset({MatterStatus.IN_PROGRESS}),
    MatterStatus.IN_PROGRESS: frozenset({MatterStatus.ON_HOLD, MatterStatus.COMPLETED}),
    MatterStatus.ON_HOLD: frozenset({MatterStatus.IN_PROGRESS}),
    MatterStatus.COMPLETED: frozenset({MatterStatus.CLOSED}),
    MatterStatus.CLOSED: frozenset(),
    MatterStatus.REJECTED: frozenset(),
}

LIFECYCLE: Dict[MatterStatus, MatterLifecycle] = {
    MatterStatus.PENDING_REVIEW: MatterLifecycle.SUBMITTED,
    MatterStatus.IN_REVIEW: MatterLifecycle.UNDER_REVIEW,
    MatterStatus.AWAITING_DOCUMENTS: MatterLifecycle.UNDER_REVIEW,
    MatterStatus.ASSIGNED: MatterLifecycle.IN_PROGRESS,
    MatterStatus.IN_PROGRESS: MatterLifecycle.IN_PROGRESS,
    MatterStatus.ON_HOLD: MatterLifecycle.IN_PROGRESS,
    MatterStatus.COMPLETED: MatterLifecycle.IN_PROGRESS,
    MatterStatus.CLOSED: MatterLifecycle.CLOSED,
    MatterStatus.REJECTED: MatterLifecycle.CLOSED,
}

TERMINAL_STATUSES = frozenset({MatterStatus.CLOSED, MatterStatus.REJECTED})
PRE_ASSIGNMENT_STATUSES = frozenset({
    MatterStatus.PENDING_REVIEW, MatterStatus.IN_REVIEW, MatterStatus.AWAITING_DOCUMENTS,
})

_STATUS_LABELS = {
    MatterStatus.PENDING_REVIEW: "Pending review",
    MatterStatus.IN_REVIEW: "In review",
    MatterStatus.AWAITING_DOCUMENTS: "Awaiting documents",
    MatterStatus.ASSIGNED: "Assigned",
    MatterStatus.IN_PROGRESS: "In progress",
    MatterStatus.ON_HOLD: "On hold",
    MatterStatus.COMPLETED: "Completed",
    MatterStatus.CLOSED: "Closed",
    MatterStatus.REJECTED: "Rejected",
}

_EDITABLE_FIELDS = {"title", "description", "category", "jurisdiction", "deadline", "flagged"}


def can_transition(current: MatterStatus, target: MatterStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def lifecycle_for(status: MatterStatus) -> MatterLifecycle:
    return LIFECYCLE[status]


def _require(db: Session, auth: AuthContext, resource: Resource, action: Action) -> None:
    AuthService(db).require_permission(auth, resource, action)


# =============================================================================
# LOOKUPS
# =============================================================================

def get_matter(db: Session, auth: AuthContext, matter_id: str) -> Matter:
    """Matter for a staff caller; other firms' matters read as not found."""
    matter = db.query(Matter).filter(Matter.id == matter_id).first()
    if not matter or matter.firm_id != auth.firm_id:
        raise NotFoundError("Matter", matter_id)
    AuthService(db).require_matter_view(auth, matter)
    return matter


def get_editable_matter(db: Session, auth: AuthContext, matter_id: str) -> Matter:
    matter = get_matter(db, auth, matter_id)
    AuthService(db).require_matter_edit(auth, matter)
    return matter


def get_client_matter(db: Session, auth: AuthContext, matter_id: str) -> Matter:
    matter = db.query(Matter).filter(Matter.id == matter_id, Matter.client_id == auth.user_id).first()
    if not matter:
        raise NotFoundError("Matter", matter_id)
    return matter


def list_matters(
    db: Session,
    auth: AuthContext,
    status: Optional[MatterStatus] = None,
    archived: Optional[bool] = False,
    assigned_to_me: bool = False,
) -> List[Matter]:
    """Firm matters for view_all holders, assigned matters otherwise."""
    query = db.query(Matter).filter(Matter.firm_id == auth.firm_id)
    if assigned_to_me or not auth.has_permission(Resource.MATTER, Action.VIEW_ALL):
        query = query.filter(
            (Matter.assigned_associate_id == auth.user_id) | (Matter.assigned_case_manager_id == auth.user_id)
        )
    if status:
        query = query.filter(Matter.status == status)
    if archived is True:
        query = query.filter(Matter.archived_at.isnot(None))
    elif archived is False:
        query = query.filter(Matter.archived_at.is_(None))
    return query.order_by(Matter.created_at.desc()).all()


def list_client_matters(db: Session, auth: AuthContext) -> List[Matter]:
    return (
        db.query(Matter)
        .filter(Matter.client_id == auth.user_id)
        .order_by(Matter.created_at.desc())
        .all()
    )


# =============================================================================
# CASE REPORTS (CLIENT INTAKE)
# =============================================================================

def submit_case_report(
    db: Session,
    auth: AuthContext,
    category: str,
    title: str,
    description: str,
    jurisdiction: Optional[str] = None,
    preferred_firm_id: Optional[str] = None,
    invoice_id: Optional[str] = None,
) -> CaseReport:
    if not auth.is_client:
        raise PermissionDeniedError("Only clients can submit case reports")
    if not title or not description:
        raise ValidationFailedError("Title and description are required")

    if preferred_firm_id and not db.query(Firm).filter(Firm.id == preferred_firm_id).first():
        raise NotFoundError("Firm", preferred_firm_id)

    report = CaseReport(
        client_id=auth.user_id,
        category=category,
        title=title,
        description=description,
        jurisdiction=jurisdiction,
        preferred_firm_id=preferred_firm_id,
        status=CaseReportStatus.SUBMITTED,
    )
    db.add(report)
    db.flush()

    if invoice_id:
        invoice = billing.consume_intake_invoice(db, auth.user_id, invoice_id, report)
        report.invoice_id = invoice.id
        report.plan_type = invoice.plan_type
        report.sla_due_at = billing.sla_due_at(invoice.plan_type, report.created_at)
    elif billing.intake_payment_required():
        raise ValidationFailedError("A paid intake invoice is required to submit a case report")

    if preferred_firm_id:
        queue_row_change(db, f"firm:{preferred_firm_id}", report, "INSERT")
    db.commit()
    logger.info(f"Case report {report.id} submitted by {auth.user_id}")
    return report


def list_client_case_reports(db: Session, auth: AuthContext) -> List[CaseReport]:
    return (
        db.query(CaseReport)
        .filter(CaseReport.client_id == auth.user_id)
        .order_by(CaseReport.created_at.desc())
        .all()
    )


def get_client_case_report(db: Session, auth: AuthContext, report_id: str) -> CaseReport:
    report = db.query(CaseReport).filter(
        CaseReport.id == report_id,
        CaseReport.client_id == auth.user_id,
    ).first()
    if not report:
        raise NotFoundError("Case report", report_id)
    return report


def _visible_to_firm(report: CaseReport, firm_id: str) -> bool:
    return report.preferred_firm_id in (None, firm_id)


def list_intake_queue(db: Session, auth: AuthContext) -> List[CaseReport]:
    """Open reports for the caller's firm; earliest SLA first, no-SLA reports last."""
    _require(db, auth, Resource.MATTER, Action.VIEW_ALL)
    reports = db.query(CaseReport).filter(
        CaseReport.status.in_([CaseReportStatus.SUBMITTED, CaseReportStatus.UNDER_REVIEW]),
        (CaseReport.preferred_firm_id == auth.firm_id) | (CaseReport.preferred_firm_id.is_(None)),
    ).all()
    return sorted(
        reports,
        key=lambda r: (r.sla_due_at is None, r.sla_due_at or datetime.max, r.created_at),
    )


def get_intake_report(db: Session, auth: AuthContext, report_id: str) -> CaseReport:
    _require(db, auth, Resource.MATTER, Action.VIEW_ALL)
    report = db.query(CaseReport).filter(CaseReport.id == report_id).first()
    if not report or not _visible_to_firm(report, auth.firm_id):
        raise NotFoundError("Case report", report_id)
    return report


def _notify_report_client(db: Session, report: CaseReport, title: str, message: str) -> None:
    notify(
        db, report.client_id, "case_report_update", title, message,
        link=f"/client/reports/{report.id}",
        metadata={"case_report_id": report.id, "status": report.status.value},
    )


def start_review(db: Session, auth: AuthContext, report_id: str) -> CaseReport:
    report = get_intake_report(db, auth, report_id)
    if report.status != CaseReportStatus.SUBMITTED:
        raise InvalidTransitionError(report.status.value, CaseReportStatus.UNDER_REVIEW.value, what="case report")

    report.status = CaseReportStatus.UNDER_REVIEW
    report.reviewed_by_id = auth.user_id
    _notify_report_client(db, report, "Case under review", f"Your case \"{report.title}\" is being reviewed")
    queue_row_change(db, f"firm:{auth.firm_id}", report, "UPDATE")
    db.commit()
    return report


def reject_case_report(db: Session, auth: AuthContext, report_id: str, reason: str) -> CaseReport:
    report = get_intake_report(db, auth, report_id)
    if report.status not in (CaseReportStatus.SUBMITTED, CaseReportStatus.UNDER_REVIEW):
        raise InvalidTransitionError(report.status.value, CaseReportStatus.REJECTED.value, what="case report")
    if not reason:
        raise ValidationFailedError("A rejection reason is required")

    report.status = CaseReportStatus.REJECTED
    report.rejection_reason = reason
    report.reviewed_by_id = auth.user_id
    report.reviewed_at = datetime.utcnow()
    _notify_report_client(db, report, "Case not accepted", f"Your case \"{report.title}\" was not accepted: {reason}")
    log_audit(db, auth.firm_id, auth.user_id, "case_report_rejected", "case_report", report.id, {"reason": reason})
    queue_row_change(db, f"firm:{auth.firm_id}", report, "UPDATE")
    db.commit()
    return report


def accept_case_report(
    db: Session,
    auth: AuthContext,
    report_id: str,
    associate_id: str,
    case_manager_id: Optional[str] = None,
    note: Optional[str] = None,
) -> Matter:
    """
    Turn a report under review into an assigned matter.

    The matter is created (or the one already linked to the report reused),
    placed on the firm's default pipeline, given a case manager and assigned
    to the associate.
    """
    report = get_intake_report(db, auth, report_id)
    _require(db, auth, Resource.MATTER, Action.ASSIGN)
    if report.status != CaseReportStatus.UNDER_REVIEW:
        raise InvalidTransitionError(report.status.value, CaseReportStatus.ACCEPTED.value, what="case report")

    firm_id = report.preferred_firm_id or auth.firm_id
    _require_assignable(db, firm_id, associate_id)
    if case_manager_id is None and auth.is_case_manager_or_higher:
        case_manager_id = auth.user_id

    matter = db.query(Matter).filter(Matter.case_report_id == report.id).first()
    created = matter is None
    if created:
        pipeline = get_default_pipeline(db, firm_id)
        stage = first_stage(db, pipeline.id if pipeline else None)
        matter = Matter(
            firm_id=firm_id,
            client_id=report.client_id,
            case_report_id=report.id,
            title=report.title,
            description=report.description,
            category=report.category,
            jurisdiction=report.jurisdiction,
            status=MatterStatus.PENDING_REVIEW,
            lifecycle_state=MatterLifecycle.SUBMITTED,
            pipeline_id=pipeline.id if pipeline else None,
            current_stage_id=stage.id if stage else None,
            created_by_id=auth.user_id,
        )
        db.add(matter)
        db.flush()
        log_case_action(db, matter, auth.user_id, "case_created", {"case_report_id": report.id})

    # Intake documents follow the report onto the matter
    db.query(CaseDocument).filter(
        CaseDocument.case_report_id == report.id,
        CaseDocument.matter_id.is_(None),
    ).update({CaseDocument.matter_id: matter.id}, synchronize_session=False)

    _apply_assignment(db, auth, matter, associate_id, case_manager_id, note)

    report.status = CaseReportStatus.ACCEPTED
    report.reviewed_by_id = auth.user_id
    report.reviewed_at = datetime.utcnow()

    if report.invoice_id:
        invoice = db.query(Invoice).filter(Invoice.id == report.invoice_id).first()
        if invoice:
            invoice.firm_id = firm_id
            invoice.matter_id = matter.id

    notify_client(
        db, matter, "case_report_update", "Case accepted",
        f"Your case \"{matter.title}\" has been accepted and assigned to a lawyer",
    )
    log_audit(db, firm_id, auth.user_id, "case_report_accepted", "case_report", report.id,
              {"matter_id": matter.id, "created": created})
    queue_row_change(db, f"firm:{firm_id}", report, "UPDATE")
    db.commit()
    logger.info(f"Case report {report.id} accepted as matter {matter.id}")
    return matter


# =============================================================================
# STATUS STATE MACHINE
# =============================================================================

def apply_status(
    db: Session,
    matter: Matter,
    target: MatterStatus,
    actor_id: Optional[str],
    note: Optional[str] = None,
) -> None:
    previous = matter.status
    matter.status = target
    matter.lifecycle_state = LIFECYCLE[target]
    if target == MatterStatus.CLOSED:
        matter.closed_at = datetime.utcnow()

    log_case_action(db, matter, actor_id, "status_changed", {
        "from": previous.value,
        "to": target.value,
        "note": note,
    })
    notify_client(
        db, matter, "case_status_changed", "Case status updated",
        f"\"{matter.title}\" is now {_STATUS_LABELS[target].lower()}",
    )
    queue_matter_change(db, matter.id, matter, "UPDATE", client_visible=True)
    queue_row_change(db, f"firm:{matter.firm_id}", matter, "UPDATE")
    logger.info(f"Matter {matter.id} status {previous.value} -> {target.value}")


def close_matter_internal(db: Session, matter: Matter, actor_id: Optional[str], note: Optional[str] = None) -> None:
    """Close without a permission check; callers authorize (court reports, close_matter)."""
    if matter.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(matter.status.value, MatterStatus.CLOSED.value)
    apply_status(db, matter, MatterStatus.CLOSED, actor_id, note)
    log_case_action(db, matter, actor_id, "case_closed", {"note": note})


def change_matter_status(
    db: Session,
    auth: AuthContext,
    matter_id: str,
    target: MatterStatus,
    note: Optional[str] = None,
) -> Matter:
    _require(db, auth, Resource.MATTER, Action.CHANGE_STATUS)
    matter = get_matter(db, auth, matter_id)
    if not can_transition(matter.status, target):
        raise InvalidTransitionError(matter.status.value, target.value)

    if target == MatterStatus.CLOSED:
        close_matter_internal(db, matter, auth.user_id, note)
    else:
        apply_status(db, matter, target, auth.user_id, note)
    db.commit()
    return matter


def close_matter(db: Session, auth: AuthContext, matter_id: str, note: Optional[str] = None) -> Matter:
    _require(db, auth, Resource.MATTER, Action.CHANGE_STATUS)
    matter = get_matter(db, auth, matter_id)
    close_matter_internal(db, matter, auth.user_id, note)
    db.commit()
    return matter


# =============================================================================
# ASSIGNMENT
# =============================================================================

def _require_assignable(db: Session, firm_id: str, user_id: str, minimum: InternalRole = InternalRole.ASSOCIATE_LAWYER) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if (
        not user
        or user.firm_id != firm_id
        or user.account_type != AccountType.STAFF
        or user.status != UserStatus.ACTIVE
        or not role_has_equal_or_higher_privilege(user.internal_role, minimum)
    ):
        raise ValidationFailedError(f"User {user_id} cannot be assigned to this matter")
    return user


def _end_assignments(db: Session, matter: Matter, role: AssignmentRole) -> None:
    db.query(CaseAssignment).filter(
        CaseAssignment.matter_id == matter.id,
        CaseAssignment.role == role,
        CaseAssignment.is_active.is_(True),
    ).update(
        {CaseAssignment.is_active: False, CaseAssignment.unassigned_at: datetime.utcnow()},
        synchronize_session=False,
    )


def _set_case_manager(db: Session, actor: AuthContext, matter: Matter, case_manager_id: str, note: Optional[str]) -> None:
    _end_assignments(db, matter, AssignmentRole.CASE_MANAGER)
    db.add(CaseAssignment(
        matter_id=matter.id,
        assigned_to_id=case_manager_id,
        assigned_by_id=actor.user_id,
        role=AssignmentRole.CASE_MANAGER,
        note=note,
    ))
    matter.assigned_case_manager_id = case_manager_id


def _apply_assignment(
    db: Session,
    actor: AuthContext,
    matter: Matter,
    associate_id: str,
    case_manager_id: Optional[str],
    note: Optional[str],
) -> bool:
    """Record an associate (and optionally case manager) assignment. Returns True on reassignment."""
    associate = _require_assignable(db, matter.firm_id, associate_id)
    if case_manager_id and case_manager_id != matter.assigned_case_manager_id:
        _require_assignable(db, matter.firm_id, case_manager_id, InternalRole.CASE_MANAGER)
        _set_case_manager(db, actor, matter, case_manager_id, note)

    previous_id = matter.assigned_associate_id
    reassigned = previous_id is not None and previous_id != associate_id

    if previous_id != associate_id:
        _end_assignments(db, matter, AssignmentRole.ASSOCIATE)
        db.add(CaseAssignment(
            matter_id=matter.id,
            assigned_to_id=associate_id,
            assigned_by_id=actor.user_id,
            role=AssignmentRole.ASSOCIATE,
            note=note,
        ))
        matter.assigned_associate_id = associate_id

    if matter.status in PRE_ASSIGNMENT_STATUSES:
        apply_status(db, matter, MatterStatus.ASSIGNED, actor.user_id, note)

    details = {
        "associate_id": associate_id,
        "associate_name": associate.name,
        "case_manager_id": matter.assigned_case_manager_id,
        "reassigned": reassigned,
    }
    if reassigned:
        details["previous_associate_id"] = previous_id
    log_case_action(db, matter, actor.user_id, "case_assigned", details)
    log_audit(db, matter.firm_id, actor.user_id, "matter_assigned", "matter", matter.id, details)

    if previous_id != associate_id:
        notify(
            db, associate_id, "case_assigned", "New case assigned",
            f"You have been assigned to \"{matter.title}\"",
            link=staff_matter_link(matter.id),
            matter_id=matter.id,
            firm_id=matter.firm_id,
        )
    if reassigned:
        notify_case_managers(
            db, matter.firm_id, "case_reassigned", matter,
            triggered_by=actor.user_id,
            metadata={"from": previous_id, "to": associate_id},
        )
    queue_matter_change(db, matter.id, matter, "UPDATE", client_visible=True)
    return reassigned


def assign_matter(
    db: Session,
    auth: AuthContext,
    matter_id: str,
    associate_id: str,
    case_manager_id: Optional[str] = None,
    note: Optional[str] = None,
) -> Matter:
    _require(db, auth, Resource.MATTER, Action.ASSIGN)
    matter = get_matter(db, auth, matter_id)
    if matter.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(matter.status.value, MatterStatus.ASSIGNED.value)

    if matter.assigned_associate_id and matter.assigned_associate_id != associate_id:
        _require(db, auth, Resource.MATTER, Action.REASSIGN)
    elif matter.assigned_associate_id == associate_id and not case_manager_id:
        raise ConflictError("Matter is already assigned to this associate")

    _apply_assignment(db, auth, matter, associate_id, case_manager_id, note)
    db.commit()
    return matter


def claim_matter(db: Session, auth: AuthContext, matter_id: str) -> Matter:
    """Take the case-manager seat on a matter."""
    _require(db, auth, Resource.MATTER, Action.CLAIM)
    matter = get_matter(db, auth, matter_id)
    holder = matter.assigned_case_manager_id
    if holder == auth.user_id:
        return matter
    if holder and not auth.has_permission(Resource.MATTER, Action.OVERRIDE_LOCK):
        raise ConflictError("Matter is already claimed by another case manager")

    _set_case_manager(db, auth, matter, auth.user_id, None)
    log_case_action(db, matter, auth.user_id, "case_assigned", {
        "case_manager_id": auth.user_id,
        "claimed": True,
        "previous_case_manager_id": holder,
    })
    log_audit(db, matter.firm_id, auth.user_id, "matter_claimed", "matter", matter.id, {"previous": holder})
    queue_matter_change(db, matter.id, matter, "UPDATE", client_visible=True)
    db.commit()
    return matter


# =============================================================================
# CREATE / UPDATE / ARCHIVE / DELETE
# =============================================================================

def create_matter(
    db: Session,
    auth: AuthContext,
    client_id: str,
    title: str,
    description: Optional[str] = None,
    category: Optional[str] = None,
    jurisdiction: Optional[str] = None,
    deadline: Optional[datetime] = None,
) -> Matter:
    _require(db, auth, Resource.MATTER, Action.CREATE)
    client = db.query(User).filter(User.id == client_id).first()
    if not client or client.account_type != AccountType.CLIENT:
        raise ValidationFailedError("Matters must belong to a client account")

    pipeline = get_default_pipeline(db, auth.firm_id)
    stage = first_stage(db, pipeline.id if pipeline else None)
    matter = Matter(
        firm_id=auth.firm_id,
        client_id=client.id,
        title=title,
        description=description,
        category=category,
        jurisdiction=jurisdiction,
        deadline=deadline,
        status=MatterStatus.PENDING_REVIEW,
        lifecycle_state=MatterLifecycle.SUBMITTED,
        pipeline_id=pipeline.id if pipeline else None,
        current_stage_id=stage.id if stage else None,
        created_by_id=auth.user_id,
    )
    db.add(matter)
    db.flush()

    log_case_action(db, matter, auth.user_id, "case_created", {"source": "internal"})
    log_audit(db, auth.firm_id, auth.user_id, "matter_created", "matter", matter.id, {"title": title})
    queue_row_change(db, f"firm:{auth.firm_id}", matter, "INSERT")
    db.commit()
    return matter


def update_matter(db: Session, auth: AuthContext, matter_id: str, changes: Dict[str, Any]) -> Matter:
    matter = get_editable_matter(db, auth, matter_id)

    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise ValidationFailedError(f"Unknown matter fields: {', '.join(sorted(unknown))}")
    if "title" in changes and not changes["title"]:
        raise ValidationFailedError("Title cannot be empty")

    newly_flagged = bool(changes.get("flagged")) and not matter.flagged
    for key, value in changes.items():
        setattr(matter, key, value)

    log_case_action(db, matter, auth.user_id, "case_updated", {"fields": sorted(changes)})
    if newly_flagged:
        notify_case_managers(db, matter.firm_id, "case_flagged", matter, triggered_by=auth.user_id)
    queue_matter_change(db, matter.id, matter, "UPDATE", client_visible=True)
    db.commit()
    return matter


def archive_matter(db: Session, auth: AuthContext, matter_id: str) -> Matter:
    _require(db, auth, Resource.MATTER, Action.ARCHIVE)
    matter = get_matter(db, auth, matter_id)
    if matter.status not in TERMINAL_STATUSES:
        raise ConflictError("Only closed or rejected matters can be archived")
    if matter.archived_at is None:
        matter.archived_at = datetime.utcnow()
        log_case_action(db, matter, auth.user_id, "case_archived")
        log_audit(db, matter.firm_id, auth.user_id, "matter_archived", "matter", matter.id)
        queue_matter_change(db, matter.id, matter, "UPDATE", client_visible=True)
    db.commit()
    return matter


def delete_matter(db: Session, auth: AuthContext, matter_id: str) -> None:
    """Hard-delete a matter and everything hanging off it, stored files included."""
    from .storage import COURT_REPORTS_BUCKET, commit_and_delete

    _require(db, auth, Resource.MATTER, Action.DELETE)
    matter = get_matter(db, auth, matter_id)
    stored = []

    report_ids = [r.id for r in db.query(CourtReport.id).filter(CourtReport.matter_id == matter.id)]
    if report_ids:
        for attachment in db.query(CourtReportAttachment).filter(CourtReportAttachment.report_id.in_(report_ids)):
            stored.append((COURT_REPORTS_BUCKET, attachment.file_path))
        db.query(CourtReportAttachment).filter(
            CourtReportAttachment.report_id.in_(report_ids)
        ).delete(synchronize_session=False)

    for document in db.query(CaseDocument).filter(CaseDocument.matter_id == matter.id):
        stored.append((document.bucket, document.file_path))

    for model in (
        CaseDocument, CourtReport, MatterUpdate, MatterTask, CaseStatement, CaseComment,
        CaseMessage, CaseMeeting, Notification, CaseLog, CaseAssignment, MatterStageHistory,
    ):
        db.query(model).filter(model.matter_id == matter.id).delete(synchronize_session=False)
    db.query(Invoice).filter(Invoice.matter_id == matter.id).update(
        {Invoice.matter_id: None}, synchronize_session=False
    )

    log_audit(db, matter.firm_id, auth.user_id, "matter_deleted", "matter", matter.id, {"title": matter.title})
    queue_change(db, f"firm:{matter.firm_id}", "matters", "DELETE", {"id": matter.id})
    queue_matter_delete(db, matter.id, "matters", matter.id, client_visible=True)
    db.delete(matter)
    commit_and_delete(db, stored)
    logger.info(f"Matter {matter_id} deleted by {auth.user_id}")


# =============================================================================
# STAGES
# =============================================================================

def matter_stages(db: Session, matter: Matter) -> List[CaseStage]:
    if not matter.pipeline_id:
        return []
    return (
        db.query(CaseStage)
        .filter(CaseStage.pipeline_id == matter.pipeline_id)
        .order_by(CaseStage.order_index.asc())
        .all()
    )


def list_stages(db: Session, auth: AuthContext, matter_id: str) -> List[CaseStage]:
    return matter_stages(db, get_matter(db, auth, matter_id))


def get_client_stage_progress(db: Session, auth: AuthContext, matter_id: str) -> Dict[str, Any]:
    """
    Where the client's matter stands in its pipeline.

    Stages before the current one are completed, later ones upcoming. A
    matter whose stage is not (or no longer) in the pipeline counts as
    being at the first stage.
    """
    matter = get_client_matter(db, auth, matter_id)
    stages = matter_stages(db, matter)
    if not stages:
        return {"matter_id": matter.id, "current_stage_id": None, "current_stage_name": None,
                "progress_percent": 0, "stages": []}

    ids = [stage.id for stage in stages]
    current = ids.index(matter.current_stage_id) if matter.current_stage_id in ids else 0
    return {
        "matter_id": matter.id,
        "current_stage_id": stages[current].id,
        "current_stage_name": stages[current].name,
        "progress_percent": round((current + 1) * 100 / len(stages)),
        "stages": [
            {
                "id": stage.id,
                "name": stage.name,
                "description": stage.description,
                "order_index": stage.order_index,
                "icon_name": stage.icon_name,
                "state": "completed" if i < current else "current" if i == current else "upcoming",
            }
            for i, stage in enumerate(stages)
        ],
    }


def incomplete_required_tasks(db: Session, matter: Matter, stage_id: Optional[str]) -> int:
    if not stage_id:
        return 0
    return db.query(MatterTask).filter(
        MatterTask.matter_id == matter.id,
        MatterTask.stage_id == stage_id,
        MatterTask.required_for_stage_completion.is_(True),
        MatterTask.status != TaskStatus.COMPLETED,
    ).count()


def advance_stage(
    db: Session,
    auth: AuthContext,
    matter_id: str,
    to_stage_id: Optional[str] = None,
    force: bool = False,
) -> Matter:
    """
    Move a matter to another pipeline stage (the next one by default).

    Leaving a stage with incomplete required tasks needs force=True and
    matter:override_lock.
    """
    _require(db, auth, Resource.MATTER, Action.CHANGE_STATUS)
    matter = get_matter(db, auth, matter_id)
    if matter.status in TERMINAL_STATUSES:
        raise ConflictError("Closed matters cannot change stage")

    stages = matter_stages(db, matter)
    if not stages:
        raise ConflictError("Matter has no pipeline")

    index = next((i for i, s in enumerate(stages) if s.id == matter.current_stage_id), -1)
    if to_stage_id is None:
        if index + 1 >= len(stages):
            raise ConflictError("Matter is already at the final stage")
        target = stages[index + 1]
    else:
        target = next((s for s in stages if s.id == to_stage_id), None)
        if target is None:
            raise NotFoundError("Stage", to_stage_id)
    if target.id == matter.current_stage_id:
        raise ConflictError("Matter is already at this stage")

    blocking = incomplete_required_tasks(db, matter, matter.current_stage_id)
    forced = False
    if blocking:
        if not (force and auth.has_permission(Resource.MATTER, Action.OVERRIDE_LOCK)):
            raise ConflictError(f"{blocking} required task(s) in the current stage are incomplete")
        forced = True

    previous_id = matter.current_stage_id
    matter.current_stage_id = target.id
    db.add(MatterStageHistory(
        matter_id=matter.id,
        from_stage_id=previous_id,
        to_stage_id=target.id,
        changed_by_id=auth.user_id,
        forced=forced,
    ))
    log_case_action(db, matter, auth.user_id, "stage_changed", {
        "from": previous_id,
        "to": target.id,
        "stage_name": target.name,
        "forced": forced,
    })
    queue_matter_change(db, matter.id, matter, "UPDATE", client_visible=True)
    db.commit()
    return matter


def list_stage_history(db: Session, auth: AuthContext, matter_id: str) -> List[MatterStageHistory]:
    matter = get_matter(db, auth, matter_id)
    return (
        db.query(MatterStageHistory)
        .filter(MatterStageHistory.matter_id == matter.id)
        .order_by(MatterStageHistory.changed_at.desc())
        .all()
    )


# =============================================================================
# CASE STATEMENTS
# =============================================================================

def save_case_statement(db: Session, auth: AuthContext, matter_id: str, content: str) -> CaseStatement:
    matter = get_editable_matter(db, auth, matter_id)
    if not content or not content.strip():
        raise ValidationFailedError("Statement cannot be empty")

    latest = db.query(func.max(CaseStatement.version)).filter(CaseStatement.matter_id == matter.id).scalar()
    statement = CaseStatement(
        matter_id=matter.id,
        version=(latest or 0) + 1,
        content=content,
        created_by_id=auth.user_id,
    )
    db.add(statement)
    db.flush()
    log_case_action(db, matter, auth.user_id, "case_statement_updated", {"version": statement.version})
    db.commit()
    return statement


def list_case_statements(db: Session, auth: AuthContext, matter_id: str) -> List[CaseStatement]:
    matter = get_matter(db, auth, matter_id)
    return (
        db.query(CaseStatement)
        .filter(CaseStatement.matter_id == matter.id)
        .order_by(CaseStatement.version.desc())
        .all()
    )


# =============================================================================
# INTERNAL COMMENTS
# =============================================================================

def list_comments(db: Session, auth: AuthContext, matter_id: str) -> List[Dict[str, Any]]:
    matter = get_matter(db, auth, matter_id)
    rows = (
        db.query(CaseComment, User)
        .outerjoin(User, User.id == CaseComment.author_id)
        .filter(CaseComment.matter_id == matter.id)
        .order_by(CaseComment.created_at.asc())
        .all()
    )
    return [
        {
            "id": comment.id,
            "matter_id": comment.matter_id,
            "author_id": comment.author_id,
            "author_name": author.name if author else None,
            "body": comment.body,
            "created_at": comment.created_at,
        }
        for comment, author in rows
    ]


def add_comment(db: Session, auth: AuthContext, matter_id: str, body: str) -> CaseComment:
    matter = get_matter(db, auth, matter_id)
    if not auth.is_case_manager_or_higher:
        raise PermissionDeniedError("Only case managers can post internal comments")
    if not body or not body.strip():
        raise ValidationFailedError("Comment cannot be empty")

    comment = CaseComment(matter_id=matter.id, author_id=auth.user_id, body=body.strip())
    db.add(comment)
    db.flush()
    queue_matter_change(db, matter.id, comment, "INSERT")
    db.commit()
    return comment


def delete_comment(db: Session, auth: AuthContext, matter_id: str, comment_id: str) -> None:
    matter = get_matter(db, auth, matter_id)
    comment = db.query(CaseComment).filter(
        CaseComment.id == comment_id,
        CaseComment.matter_id == matter.id,
    ).first()
    if not comment:
        raise NotFoundError("Comment", comment_id)
    if comment.author_id != auth.user_id:
        raise PermissionDeniedError("Only the author can delete a comment")

    queue_matter_delete(db, matter.id, "case_comments", comment.id)
    db.delete(comment)
    db.commit()
