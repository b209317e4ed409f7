"""
Firm helpers: registration, invitations, staff, settings and pipelines.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from .auth import AuthContext, AuthService, get_password_hash, hash_token, validate_new_password
from .config import get_settings
from .db.models import (
    AccountType, CasePipeline, CaseStage, Firm, InternalRole, Invitation, InvitationStatus,
    PendingFirmRegistration, RegistrationStatus, TaskPriority, TaskTemplate, User, UserStatus,
)
from .errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError
from .activity import log_audit
from .realtime import queue_row_change
from .rbac import Action, Resource

logger = logging.getLogger(__name__)

# (name, description, color, icon, [(template title, priority, client visible, required)])
DEFAULT_PIPELINE = [
    ("Client Intake", "Initial consultation and onboarding", "#3B82F6", "UserCheck", [
        ("Verify client identity", TaskPriority.HIGH, False, True),
        ("Collect engagement letter", TaskPriority.HIGH, True, True),
    ]),
    ("Investigation", "Fact finding and evidence gathering", "#8B5CF6", "Search", [
        ("Gather supporting documents", TaskPriority.MEDIUM, True, True),
        ("Interview witnesses", TaskPriority.MEDIUM, False, False),
    ]),
    ("Filing", "Prepare and file court documents", "#F59E0B", "FilePlus", [
        ("Draft originating process", TaskPriority.HIGH, False, True),
        ("File with court registry", TaskPriority.HIGH, True, True),
    ]),
    ("Discovery", "Exchange of documents and information", "#10B981", "ClipboardList", [
        ("Serve discovery requests", TaskPriority.MEDIUM, False, False),
    ]),
    ("Negotiation", "Settlement discussions", "#06B6D4", "Handshake", [
        ("Prepare settlement position", TaskPriority.MEDIUM, False, False),
    ]),
    ("Trial", "Court hearings and trial", "#EF4444", "Gavel", [
        ("Prepare trial bundle", TaskPriority.URGENT, False, True),
    ]),
    ("Judgment", "Awaiting and reviewing judgment", "#6366F1", "Scale", [
        ("Review judgment with client", TaskPriority.HIGH, True, False),
    ]),
    ("Resolution", "Enforcement and case closure", "#22C55E", "Award", [
        ("Send closing letter", TaskPriority.LOW, True, False),
    ]),
]


def _require(db: Session, auth: AuthContext, resource: Resource, action: Action) -> None:
    AuthService(db).require_permission(auth, resource, action)


def _get_firm(db: Session, firm_id: str) -> Firm:
    firm = db.query(Firm).filter(Firm.id == firm_id).first()
    if not firm:
        raise NotFoundError("Firm", firm_id)
    return firm


# =============================================================================
# PIPELINES
# =============================================================================

def seed_default_pipeline(db: Session, firm: Firm) -> CasePipeline:
    pipeline = CasePipeline(firm_id=firm.id, name="Standard Litigation", is_default=True)
    db.add(pipeline)
    db.flush()

    for index, (name, description, color, icon, templates) in enumerate(DEFAULT_PIPELINE):
        stage = CaseStage(
            pipeline_id=pipeline.id,
            name=name,
            description=description,
            order_index=index,
            color_code=color,
            icon_name=icon,
        )
        db.add(stage)
        db.flush()
        for title, priority, visible, required in templates:
            db.add(TaskTemplate(
                stage_id=stage.id,
                title=title,
                default_priority=priority,
                is_client_visible_by_default=visible,
                required_by_default=required,
            ))
    db.flush()
    return pipeline


def get_default_pipeline(db: Session, firm_id: str) -> Optional[CasePipeline]:
    return (
        db.query(CasePipeline)
        .filter(CasePipeline.firm_id == firm_id, CasePipeline.is_default.is_(True))
        .order_by(CasePipeline.created_at.asc())
        .first()
    )


def first_stage(db: Session, pipeline_id: Optional[str]) -> Optional[CaseStage]:
    if not pipeline_id:
        return None
    return (
        db.query(CaseStage)
        .filter(CaseStage.pipeline_id == pipeline_id)
        .order_by(CaseStage.order_index.asc())
        .first()
    )


def create_stage(
    db: Session,
    auth: AuthContext,
    name: str,
    description: Optional[str] = None,
    order_index: Optional[int] = None,
    color_code: Optional[str] = None,
    icon_name: Optional[str] = None,
) -> CaseStage:
    _require(db, auth, Resource.WORKFLOW, Action.MANAGE)
    pipeline = get_default_pipeline(db, auth.firm_id)
    if not pipeline:
        pipeline = seed_default_pipeline(db, _get_firm(db, auth.firm_id))

    if order_index is None:
        last = (
            db.query(CaseStage)
            .filter(CaseStage.pipeline_id == pipeline.id)
            .order_by(CaseStage.order_index.desc())
            .first()
        )
        order_index = (last.order_index + 1) if last else 0

    stage = CaseStage(
        pipeline_id=pipeline.id,
        name=name,
        description=description,
        order_index=order_index,
        color_code=color_code,
        icon_name=icon_name,
    )
    db.add(stage)
    db.commit()
    return stage


def create_task_template(
    db: Session,
    auth: AuthContext,
    stage_id: str,
    title: str,
    description: Optional[str] = None,
    default_priority: TaskPriority = TaskPriority.MEDIUM,
    is_client_visible_by_default: bool = False,
    required_by_default: bool = False,
) -> TaskTemplate:
    _require(db, auth, Resource.WORKFLOW, Action.MANAGE)
    stage = (
        db.query(CaseStage)
        .join(CasePipeline, CasePipeline.id == CaseStage.pipeline_id)
        .filter(CaseStage.id == stage_id, CasePipeline.firm_id == auth.firm_id)
        .first()
    )
    if not stage:
        raise NotFoundError("Stage", stage_id)

    template = TaskTemplate(
        stage_id=stage.id,
        title=title,
        description=description,
        default_priority=default_priority,
        is_client_visible_by_default=is_client_visible_by_default,
        required_by_default=required_by_default,
    )
    db.add(template)
    db.commit()
    return template


def list_pipeline_stages(db: Session, firm_id: str) -> List[CaseStage]:
    pipeline = get_default_pipeline(db, firm_id)
    if not pipeline:
        return []
    return list(pipeline.stages)


# =============================================================================
# FIRM REGISTRATION
# =============================================================================

def register_firm(
    db: Session,
    firm_name: str,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: Optional[str] = None,
    firm_email: Optional[str] = None,
    firm_phone: Optional[str] = None,
    firm_address: Optional[str] = None,
) -> Tuple[PendingFirmRegistration, bool]:
    """
    Register a firm and its first administrator.

    Re-submitting a registration that is still pending is treated as success
    and returns the existing row. Returns (registration, created).
    """
    email = email.lower()
    existing_user = db.query(User).filter(User.email == email).first()
    if existing_user:
        pending = db.query(PendingFirmRegistration).filter(
            PendingFirmRegistration.user_id == existing_user.id,
            PendingFirmRegistration.status == RegistrationStatus.PENDING,
        ).first()
        if pending:
            logger.info(f"Duplicate firm registration for {email}; returning pending registration")
            return pending, False
        raise ConflictError("Email already registered")

    validate_new_password(password)

    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        account_type=AccountType.STAFF,
        status=UserStatus.ACTIVE,
        password_hash=get_password_hash(password),
    )
    db.add(user)
    db.flush()

    registration = PendingFirmRegistration(
        user_id=user.id,
        firm_name=firm_name,
        firm_email=firm_email or email,
        firm_phone=firm_phone,
        firm_address=firm_address,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
    )
    db.add(registration)
    db.commit()

    if not get_settings().require_email_confirmation:
        user.email_confirmed_at = datetime.utcnow()
        complete_firm_registration(db, registration)

    return registration, True


def complete_firm_registration(db: Session, registration: PendingFirmRegistration) -> Firm:
    """Create the firm, make the registrant its admin manager and seed the pipeline."""
    if registration.status == RegistrationStatus.COMPLETED:
        return _get_firm(db, registration.firm_id)

    user = db.query(User).filter(User.id == registration.user_id).first()
    if not user:
        raise NotFoundError("User", registration.user_id)

    firm = Firm(
        name=registration.firm_name,
        email=registration.firm_email,
        phone=registration.firm_phone,
        address=registration.firm_address,
    )
    db.add(firm)
    db.flush()

    user.firm_id = firm.id
    user.account_type = AccountType.STAFF
    user.internal_role = InternalRole.ADMIN_MANAGER
    user.status = UserStatus.ACTIVE

    seed_default_pipeline(db, firm)

    registration.status = RegistrationStatus.COMPLETED
    registration.firm_id = firm.id
    registration.completed_at = datetime.utcnow()

    log_audit(db, firm.id, user.id, "firm_registered", "firm", firm.id, {"firm_name": firm.name})
    db.commit()
    logger.info(f"Firm {firm.id} registered by {user.email}")
    return firm


def complete_pending_registration_for_user(db: Session, user: User) -> Optional[Firm]:
    registration = db.query(PendingFirmRegistration).filter(
        PendingFirmRegistration.user_id == user.id,
        PendingFirmRegistration.status == RegistrationStatus.PENDING,
    ).first()
    if not registration:
        return None
    return complete_firm_registration(db, registration)


# =============================================================================
# INVITATIONS
# =============================================================================

def _new_invitation_token() -> str:
    return secrets.token_urlsafe(32)


def _invitation_expiry() -> datetime:
    return datetime.utcnow() + timedelta(days=get_settings().invitation_expiry_days)


def _send_invitation(invitation: Invitation, token: str, firm_name: str) -> None:
    from .jobs.queue import enqueue_job
    from .jobs.tasks import task_send_invitation_email

    enqueue_job(task_send_invitation_email, invitation.email, token, firm_name, invitation.role.value)


def create_invitation(db: Session, auth: AuthContext, email: str, role: InternalRole) -> Tuple[Invitation, str]:
    """Invite a staff member. Returns (invitation, raw token); only the hash is stored."""
    _require(db, auth, Resource.USER, Action.INVITE)
    email = email.lower()
    firm = _get_firm(db, auth.firm_id)

    member = db.query(User).filter(User.email == email).first()
    # accept_invitation refuses any existing firm member or client account
    if member and member.firm_id == firm.id:
        if member.status == UserStatus.ACTIVE:
            raise ConflictError("User is already a member of this firm")
        raise ConflictError("User is an inactive member of this firm; change their status instead")
    if member and member.firm_id:
        raise ConflictError("Email belongs to another firm")
    if member:
        raise ConflictError("Email is registered to a client account")

    # A new invitation supersedes any pending one for the same address
    db.query(Invitation).filter(
        Invitation.firm_id == firm.id,
        Invitation.email == email,
        Invitation.status == InvitationStatus.PENDING,
    ).update({Invitation.status: InvitationStatus.REVOKED}, synchronize_session=False)

    token = _new_invitation_token()
    invitation = Invitation(
        firm_id=firm.id,
        email=email,
        role=role,
        token_hash=hash_token(token),
        status=InvitationStatus.PENDING,
        invited_by_id=auth.user_id,
        expires_at=_invitation_expiry(),
    )
    db.add(invitation)
    db.flush()

    log_audit(db, firm.id, auth.user_id, "user_invited", "invitation", invitation.id,
              {"email": email, "role": role.value})
    queue_row_change(db, f"firm:{firm.id}", invitation, "INSERT")
    db.commit()

    _send_invitation(invitation, token, firm.name)
    return invitation, token


def _invitation_by_token(db: Session, token: str) -> Invitation:
    invitation = db.query(Invitation).filter(Invitation.token_hash == hash_token(token)).first()
    if not invitation:
        raise NotFoundError("Invitation")
    return invitation


def _expire_if_needed(db: Session, invitation: Invitation) -> None:
    if invitation.status == InvitationStatus.PENDING and invitation.expires_at <= datetime.utcnow():
        invitation.status = InvitationStatus.EXPIRED
        db.commit()


def get_invite_details(db: Session, token: str) -> Dict[str, Any]:
    invitation = _invitation_by_token(db, token)
    _expire_if_needed(db, invitation)
    return {
        "id": invitation.id,
        "email": invitation.email,
        "role": invitation.role.value,
        "firm_id": invitation.firm_id,
        "firm_name": invitation.firm.name if invitation.firm else None,
        "status": invitation.status.value,
        "expires_at": invitation.expires_at,
    }


def accept_invitation(db: Session, token: str, password: str, first_name: str, last_name: str) -> User:
    invitation = _invitation_by_token(db, token)
    _expire_if_needed(db, invitation)
    if invitation.status != InvitationStatus.PENDING:
        raise ConflictError(f"Invitation is {invitation.status.value}")

    validate_new_password(password)

    user = db.query(User).filter(User.email == invitation.email).first()
    if user and (user.firm_id or user.account_type == AccountType.CLIENT):
        raise ConflictError("Email already registered")
    if user is None:
        user = User(email=invitation.email, first_name=first_name, last_name=last_name)
        db.add(user)

    user.first_name = first_name
    user.last_name = last_name
    user.firm_id = invitation.firm_id
    user.account_type = AccountType.STAFF
    user.internal_role = invitation.role
    user.status = UserStatus.ACTIVE
    user.password_hash = get_password_hash(password)
    user.email_confirmed_at = datetime.utcnow()
    db.flush()

    invitation.status = InvitationStatus.ACCEPTED
    invitation.accepted_at = datetime.utcnow()

    log_audit(db, invitation.firm_id, user.id, "invitation_accepted", "invitation", invitation.id,
              {"email": user.email, "role": invitation.role.value})
    queue_row_change(db, f"firm:{invitation.firm_id}", invitation, "UPDATE")
    db.commit()
    logger.info(f"Invitation {invitation.id} accepted by {user.email}")
    return user


def _firm_invitation(db: Session, auth: AuthContext, invitation_id: str) -> Invitation:
    invitation = db.query(Invitation).filter(
        Invitation.id == invitation_id,
        Invitation.firm_id == auth.firm_id,
    ).first()
    if not invitation:
        raise NotFoundError("Invitation", invitation_id)
    return invitation


def revoke_invitation(db: Session, auth: AuthContext, invitation_id: str) -> Invitation:
    _require(db, auth, Resource.USER, Action.INVITE)
    invitation = _firm_invitation(db, auth, invitation_id)
    if invitation.status != InvitationStatus.PENDING:
        raise ConflictError(f"Invitation is {invitation.status.value}")

    invitation.status = InvitationStatus.REVOKED
    log_audit(db, auth.firm_id, auth.user_id, "invitation_revoked", "invitation", invitation.id,
              {"email": invitation.email})
    queue_row_change(db, f"firm:{auth.firm_id}", invitation, "UPDATE")
    db.commit()
    return invitation


def resend_invitation(db: Session, auth: AuthContext, invitation_id: str) -> Tuple[Invitation, str]:
    _require(db, auth, Resource.USER, Action.INVITE)
    invitation = _firm_invitation(db, auth, invitation_id)
    _expire_if_needed(db, invitation)
    if invitation.status not in (InvitationStatus.PENDING, InvitationStatus.EXPIRED):
        raise ConflictError(f"Invitation is {invitation.status.value}")

    token = _new_invitation_token()
    invitation.token_hash = hash_token(token)
    invitation.status = InvitationStatus.PENDING
    invitation.expires_at = _invitation_expiry()
    log_audit(db, auth.firm_id, auth.user_id, "invitation_resent", "invitation", invitation.id,
              {"email": invitation.email})
    db.commit()

    _send_invitation(invitation, token, _get_firm(db, auth.firm_id).name)
    return invitation, token


def list_invitations(db: Session, auth: AuthContext, status: Optional[InvitationStatus] = None) -> List[Invitation]:
    _require(db, auth, Resource.USER, Action.INVITE)
    query = db.query(Invitation).filter(Invitation.firm_id == auth.firm_id)
    if status:
        query = query.filter(Invitation.status == status)
    return query.order_by(Invitation.created_at.desc()).all()


# =============================================================================
# STAFF
# =============================================================================

def list_staff(db: Session, firm_id: str, include_inactive: bool = True) -> List[User]:
    query = db.query(User).filter(User.firm_id == firm_id, User.account_type == AccountType.STAFF)
    if not include_inactive:
        query = query.filter(User.status == UserStatus.ACTIVE)
    return query.order_by(User.first_name.asc(), User.last_name.asc()).all()


def get_staff_member(db: Session, firm_id: str, user_id: str) -> User:
    user = db.query(User).filter(
        User.id == user_id,
        User.firm_id == firm_id,
        User.account_type == AccountType.STAFF,
    ).first()
    if not user:
        raise NotFoundError("Staff member", user_id)
    return user


def update_staff_status(db: Session, auth: AuthContext, user_id: str, status: UserStatus) -> User:
    _require(db, auth, Resource.USER, Action.SUSPEND)
    if user_id == auth.user_id:
        raise PermissionDeniedError("You cannot change your own status")

    target = get_staff_member(db, auth.firm_id, user_id)
    if target.status == UserStatus.DEACTIVATED:
        raise ConflictError("Deactivated accounts cannot be changed")
    if target.status == status:
        return target

    previous = target.status
    target.status = status
    log_audit(db, auth.firm_id, auth.user_id, f"user_{status.value}", "user", target.id,
              {"from": previous.value, "to": status.value})
    queue_row_change(db, f"firm:{auth.firm_id}", target, "UPDATE")
    db.commit()

    if status != UserStatus.ACTIVE:
        AuthService(db).clear_internal_sessions(target.id)
    logger.info(f"User {target.id} status {previous.value} -> {status.value} by {auth.user_id}")
    return target


def update_staff_role(db: Session, auth: AuthContext, user_id: str, role: InternalRole) -> User:
    _require(db, auth, Resource.USER, Action.MANAGE)
    if user_id == auth.user_id:
        raise PermissionDeniedError("You cannot change your own role")

    target = get_staff_member(db, auth.firm_id, user_id)
    if target.status == UserStatus.DEACTIVATED:
        raise ConflictError("Deactivated accounts cannot be changed")

    previous = target.internal_role
    target.internal_role = role
    log_audit(db, auth.firm_id, auth.user_id, "user_role_changed", "user", target.id,
              {"from": previous.value if previous else None, "to": role.value})
    db.commit()

    # Sessions carry the role they were opened with
    AuthService(db).clear_internal_sessions(target.id)
    return target


# =============================================================================
# FIRM SETTINGS
# =============================================================================

def get_firm(db: Session, firm_id: str) -> Firm:
    return _get_firm(db, firm_id)


def list_firms(db: Session) -> List[Firm]:
    """Firms a client may name as preferred when filing a case report."""
    return db.query(Firm).order_by(Firm.name.asc()).all()


def update_firm(db: Session, auth: AuthContext, changes: Dict[str, Any]) -> Firm:
    _require(db, auth, Resource.FIRM, Action.MANAGE)
    firm = _get_firm(db, auth.firm_id)

    allowed = {"name", "email", "phone", "address", "settings"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationFailedError(f"Unknown firm fields: {', '.join(sorted(unknown))}")

    for key, value in changes.items():
        if key == "name" and not value:
            raise ValidationFailedError("Firm name cannot be empty")
        setattr(firm, key, value)

    log_audit(db, firm.id, auth.user_id, "firm_updated", "firm", firm.id, {"fields": sorted(changes)})
    db.commit()
    return firm
