"""
CaseBridge API
==============

FastAPI application serving the internal staff portal and the client portal.

Endpoints defined here:
- /auth/*                 - Sign-up, sign-in, sessions, password and email flows
- /auth/register-firm     - Firm self-registration
- /auth/invitations/*     - Invitation lookup and acceptance
- GET /health             - Health check
- WS  /ws?token=          - Realtime change feed
- GET /storage/{bucket}/{path}?token= - Signed file downloads

Portal routers:
- /internal/*  - staff portal (api_internal.py)
- /client/*    - client portal (api_client.py)

Run with:
    uvicorn casebridge.api:app --host 0.0.0.0 --port 8000
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Header, Depends, Query, Request, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, FileResponse
from sqlalchemy.orm import Session

from .config import get_settings
from .db.models import AccountType, Firm, RegistrationStatus, User, UserStatus
from .db.session import check_db, get_db, get_db_session, init_db
from .auth import (
    AuthContext,
    AuthService,
    auth_context_for_user,
    decode_token,
    require_auth,
    resolve_bearer,
)
from .errors import AuthenticationError, ServiceError
from .email_utils import is_email_configured
from .jobs.queue import enqueue_job, get_queue_stats
from .jobs.tasks import task_send_email_confirmation, task_send_password_reset
from .middleware import RateLimitMiddleware, SecurityHeadersMiddleware
from .rbac import resolve_user_home
from .realtime import serve_websocket
from .schemas import (
    AcceptInvitationRequest,
    ChangePasswordRequest,
    ConfirmEmailRequest,
    FirmRegistrationRequest,
    ForgotPasswordRequest,
    HealthResponse,
    InternalLoginResponse,
    InviteDetailsResponse,
    LoginRequest,
    MeResponse,
    NotificationPreferenceItem,
    NotificationPreferenceUpdate,
    NotificationResponse,
    ProfileUpdateRequest,
    RefreshTokenRequest,
    ResetPasswordRequest,
    SignupRequest,
    TokenResponse,
)
from .storage import BUCKETS, get_storage, verify_signed_token
from . import firms, notifications
from .api_internal import router as internal_router
from .api_client import router as client_router

logger = logging.getLogger(__name__)

settings = get_settings()

RESET_MESSAGE = "If this email is registered, a reset link will be sent."
DEV_NOTE = "SMTP not configured. Configure SMTP_HOST, SMTP_USER, SMTP_PASSWORD to send real emails."


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="CaseBridge",
    description="Case management backend for the CaseBridge internal and client portals",
    version=settings.service_version,
    docs_url="/docs",
    redoc_url="/redoc",
)


CORS_ALLOW_ORIGINS = settings.cors_origin_list()
logger.info(f"CORS allow origins: {CORS_ALLOW_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)

if settings.rate_limit_enabled:
    app.add_middleware(RateLimitMiddleware)
    logger.info("Rate limiting middleware enabled")

app.include_router(internal_router, prefix="/internal")
app.include_router(client_router, prefix="/client")


def _dev_mode() -> bool:
    """One-time tokens are echoed back only in development without SMTP."""
    return get_settings().is_development and not is_email_configured()


def _with_dev_token(response: dict, token: Optional[str]) -> dict:
    if token and _dev_mode():
        response["_dev_token"] = token
        response["_dev_note"] = DEV_NOTE
    return response


# =============================================================================
# Health
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health():
    db_ok = check_db()
    return HealthResponse(
        status="ok" if db_ok else "degraded",
        version=get_settings().service_version,
        db=db_ok,
        queue=get_queue_stats(),
        timestamp=datetime.utcnow(),
    )


# =============================================================================
# Auth - client portal
# =============================================================================

@app.post("/auth/signup", tags=["Auth"], status_code=201)
async def client_signup(request: SignupRequest, db: Session = Depends(get_db)):
    """
    Create a client account.

    When email confirmation is required the account cannot sign in until the
    emailed link is followed.
    """
    user, token = AuthService(db).client_signup(
        request.email, request.password, request.first_name, request.last_name, request.phone,
    )
    response = {
        "user_id": user.id,
        "email": user.email,
        "email_confirmation_required": token is not None,
    }
    return _with_dev_token(response, token)


@app.post("/auth/login", tags=["Auth"], response_model=TokenResponse)
async def client_login(request: LoginRequest, db: Session = Depends(get_db)):
    service = AuthService(db)
    user = service.authenticate_user(request.email, request.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.account_type != AccountType.CLIENT:
        raise HTTPException(status_code=403, detail="Staff accounts must use the internal portal")
    if user.status != UserStatus.ACTIVE:
        raise HTTPException(status_code=403, detail="Account is not active")
    if get_settings().require_email_confirmation and not user.email_confirmed_at:
        raise HTTPException(status_code=403, detail="Email address not confirmed")

    return TokenResponse(**service.issue_tokens(user))


# =============================================================================
# Auth - internal portal
# =============================================================================

@app.post("/auth/internal/login", tags=["Auth"], response_model=InternalLoginResponse)
async def internal_login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Sign in to the internal portal.

    Opens an internal session (role and firm scoped) and returns tokens bound
    to it, plus the landing route for the user's role.
    """
    service = AuthService(db)
    user = service.authenticate_user(request.email, request.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.account_type != AccountType.STAFF:
        raise HTTPException(status_code=403, detail="Internal users only")
    if user.status != UserStatus.ACTIVE:
        raise HTTPException(status_code=403, detail=f"Account {user.status.value}")
    if not user.firm_id or not user.internal_role:
        raise HTTPException(status_code=403, detail="Firm registration is not complete; confirm your email first")

    session = service.create_internal_session(user)
    tokens = service.issue_tokens(user, session)
    return InternalLoginResponse(
        **tokens,
        home=resolve_user_home(auth_context_for_user(user, session.id)),
        session_id=session.id,
        session_expires_at=session.expires_at,
    )


@app.post("/auth/register-firm", tags=["Auth"], status_code=201)
async def register_firm(request: FirmRegistrationRequest, db: Session = Depends(get_db)):
    registration, created = firms.register_firm(
        db,
        firm_name=request.firm_name,
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
        phone=request.phone,
        firm_email=request.firm_email,
        firm_phone=request.firm_phone,
        firm_address=request.firm_address,
    )

    token = None
    if created and registration.status == RegistrationStatus.PENDING:
        user = db.query(User).filter(User.id == registration.user_id).first()
        token = AuthService(db).issue_email_confirmation(user)
        enqueue_job(task_send_email_confirmation, user.email, token, user.name, True)

    response = {
        "registration_id": registration.id,
        "status": registration.status.value,
        "firm_id": registration.firm_id,
        "email_confirmation_required": registration.firm_id is None,
    }
    return _with_dev_token(response, token)


# =============================================================================
# Auth - shared
# =============================================================================

@app.post("/auth/refresh", tags=["Auth"], response_model=TokenResponse)
async def refresh_token(request: RefreshTokenRequest, db: Session = Depends(get_db)):
    """Exchange a refresh token for a new pair; the old refresh token is revoked."""
    return TokenResponse(**AuthService(db).refresh(request.refresh_token))


@app.post("/auth/logout", tags=["Auth"])
async def logout(
    authorization: Optional[str] = Header(None),
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    token = authorization.split(" ", 1)[1].strip()
    payload = decode_token(token)
    service = AuthService(db)
    if payload:
        service.revoke_token(token, payload)
    if auth.is_staff:
        service.clear_internal_sessions(auth.user_id)
    logger.info(f"User {auth.user_id} logged out")
    return {"message": "Logged out"}


@app.post("/auth/forgot-password", tags=["Auth"])
async def forgot_password(request: ForgotPasswordRequest, db: Session = Depends(get_db)):
    """
    Request a password reset link.

    The answer is the same whether or not the email is registered.
    """
    service = AuthService(db)
    token = service.request_password_reset(request.email)
    if token:
        user = service.get_user_by_email(request.email)
        enqueue_job(
            task_send_password_reset, user.email, token, user.name,
            user.account_type == AccountType.STAFF,
        )
    return _with_dev_token({"message": RESET_MESSAGE}, token)


@app.post("/auth/reset-password", tags=["Auth"])
async def reset_password(request: ResetPasswordRequest, db: Session = Depends(get_db)):
    AuthService(db).reset_password(request.token, request.new_password)
    return {"message": "Password has been reset"}


@app.post("/auth/confirm-email", tags=["Auth"])
async def confirm_email(request: ConfirmEmailRequest, db: Session = Depends(get_db)):
    user = AuthService(db).confirm_email(request.token)
    return {"message": "Email confirmed", "user_id": user.id, "firm_id": user.firm_id}


@app.post("/auth/resend-confirmation", tags=["Auth"])
async def resend_confirmation(request: ForgotPasswordRequest, db: Session = Depends(get_db)):
    service = AuthService(db)
    user = service.get_user_by_email(request.email)
    token = None
    if user and user.email_confirmed_at is None and user.status == UserStatus.ACTIVE:
        token = service.issue_email_confirmation(user)
        enqueue_job(
            task_send_email_confirmation, user.email, token, user.name,
            user.account_type == AccountType.STAFF,
        )
    return _with_dev_token({"message": "If this account needs confirmation, a new link will be sent."}, token)


def _me(db: Session, auth: AuthContext) -> MeResponse:
    user = db.query(User).filter(User.id == auth.user_id).first()
    firm = db.query(Firm).filter(Firm.id == auth.firm_id).first() if auth.firm_id else None
    return MeResponse(
        user_id=user.id,
        email=user.email,
        name=user.name,
        first_name=user.first_name,
        last_name=user.last_name,
        phone=user.phone,
        account_type=auth.account_type.value,
        internal_role=auth.internal_role,
        status=auth.status,
        firm_id=auth.firm_id,
        firm_name=firm.name if firm else None,
        email_confirmed=user.email_confirmed_at is not None,
        home=resolve_user_home(auth) if auth.is_staff else None,
    )


@app.get("/auth/me", tags=["Auth"], response_model=MeResponse)
async def auth_me(auth: AuthContext = Depends(require_auth), db: Session = Depends(get_db)):
    """Current user, their firm and (for staff) the portal landing route."""
    return _me(db, auth)


@app.patch("/auth/me", tags=["Auth"], response_model=MeResponse)
async def update_me(
    request: ProfileUpdateRequest,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """Edit your own profile (both portals)."""
    AuthService(db).update_profile(auth, **request.model_dump(exclude_unset=True))
    return _me(db, auth)


@app.post("/auth/change-password", tags=["Auth"])
async def change_password(
    request: ChangePasswordRequest,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    AuthService(db).change_password(auth, request.current_password, request.new_password)
    return {"message": "Password updated"}


# =============================================================================
# Invitations (public)
# =============================================================================

@app.get("/auth/invitations/{token}", tags=["Auth"], response_model=InviteDetailsResponse)
async def invitation_details(token: str, db: Session = Depends(get_db)):
    return firms.get_invite_details(db, token)


@app.post("/auth/invitations/accept", tags=["Auth"], response_model=InternalLoginResponse)
async def accept_invitation(request: AcceptInvitationRequest, db: Session = Depends(get_db)):
    """Create the invited staff account and sign it straight in."""
    user = firms.accept_invitation(db, request.token, request.password, request.first_name, request.last_name)
    service = AuthService(db)
    session = service.create_internal_session(user)
    return InternalLoginResponse(
        **service.issue_tokens(user, session),
        home=resolve_user_home(auth_context_for_user(user, session.id)),
        session_id=session.id,
        session_expires_at=session.expires_at,
    )


# =============================================================================
# Notifications
# =============================================================================

@app.get("/notifications", tags=["Notifications"], response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    return notifications.list_notifications(db, auth.user_id, unread_only=unread_only, limit=limit)


@app.get("/notifications/unread-count", tags=["Notifications"])
async def unread_notification_count(auth: AuthContext = Depends(require_auth), db: Session = Depends(get_db)):
    return {"count": notifications.unread_count(db, auth.user_id)}


@app.post("/notifications/read-all", tags=["Notifications"])
async def mark_all_notifications_read(auth: AuthContext = Depends(require_auth), db: Session = Depends(get_db)):
    return {"updated": notifications.mark_all_read(db, auth.user_id)}


@app.post("/notifications/{notification_id}/read", tags=["Notifications"], response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    return notifications.mark_read(db, auth.user_id, notification_id)


@app.get("/notifications/preferences", tags=["Notifications"], response_model=List[NotificationPreferenceItem])
async def get_notification_preferences(auth: AuthContext = Depends(require_auth), db: Session = Depends(get_db)):
    return notifications.get_preferences(db, auth.user_id)


@app.put("/notifications/preferences", tags=["Notifications"], response_model=List[NotificationPreferenceItem])
async def update_notification_preference(
    request: NotificationPreferenceUpdate,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    notifications.update_preference(
        db, auth.user_id, request.event_type, request.in_app_enabled, request.email_enabled,
    )
    return notifications.get_preferences(db, auth.user_id)


# =============================================================================
# Storage (signed downloads)
# =============================================================================

@app.get("/storage/{bucket}/{path:path}", tags=["Storage"])
async def download_object(bucket: str, path: str, token: str = Query(...)):
    if bucket not in BUCKETS:
        raise HTTPException(status_code=404, detail="Bucket not found")
    if not verify_signed_token(token, bucket, path):
        raise HTTPException(status_code=403, detail="Invalid or expired download link")

    storage = get_storage()
    if not storage.exists(bucket, path):
        raise HTTPException(status_code=404, detail="File not found")
    local_path = storage.local_path(bucket, path)
    return FileResponse(str(local_path), filename=local_path.name.split("-", 2)[-1])


# =============================================================================
# Realtime
# =============================================================================

@app.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: str = Query(...)):
    """Authenticated change feed; see realtime.serve_websocket for the protocol."""
    try:
        with get_db_session() as db:
            auth = resolve_bearer(token, db)
    except AuthenticationError:
        auth = None
    if not auth:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await serve_websocket(websocket, auth)


# =============================================================================
# Startup
# =============================================================================

@app.on_event("startup")
async def startup_event():
    settings = get_settings()
    logger.info(f"Starting CaseBridge v{settings.service_version} ({settings.environment})")
    for warning in settings.validate_config():
        logger.warning(warning)
    init_db()


# =============================================================================
# Error handling
# =============================================================================

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Always answer with JSON, never leak internals."""
    logger.exception(f"Unhandled exception on {request.url.path}: {exc.__class__.__name__}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# =============================================================================
# Main (for direct execution)
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "casebridge.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
