"""
Authentication and Sessions
===========================

Accounts come in two kinds:
- client: uses the client portal, has no firm and no internal role
- staff:  belongs to a firm and carries an internal role (see rbac.py)

Authorization Flow:
1. Decode the bearer JWT (type "access") and reject revoked tokens
2. Load the account; it must be active
3. Internal-portal tokens carry a session id ("sid"); the internal session
   row must still exist and be unexpired
4. Build an AuthContext and check permissions against the role matrix
"""

import os
import uuid
import hashlib
import logging
import secrets
from typing import Optional, Dict, Any, Tuple
from dataclasses import dataclass
from datetime import datetime, timedelta

import jwt
from fastapi import Depends, Header, HTTPException
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import get_settings
from .db.models import (
    AccountToken, AccountType, InternalRole, InternalSession, TokenBlacklist,
    TokenPurpose, User, UserStatus,
)
from .db.session import get_db
from .errors import AuthenticationError, ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError
from . import rbac
from . import token_blacklist

logger = logging.getLogger(__name__)

# JWT configuration
JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
JWT_REFRESH_TOKEN_EXPIRE_DAYS = int(os.environ.get("JWT_REFRESH_TOKEN_EXPIRE_DAYS", "7"))

MIN_PASSWORD_LENGTH = 8


# =============================================================================
# PASSWORD HASHING
# =============================================================================

# bcrypt truncates passwords at 72 bytes; enforce to avoid 500s.
MAX_PASSWORD_BYTES = 72

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def is_password_too_long(password: str) -> bool:
    """Return True if password exceeds bcrypt 72-byte limit."""
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def validate_new_password(password: str) -> None:
    if is_password_too_long(password):
        raise ValidationFailedError(f"Password too long (max {MAX_PASSWORD_BYTES} bytes)")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailedError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    if is_password_too_long(plain_password):
        logger.warning("Auth failed: password exceeds bcrypt 72-byte limit")
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        logger.warning(f"Auth failed: invalid password format ({e})")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password"""
    if is_password_too_long(password):
        raise ValueError("Password exceeds bcrypt 72-byte limit")
    return pwd_context.hash(password)


def hash_token(token: str) -> str:
    """sha256 of an opaque one-time token (only the hash is stored)."""
    return hashlib.sha256(token.encode()).hexdigest()


# =============================================================================
# JWT TOKEN HANDLING
# =============================================================================

def _encode(data: dict, token_type: str, expire: datetime) -> str:
    to_encode = data.copy()
    to_encode.update({"exp": expire, "type": token_type, "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    return _encode(data, "access", expire)


def create_refresh_token(data: dict) -> str:
    """Create a JWT refresh token"""
    expire = datetime.utcnow() + timedelta(days=JWT_REFRESH_TOKEN_EXPIRE_DAYS)
    return _encode(data, "refresh", expire)


def create_scoped_token(data: dict, token_type: str, expires_in: int) -> str:
    """Short-lived token for a single purpose (e.g. signed downloads)."""
    return _encode(data, token_type, datetime.utcnow() + timedelta(seconds=expires_in))


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token"""
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.warning(f"Invalid JWT token: {e}")
        return None


def token_jti(token: str, payload: dict) -> str:
    return payload.get("jti") or hashlib.sha256(token.encode()).hexdigest()[:32]


# =============================================================================
# AUTH CONTEXT
# =============================================================================

@dataclass
class AuthContext:
    """Authorization context for a request"""
    user_id: str
    firm_id: Optional[str]
    email: str
    name: str
    account_type: AccountType
    internal_role: Optional[InternalRole]
    status: UserStatus
    session_id: Optional[str] = None

    @property
    def is_client(self) -> bool:
        return self.account_type == AccountType.CLIENT

    @property
    def is_staff(self) -> bool:
        return self.account_type == AccountType.STAFF and self.internal_role is not None

    @property
    def is_admin(self) -> bool:
        return rbac.is_admin(self)

    @property
    def is_case_manager_or_higher(self) -> bool:
        return rbac.is_case_manager_or_higher(self)

    def has_permission(self, resource, action) -> bool:
        return rbac.has_permission(self, resource, action)

    @property
    def role_label(self) -> str:
        if self.internal_role is not None:
            return self.internal_role.value
        return "client"


def auth_context_for_user(user: User, session_id: Optional[str] = None) -> AuthContext:
    return AuthContext(
        user_id=user.id,
        firm_id=user.firm_id,
        email=user.email,
        name=user.name,
        account_type=user.account_type,
        internal_role=user.internal_role,
        status=user.status,
        session_id=session_id,
    )


# =============================================================================
# AUTH SERVICE (SQLAlchemy-based)
# =============================================================================

class AuthService:
    """Accounts, sessions and permission checks"""

    def __init__(self, db: Session):
        self.db = db

    # -- lookup -----------------------------------------------------------

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.lower()).first()

    def get_auth_context(self, user_id: str, session_id: Optional[str] = None) -> Optional[AuthContext]:
        """
        Build auth context for a user.

        Args:
            user_id: User ID from the JWT "sub" claim
            session_id: Internal session id from the "sid" claim, if any

        Returns:
            AuthContext if the user is active, None otherwise

        Raises:
            AuthenticationError: the token names an internal session that has
                expired or been ended
        """
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user or user.status != UserStatus.ACTIVE:
            logger.warning(f"Auth failed: user {user_id} not found or not active")
            return None

        if session_id:
            session = self.db.query(InternalSession).filter(
                InternalSession.id == session_id,
                InternalSession.user_id == user_id,
                InternalSession.expires_at > datetime.utcnow(),
            ).first()
            if not session:
                logger.warning(f"Auth failed: internal session {session_id} expired for user {user_id}")
                raise AuthenticationError("Session expired")

        return auth_context_for_user(user, session_id=session_id)

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        """
        Authenticate a user by email and password.

        Returns:
            The User if the credentials match, None otherwise. Status checks
            are left to the caller so it can answer with the right message.
        """
        user = self.get_user_by_email(email)
        if not user:
            logger.warning(f"Auth failed: email {email} not found")
            return None

        if not user.password_hash:
            logger.warning(f"Auth failed: user {user.id} has no password set")
            return None

        if not verify_password(password, user.password_hash):
            logger.warning(f"Auth failed: invalid password for user {user.id}")
            return None

        user.last_login = datetime.utcnow()
        self.db.commit()
        return user

    def client_signup(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: Optional[str] = None,
    ) -> Tuple[User, Optional[str]]:
        """
        Create a client-portal account.

        Returns (user, confirmation token). The token is None when email
        confirmation is not required and the account is confirmed at once.
        """
        if self.get_user_by_email(email):
            raise ConflictError("Email already registered")
        validate_new_password(password)

        user = User(
            email=email.lower(),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            account_type=AccountType.CLIENT,
            status=UserStatus.ACTIVE,
            password_hash=get_password_hash(password),
        )
        self.db.add(user)
        self.db.commit()
        logger.info(f"Client account created: {user.email}")

        if not get_settings().require_email_confirmation:
            user.email_confirmed_at = datetime.utcnow()
            self.db.commit()
            return user, None

        token = self.issue_email_confirmation(user)
        from .jobs.queue import enqueue_job
        from .jobs.tasks import task_send_email_confirmation

        enqueue_job(task_send_email_confirmation, user.email, token, user.name, False)
        return user, token

    # -- internal sessions -------------------------------------------------

    def create_internal_session(self, user: User) -> InternalSession:
        if user.firm_id is None or user.internal_role is None:
            raise PermissionDeniedError("Internal users only")
        hours = get_settings().internal_session_hours
        session = InternalSession(
            user_id=user.id,
            firm_id=user.firm_id,
            role=user.internal_role,
            expires_at=datetime.utcnow() + timedelta(hours=hours),
        )
        self.db.add(session)
        self.db.commit()
        logger.info(f"Internal session {session.id} created for user {user.id}")
        return session

    def get_internal_session(self, user_id: str) -> Optional[InternalSession]:
        """Latest unexpired internal session for a user."""
        return (
            self.db.query(InternalSession)
            .filter(InternalSession.user_id == user_id, InternalSession.expires_at > datetime.utcnow())
            .order_by(InternalSession.created_at.desc())
            .first()
        )

    def clear_internal_sessions(self, user_id: str) -> int:
        count = self.db.query(InternalSession).filter(InternalSession.user_id == user_id).delete()
        self.db.commit()
        return count

    # -- tokens ------------------------------------------------------------

    def issue_tokens(self, user: User, session: Optional[InternalSession] = None) -> Dict[str, Any]:
        token_data = {"sub": user.id, "firm_id": user.firm_id}
        if session is not None:
            token_data["sid"] = session.id
        return {
            "access_token": create_access_token(token_data),
            "refresh_token": create_refresh_token(token_data),
            "token_type": "bearer",
        }

    def is_token_revoked(self, jti: str) -> bool:
        # Redis first; None means "not definitive, ask the database"
        redis_result = token_blacklist.is_blacklisted(jti)
        if redis_result is True:
            return True
        return self.db.query(TokenBlacklist).filter(TokenBlacklist.jti == jti).first() is not None

    def revoke_token(self, token: str, payload: dict) -> None:
        jti = token_jti(token, payload)
        exp = payload.get("exp")
        token_type = payload.get("type", "access")
        expires_at = datetime.utcfromtimestamp(exp) if exp else datetime.utcnow() + timedelta(hours=1)

        token_blacklist.add_to_blacklist(jti, expires_at, token_type)

        # Also persist to database (durable across Redis restarts)
        if not self.db.query(TokenBlacklist).filter(TokenBlacklist.jti == jti).first():
            self.db.add(TokenBlacklist(
                jti=jti,
                token_type=token_type,
                user_id=payload.get("sub"),
                expires_at=expires_at,
            ))
            self.db.commit()

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        payload = decode_token(refresh_token)
        if not payload:
            raise AuthenticationError("Invalid refresh token")
        if payload.get("type") != "refresh":
            raise AuthenticationError("Invalid token type")
        if self.is_token_revoked(token_jti(refresh_token, payload)):
            raise AuthenticationError("Token has been revoked")

        auth = self.get_auth_context(payload.get("sub"), payload.get("sid"))
        if not auth:
            raise AuthenticationError("User not found or inactive")

        # Rotate: the used refresh token cannot be replayed
        self.revoke_token(refresh_token, payload)

        user = self.db.query(User).filter(User.id == auth.user_id).first()
        session = None
        if payload.get("sid"):
            session = self.db.query(InternalSession).filter(InternalSession.id == payload["sid"]).first()
        return self.issue_tokens(user, session)

    # -- one-time account tokens -------------------------------------------

    def issue_account_token(self, user: User, purpose: TokenPurpose, lifetime: timedelta) -> str:
        # One live token per purpose
        self.db.query(AccountToken).filter(
            AccountToken.user_id == user.id,
            AccountToken.purpose == purpose,
            AccountToken.used_at.is_(None),
        ).delete()

        token = secrets.token_urlsafe(32)
        self.db.add(AccountToken(
            user_id=user.id,
            purpose=purpose,
            token_hash=hash_token(token),
            expires_at=datetime.utcnow() + lifetime,
        ))
        self.db.commit()
        return token

    def consume_account_token(self, token: str, purpose: TokenPurpose) -> User:
        record = self.db.query(AccountToken).filter(
            AccountToken.token_hash == hash_token(token),
            AccountToken.purpose == purpose,
            AccountToken.used_at.is_(None),
            AccountToken.expires_at > datetime.utcnow(),
        ).first()
        if not record:
            raise ValidationFailedError("Invalid or expired token")

        user = self.db.query(User).filter(User.id == record.user_id).first()
        if not user:
            raise NotFoundError("User")

        record.used_at = datetime.utcnow()
        return user

    def request_password_reset(self, email: str) -> Optional[str]:
        """Issue a reset token for an active account. Returns None for unknown emails."""
        user = self.get_user_by_email(email)
        if not user or user.status != UserStatus.ACTIVE:
            return None
        lifetime = timedelta(minutes=get_settings().password_reset_expiry_minutes)
        return self.issue_account_token(user, TokenPurpose.PASSWORD_RESET, lifetime)

    def reset_password(self, token: str, new_password: str) -> User:
        validate_new_password(new_password)
        user = self.consume_account_token(token, TokenPurpose.PASSWORD_RESET)
        user.password_hash = get_password_hash(new_password)
        self.db.commit()
        self.clear_internal_sessions(user.id)
        logger.info(f"Password reset for user {user.id}")
        return user

    def issue_email_confirmation(self, user: User) -> str:
        lifetime = timedelta(hours=get_settings().email_confirmation_expiry_hours)
        return self.issue_account_token(user, TokenPurpose.EMAIL_CONFIRMATION, lifetime)

    def confirm_email(self, token: str) -> User:
        user = self.consume_account_token(token, TokenPurpose.EMAIL_CONFIRMATION)
        if user.email_confirmed_at is None:
            user.email_confirmed_at = datetime.utcnow()
        self.db.commit()

        from .firms import complete_pending_registration_for_user
        complete_pending_registration_for_user(self.db, user)
        return user

    # -- profile -------------------------------------------------------------

    def _current_user(self, auth: AuthContext) -> User:
        user = self.db.query(User).filter(User.id == auth.user_id).first()
        if not user:
            raise NotFoundError("User")
        return user

    def update_profile(
        self,
        auth: AuthContext,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        """Update the caller's own name and phone; omitted fields are left alone."""
        user = self._current_user(auth)
        if first_name is not None:
            if not first_name.strip():
                raise ValidationFailedError("First name cannot be empty")
            user.first_name = first_name.strip()
        if last_name is not None:
            user.last_name = last_name.strip()
        if phone is not None:
            phone = phone.strip()
            if phone and len(phone) < 8:
                raise ValidationFailedError("Phone number seems too short")
            user.phone = phone or None
        self.db.commit()
        return user

    def change_password(self, auth: AuthContext, current_password: str, new_password: str) -> User:
        """
        Change the caller's password after re-checking the current one.

        Raises:
            ValidationFailedError: wrong current password, or a new password
                that is invalid or unchanged
        """
        user = self._current_user(auth)
        if not user.password_hash or not verify_password(current_password, user.password_hash):
            logger.warning(f"Password change refused for user {user.id}: wrong current password")
            raise ValidationFailedError("Incorrect current password")
        validate_new_password(new_password)
        if verify_password(new_password, user.password_hash):
            raise ValidationFailedError("New password must differ from the current one")

        user.password_hash = get_password_hash(new_password)
        from .activity import log_audit
        log_audit(self.db, user.firm_id, user.id, "password_changed", "user", user.id)
        self.db.commit()
        logger.info(f"Password changed for user {user.id}")
        return user

    # -- permission checks -------------------------------------------------

    def require_permission(self, auth: AuthContext, resource, action) -> None:
        """Raise PermissionDeniedError unless the caller's role grants resource:action."""
        if not auth.has_permission(resource, action):
            logger.warning(
                f"Permission denied: {auth.user_id} lacks {getattr(resource, 'value', resource)}:"
                f"{getattr(action, 'value', action)}"
            )
            raise PermissionDeniedError("Insufficient permissions")

    def require_matter_view(self, auth: AuthContext, matter) -> None:
        if not rbac.can_view_matter(auth, matter):
            logger.warning(f"Resource access denied: {auth.user_id} cannot view matter {matter.id}")
            raise PermissionDeniedError("You do not have access to this matter")

    def require_matter_edit(self, auth: AuthContext, matter) -> None:
        if not rbac.can_edit_matter(auth, matter):
            logger.warning(f"Resource access denied: {auth.user_id} cannot edit matter {matter.id}")
            raise PermissionDeniedError("You cannot edit this matter")


# =============================================================================
# FASTAPI DEPENDENCY HELPERS
# =============================================================================

def resolve_bearer(token: str, db: Session) -> Optional[AuthContext]:
    """AuthContext for a raw access token, or None."""
    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        return None

    service = AuthService(db)
    if service.is_token_revoked(token_jti(token, payload)):
        logger.warning(f"Auth failed: revoked token for user {payload.get('sub')}")
        return None
    return service.get_auth_context(payload.get("sub"), payload.get("sid"))


async def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Optional[AuthContext]:
    """Resolve the caller from an Authorization: Bearer header."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return resolve_bearer(token, db)


async def require_auth(auth: Optional[AuthContext] = Depends(get_current_user)) -> AuthContext:
    """Require authenticated user"""
    if not auth:
        raise HTTPException(status_code=401, detail="Authentication required")
    return auth


async def require_staff(auth: AuthContext = Depends(require_auth)) -> AuthContext:
    """Require an internal-portal user with a live internal session."""
    if not auth.is_staff or not auth.firm_id:
        raise HTTPException(status_code=403, detail="Internal users only")
    if not auth.session_id:
        raise HTTPException(status_code=401, detail="Internal session required")
    return auth


async def require_client(auth: AuthContext = Depends(require_auth)) -> AuthContext:
    if not auth.is_client:
        raise HTTPException(status_code=403, detail="Client accounts only")
    return auth
