from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Dict, Optional, Union

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import crud
from .audit import log_security
from .config import settings
from .database import get_db
from .errors import AccountLockedError, AuthError, ForbiddenError
from .models import User

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

DEMO_USER_ID = "demo-user-1"
DEMO_USER_NAME = "Demo User"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


# ----------------------
# Identities
# ----------------------


@dataclass(frozen=True)
class DemoIdentity:
    """Portfolio visitor recognised from the configured demo credentials.

    It never touches the user table and owns no stored entries.
    """

    email: str
    id: str = DEMO_USER_ID
    name: str = DEMO_USER_NAME
    role: str = "admin"

    is_demo: ClassVar[bool] = True
    owner_id: ClassVar[Optional[int]] = None


@dataclass(frozen=True)
class StoredIdentity:
    user: User

    is_demo: ClassVar[bool] = False

    @property
    def id(self) -> str:
        return str(self.user.id)

    @property
    def owner_id(self) -> int:
        return self.user.id

    @property
    def email(self) -> str:
        return self.user.email

    @property
    def name(self) -> str:
        return self.user.name

    @property
    def role(self) -> str:
        return self.user.role


Identity = Union[DemoIdentity, StoredIdentity]


# ----------------------
# Tokens
# ----------------------


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_expires_minutes))
    to_encode.update({"iat": now, "exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def issue_token(identity: Identity) -> str:
    claims = {"id": identity.id, "email": identity.email, "role": identity.role}
    if identity.is_demo:
        claims["isDemo"] = True
    return create_access_token(claims)


def decode_access_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")


def resolve_identity(claims: Dict[str, Any], db: Session) -> Identity:
    if claims.get("isDemo"):
        return DemoIdentity(email=claims.get("email") or settings.demo_email)

    try:
        user_id = int(claims.get("id"))
    except (TypeError, ValueError):
        raise AuthError("Invalid token")

    user = crud.get_active_user(db, user_id)
    if user is None:
        raise AuthError("User not found")
    return StoredIdentity(user=user)


def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Identity:
    if credentials is None or not credentials.credentials:
        raise AuthError("Access token required")
    claims = decode_access_token(credentials.credentials)
    return resolve_identity(claims, db)


def require_role(*roles: str):
    """Build a dependency that only lets the listed roles through."""

    def _require_role(identity: Optional[Identity] = Depends(get_identity)) -> Identity:
        if identity is None:
            raise AuthError("Authentication required")
        if roles and identity.role not in roles:
            raise ForbiddenError("Insufficient permissions")
        return identity

    return _require_role


def require_stored_identity(identity: Identity = Depends(get_identity)) -> StoredIdentity:
    if identity.is_demo:
        raise ForbiddenError("Demo account is read-only")
    return identity


# ----------------------
# Login
# ----------------------


def is_demo_credentials(email: str, password: str) -> bool:
    return email == settings.demo_email.lower() and password == settings.demo_password


def authenticate(db: Session, email: str, password: str, ip: Optional[str] = None) -> Identity:
    """Resolve login credentials into an identity or raise an auth error.

    The demo pair is checked before any store lookup. Stored accounts go
    through the lockout policy: once ``max_login_attempts`` consecutive
    failures accumulate the account answers 423 until ``lock_until``
    passes, whatever password is supplied.
    """
    if is_demo_credentials(email, password):
        log_security("Demo Login", email=email, ip=ip)
        return DemoIdentity(email=email)

    user = crud.get_user_by_email(db, email)
    if user is None:
        log_security("Failed Login - User Not Found", email=email, ip=ip)
        raise AuthError("Invalid credentials")

    if user.is_locked():
        log_security("Failed Login - Account Locked", user_id=user.id, email=email, ip=ip)
        raise AccountLockedError()

    if not user.is_active:
        log_security("Failed Login - Inactive Account", user_id=user.id, email=email, ip=ip)
        raise AuthError("Account is deactivated")

    if not verify_password(password, user.password_hash):
        crud.record_failed_login(
            db,
            user,
            max_attempts=settings.max_login_attempts,
            lock_window=timedelta(minutes=settings.lock_minutes),
        )
        log_security(
            "Failed Login - Invalid Password",
            user_id=user.id,
            email=email,
            ip=ip,
            login_attempts=user.login_attempts,
        )
        raise AuthError("Invalid credentials")

    crud.record_successful_login(db, user)
    log_security("Successful Login", user_id=user.id, email=email, ip=ip)
    return StoredIdentity(user=user)
