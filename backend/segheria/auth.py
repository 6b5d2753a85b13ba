"""Authentication and authorization."""
from datetime import timedelta
from typing import Optional
import logging
import time
from uuid import UUID
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from .config import settings
from .database import get_db
from .models import User

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
logger = logging.getLogger(__name__)

# Bearer token scheme
security = HTTPBearer()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Invalid/corrupted hash should not crash login flow.
        logger.exception("Password verification failed due to invalid hash format")
        return False


def get_password_hash(password: str) -> str:
    """Hash password."""
    return pwd_context.hash(password)


# Alias for convenience
hash_password = get_password_hash


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    now = int(time.time())
    if expires_delta:
        exp = now + int(expires_delta.total_seconds())
    else:
        exp = now + int(settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES) * 60
    to_encode.update({"exp": exp, "iat": now, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def issue_session_token(user: User) -> str:
    """Access token bound to the user's current token version."""
    return create_access_token({"sub": str(user.id), "ver": user.token_version})


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> dict:
    """Decode JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise _credentials_error()

    now = int(time.time())
    try:
        exp_int = int(payload["exp"])
    except (KeyError, TypeError, ValueError):
        raise _credentials_error()
    if now > exp_int + int(settings.JWT_LEEWAY_SECONDS):
        raise _credentials_error("Token expired")

    iat = payload.get("iat")
    if iat is not None:
        try:
            iat_int = int(iat)
        except (TypeError, ValueError):
            raise _credentials_error()
        # Reject tokens issued in the future beyond the allowed skew.
        if iat_int > now + int(settings.JWT_LEEWAY_SECONDS):
            raise _credentials_error()
    return payload


def _parse_token_subject(payload: dict) -> UUID:
    """Parse and validate JWT subject as UUID."""
    sub = payload.get("sub")
    if not sub:
        raise _credentials_error()
    try:
        return UUID(str(sub))
    except ValueError:
        raise _credentials_error()


def _get_token_version(payload: dict) -> int:
    ver = payload.get("ver", 0)
    try:
        return int(ver)
    except (TypeError, ValueError):
        raise _credentials_error()


def _assert_token_not_revoked(user: User, payload: dict) -> None:
    if user.token_version != _get_token_version(payload):
        raise _credentials_error("Token has been revoked")


def _authenticated_user(credentials: HTTPAuthorizationCredentials, db: Session) -> User:
    payload = decode_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type"
        )

    user_id = _parse_token_subject(payload)
    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()  # noqa: E712
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive"
        )

    _assert_token_not_revoked(user, payload)
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user."""
    user = _authenticated_user(credentials, db)
    if user.registration_status != "active":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Completare il primo accesso prima di continuare",
        )
    return user


def get_current_user_allow_pending(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user, also while the first access is still pending."""
    return _authenticated_user(credentials, db)


# Pages of the application, in navigation order.
PAGES = (
    "dashboard",
    "utenti",
    "clienti",
    "ordini",
    "produzione",
    "carichi",
    "carichidelgiorno",
    "ddt",
)

# Single source of truth for navigation and server-side checks.
ROLE_PAGES: dict[str, tuple[str, ...]] = {
    "admin": PAGES,
    "collaboratore": ("produzione", "carichi"),
    "operatore": ("produzione", "carichidelgiorno"),
}

PAGE_PERMISSIONS = {
    "dashboard": "canViewDashboard",
    "utenti": "canManageUsers",
    "clienti": "canManageClients",
    "ordini": "canManageOrders",
    "produzione": "canManageProduction",
    "carichi": "canManageLoads",
    "carichidelgiorno": "canViewDailyLoads",
    "ddt": "canManageDdt",
}

ROLE_PERMISSIONS: dict[str, dict[str, bool]] = {
    role: {permission: page in pages for page, permission in PAGE_PERMISSIONS.items()}
    for role, pages in ROLE_PAGES.items()
}


def get_role_pages(role: str) -> list[str]:
    return list(ROLE_PAGES.get(role, ()))


def get_home_page(role: str) -> str | None:
    """Landing page after sign-in: the dashboard when visible, else the first visible page."""
    pages = get_role_pages(role)
    if "dashboard" in pages:
        return "dashboard"
    return pages[0] if pages else None


def get_role_ui_permissions(role: str) -> dict[str, bool]:
    return dict(ROLE_PERMISSIONS.get(role, {}))


def check_permission(user: User, permission: str) -> bool:
    """Check if user has specific permission."""
    permissions = ROLE_PERMISSIONS.get(user.role, {})
    return permissions.get(permission, False)


class PermissionChecker:
    """Check user permissions based on role."""

    def __init__(self, *required_permissions: str):
        self.required_permissions = required_permissions

    def __call__(self, current_user: User = Depends(get_current_user)):
        """Allow the request when the role holds any of the required permissions."""
        if not any(check_permission(current_user, p) for p in self.required_permissions):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {' or '.join(self.required_permissions)} required"
            )
        return current_user
