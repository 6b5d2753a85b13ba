"""User provisioning and the OTP first-access flow.

A user is created `pending` with a one-time code as credential. On first
access the code is exchanged like a password, its expiry is checked, and the
user then chooses a permanent password which flips the account to `active`.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import hash_password, issue_session_token, verify_password
from ..config import settings
from ..domain_errors import DomainError, not_found, store_failure
from ..models import USER_ROLES, AuditEvent, User
from ..services.otp import generate_otp, is_otp_expired, now_utc, otp_expiry, validate_permanent_password

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Email o password non corretta"
EMAIL_NOT_CONFIRMED_MESSAGE = "Email non confermata"
OTP_INVALID_MESSAGE = "Codice OTP non valido o scaduto"


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def _audit(db: Session, *, action: str, user: User, actor: Any | None, details: dict | None = None) -> None:
    db.add(
        AuditEvent(
            action=action,
            entity_type="user",
            entity_id=str(user.id),
            user_id=getattr(actor, "id", None),
            user_name=getattr(actor, "email", None),
            details=details,
        )
    )


def _commit(db: Session, *, code: str, message: str, **details: Any) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("User write failed code=%s", code)
        raise store_failure(code, message, **details)


def _validate_role(role: str) -> str:
    if role not in USER_ROLES:
        raise DomainError(
            code="INVALID_ROLE",
            http_status=400,
            message="Ruolo non valido",
            details={"role": role, "allowed": list(USER_ROLES)},
        )
    return role


def _get_user_or_404(db: Session, user_id: UUID) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise not_found("USER_NOT_FOUND", "Utente non trovato", user_id=str(user_id))
    return user


def _issue_otp(user: User, *, at: datetime | None = None) -> str:
    """Make a fresh code the user's only credential and revoke previous sessions."""
    otp = generate_otp()
    user.password_hash = hash_password(otp)
    user.otp = otp
    user.otp_expires_at = otp_expiry(at=at)
    user.registration_status = "pending"
    user.token_version = (user.token_version or 0) + 1
    return otp


def create_user_use_case(
    *,
    db: Session,
    name: str,
    email: str,
    role: str,
    current_user: Any,
    at: datetime | None = None,
) -> tuple[User, str]:
    """Provision a pending user; the returned code is shown to the administrator once."""
    email_norm = normalize_email(email)
    if not email_norm or not (name or "").strip():
        raise DomainError(
            code="USER_FIELDS_REQUIRED",
            http_status=400,
            message="Nome ed email sono obbligatori",
        )
    _validate_role(role)
    if db.query(User).filter(User.email == email_norm).first():
        raise DomainError(
            code="USER_ALREADY_EXISTS",
            http_status=400,
            message="Esiste già un utente con questa email",
            details={"email": email_norm},
        )

    user = User(
        id=uuid4(),
        email=email_norm,
        name=name.strip(),
        role=role,
        email_confirmed=True,
        is_active=True,
        token_version=0,
    )
    otp = _issue_otp(user, at=at)
    db.add(user)
    _audit(db, action="user_created", user=user, actor=current_user, details={"role": role})
    _commit(db, code="USER_CREATE_FAILED", message="Impossibile creare l'utente", email=email_norm)
    logger.info("Provisioned user %s role=%s", user.id, role)
    return user, otp


def sign_in_with_password_use_case(*, db: Session, email: str, password: str) -> tuple[User, str]:
    """Exchange an email/secret pair for a session token.

    Errors carry one of three messages: invalid credentials, unconfirmed
    email, or a generic "Errore: ..." wrapper.
    """
    email_norm = normalize_email(email)
    try:
        user = db.query(User).filter(User.email == email_norm, User.is_active == True).first()  # noqa: E712
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Sign-in lookup failed")
        raise DomainError(
            code="SIGN_IN_FAILED",
            http_status=500,
            message="Errore: servizio di autenticazione non disponibile",
        )

    if not user or not verify_password(password or "", user.password_hash):
        raise DomainError(
            code="INVALID_CREDENTIALS",
            http_status=401,
            message=INVALID_CREDENTIALS_MESSAGE,
        )
    if not user.email_confirmed:
        raise DomainError(
            code="EMAIL_NOT_CONFIRMED",
            http_status=401,
            message=EMAIL_NOT_CONFIRMED_MESSAGE,
        )
    return user, issue_session_token(user)


def sign_out_use_case(*, db: Session, user: User) -> None:
    """Revoke every session issued so far."""
    user.token_version = (user.token_version or 0) + 1
    _audit(db, action="user_logout", user=user, actor=user)
    _commit(db, code="SIGN_OUT_FAILED", message="Impossibile effettuare il logout")


def verify_first_access_use_case(
    *,
    db: Session,
    email: str,
    otp: str,
    at: datetime | None = None,
) -> tuple[User, str]:
    """Sign in with the one-time code, then reject it if it has expired.

    The exchange itself succeeds on an expired code, so an expired attempt
    signs the user straight back out before failing.
    """
    try:
        user, token = sign_in_with_password_use_case(db=db, email=email, password=(otp or "").strip().upper())
    except DomainError as exc:
        if exc.code == "INVALID_CREDENTIALS":
            raise DomainError(code="OTP_INVALID", http_status=401, message=OTP_INVALID_MESSAGE) from exc
        raise

    if user.registration_status != "pending":
        sign_out_use_case(db=db, user=user)
        raise DomainError(
            code="FIRST_ACCESS_COMPLETED",
            http_status=409,
            message="Il primo accesso è già stato completato",
        )
    if is_otp_expired(user.otp_expires_at, at=at or now_utc()):
        sign_out_use_case(db=db, user=user)
        raise DomainError(code="OTP_EXPIRED", http_status=401, message=OTP_INVALID_MESSAGE)
    return user, token


def finalize_password_use_case(
    *,
    db: Session,
    user: User,
    password: str,
    confirm_password: str,
) -> str:
    """Set the permanent password and activate the account; returns a fresh session."""
    validate_permanent_password(password, confirm_password)
    user.password_hash = hash_password(password)
    user.password_changed_at = now_utc()
    user.registration_status = "active"
    user.otp = None
    user.otp_expires_at = None
    user.token_version = (user.token_version or 0) + 1
    _audit(db, action="first_access_completed", user=user, actor=user)
    _commit(
        db,
        code="PASSWORD_UPDATE_FAILED",
        message="Si è verificato un errore durante l'impostazione della password",
    )
    return issue_session_token(user)


def reset_user_otp_use_case(
    *,
    db: Session,
    user_id: UUID,
    current_user: Any,
    at: datetime | None = None,
) -> tuple[User, str]:
    """New code and expiry; the account goes back to pending from any state."""
    user = _get_user_or_404(db, user_id)
    otp = _issue_otp(user, at=at)
    _audit(db, action="otp_reset", user=user, actor=current_user)
    _commit(db, code="OTP_RESET_FAILED", message="Impossibile resettare l'utente", user_id=str(user_id))
    return user, otp


def manual_reset_password_use_case(
    *,
    db: Session,
    email: str,
    new_password: str,
    current_user: Any | None = None,
) -> User:
    """Administrative override: set a permanent password directly, skipping the code."""
    email_norm = normalize_email(email)
    if not email_norm or not new_password:
        raise DomainError(
            code="USER_FIELDS_REQUIRED",
            http_status=400,
            message="Email e nuova password sono obbligatorie",
        )
    if len(new_password) > settings.PASSWORD_MAX_LENGTH:
        raise DomainError(
            code="PASSWORD_POLICY",
            http_status=400,
            message=f"La password può contenere al massimo {settings.PASSWORD_MAX_LENGTH} caratteri",
        )
    user = db.query(User).filter(User.email == email_norm).first()
    if not user:
        raise not_found("USER_NOT_FOUND", "Utente non trovato", email=email_norm)

    user.password_hash = hash_password(new_password)
    user.password_changed_at = now_utc()
    user.registration_status = "active"
    user.otp = None
    user.otp_expires_at = None
    user.token_version = (user.token_version or 0) + 1
    _audit(db, action="password_reset_manual", user=user, actor=current_user)
    _commit(db, code="PASSWORD_UPDATE_FAILED", message="Impossibile aggiornare la password")
    return user


def list_users_use_case(*, db: Session) -> list[User]:
    return db.query(User).order_by(User.created_at.desc()).all()


def update_user_use_case(
    *,
    db: Session,
    user_id: UUID,
    name: str | None,
    role: str | None,
    current_user: Any,
) -> User:
    """Change name and/or role; the rest of the account is left untouched."""
    user = _get_user_or_404(db, user_id)
    changes: dict[str, Any] = {}
    if name is not None and name.strip() and name.strip() != user.name:
        changes["name"] = {"old": user.name, "new": name.strip()}
        user.name = name.strip()
    if role is not None and role != user.role:
        _validate_role(role)
        changes["role"] = {"old": user.role, "new": role}
        user.role = role
    if changes:
        _audit(db, action="user_updated", user=user, actor=current_user, details=changes)
        _commit(db, code="USER_UPDATE_FAILED", message="Impossibile aggiornare l'utente", user_id=str(user_id))
    return user


def delete_user_use_case(*, db: Session, user_id: UUID, current_user: Any) -> None:
    user = _get_user_or_404(db, user_id)
    if getattr(current_user, "id", None) == user.id:
        raise DomainError(
            code="CANNOT_DELETE_SELF",
            http_status=400,
            message="Non è possibile eliminare il proprio utente",
        )
    _audit(db, action="user_deleted", user=user, actor=current_user, details={"email": user.email})
    db.delete(user)
    _commit(db, code="USER_DELETE_FAILED", message="Impossibile eliminare l'utente", user_id=str(user_id))
