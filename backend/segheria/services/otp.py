"""One-time codes and password policy for the first-access flow."""

from __future__ import annotations

import re
import secrets
from datetime import datetime, timedelta, timezone

from ..config import settings
from ..domain_errors import DomainError


_UPPERCASE = re.compile(r"[A-Z]")
_DIGIT = re.compile(r"\d")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def generate_otp(num_bytes: int | None = None) -> str:
    """Random bytes rendered as uppercase hex (3 bytes -> 6 characters)."""
    return secrets.token_hex(num_bytes or settings.OTP_BYTES).upper()


def otp_expiry(*, at: datetime | None = None) -> datetime:
    return (at or now_utc()) + timedelta(hours=settings.OTP_TTL_HOURS)


def is_otp_expired(expires_at: datetime | None, *, at: datetime | None = None) -> bool:
    """A missing expiry counts as expired."""
    expires = as_utc(expires_at)
    if expires is None:
        return True
    return expires < (at or now_utc())


def password_policy_error(password: str | None) -> str | None:
    """First violated rule as a user-facing message, or None if the password is acceptable."""
    pwd = password or ""
    if len(pwd) < settings.PASSWORD_MIN_LENGTH:
        return f"La password deve contenere almeno {settings.PASSWORD_MIN_LENGTH} caratteri"
    if len(pwd) > settings.PASSWORD_MAX_LENGTH:
        return f"La password può contenere al massimo {settings.PASSWORD_MAX_LENGTH} caratteri"
    if not _UPPERCASE.search(pwd):
        return "La password deve contenere almeno una lettera maiuscola"
    if not _DIGIT.search(pwd):
        return "La password deve contenere almeno un numero"
    return None


def validate_permanent_password(password: str | None, confirm_password: str | None) -> str:
    error = password_policy_error(password)
    if error:
        raise DomainError(code="PASSWORD_POLICY", http_status=400, message=error)
    if password != confirm_password:
        raise DomainError(
            code="PASSWORD_MISMATCH",
            http_status=400,
            message="Le password non coincidono",
        )
    return password  # type: ignore[return-value]
