"""Auth endpoints: sign-in, sign-out and the OTP first access."""
import logging
import ipaddress

import redis
from redis.exceptions import RedisError
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from ..auth import (
    get_current_user,
    get_current_user_allow_pending,
    get_home_page,
    get_role_pages,
    get_role_ui_permissions,
)
from ..config import settings
from ..database import get_db
from ..models import User
from ..schemas import (
    AuthUserResponse,
    FirstAccessRequest,
    LoginRequest,
    MessageResponse,
    SetPasswordRequest,
    TokenResponse,
    UserResponse,
)
from ..use_cases.first_access import (
    finalize_password_use_case,
    sign_in_with_password_use_case,
    sign_out_use_case,
    verify_first_access_use_case,
)

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


_redis_client = None


def _auth_user_response(user: User) -> AuthUserResponse:
    base = UserResponse.model_validate(user)
    return AuthUserResponse(
        **base.model_dump(),
        permissions=get_role_ui_permissions(user.role),
        pages=get_role_pages(user.role),
        home_page=get_home_page(user.role),
    )


def _token_response(user: User, token: str) -> TokenResponse:
    return TokenResponse(
        access_token=token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=_auth_user_response(user),
    )


def _get_redis():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def _get_client_ip(request: Request) -> str:
    if settings.TRUST_PROXY_HEADERS:
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            try:
                ipaddress.ip_address(real_ip)
                return real_ip
            except ValueError:
                pass

        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For may contain a list: client, proxy1, proxy2
            candidate = forwarded.split(",")[0].strip()
            try:
                ipaddress.ip_address(candidate)
                return candidate
            except ValueError:
                pass

    if request.client:
        return request.client.host
    return "unknown"


def _set_no_store(response: Response) -> None:
    # Tokens must not end up in shared caches.
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"


def _incr_with_ttl(key: str, ttl_seconds: int) -> tuple[int, int]:
    """
    Increment a Redis counter and ensure it has an expiry.
    Returns (value, ttl_remaining_seconds).
    """
    r = _get_redis()
    value = r.incr(key)
    if value == 1:
        r.expire(key, ttl_seconds)
    ttl = r.ttl(key)
    if ttl is None or ttl < 0:
        ttl = ttl_seconds
    return int(value), int(ttl)


def _enforce_login_rate_limit(*, request: Request, scope: str) -> None:
    ip = _get_client_ip(request)
    try:
        attempts, ttl = _incr_with_ttl(f"auth:rl:{scope}:ip:{ip}", 60)
    except RedisError:
        # Fail open if Redis is down to avoid total auth outage.
        logger.exception("Redis error during %s rate limiting (fail-open)", scope)
        return
    if attempts > settings.AUTH_LOGIN_IP_LIMIT_PER_MINUTE:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Troppi tentativi di accesso. Riprovare più tardi.",
            headers={"Retry-After": str(ttl)},
        )


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    """Login with email and password."""
    _set_no_store(response)
    _enforce_login_rate_limit(request=request, scope="login")
    user, token = sign_in_with_password_use_case(db=db, email=payload.email, password=payload.password)
    return _token_response(user, token)


@router.post("/first-access", response_model=TokenResponse)
def first_access(payload: FirstAccessRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    """Exchange email and one-time code for a session limited to setting the password."""
    _set_no_store(response)
    _enforce_login_rate_limit(request=request, scope="first-access")
    user, token = verify_first_access_use_case(db=db, email=payload.email, otp=payload.otp)
    return _token_response(user, token)


@router.post("/set-password", response_model=TokenResponse)
def set_password(
    payload: SetPasswordRequest,
    response: Response,
    current_user: User = Depends(get_current_user_allow_pending),
    db: Session = Depends(get_db),
):
    """Choose the permanent password; earlier sessions are revoked."""
    _set_no_store(response)
    token = finalize_password_use_case(
        db=db,
        user=current_user,
        password=payload.password,
        confirm_password=payload.confirm_password,
    )
    logger.info("First access completed user=%s", current_user.id)
    return _token_response(current_user, token)


@router.post("/logout", response_model=MessageResponse)
def logout(
    response: Response,
    current_user: User = Depends(get_current_user_allow_pending),
    db: Session = Depends(get_db),
):
    """Logout by revoking currently issued tokens (token_version bump)."""
    _set_no_store(response)
    sign_out_use_case(db=db, user=current_user)
    return MessageResponse(message="Logout effettuato")


@router.get("/me", response_model=AuthUserResponse)
def get_me(response: Response, current_user: User = Depends(get_current_user)):
    """Current user with permissions and visible pages."""
    _set_no_store(response)
    return _auth_user_response(current_user)
