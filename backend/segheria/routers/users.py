"""User administration endpoints."""
from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session
from uuid import UUID
from ..auth import PermissionChecker
from ..database import get_db
from ..models import User
from ..schemas import (
    AdminCreateUserRequest,
    AdminCreateUserResponse,
    AdminUpdateUserRequest,
    AdminUserResponse,
    ManualResetPasswordRequest,
    MessageResponse,
)
from ..use_cases.first_access import (
    create_user_use_case,
    delete_user_use_case,
    list_users_use_case,
    manual_reset_password_use_case,
    reset_user_otp_use_case,
    update_user_use_case,
)

router = APIRouter(prefix="/users", tags=["users"])


def _set_no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"


@router.get("", response_model=list[AdminUserResponse])
def get_users(
    response: Response,
    current_user: User = Depends(PermissionChecker("canManageUsers")),
    db: Session = Depends(get_db)
):
    """Get all users, pending codes included."""
    _set_no_store(response)
    return [AdminUserResponse.model_validate(u) for u in list_users_use_case(db=db)]


@router.post("", response_model=AdminCreateUserResponse, status_code=201)
def create_user(
    payload: AdminCreateUserRequest,
    response: Response,
    current_user: User = Depends(PermissionChecker("canManageUsers")),
    db: Session = Depends(get_db),
):
    """Provision a pending user; the one-time code must be handed over out of band."""
    _set_no_store(response)
    user, otp = create_user_use_case(
        db=db,
        name=payload.name,
        email=payload.email,
        role=payload.role,
        current_user=current_user,
    )
    return AdminCreateUserResponse(
        user=AdminUserResponse.model_validate(user),
        otp=otp,
        otp_expires_at=user.otp_expires_at,
    )


@router.patch("/{user_id}", response_model=AdminUserResponse)
def update_user(
    user_id: UUID,
    payload: AdminUpdateUserRequest,
    current_user: User = Depends(PermissionChecker("canManageUsers")),
    db: Session = Depends(get_db),
):
    """Change name and/or role."""
    user = update_user_use_case(
        db=db,
        user_id=user_id,
        name=payload.name,
        role=payload.role,
        current_user=current_user,
    )
    return AdminUserResponse.model_validate(user)


@router.delete("/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: UUID,
    current_user: User = Depends(PermissionChecker("canManageUsers")),
    db: Session = Depends(get_db),
):
    delete_user_use_case(db=db, user_id=user_id, current_user=current_user)
    return MessageResponse(message="Utente eliminato")


@router.post("/{user_id}/reset-otp", response_model=AdminCreateUserResponse)
def reset_user_otp(
    user_id: UUID,
    response: Response,
    current_user: User = Depends(PermissionChecker("canManageUsers")),
    db: Session = Depends(get_db),
):
    """Send the user back to first access with a new one-time code."""
    _set_no_store(response)
    user, otp = reset_user_otp_use_case(db=db, user_id=user_id, current_user=current_user)
    return AdminCreateUserResponse(
        user=AdminUserResponse.model_validate(user),
        otp=otp,
        otp_expires_at=user.otp_expires_at,
    )


@router.post("/manual-reset-password", response_model=AdminUserResponse)
def manual_reset_password(
    payload: ManualResetPasswordRequest,
    current_user: User = Depends(PermissionChecker("canManageUsers")),
    db: Session = Depends(get_db),
):
    """Set a permanent password directly, without a one-time code."""
    user = manual_reset_password_use_case(
        db=db,
        email=payload.email,
        new_password=payload.new_password,
        current_user=current_user,
    )
    return AdminUserResponse.model_validate(user)
