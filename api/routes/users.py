from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app import user_service
from app.db import get_db
from app.models import User, UserRole
from auth.oauth2 import require_roles
from schemas.common import query_params, send_response
from schemas.user import (
    AddPointsRequest,
    ChangePasswordRequest,
    ProfileUpdate,
    UserCreate,
    UserStatusUpdate,
)

router = APIRouter(prefix="/users", tags=["Users"])

any_user = require_roles(UserRole.ADMIN, UserRole.USER)
admin_only = require_roles(UserRole.ADMIN)


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: UserCreate, db: Session = Depends(get_db)):
    user = user_service.register_user(db, payload.model_dump())
    return send_response("User registered successfully!", user.to_dict())


@router.get("/profile")
def get_profile(current_user: User = Depends(any_user)):
    return send_response("User profile retrieved successfully!", current_user.to_dict())


@router.patch("/profile")
def update_profile(
    payload: ProfileUpdate,
    current_user: User = Depends(any_user),
    db: Session = Depends(get_db),
):
    user = user_service.update_profile(db, current_user.id, payload.model_dump(mode="json", exclude_unset=True))
    return send_response("Profile updated successfully!", user.to_dict())


@router.patch("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    current_user: User = Depends(any_user),
    db: Session = Depends(get_db),
):
    user_service.change_password(
        db,
        current_user.id,
        payload.old_password,
        payload.new_password,
        payload.confirm_password,
    )
    return send_response("Password changed successfully!")


@router.get("/stats")
def get_stats(current_user: User = Depends(any_user), db: Session = Depends(get_db)):
    return send_response("User stats retrieved successfully!", user_service.get_user_stats(db, current_user.id))


# ==========================================================
# Admin only
# ==========================================================

@router.get("")
def list_users(request: Request, _: User = Depends(admin_only), db: Session = Depends(get_db)):
    result = user_service.list_users(db, query_params(request))
    return send_response("Users retrieved successfully!", result["data"], result["meta"])


@router.patch("/{user_id}/status")
def update_user_status(
    user_id: int,
    payload: UserStatusUpdate,
    _: User = Depends(admin_only),
    db: Session = Depends(get_db),
):
    user = user_service.update_user_status(db, user_id, payload.is_active)
    return send_response("User status updated successfully!", user.to_dict())


@router.patch("/{user_id}/points")
def add_points(
    user_id: int,
    payload: AddPointsRequest,
    _: User = Depends(admin_only),
    db: Session = Depends(get_db),
):
    user = user_service.add_points(db, user_id, payload.points)
    return send_response("Points added successfully!", user.to_dict())


@router.delete("/{user_id}")
def delete_user(user_id: int, _: User = Depends(admin_only), db: Session = Depends(get_db)):
    user_service.delete_user(db, user_id)
    return send_response("User deleted successfully!")
