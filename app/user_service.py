"""
Registration, profile, password and points management, plus admin user
operations.
"""
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.date_utils import utc_now
from app.errors import ConflictError, InvalidInputError, NotFoundError, UnauthorizedError
from app.logger import get_logger, log_operation
from app.models import SpinResult, User, UserRole
from app.query_builder import QueryBuilder, QueryFields, bool_filter, enum_filter
from app.task_service import adjust_user_points, get_task_stats
from auth.security import hash_password, verify_password

logger = get_logger(__name__)

USER_SEARCH_FIELDS = ("name", "email")

USER_QUERY_FIELDS = QueryFields(
    columns={
        "id": User.id,
        "name": User.name,
        "email": User.email,
        "role": User.role,
        "isActive": User.is_active,
        "points": User.points,
        "createdAt": User.created_at,
        "updatedAt": User.updated_at,
    },
    filters={
        "role": enum_filter(UserRole),
        "isActive": bool_filter,
    },
    sortable=frozenset({"createdAt", "updatedAt", "name", "email", "points"}),
)


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@log_operation("register_user")
def register_user(db: Session, payload: Mapping[str, Any]) -> User:
    confirm = payload.get("confirm_password")
    if confirm is not None and payload["password"] != confirm:
        raise InvalidInputError(
            "Passwords do not match",
            details=[{"path": "confirmPassword", "message": "Passwords do not match"}],
        )

    email = payload["email"].strip().lower()
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise ConflictError("User already exists with this email")

    user = User(
        name=payload["name"].strip(),
        email=email,
        password=hash_password(payload["password"]),
        role=UserRole.USER,
        is_active=True,
        points=0,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Registered user {user.id} ({user.email})")
    return user


def ensure_admin(db: Session, email: str, password: str, name: str = "Administrator") -> User:
    """Create the configured admin account if it does not exist yet."""
    email = email.strip().lower()
    user = db.query(User).filter(User.email == email).first()
    if user is not None:
        return user
    user = User(
        name=name,
        email=email,
        password=hash_password(password),
        role=UserRole.ADMIN,
        is_active=True,
        points=0,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created admin account {email}")
    return user


def update_profile(db: Session, user_id: int, changes: Mapping[str, Any]) -> User:
    user = get_user(db, user_id)
    if changes.get("name") is not None:
        user.name = changes["name"].strip()
    if "profile_image" in changes:
        user.profile_image = changes["profile_image"]
    db.commit()
    db.refresh(user)
    return user


@log_operation("change_password")
def change_password(
    db: Session,
    user_id: int,
    old_password: str,
    new_password: str,
    confirm_password: Optional[str] = None,
) -> None:
    if confirm_password is not None and new_password != confirm_password:
        raise InvalidInputError("New passwords do not match")

    user = get_user(db, user_id)
    if not verify_password(old_password, user.password):
        raise UnauthorizedError("Old password is incorrect")

    user.password = hash_password(new_password)
    user.password_changed_at = utc_now()
    db.commit()
    logger.info(f"User {user_id} changed password")


def get_user_stats(db: Session, user_id: int) -> Dict[str, Any]:
    user = get_user(db, user_id)
    completed = func.sum(case((SpinResult.is_completed.is_(True), 1), else_=0))
    total_spins, completed_spins = (
        db.query(func.count(SpinResult.id), completed)
        .filter(SpinResult.user_id == user_id)
        .one()
    )
    return {
        "totalPoints": user.points,
        "tasks": get_task_stats(db, user_id),
        "spins": {
            "totalSpins": total_spins,
            "completedSpins": int(completed_spins or 0),
        },
    }


def list_users(db: Session, params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    builder = (
        QueryBuilder(db.query(User), params, USER_QUERY_FIELDS)
        .search(USER_SEARCH_FIELDS)
        .filter()
        .sort()
        .paginate()
        .fields()
    )
    return {
        "meta": builder.count_total(),
        "data": builder.records(),
    }


@log_operation("update_user_status")
def update_user_status(db: Session, user_id: int, is_active: bool) -> User:
    user = get_user(db, user_id)
    user.is_active = is_active
    db.commit()
    db.refresh(user)
    logger.info(f"User {user_id} {'activated' if is_active else 'deactivated'}")
    return user


@log_operation("add_points")
def add_points(db: Session, user_id: int, points: int) -> User:
    if points < 1:
        raise InvalidInputError("Points must be at least 1")
    user = get_user(db, user_id)
    adjust_user_points(db, user.id, points)
    db.commit()
    db.refresh(user)
    return user


@log_operation("delete_user")
def delete_user(db: Session, user_id: int) -> None:
    user = get_user(db, user_id)
    db.delete(user)
    db.commit()
    logger.info(f"User {user_id} deleted with their tasks and spins")
