"""
Bearer-token dependencies for protected routes.
"""
from typing import Callable, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.auth_service import issued_before_password_change
from app.db import get_db
from app.errors import ForbiddenError, NotFoundError, UnauthorizedError
from app.logger import get_logger
from app.models import User, UserRole
from auth.jwt_handler import decode_access_token

logger = get_logger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to an active user."""
    if not token:
        raise UnauthorizedError("You are not authorized!")

    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        raise UnauthorizedError("Invalid or expired token")

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid or expired token")

    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("This user is not found!")
    if not user.is_active:
        raise ForbiddenError("Your account has been deactivated. Please contact support.")
    if issued_before_password_change(user, payload.get("iat")):
        raise UnauthorizedError("Password was changed, please log in again")

    return user


def require_roles(*roles: UserRole) -> Callable[..., User]:
    """Dependency factory restricting a route to the given roles."""
    allowed = set(roles)

    def checker(user: User = Depends(get_current_user)) -> User:
        if UserRole(user.role) not in allowed:
            logger.info(f"User {user.id} with role {user.role} denied access")
            raise ForbiddenError("You are not authorized to access this resource")
        return user

    return checker
