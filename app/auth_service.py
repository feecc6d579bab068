"""
Login and token refresh.
"""
from datetime import timezone
from typing import Dict, Optional

from sqlalchemy.orm import Session

from app.errors import ForbiddenError, NotFoundError, UnauthorizedError
from app.logger import get_logger, log_operation
from app.models import User
from auth.jwt_handler import REFRESH_TOKEN, create_access_token, create_refresh_token, decode_token
from auth.security import verify_password

logger = get_logger(__name__)


def token_claims(user: User) -> dict:
    return {
        "sub": str(user.id),
        "email": user.email,
        "role": getattr(user.role, "value", user.role),
    }


def issued_before_password_change(user: User, issued_at: Optional[int]) -> bool:
    """True when the token predates the user's last password change."""
    if user.password_changed_at is None or issued_at is None:
        return False
    changed_at = user.password_changed_at.replace(tzinfo=timezone.utc).timestamp()
    return int(changed_at) > int(issued_at)


@log_operation("login_user")
def login_user(db: Session, email: str, password: str) -> Dict[str, str]:
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if user is None:
        raise NotFoundError("User not found!")
    if not user.is_active:
        raise ForbiddenError("Your account has been deactivated. Please contact support.")
    if not verify_password(password, user.password):
        raise UnauthorizedError("Invalid credentials")

    claims = token_claims(user)
    logger.info(f"User {user.id} logged in")
    return {
        "accessToken": create_access_token(claims),
        "refreshToken": create_refresh_token(claims),
    }


@log_operation("refresh_access_token")
def refresh_access_token(db: Session, refresh_token: Optional[str]) -> Dict[str, str]:
    if not refresh_token:
        raise UnauthorizedError("Refresh token is required!")

    payload = decode_token(refresh_token, REFRESH_TOKEN)
    if not payload or not payload.get("sub"):
        raise UnauthorizedError("Invalid or expired refresh token")

    try:
        user = db.get(User, int(payload["sub"]))
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid or expired refresh token")
    if user is None:
        raise NotFoundError("This user is not found!")
    if not user.is_active:
        raise ForbiddenError("Your account has been deactivated. Please contact support.")
    if issued_before_password_change(user, payload.get("iat")):
        raise UnauthorizedError("Password was changed, please log in again")

    return {"accessToken": create_access_token(token_claims(user))}
