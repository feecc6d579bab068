from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from app.config import settings
from app.logger import get_logger

logger = get_logger(__name__)

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


def _secret_for(token_type: str) -> str:
    if token_type == REFRESH_TOKEN:
        return settings.jwt_refresh_secret
    return settings.jwt_access_secret


def _create_token(data: dict, token_type: str, expires_delta: timedelta) -> str:
    payload = data.copy()
    issued_at = datetime.now(timezone.utc)
    payload.update({
        "iat": int(issued_at.timestamp()),
        "exp": issued_at + expires_delta,
        "type": token_type,
    })
    return jwt.encode(payload, _secret_for(token_type), algorithm=settings.jwt_algorithm)


def create_access_token(data: dict) -> str:
    return _create_token(
        data,
        ACCESS_TOKEN,
        timedelta(minutes=settings.jwt_access_expires_minutes),
    )


def create_refresh_token(data: dict) -> str:
    return _create_token(
        data,
        REFRESH_TOKEN,
        timedelta(days=settings.jwt_refresh_expires_days),
    )


def decode_token(token: str, token_type: str = ACCESS_TOKEN) -> Optional[dict]:
    """
    Verify signature, expiry and token type.
    Returns the payload, or None when the token is not acceptable.
    """
    try:
        payload = jwt.decode(token, _secret_for(token_type), algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug(f"Rejected {token_type} token: {e}")
        return None
    if payload.get("type") != token_type:
        return None
    return payload


def decode_access_token(token: str) -> Optional[dict]:
    return decode_token(token, ACCESS_TOKEN)
