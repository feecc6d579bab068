from typing import Optional

from fastapi import APIRouter, Body, Cookie, Depends, Response
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from app.auth_service import login_user, refresh_access_token
from app.config import settings
from app.db import get_db
from app.models import User
from schemas.auth import LoginRequest, RefreshTokenRequest, Token
from schemas.common import send_response

router = APIRouter(prefix="/auth", tags=["Auth"])

REFRESH_COOKIE = "refreshToken"


def _set_refresh_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=token,
        httponly=True,
        secure=settings.app_env == "production",
        samesite="lax",
        max_age=settings.jwt_refresh_expires_days * 24 * 3600,
    )


@router.post("/login")
def login(payload: LoginRequest, response: Response, db: Session = Depends(get_db)):
    tokens = login_user(db, payload.email, payload.password)
    _set_refresh_cookie(response, tokens["refreshToken"])
    return send_response("User logged in successfully!", tokens)


@router.post("/token", response_model=Token)
def login_for_swagger(
    form: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    """OAuth2 password flow so the Swagger UI "Authorize" button works; username is the email."""
    tokens = login_user(db, form.username, form.password)
    user = db.query(User).filter(User.email == form.username.strip().lower()).first()
    return {
        "access_token": tokens["accessToken"],
        "token_type": "bearer",
        "name": user.name,
        "role": user.role.value,
    }


@router.post("/refresh-token")
def refresh_token(
    payload: Optional[RefreshTokenRequest] = Body(default=None),
    refresh_cookie: Optional[str] = Cookie(default=None, alias=REFRESH_COOKIE),
    db: Session = Depends(get_db),
):
    token = refresh_cookie or (payload.refresh_token if payload else None)
    result = refresh_access_token(db, token)
    return send_response("Access token is retrieved successfully!", result)


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(REFRESH_COOKIE)
    return send_response("Logged out successfully!")
