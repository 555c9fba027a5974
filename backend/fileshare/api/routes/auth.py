from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import APIRouter, Depends, HTTPException, Request
from jose import jwt
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fileshare.api.deps import get_current_user
from fileshare.core.config import get_settings
from fileshare.core.rate_limit import enforce_rate_limit
from fileshare.db.session import get_db_session
from fileshare.models.user import User

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=6)
    name: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    email: str
    password: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_access_jwt(user_id: str, minutes: int) -> str:
    settings = get_settings()
    now = _utcnow()
    return jwt.encode(
        {
            "sub": user_id,
            "typ": "access",
            "iat": int(now.timestamp()),
            "exp": now + timedelta(minutes=minutes),
        },
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def _hash_password(pw: str) -> str:
    return bcrypt.hashpw(pw.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.display_name,
    }


@router.post("/register")
def register(body: RegisterRequest, request: Request, db: Session = Depends(get_db_session)):
    # Normalize email to guarantee case-insensitive uniqueness
    email = body.email.strip().lower()
    if "@" not in email:
        raise HTTPException(status_code=400, detail="Invalid email")

    enforce_rate_limit(request, scope="auth_register_ip", limit=30, window_seconds=60 * 60)

    existing = db.query(User).filter(func.lower(User.email) == email).first()
    if existing:
        raise HTTPException(status_code=400, detail="User already exists")

    user = User(email=email, name=(body.name or "").strip() or None, hashed_password=_hash_password(body.password))
    db.add(user)
    try:
        db.commit()
        db.refresh(user)
    except IntegrityError:
        db.rollback()
        # Protect against race conditions and case variants
        raise HTTPException(status_code=400, detail="User already exists")

    return _user_payload(user)


@router.post("/login")
def login(body: LoginRequest, request: Request, db: Session = Depends(get_db_session)):
    settings = get_settings()
    email = body.email.strip().lower()

    enforce_rate_limit(
        request,
        scope="auth_login_ip",
        limit=settings.auth_login_rl_ip_per_minute,
        window_seconds=60,
    )
    enforce_rate_limit(
        request,
        scope="auth_login_email",
        limit=settings.auth_login_rl_ip_per_minute,
        window_seconds=60,
        discriminator=email,
    )

    user = db.query(User).filter(func.lower(User.email) == email).first()
    if not user or not user.hashed_password:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    try:
        valid = bcrypt.checkpw(body.password.encode("utf-8"), user.hashed_password.encode("utf-8"))
    except ValueError:
        valid = False
    if not valid:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    access_token = create_access_jwt(str(user.id), minutes=settings.access_token_expire_minutes)
    return {
        "message": "ok",
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": settings.access_token_expire_minutes * 60,
        "user": _user_payload(user),
    }


@router.get("/profile")
def profile(user: User = Depends(get_current_user)):
    return _user_payload(user)
