from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from fileshare.core.config import get_settings
from fileshare.core.errors import Unauthorized
from fileshare.db.session import get_db_session  # re-exported for convenience
from fileshare.models.user import User


bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db_session),
) -> User:
    """Resolve the bearer access token to a user. Raises 401 if missing or invalid."""
    if credentials is None or not credentials.credentials:
        raise Unauthorized()

    settings = get_settings()
    try:
        payload = jwt.decode(credentials.credentials, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise Unauthorized("Invalid token")
    if payload.get("typ") != "access":
        raise Unauthorized("Invalid token")
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise Unauthorized("Invalid token")

    user = db.get(User, user_id)
    if not user:
        raise Unauthorized("User not found")
    return user


@dataclass(frozen=True)
class ShareContext:
    """Per-request state handed to file handlers: who is calling and where links point."""
    user: User
    base_url: str

    def share_link(self, token: str) -> str:
        return f"{self.base_url}/files/{token}/content"


def _base_url(request: Request) -> str:
    configured = (get_settings().public_base_url or "").strip()
    if configured:
        return configured.rstrip("/")
    return str(request.base_url).rstrip("/")


def get_share_context(request: Request, user: User = Depends(get_current_user)) -> ShareContext:
    return ShareContext(user=user, base_url=_base_url(request))
