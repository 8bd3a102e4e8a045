from __future__ import annotations

import datetime as dt
import hashlib
import hmac
import logging
import secrets
from typing import Callable, Iterable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .models import Profile

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

_HASH_ITERATIONS = 100_000


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), _HASH_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(plain: str, hashed: str) -> bool:
    try:
        salt, expected = hashed.split("$", 1)
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", plain.encode(), salt.encode(), _HASH_ITERATIONS)
    return hmac.compare_digest(digest.hex(), expected)


def create_access_token(user_id: str, role: Optional[str]) -> str:
    expire = dt.datetime.now(dt.timezone.utc) + dt.timedelta(minutes=settings.token_ttl_minutes)
    payload = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(payload, settings.token_secret, algorithm=settings.token_algorithm)


def resolve_token(db: Session, token: Optional[str]) -> Optional[Profile]:
    """Return the staff member a bearer token belongs to, if any."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.token_secret, algorithms=[settings.token_algorithm])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    return db.get(Profile, user_id)


def authenticate(db: Session, login: str, password: str) -> Optional[Profile]:
    normalized = login.strip().lower()
    profile = db.query(Profile).filter(Profile.email == normalized).one_or_none()
    if profile is None:
        profile = db.query(Profile).filter(Profile.username == normalized).one_or_none()
    if profile is None or not verify_password(password, profile.password_hash):
        logger.warning("Failed login attempt for %s", normalized)
        return None
    return profile


def get_current_staff(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Profile:
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    profile = resolve_token(db, token)
    if profile is None or profile.role is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return profile


def require_roles(allowed_roles: Iterable[str]) -> Callable[..., Profile]:
    allowed = set(allowed_roles)

    def dependency(current: Profile = Depends(get_current_staff)) -> Profile:
        if current.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current

    return dependency


require_manager = require_roles(["owner", "admin"])
