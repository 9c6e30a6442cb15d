import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings
from .db import User
from .deps import get_settings, get_storage
from .errors import TaskboardError, Unauthenticated, ValidationFailed
from .storage import Storage

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _secret(settings: Settings) -> str:
    if not settings.JWT_SECRET:
        raise TaskboardError("JWT secret is not configured", 500)
    return settings.JWT_SECRET


def create_access_token(user: User, settings: Settings, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        "userId": user.id,
        "email": user.email,
        "iat": now,
        "exp": now + timedelta(days=settings.JWT_EXPIRES_DAYS),
    }
    return jwt.encode(payload, _secret(settings), algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, _secret(settings), algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Expired JWT token")
        raise Unauthenticated("Access token has expired") from None
    except jwt.InvalidTokenError as exc:
        logger.warning("Invalid JWT token: %s", exc)
        raise Unauthenticated("Invalid access token") from None


def login(storage: Storage, settings: Settings, email: str, password: str) -> tuple[User, str]:
    """Check the hardcoded credential, then find or create its user and issue a token."""
    if email.lower() != settings.ADMIN_EMAIL.lower() or password != settings.ADMIN_PASSWORD:
        logger.warning("Failed login attempt for %s", email)
        raise Unauthenticated("Invalid email or password")

    with storage.transaction():
        user = storage.get_user_by_email(settings.ADMIN_EMAIL)
        if user is None:
            user = storage.add(User(email=settings.ADMIN_EMAIL, name=settings.ADMIN_NAME))
    token = create_access_token(user, settings)
    logger.info("User logged in: %s (%s)", user.email, user.id)
    return user, token


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
    storage: Storage = Depends(get_storage),
) -> User:
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Access token is required")
    payload = decode_access_token(credentials.credentials, settings)
    user_id = payload.get("userId")
    user = storage.get(User, user_id) if user_id else None
    if user is None:
        raise Unauthenticated("User not found")
    return user


def update_profile(storage: Storage, user: User, name: str) -> User:
    name = name.strip()
    if not name:
        raise ValidationFailed("Name is required")
    with storage.transaction():
        storage.update(user, name=name)
    logger.info("User profile updated: %s (%s)", user.id, name)
    return user


def cleanup_expired_magic_links(storage: Storage) -> int:
    with storage.transaction():
        count = storage.delete_expired_magic_links()
    if count > 0:
        logger.info("Cleaned up %d expired magic links", count)
    return count
