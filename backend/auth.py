"""
Authentication helpers: bcrypt password hashing, JWT access tokens and the
FastAPI dependencies that resolve the calling user and check their role.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from errors import AuthenticationError, PermissionDeniedError
from models import User, UserRole

logger = logging.getLogger(__name__)

ADMIN_ROLES = (UserRole.SUPER_ADMIN, UserRole.MASTER_RESELLER)
RESELLER_ROLES = (UserRole.SUPER_ADMIN, UserRole.MASTER_RESELLER, UserRole.RESELLER)

BCRYPT_ROUNDS = 10


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user: User, expires_minutes: Optional[int] = None) -> str:
    settings = get_settings()
    expires = datetime.utcnow() + timedelta(minutes=expires_minutes or settings.jwt_expire_minutes)
    payload = {"sub": str(user.id), "role": user.role, "exp": expires}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Invalid token") from e


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to a User."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthenticationError("Not authorized, no token")
    payload = decode_access_token(authorization.split(" ", 1)[1].strip())
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError) as e:
        raise AuthenticationError("Invalid token") from e
    user = db.get(User, user_id)
    if user is None:
        raise AuthenticationError("Not authorized, user not found")
    return user


def require_roles(*roles: UserRole):
    """Dependency factory that only lets the given roles through."""
    allowed = {role.value for role in roles}

    def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            logger.warning(f"[AUTH] User {user.username} with role {user.role} denied")
            raise PermissionDeniedError("You do not have permission to perform this action")
        return user

    return _check
