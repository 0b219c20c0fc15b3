"""
=============================================================================
AUTH.PY — Authentication
=============================================================================
Handles:
  - Password hashing (passwords are never stored in plain text)
  - Creating and verifying JWT tokens
  - Resolving the current user from a token
  - Role checks (USER / MODERATOR / ADMIN)

Flow:
  1. The user sends email + password to /api/auth/login
  2. If they match, the server signs a JWT with the user's id and role
  3. The client sends "Authorization: Bearer <token>" on every request
  4. `get_current_user` verifies the token and loads the user
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from errors import AuthenticationError, AuthorizationError
from models import User, UserRole

# ─────────────────────────────────────────────────────────────────────────────
# SETTINGS
# ─────────────────────────────────────────────────────────────────────────────

SECRET_KEY = settings.secret_key
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_DAYS = settings.access_token_expire_days

# Roles allowed to publish quests directly and review submissions
STAFF_ROLES = (UserRole.ADMIN.value, UserRole.MODERATOR.value)


# ─────────────────────────────────────────────────────────────────────────────
# PASSWORD HASHING
# ─────────────────────────────────────────────────────────────────────────────

def hash_password(password: str) -> str:
    """Plain text password → bcrypt hash"""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Compares a plain text password against a stored hash"""
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


# ─────────────────────────────────────────────────────────────────────────────
# JWT TOKENS
# ─────────────────────────────────────────────────────────────────────────────

def create_access_token(user_id: int, email: str, role: str) -> str:
    """
    Signs a JWT holding:
      - sub: the user id
      - email, role: for reference (the DB stays the source of truth)
      - exp: expiration
    """
    expire = datetime.now(timezone.utc) + timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS)
    to_encode = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Returns the token payload, or None if it is invalid or expired"""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


# ─────────────────────────────────────────────────────────────────────────────
# DEPENDENCY: CURRENT USER
# ─────────────────────────────────────────────────────────────────────────────

security = HTTPBearer()
# HTTPBearer → reads "Authorization: Bearer <token>"


def _resolve_user(token: str, db: Session) -> User:
    payload = decode_token(token)
    if payload is None:
        raise AuthenticationError("Invalid or expired token")

    user_id = payload.get("sub")
    if user_id is None:
        raise AuthenticationError("Token has no user id")

    user = db.query(User).filter(User.id == int(user_id)).first()
    if user is None or not user.is_active or user.deleted_at is not None:
        raise AuthenticationError("User not found or inactive")
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Injects the authenticated user into an endpoint:

      @app.get("/api/auth/me")
      def me(user: User = Depends(get_current_user)):
          ...
    """
    user = _resolve_user(credentials.credentials, db)

    user.last_active_at = datetime.utcnow()
    db.commit()

    return user


def require_roles(*roles: str):
    """
    Dependency factory that only lets the given roles through:

      @app.post("/api/categories")
      def create(user: User = Depends(require_roles("ADMIN"))):
    """
    async def checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise AuthorizationError()
        return user
    return checker


def is_staff(user: User) -> bool:
    return user.role in STAFF_ROLES
