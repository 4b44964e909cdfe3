# travel_ledger/security.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.requests import Request
from passlib.context import CryptContext
from sqlmodel import Session

from travel_ledger.db import get_session
from travel_ledger.models import Role, User

# pbkdf2_sha256 is pure Python; no bcrypt backend needed
_pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

SESSION_USER_KEY = "user_id"


# ------------ Password helpers ------------


def hash_password(plain: str) -> str:
    """Return a secure hash for a plaintext password."""
    return _pwd.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a plaintext password against a stored hash. Bad hashes count as a mismatch."""
    try:
        return _pwd.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


# ------------ Session / Auth helpers ------------


def login_session(request: Request, user: User) -> None:
    request.session.clear()
    request.session[SESSION_USER_KEY] = user.id


def get_user_id_from_session(request: Request) -> Optional[int]:
    """
    Read user_id from the session (if present). Returns int or None.
    """
    if "session" not in request.scope:
        return None
    uid = request.session.get(SESSION_USER_KEY)
    try:
        return int(uid) if uid is not None else None
    except (TypeError, ValueError):
        return None


def require_user_id(request: Request) -> int:
    """
    FastAPI dependency: the signed-in user's id, or 401.
    Usage:  user_id: int = Depends(require_user_id)
    """
    uid = get_user_id_from_session(request)
    if uid is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="访问被拒绝，请先登录",
        )
    return uid


def require_user(
    user_id: int = Depends(require_user_id),
    session: Session = Depends(get_session),
) -> User:
    """Load the signed-in user; a session pointing at a deleted user is treated as logged out."""
    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="用户不存在或登录已失效",
        )
    return user


def require_admin(user: User = Depends(require_user)) -> User:
    if user.role != Role.admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="权限不足")
    return user


__all__ = [
    "hash_password",
    "verify_password",
    "login_session",
    "get_user_id_from_session",
    "require_user_id",
    "require_user",
    "require_admin",
]
