from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Header, Request
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from fieldforce.db import get_db
from fieldforce.errors import ApiError
from fieldforce.models import UserProfile, UserRole

USER_ID_HEADER = "X-User-Id"


def resolve_user(db: Session, user_id: str) -> UserProfile:
    user = db.scalar(
        select(UserProfile)
        .options(selectinload(UserProfile.territories))
        .where(UserProfile.id == user_id)
    )
    if user is None:
        raise ApiError(status_code=404, code="USER_NOT_FOUND", message="User not found.")
    return user


def get_current_user(
    request: Request,
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
    db: Session = Depends(get_db),
) -> UserProfile:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise ApiError(status_code=401, code="UNKNOWN_USER", message=f"Missing {USER_ID_HEADER} header.")

    user = db.scalar(
        select(UserProfile)
        .options(selectinload(UserProfile.territories))
        .where(UserProfile.id == user_id)
    )
    if user is None or not user.is_active:
        raise ApiError(status_code=401, code="UNKNOWN_USER", message="Unknown or inactive user.")

    request.state.actor = user.role.value
    request.state.actor_id = user.id
    return user


def require_role(*roles: UserRole) -> Callable[..., UserProfile]:
    if not roles:
        raise ValueError("require_role needs at least one role")

    def _dependency(user: UserProfile = Depends(get_current_user)) -> UserProfile:
        if user.role not in roles:
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
        return user

    return _dependency
