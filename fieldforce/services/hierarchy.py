from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldforce.models import UserProfile


def downstream_user_ids(root_user_id: str, users: Iterable[UserProfile]) -> list[str]:
    reports_by_manager: dict[str, list[str]] = defaultdict(list)
    for user in users:
        if user.reporting_manager_id:
            reports_by_manager[user.reporting_manager_id].append(user.id)

    result: list[str] = []
    seen: set[str] = {root_user_id}
    stack = list(reversed(reports_by_manager.get(root_user_id, [])))
    while stack:
        user_id = stack.pop()
        # A manager loop in bad data must not recurse forever.
        if user_id in seen:
            continue
        seen.add(user_id)
        result.append(user_id)
        stack.extend(reversed(reports_by_manager.get(user_id, [])))
    return result


def load_downstream_user_ids(db: Session, root_user_id: str) -> list[str]:
    users = db.scalars(select(UserProfile).order_by(UserProfile.id.asc())).all()
    return downstream_user_ids(root_user_id, users)


def is_upstream_manager(db: Session, manager_id: str, user_id: str) -> bool:
    return user_id in load_downstream_user_ids(db, manager_id)
