"""
Request identity

Sign-in is handled by the upstream gateway, which forwards the verified user
as X-User-Id / X-User-Role headers. These dependencies only read them.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Header

from scrolls.exceptions import Unauthorized

EDUCATOR_ROLES = ("educator", "pending_educator")


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> CurrentUser:
    if not x_user_id or not x_user_id.strip():
        raise Unauthorized()
    return CurrentUser(id=x_user_id.strip(), role=(x_user_role or "").strip().lower())


def require_student(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> CurrentUser:
    user = get_current_user(x_user_id, x_user_role)
    if user.role != "student":
        raise Unauthorized("Unauthorized - Student access required")
    return user


def require_educator(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> CurrentUser:
    user = get_current_user(x_user_id, x_user_role)
    if user.role not in EDUCATOR_ROLES:
        raise Unauthorized("Unauthorized - Educator access required")
    return user
