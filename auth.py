"""Credentials, session tokens and the access checks every route composes.

The checks are plain functions so services and handlers share them:

1. ``user_from_session`` - a signed session token resolves to a user, else
   ``Unauthenticated``.
2. ``ensure_admin`` - the user has the admin role, else ``Forbidden``.
3. ``ensure_group_access`` / ``ensure_group_admin`` - the user may read (or
   write to) a group, else ``Forbidden``.
"""

from functools import lru_cache
from typing import Optional

import bcrypt
from itsdangerous import BadSignature, URLSafeTimedSerializer

from errors import Forbidden, NotFoundError, Unauthenticated, ValidationError
from models import Group, User, UserRole
from storage import Storage

SESSION_COOKIE = "expenses_session"
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    raw = password.encode("utf-8")
    if len(raw) > BCRYPT_MAX_BYTES:
        raise ValidationError.for_field("password", "Password is too long")
    return raw


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds)).decode(
        "utf-8"
    )


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


@lru_cache(maxsize=4)
def dummy_password_hash(rounds: int) -> str:
    # Checked against when an identifier is unknown so both failure paths cost the same.
    return hash_password("not-a-real-password", rounds)


def _session_serializer(secret: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret, salt="session")


def issue_session_token(secret: str, user_id: int) -> str:
    return _session_serializer(secret).dumps({"u": user_id})


def read_session_token(secret: str, token: str, max_age_hours: int) -> Optional[int]:
    try:
        data = _session_serializer(secret).loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return None
    user_id = data.get("u") if isinstance(data, dict) else None
    return user_id if isinstance(user_id, int) else None


def user_from_session(
    storage: Storage, secret: str, token: Optional[str], max_age_hours: int
) -> User:
    if not token:
        raise Unauthenticated()
    user_id = read_session_token(secret, token, max_age_hours)
    if user_id is None:
        raise Unauthenticated("Session is invalid or expired")
    user = storage.get_user(user_id)
    if not user:
        raise Unauthenticated("Session is invalid or expired")
    return user


def ensure_admin(user: User) -> User:
    if user.role != UserRole.admin:
        raise Forbidden("Admin access required")
    return user


def ensure_group_admin(storage: Storage, user: User, group_id: int) -> Group:
    group = storage.get_group(group_id)
    if not group:
        raise NotFoundError("Group not found")
    if group.admin_id != user.id:
        raise Forbidden("Only the group admin can manage this group")
    return group


def ensure_group_access(
    storage: Storage, user: User, group_id: int, *, write: bool = False
) -> Group:
    group = storage.get_group(group_id)
    if not group:
        raise NotFoundError("Group not found")
    if group.admin_id == user.id:
        return group
    membership = storage.get_membership(group_id, user.id)
    if not membership:
        raise Forbidden("You are not a member of this group")
    if write and not membership.can_add_expense:
        raise Forbidden("You do not have permission to add expenses to this group")
    return group
