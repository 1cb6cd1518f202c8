from __future__ import annotations

from typing import Iterable, Set

from flask import g

from quotedesk.domain.models import Actor, Role
from quotedesk.errors import PermissionError as AppPermissionError


VALID_ROLES: Set[str] = {role.value for role in Role}


def normalize_role(role: str | None, default: str = "") -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def normalize_allowed_roles(roles: Iterable[str]) -> Set[str]:
    allowed: Set[str] = set()
    for role in roles:
        normalized = normalize_role(role)
        if normalized:
            allowed.add(normalized)
    return allowed


def current_actor() -> Actor:
    actor = getattr(g, "actor", None)
    if actor is None:
        raise AppPermissionError(
            code="auth_required",
            message_key="auth_required",
            http_status=401,
            critical=False,
        )
    return actor


def has_any_role(role: str | None, allowed_roles: Iterable[str]) -> bool:
    normalized_role = normalize_role(role)
    if not normalized_role:
        return False
    allowed = normalize_allowed_roles(allowed_roles)
    return not allowed or normalized_role in allowed


def require_roles(*allowed_roles: str, actor: Actor | None = None) -> Actor:
    actor = actor or current_actor()
    role = actor.role.value if actor.role is not None else None
    if has_any_role(role, allowed_roles):
        return actor
    raise AppPermissionError(
        code="permission_denied",
        message_key="role_not_allowed" if role else "unknown_role",
        http_status=403,
        critical=False,
    )
