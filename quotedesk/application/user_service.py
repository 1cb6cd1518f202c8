from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

from quotedesk.application.auth_service import public_user
from quotedesk.domain.models import Actor, Role
from quotedesk.errors import NotFoundError, ValidationError
from quotedesk.errors import PermissionError as AppPermissionError
from quotedesk.infrastructure.repositories.user_repository import PROFILE_FIELDS, UserRepository
from quotedesk.policies import require_roles


logger = logging.getLogger(__name__)


def _is_self(actor: Actor, user_id: int) -> bool:
    return str(actor.user_id) == str(user_id)


class UserService:
    def __init__(self, repository: UserRepository | None = None) -> None:
        self.repository = repository or UserRepository()

    def list_users(self, db, actor: Actor, *, role: str | None = None) -> List[Dict[str, Any]]:
        require_roles(Role.ADMIN.value, actor=actor)
        role_filter = None
        if role:
            parsed = Role.parse(role)
            if parsed is None:
                raise ValidationError(code="role_invalid", http_status=400)
            role_filter = parsed.value
        return [public_user(user) for user in self.repository.list_users(db, role=role_filter)]

    def list_suppliers(self, db, actor: Actor) -> List[Dict[str, Any]]:
        require_roles(Role.QUOTER.value, Role.ADMIN.value, actor=actor)
        users = self.repository.list_users(db, role=Role.SUPPLIER.value, active_only=True)
        return [public_user(user) for user in users]

    def get_user(self, db, actor: Actor, user_id: int) -> Dict[str, Any]:
        if not _is_self(actor, user_id):
            require_roles(Role.ADMIN.value, actor=actor)
        return public_user(self._load(db, user_id))

    def update_profile(self, db, actor: Actor, user_id: int, fields: Mapping[str, Any]) -> Dict[str, Any]:
        if not _is_self(actor, user_id):
            require_roles(Role.ADMIN.value, actor=actor)
        self._load(db, user_id)
        blocked = sorted(key for key in fields if key not in PROFILE_FIELDS)
        if blocked:
            raise ValidationError(code="field_not_editable", http_status=400, payload={"fields": blocked})
        cleaned = {key: (str(value).strip() if value is not None else None) or None for key, value in fields.items()}
        if not cleaned:
            raise ValidationError(code="no_changes", http_status=400)
        self.repository.update_profile(db, user_id, cleaned)
        db.commit()
        return public_user(self._load(db, user_id))

    def change_role(self, db, actor: Actor, user_id: int, role: object) -> Dict[str, Any]:
        require_roles(Role.ADMIN.value, actor=actor)
        parsed = Role.parse(role)
        if parsed is None:
            raise ValidationError(code="role_invalid", http_status=400)
        user = self._load(db, user_id)
        if user.get("role") != parsed.value:
            self.repository.set_role(db, user_id, parsed.value)
            db.commit()
            logger.info(
                "user_role_changed",
                extra={"target_user_id": user_id, "from_role": user.get("role"), "to_role": parsed.value},
            )
        return public_user(self._load(db, user_id))

    def deactivate(self, db, actor: Actor, user_id: int) -> Dict[str, Any]:
        require_roles(Role.ADMIN.value, actor=actor)
        if _is_self(actor, user_id):
            raise AppPermissionError(code="cannot_deactivate_self", http_status=400, critical=False)
        user = self._load(db, user_id)
        if not user.get("is_active"):
            raise ValidationError(code="user_already_inactive", http_status=400)
        self.repository.set_active(db, user_id, False)
        db.commit()
        logger.info("user_deactivated", extra={"target_user_id": user_id})
        return public_user(self._load(db, user_id))

    def _load(self, db, user_id: int) -> Dict[str, Any]:
        user = self.repository.get_by_id(db, user_id)
        if not user:
            raise NotFoundError(code="user_not_found", http_status=404, payload={"user_id": user_id})
        return user
