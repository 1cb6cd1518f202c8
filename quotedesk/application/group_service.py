from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List

from quotedesk.domain.contracts import GroupInput
from quotedesk.domain.models import Actor, Role
from quotedesk.errors import NotFoundError, ValidationError
from quotedesk.infrastructure.repositories.group_repository import GroupRepository
from quotedesk.infrastructure.repositories.user_repository import UserRepository
from quotedesk.policies import require_roles


logger = logging.getLogger(__name__)

DEFAULT_GROUP_COLOR = "#007bff"
_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")

MANAGER_ROLES = (Role.QUOTER.value, Role.ADMIN.value)


def _clean_color(value: object) -> str | None:
    color = str(value or "").strip()
    if not color:
        return None
    if not _COLOR_RE.match(color):
        raise ValidationError(code="validation_error", http_status=400, payload={"field": "color"})
    return color.lower()


class GroupService:
    """Supplier groups: named labels over supplier accounts, managed by quoters and admins."""

    def __init__(
        self,
        repository: GroupRepository | None = None,
        user_repository: UserRepository | None = None,
    ) -> None:
        self.repository = repository or GroupRepository()
        self.users = user_repository or UserRepository()

    def list_groups(self, db, actor: Actor) -> List[Dict[str, Any]]:
        require_roles(*MANAGER_ROLES, actor=actor)
        groups = self.repository.list_groups(db)
        members = self.repository.list_members(db, [group["id"] for group in groups])
        return [self._serialize(group, members.get(int(group["id"]), [])) for group in groups]

    def get_group(self, db, actor: Actor, group_id: int) -> Dict[str, Any]:
        require_roles(*MANAGER_ROLES, actor=actor)
        group = self._load(db, group_id)
        members = self.repository.list_members(db, [group_id])
        return self._serialize(group, members.get(group_id, []))

    def create_group(self, db, actor: Actor, group_input: GroupInput) -> Dict[str, Any]:
        require_roles(*MANAGER_ROLES, actor=actor)
        name = (group_input.name or "").strip()
        if not name:
            raise ValidationError(code="group_name_required", http_status=400)
        if self.repository.name_taken(db, name):
            raise ValidationError(code="group_name_taken", http_status=400)
        group_id = self.repository.create_group(
            db,
            name=name,
            description=(group_input.description or "").strip() or None,
            color=_clean_color(group_input.color) or DEFAULT_GROUP_COLOR,
            created_by=int(actor.user_id),
        )
        db.commit()
        logger.info("group_created", extra={"group_id": group_id})
        return self.get_group(db, actor, group_id)

    def update_group(self, db, actor: Actor, group_id: int, group_input: GroupInput) -> Dict[str, Any]:
        require_roles(*MANAGER_ROLES, actor=actor)
        group = self._load(db, group_id)
        fields: Dict[str, Any] = {}
        name = (group_input.name or "").strip()
        if name and name != group["name"]:
            if self.repository.name_taken(db, name, exclude_id=group_id):
                raise ValidationError(code="group_name_taken", http_status=400)
            fields["name"] = name
        if group_input.description is not None:
            fields["description"] = group_input.description.strip() or None
        color = _clean_color(group_input.color)
        if color:
            fields["color"] = color
        if group_input.is_active is not None:
            fields["is_active"] = bool(group_input.is_active)
        if fields:
            self.repository.update_group(db, group_id, fields)
            db.commit()
        return self.get_group(db, actor, group_id)

    def delete_group(self, db, actor: Actor, group_id: int) -> None:
        require_roles(*MANAGER_ROLES, actor=actor)
        self._load(db, group_id)
        members = self.repository.list_members(db, [group_id]).get(group_id, [])
        if self.repository.member_count(db, group_id):
            raise ValidationError(
                code="group_in_use",
                http_status=400,
                payload={"users": [member.get("name") or member.get("email") for member in members]},
            )
        self.repository.delete_group(db, group_id)
        db.commit()
        logger.info("group_deleted", extra={"group_id": group_id})

    def set_members(self, db, actor: Actor, group_id: int, user_ids: Iterable[object] | None) -> Dict[str, Any]:
        """Replace the member list of a group; every member must be a supplier."""
        require_roles(*MANAGER_ROLES, actor=actor)
        self._load(db, group_id)
        try:
            ids = sorted({int(item) for item in (user_ids or [])})
        except (TypeError, ValueError):
            raise ValidationError(code="group_members_must_be_suppliers", http_status=400) from None
        if ids:
            users = self.users.list_by_ids(db, ids)
            if len(users) != len(ids) or any(user.get("role") != Role.SUPPLIER.value for user in users.values()):
                raise ValidationError(code="group_members_must_be_suppliers", http_status=400)
        with db.transaction():
            self.repository.replace_members(db, group_id, ids)
        logger.info("group_members_replaced", extra={"group_id": group_id, "members": len(ids)})
        return self.get_group(db, actor, group_id)

    def remove_member(self, db, actor: Actor, group_id: int, user_id: int) -> Dict[str, Any]:
        require_roles(*MANAGER_ROLES, actor=actor)
        self._load(db, group_id)
        self.repository.remove_member(db, group_id, user_id)
        db.commit()
        return self.get_group(db, actor, group_id)

    def _load(self, db, group_id: int) -> Dict[str, Any]:
        group = self.repository.get_by_id(db, group_id)
        if not group:
            raise NotFoundError(code="group_not_found", http_status=404, payload={"group_id": group_id})
        return group

    @staticmethod
    def _serialize(group: Dict[str, Any], members: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "id": str(group["id"]),
            "name": group.get("name"),
            "description": group.get("description"),
            "color": group.get("color") or DEFAULT_GROUP_COLOR,
            "is_active": bool(group.get("is_active")),
            "created_by": str(group["created_by"]) if group.get("created_by") is not None else None,
            "created_at": group.get("created_at"),
            "updated_at": group.get("updated_at"),
            "users": [
                {
                    "id": str(member["id"]),
                    "name": member.get("name"),
                    "email": member.get("email"),
                    "company": member.get("company"),
                }
                for member in members
            ],
        }
