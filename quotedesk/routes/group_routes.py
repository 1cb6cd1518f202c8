from __future__ import annotations

from flask import Blueprint, jsonify, request

from quotedesk.application.group_service import GroupService
from quotedesk.db import get_db
from quotedesk.domain.contracts import GroupInput
from quotedesk.policies import current_actor
from quotedesk.ui_strings import success_message
from quotedesk.workflow.critical_actions import require_confirmation


groups_bp = Blueprint("groups", __name__, url_prefix="/api/groups")
_group_service = GroupService()


def _body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _group_input(body: dict) -> GroupInput:
    is_active = body.get("is_active")
    return GroupInput(
        name=body.get("name"),
        description=body.get("description"),
        color=body.get("color"),
        is_active=None if is_active is None else bool(is_active),
    )


@groups_bp.route("", methods=["GET"])
def list_groups():
    return jsonify({"items": _group_service.list_groups(get_db(), current_actor())})


@groups_bp.route("", methods=["POST"])
def create_group():
    group = _group_service.create_group(get_db(), current_actor(), _group_input(_body()))
    return jsonify({"group": group}), 201


@groups_bp.route("/<int:group_id>", methods=["GET"])
def get_group(group_id: int):
    return jsonify({"group": _group_service.get_group(get_db(), current_actor(), group_id)})


@groups_bp.route("/<int:group_id>", methods=["PUT", "PATCH"])
def update_group(group_id: int):
    group = _group_service.update_group(get_db(), current_actor(), group_id, _group_input(_body()))
    return jsonify({"group": group})


@groups_bp.route("/<int:group_id>", methods=["DELETE"])
def delete_group(group_id: int):
    actor = current_actor()
    require_confirmation("delete_group", request, _body())
    _group_service.delete_group(get_db(), actor, group_id)
    return jsonify({"message": success_message("group_deleted"), "id": str(group_id)})


@groups_bp.route("/<int:group_id>/users", methods=["POST", "PUT"])
def set_members(group_id: int):
    group = _group_service.set_members(get_db(), current_actor(), group_id, _body().get("user_ids"))
    return jsonify({"group": group})


@groups_bp.route("/<int:group_id>/users/<int:user_id>", methods=["DELETE"])
def remove_member(group_id: int, user_id: int):
    group = _group_service.remove_member(get_db(), current_actor(), group_id, user_id)
    return jsonify({"group": group})
