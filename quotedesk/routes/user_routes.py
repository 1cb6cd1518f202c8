from __future__ import annotations

from flask import Blueprint, jsonify, request

from quotedesk.application.user_service import UserService
from quotedesk.db import get_db
from quotedesk.policies import current_actor
from quotedesk.ui_strings import success_message
from quotedesk.workflow.critical_actions import require_confirmation


users_bp = Blueprint("users", __name__, url_prefix="/api/users")
_user_service = UserService()


def _body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


@users_bp.route("", methods=["GET"])
def list_users():
    users = _user_service.list_users(get_db(), current_actor(), role=request.args.get("role"))
    return jsonify({"items": users})


@users_bp.route("/suppliers", methods=["GET"])
def list_suppliers():
    return jsonify({"items": _user_service.list_suppliers(get_db(), current_actor())})


@users_bp.route("/<int:user_id>", methods=["GET"])
def get_user(user_id: int):
    return jsonify({"user": _user_service.get_user(get_db(), current_actor(), user_id)})


@users_bp.route("/<int:user_id>", methods=["PUT", "PATCH"])
def update_profile(user_id: int):
    user = _user_service.update_profile(get_db(), current_actor(), user_id, _body())
    return jsonify({"user": user})


@users_bp.route("/<int:user_id>/role", methods=["PATCH", "PUT"])
def change_role(user_id: int):
    user = _user_service.change_role(get_db(), current_actor(), user_id, _body().get("role"))
    return jsonify({"user": user})


@users_bp.route("/<int:user_id>", methods=["DELETE"])
def deactivate_user(user_id: int):
    actor = current_actor()
    require_confirmation("deactivate_user", request, _body())
    user = _user_service.deactivate(get_db(), actor, user_id)
    return jsonify({"user": user, "message": success_message("user_deactivated")})
