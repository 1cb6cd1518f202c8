from __future__ import annotations

from typing import Dict, Tuple

from quotedesk.errors import ValidationError
from quotedesk.ui_strings import confirm_message


CRITICAL_ACTIONS: Dict[str, Dict[str, str]] = {
    "delete_quote": {
        "action_key": "delete_quote",
        "confirm_message_key": "delete_quote",
    },
    "delete_file": {
        "action_key": "delete_file",
        "confirm_message_key": "delete_file",
    },
    "reject_quote": {
        "action_key": "reject_quote",
        "confirm_message_key": "reject_quote",
    },
    "remove_supplier": {
        "action_key": "remove_supplier",
        "confirm_message_key": "remove_supplier",
    },
    "cancel_quote": {
        "action_key": "cancel_quote",
        "confirm_message_key": "cancel_quote",
    },
    "delete_group": {
        "action_key": "delete_group",
        "confirm_message_key": "delete_group",
    },
    "deactivate_user": {
        "action_key": "deactivate_user",
        "confirm_message_key": "deactivate_user",
    },
}


_TRUE_TEXT_VALUES = {"1", "true", "yes", "on"}


def get_critical_action(action_key: str | None) -> Dict[str, str] | None:
    if not action_key:
        return None
    return CRITICAL_ACTIONS.get(str(action_key).strip())


def is_critical_action(action_key: str | None) -> bool:
    return get_critical_action(action_key) is not None


def is_explicit_true(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_TEXT_VALUES
    return False


def resolve_confirmation(request_obj, payload: dict | None = None) -> Tuple[bool, str]:
    payload_dict = payload if isinstance(payload, dict) else {}

    confirm_token = (
        payload_dict.get("confirm_token")
        or request_obj.args.get("confirm_token")
        or request_obj.form.get("confirm_token")
        or request_obj.headers.get("X-Confirm-Token")
    )
    if isinstance(confirm_token, str) and confirm_token.strip():
        return True, "confirm_token"

    confirm_value = payload_dict.get("confirm")
    if confirm_value is None:
        confirm_value = request_obj.args.get("confirm")
    if confirm_value is None:
        confirm_value = request_obj.form.get("confirm")
    if confirm_value is None:
        confirm_value = request_obj.headers.get("X-Confirm")

    if is_explicit_true(confirm_value):
        return True, "confirm_flag"

    return False, "missing_confirmation"


def require_confirmation(action_key: str, request_obj, payload: dict | None = None) -> str:
    """Return how the critical action was confirmed, or raise ``confirmation_required``."""
    action = get_critical_action(action_key)
    if action is None:
        return "not_critical"
    confirmed, source = resolve_confirmation(request_obj, payload)
    if confirmed:
        return source
    raise ValidationError(
        code="confirmation_required",
        message_key="confirmation_required",
        http_status=400,
        payload={
            "action": action["action_key"],
            "confirm_message_key": action["confirm_message_key"],
            "confirm_message": confirm_message(action["confirm_message_key"]),
        },
    )
