from __future__ import annotations

from typing import Callable, Dict, List, Tuple

from quotedesk.domain.models import Actor, FileType, Quote, QuoteStatus, Role
from quotedesk.ui_strings import (
    ACTION_LABELS,
    FILE_TYPE_LABELS,
    ROLE_LABELS,
    STATUS_DESCRIPTIONS,
    STATUS_ITEMS,
    STATUS_LABELS,
)
from quotedesk.workflow import permissions
from quotedesk.workflow.critical_actions import CRITICAL_ACTIONS
from quotedesk.workflow.state_machine import Trigger, is_allowed, transition_table


FINAL_STATUSES = frozenset({QuoteStatus.QUOTED, QuoteStatus.CANCELLED, QuoteStatus.REJECTED})
EDITABLE_STATUSES = frozenset({QuoteStatus.PENDING, QuoteStatus.SUPPLIER_QUOTED, QuoteStatus.IN_PROGRESS})


_Check = Callable[[Quote, Actor], permissions.Decision]

ACTION_CHECKS: List[Tuple[str, Trigger | None, _Check]] = [
    ("view", None, permissions.can_view),
    ("edit", Trigger.EDIT, permissions.can_edit),
    ("toggle_urgent", Trigger.TOGGLE_URGENT, permissions.can_toggle_urgent),
    (
        "upload_customer_file",
        Trigger.UPLOAD_CUSTOMER_FILE,
        lambda quote, actor: permissions.can_upload(quote, actor, FileType.CUSTOMER),
    ),
    (
        "upload_supplier_file",
        Trigger.UPLOAD_SUPPLIER_FILE,
        lambda quote, actor: permissions.can_upload(quote, actor, FileType.SUPPLIER),
    ),
    (
        "upload_quoter_file",
        Trigger.UPLOAD_QUOTER_FILE,
        lambda quote, actor: permissions.can_upload(quote, actor, FileType.QUOTER),
    ),
    ("confirm_supplier_quote", Trigger.CONFIRM_SUPPLIER_QUOTE, permissions.can_confirm_supplier_quote),
    ("confirm_final_quote", Trigger.CONFIRM_FINAL_QUOTE, permissions.can_confirm_final_quote),
    ("assign_supplier", Trigger.ASSIGN_SUPPLIER, permissions.can_assign_supplier),
    ("remove_supplier", Trigger.REMOVE_SUPPLIER, permissions.can_remove_supplier),
    ("assign_quoter", Trigger.ASSIGN_QUOTER, permissions.can_assign_quoter),
    ("reject", Trigger.REJECT, permissions.can_reject),
    ("cancel", Trigger.CANCEL, permissions.can_cancel),
    ("delete", Trigger.DELETE, permissions.can_delete_quote),
]


# Preferred next step per role, first allowed entry wins.
PRIMARY_ACTIONS: Dict[Role, List[str]] = {
    Role.CUSTOMER: ["upload_customer_file", "view"],
    Role.SUPPLIER: ["confirm_supplier_quote", "upload_supplier_file", "view"],
    Role.QUOTER: ["confirm_final_quote", "assign_supplier", "upload_quoter_file", "view"],
    Role.ADMIN: ["confirm_final_quote", "assign_supplier", "upload_quoter_file", "view"],
}


def is_final_status(status: object) -> bool:
    return QuoteStatus.parse(status) in FINAL_STATUSES


def is_editable_status(status: object) -> bool:
    return QuoteStatus.parse(status) in EDITABLE_STATUSES


def _confirm_ready(quote: Quote, action: str) -> bool:
    if action == "confirm_supplier_quote":
        return bool(quote.supplier_files)
    if action == "confirm_final_quote":
        return bool(quote.quoter_files)
    return True


def available_actions(quote: Quote, actor: Actor) -> List[str]:
    actions: List[str] = []
    for action, trigger, check in ACTION_CHECKS:
        if trigger is not None and not is_allowed(quote.status, trigger):
            continue
        if not check(quote, actor).allowed:
            continue
        if not _confirm_ready(quote, action):
            continue
        actions.append(action)
    return actions


def primary_action(quote: Quote, actor: Actor, actions: List[str] | None = None) -> str | None:
    if actions is None:
        actions = available_actions(quote, actor)
    for action in PRIMARY_ACTIONS.get(actor.role, []) if actor.role else []:
        if action in actions:
            return action
    return None


def flow_meta(quote: Quote, actor: Actor) -> Dict[str, object]:
    actions = available_actions(quote, actor)
    return {
        "status": quote.status.value,
        "status_label": STATUS_LABELS.get(quote.status.value, quote.status.value),
        "is_final": is_final_status(quote.status),
        "is_editable": is_editable_status(quote.status),
        "allowed_actions": actions,
        "primary_action": primary_action(quote, actor, actions),
    }


def frontend_bundle() -> Dict[str, object]:
    return {
        "statuses": STATUS_ITEMS,
        "status_labels": STATUS_LABELS,
        "status_descriptions": STATUS_DESCRIPTIONS,
        "final_statuses": sorted(status.value for status in FINAL_STATUSES),
        "editable_statuses": sorted(status.value for status in EDITABLE_STATUSES),
        "role_labels": ROLE_LABELS,
        "file_type_labels": FILE_TYPE_LABELS,
        "action_labels": ACTION_LABELS,
        "transitions": transition_table(),
        "critical_actions": CRITICAL_ACTIONS,
    }
